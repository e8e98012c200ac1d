from __future__ import annotations

from http import HTTPStatus

from .. import lifecycle, store
from .jsonutil import read_object
from .paths import split_api_path


def try_handle(handler, path: str, query: str) -> bool:
    if path == "/api/orders":
        payload = read_object(handler)
        caller = handler._authorize("order", "create", payload)
        body = {"scriptName": payload.get("scriptName"), "batchName": payload.get("batchName")}
        with store.connect(handler.server.data_dir) as conn:
            order_id = lifecycle.create_resource(conn, "order", body, caller=caller)
            order = lifecycle.get_resource(conn, "order", order_id)
        message = f"Order {order_id} for script {order['scriptName']} has been received."
        handler._send_done(HTTPStatus.CREATED, order, message)
        return True

    api_path = split_api_path(path)
    if api_path is None or api_path.kind != "order" or api_path.action != "assign":
        return False

    payload = read_object(handler)
    caller = handler._authorize("job", "create", payload)
    with store.connect(handler.server.data_dir) as conn:
        job = lifecycle.assign_order(conn, str(api_path.resource_id), caller, payload.get("tester"))
    handler._send_json(HTTPStatus.CREATED, job)
    return True

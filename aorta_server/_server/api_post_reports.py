from __future__ import annotations

from http import HTTPStatus

from .. import lifecycle, store
from .jsonutil import data_field, read_object, truthy


def try_handle(handler, path: str, query: str) -> bool:
    if path != "/api/reports":
        return False

    payload = read_object(handler)
    caller = handler._authorize("report", "create", payload)
    with store.connect(handler.server.data_dir) as conn:
        report_id = lifecycle.create_resource(
            conn,
            "report",
            data_field(payload),
            caller=caller,
            replace=truthy(payload.get("replace")),
            notifier=handler.server.notifier,
        )
    handler._send_done(HTTPStatus.CREATED, {"id": report_id}, f"Report {report_id} has been stored.")
    return True

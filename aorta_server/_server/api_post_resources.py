from __future__ import annotations

from http import HTTPStatus

from .. import lifecycle, store
from .jsonutil import data_field, read_object, truthy
from .paths import split_api_path


def try_handle(handler, path: str, query: str) -> bool:
    api_path = split_api_path(path)
    if api_path is None:
        return False
    kind, resource_id, action = api_path

    if action == "remove" and resource_id:
        payload = read_object(handler)
        handler._authorize(kind, "remove", payload)
        with store.connect(handler.server.data_dir) as conn:
            lifecycle.remove_resource(conn, kind, resource_id)
        handler._send_empty(HTTPStatus.NO_CONTENT)
        return True

    if action is not None:
        return False

    if kind in ("script", "batch"):
        payload = read_object(handler)
        handler._authorize(kind, "create", payload)
        # The upload page names the resource in a form field.
        name = resource_id or str(payload.get("id") or "").strip()
        with store.connect(handler.server.data_dir) as conn:
            created = lifecycle.create_named(conn, kind, name, data_field(payload), replace=truthy(payload.get("replace")))
        handler._send_done(HTTPStatus.CREATED, {"id": created}, f"The {kind} {created} has been stored.")
        return True

    if kind == "user" and resource_id is None:
        payload = read_object(handler)
        caller = handler._authorize("user", "create", payload)
        with store.connect(handler.server.data_dir) as conn:
            created = lifecycle.create_resource(
                conn, "user", data_field(payload), caller=caller, replace=truthy(payload.get("replace"))
            )
        handler._send_json(HTTPStatus.CREATED, {"id": created})
        return True

    return False

from __future__ import annotations

from http import HTTPStatus

from .. import lifecycle, store
from .paths import split_api_path


def try_handle(handler, path: str, query: str) -> bool:
    api_path = split_api_path(path)
    if api_path is None or api_path.action is not None:
        return False

    kind, resource_id, _ = api_path
    handler._authorize(kind, "see")
    with store.connect(handler.server.data_dir) as conn:
        if resource_id is None:
            items = lifecycle.list_resources(conn, kind)
            handler._send_json(HTTPStatus.OK, {"items": items})
            return True
        if kind == "digest":
            html = lifecycle.get_digest(conn, resource_id)
            handler._send_html(HTTPStatus.OK, html, f"/api/digests/{resource_id}")
            return True
        obj = lifecycle.get_resource(conn, kind, resource_id)
    handler._send_json(HTTPStatus.OK, obj)
    return True

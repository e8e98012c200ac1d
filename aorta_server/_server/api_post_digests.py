from __future__ import annotations

from http import HTTPStatus

from .. import store
from ..digests import create_digest
from .jsonutil import read_object
from .paths import split_api_path


def try_handle(handler, path: str, query: str) -> bool:
    api_path = split_api_path(path)
    if api_path is None or api_path.kind != "digest" or api_path.resource_id is None or api_path.action is not None:
        return False

    payload = read_object(handler)
    handler._authorize("digest", "create", payload)
    digest_id = api_path.resource_id
    with store.connect(handler.server.data_dir) as conn:
        html = create_digest(conn, digest_id, handler.server.digesters, handler.server.templates_dir)
    handler._send_html(HTTPStatus.CREATED, html, f"/api/digests/{digest_id}")
    return True

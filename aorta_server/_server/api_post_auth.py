from __future__ import annotations

import time
from http import HTTPStatus

from .. import access, store
from ..auth import lookup_user, new_session_token, secret_digest, user_roles
from .jsonutil import read_object
from .session import SESSION_COOKIE, SESSION_TTL_SECONDS, build_session_cookie


def try_handle(handler, path: str, query: str) -> bool:
    if path == "/api/login":
        payload = read_object(handler)
        user_name = str(payload.get("userName", "")).strip()
        auth_code = str(payload.get("authCode", ""))

        with store.connect(handler.server.data_dir) as conn:
            identity = access.require(conn, "script", "see", user_name, auth_code)
            token = new_session_token()
            expires_at = int(time.time()) + SESSION_TTL_SECONDS
            store.create_session(conn, token, identity, secret_digest(auth_code), expires_at)
            user = lookup_user(conn, identity) or {}

        cookie = build_session_cookie(token, secure=handler.server.cookie_secure)
        handler._send_json(
            HTTPStatus.OK,
            {"id": identity, "roles": sorted(user_roles(user))},
            headers={"Set-Cookie": cookie},
        )
        return True

    if path == "/api/logout":
        token = handler._session_token()
        if token:
            with store.connect(handler.server.data_dir) as conn:
                store.delete_session(conn, token)
        handler._send_empty(
            HTTPStatus.NO_CONTENT,
            headers={"Set-Cookie": build_session_cookie("", secure=handler.server.cookie_secure, expires_immediately=True)},
        )
        return True

    return False

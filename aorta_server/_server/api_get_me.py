from __future__ import annotations

from http import HTTPStatus

from .. import store
from ..auth import lookup_user, to_authenticated
from ..errors import BadCredential


def try_handle(handler, path: str, query: str) -> bool:
    if path != "/api/me":
        return False

    # Seeing scripts needs no role, so this only checks the session.
    identity = handler._authorize("script", "see")
    with store.connect(handler.server.data_dir) as conn:
        user = lookup_user(conn, identity)
    if not user:
        raise BadCredential()
    me = to_authenticated({**user, "id": identity})
    handler._send_json(HTTPStatus.OK, {"id": me.id, "roles": sorted(me.roles), "email": me.email})
    return True

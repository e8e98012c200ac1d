from __future__ import annotations

import time
from typing import Any

from .files import StoreConnection
from .records import delete_record, list_records, read_record, write_record


def create_session(conn: StoreConnection, token: str, identity: str, secret_digest: str, expires_at: int) -> None:
    write_record(
        conn,
        "session",
        token,
        {"token": token, "identity": identity, "secretDigest": secret_digest, "expiresAt": int(expires_at)},
    )


def get_session(conn: StoreConnection, token: str, *, now: int | None = None) -> dict[str, Any] | None:
    try:
        row = read_record(conn, "session", token)
    except ValueError:
        # Cookie values that cannot name a session file.
        return None
    if not row:
        return None
    if now is None:
        now = int(time.time())
    if int(row.get("expiresAt", 0)) <= now:
        delete_record(conn, "session", token)
        return None
    return row


def delete_session(conn: StoreConnection, token: str) -> None:
    try:
        delete_record(conn, "session", token)
    except ValueError:
        return


def purge_expired_sessions(conn: StoreConnection, *, now: int | None = None) -> int:
    if now is None:
        now = int(time.time())
    purged = 0
    for token, row in list_records(conn, "session"):
        if int(row.get("expiresAt", 0)) <= now and delete_record(conn, "session", token):
            purged += 1
    return purged

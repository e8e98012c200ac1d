from __future__ import annotations

from ._store.files import COLLECTIONS, StoreConnection, connect, init_store, key_lock
from ._store.records import (
    create_record,
    delete_record,
    exists,
    list_keys,
    list_records,
    move_record,
    read_record,
    read_text,
    write_record,
    write_text,
)
from ._store.sessions import create_session, delete_session, get_session, purge_expired_sessions


__all__ = [
    "COLLECTIONS",
    "StoreConnection",
    "connect",
    "create_record",
    "create_session",
    "delete_record",
    "delete_session",
    "exists",
    "get_session",
    "init_store",
    "key_lock",
    "list_keys",
    "list_records",
    "move_record",
    "purge_expired_sessions",
    "read_record",
    "read_text",
    "write_record",
    "write_text",
]

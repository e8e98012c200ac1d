from __future__ import annotations

import json
import os
from typing import Any

from ..errors import DuplicateId
from .files import StoreConnection, publish_exclusive, publish_replace, write_temp


def _encode(obj: Any) -> bytes:
    return (json.dumps(obj, ensure_ascii=False, indent=2) + "\n").encode("utf-8")


def exists(conn: StoreConnection, kind: str, key: str) -> bool:
    return conn.path_for(kind, key).is_file()


def read_record(conn: StoreConnection, kind: str, key: str) -> dict[str, Any] | None:
    path = conn.path_for(kind, key)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    obj = json.loads(raw)
    if not isinstance(obj, dict):
        raise ValueError(f"{path} does not hold a JSON object")
    return obj


def read_text(conn: StoreConnection, kind: str, key: str) -> str | None:
    try:
        return conn.path_for(kind, key).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def list_keys(conn: StoreConnection, kind: str) -> list[str]:
    suffix = conn.suffix_for(kind)
    keys = []
    for entry in conn.dir_for(kind).iterdir():
        name = entry.name
        if name.startswith(".") or not name.endswith(suffix) or not entry.is_file():
            continue
        keys.append(name[: -len(suffix)])
    keys.sort()
    return keys


def list_records(conn: StoreConnection, kind: str) -> list[tuple[str, dict[str, Any]]]:
    out = []
    for key in list_keys(conn, kind):
        obj = read_record(conn, kind, key)
        # Removed between listing and reading.
        if obj is not None:
            out.append((key, obj))
    return out


def create_record(conn: StoreConnection, kind: str, key: str, obj: dict[str, Any]) -> None:
    target = conn.path_for(kind, key)
    tmp = write_temp(target.parent, _encode(obj))
    try:
        publish_exclusive(tmp, target)
    except FileExistsError:
        raise DuplicateId(f"{kind} {key}") from None


def write_record(conn: StoreConnection, kind: str, key: str, obj: dict[str, Any]) -> None:
    target = conn.path_for(kind, key)
    publish_replace(write_temp(target.parent, _encode(obj)), target)


def write_text(conn: StoreConnection, kind: str, key: str, text: str) -> None:
    target = conn.path_for(kind, key)
    publish_replace(write_temp(target.parent, text.encode("utf-8")), target)


def delete_record(conn: StoreConnection, kind: str, key: str) -> bool:
    try:
        conn.path_for(kind, key).unlink()
    except FileNotFoundError:
        return False
    return True


def move_record(conn: StoreConnection, src_kind: str, dst_kind: str, key: str, obj: dict[str, Any]) -> None:
    """Turn the ``src_kind`` record into a ``dst_kind`` record holding ``obj``.

    The file is renamed first, so at every instant the record exists under exactly one
    of the two kinds; its content is then replaced atomically. Callers hold the key lock.
    """
    src = conn.path_for(src_kind, key)
    dst = conn.path_for(dst_kind, key)
    if dst.exists():
        raise DuplicateId(f"{dst_kind} {key}")
    tmp = write_temp(dst.parent, _encode(obj))
    try:
        os.rename(src, dst)
    except BaseException:
        os.unlink(tmp)
        raise
    publish_replace(tmp, dst)

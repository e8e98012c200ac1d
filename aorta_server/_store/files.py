from __future__ import annotations

import os
import re
import tempfile
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator


COLLECTIONS = {
    "script": "scripts",
    "batch": "batches",
    "order": "orders",
    "job": "jobs",
    "report": "reports",
    "digest": "digests",
    "user": "users",
    "session": "sessions",
}

_SUFFIXES = {"digest": ".html"}

# Guards every key used as a file name; ids are checked more strictly upstream.
_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class StoreConnection:
    root: Path

    def dir_for(self, kind: str) -> Path:
        return self.root / COLLECTIONS[kind]

    def path_for(self, kind: str, key: str) -> Path:
        if not isinstance(key, str) or not _SAFE_KEY_RE.match(key):
            raise ValueError(f"unsafe key for {kind}: {key!r}")
        return self.dir_for(kind) / f"{key}{_SUFFIXES.get(kind, '.json')}"

    def suffix_for(self, kind: str) -> str:
        return _SUFFIXES.get(kind, ".json")


def _connect_raw(data_dir: Path) -> StoreConnection:
    conn = StoreConnection(Path(data_dir).resolve())
    for name in COLLECTIONS.values():
        (conn.root / name).mkdir(parents=True, exist_ok=True)
    return conn


@contextmanager
def connect(data_dir: Path) -> Iterator[StoreConnection]:
    yield _connect_raw(data_dir)


def init_store(data_dir: Path) -> None:
    with connect(data_dir):
        pass


# An entry lives only while some caller holds or waits on its lock.
_locks: "weakref.WeakValueDictionary[tuple[str, str, str], threading.Lock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


@contextmanager
def key_lock(conn: StoreConnection, kind: str, key: str) -> Iterator[None]:
    """Serialize read-check-write sequences on one record within this process."""
    k = (str(conn.root), kind, key)
    with _locks_guard:
        lock = _locks.get(k)
        if lock is None:
            lock = _locks[k] = threading.Lock()
    with lock:
        yield


def write_temp(directory: Path, data: bytes) -> Path:
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        os.unlink(tmp)
        raise
    return Path(tmp)


def publish_replace(tmp: Path, target: Path) -> None:
    os.replace(tmp, target)


def publish_exclusive(tmp: Path, target: Path) -> None:
    # link() fails with FileExistsError when the target exists.
    try:
        os.link(tmp, target)
    finally:
        os.unlink(tmp)

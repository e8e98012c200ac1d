from __future__ import annotations

import re
import time
from datetime import datetime, timezone

from .errors import InvalidId


ID_RE = re.compile(r"^[a-z0-9]+$")
DIGEST_ID_RE = re.compile(r"^([a-z0-9]+)(?:-([a-z0-9]+))?$")

# Order ids count 200 ms ticks since this anchor, so later orders sort after earlier ones.
ORDER_ID_ANCHOR_MS = int(datetime(2022, 2, 1, tzinfo=timezone.utc).timestamp() * 1000)
ORDER_ID_RESOLUTION_MS = 200

_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def is_valid_id(value) -> bool:
    return isinstance(value, str) and ID_RE.match(value) is not None


def require_valid_id(value) -> str:
    if not is_valid_id(value):
        raise InvalidId(None if not isinstance(value, str) else repr(value))
    return value


def to_base36(number: int) -> str:
    if number < 0:
        raise ValueError("negative")
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(_DIGITS[rem])
    return "".join(reversed(out))


def new_order_id(now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return to_base36((now_ms - ORDER_ID_ANCHOR_MS) // ORDER_ID_RESOLUTION_MS)


def split_digest_id(digest_id: str) -> tuple[str, str | None]:
    """Split ``rpt1`` or ``rpt1-host`` into the report id and the optional host suffix."""
    m = DIGEST_ID_RE.match(digest_id or "")
    if not m:
        raise InvalidId(repr(digest_id))
    return m.group(1), m.group(2)

from __future__ import annotations

import json
from http.server import BaseHTTPRequestHandler
from typing import Any
from urllib.parse import parse_qs

from ..errors import MalformedBody


def json_bytes(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def read_json(handler: BaseHTTPRequestHandler) -> Any:
    """Read the request body as JSON, or as an HTML form when it was posted as one."""
    length_s = handler.headers.get("Content-Length", "0")
    try:
        length = int(length_s)
    except ValueError:
        length = 0
    raw = handler.rfile.read(length) if length > 0 else b""
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    ctype = handler.headers.get("Content-Type", "")
    if ctype.startswith("application/x-www-form-urlencoded"):
        return {k: v[0] for k, v in parse_qs(text, keep_blank_values=True).items()}
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedBody(e.msg) from None


def read_object(handler: BaseHTTPRequestHandler) -> dict[str, Any]:
    payload = read_json(handler)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise MalformedBody()
    return payload


def truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def data_field(payload: dict[str, Any]) -> Any:
    if "data" in payload:
        return payload["data"]
    # Upload forms carry the selected file's text.
    return payload.get("dataJSON")

from __future__ import annotations

from typing import NamedTuple


COLLECTION_KINDS = {
    "scripts": "script",
    "batches": "batch",
    "orders": "order",
    "jobs": "job",
    "reports": "report",
    "digests": "digest",
    "users": "user",
}


class ApiPath(NamedTuple):
    kind: str
    resource_id: str | None
    action: str | None


def split_api_path(path: str) -> ApiPath | None:
    """``/api/orders/abc/assign`` -> ApiPath("order", "abc", "assign")."""
    parts = path.rstrip("/").split("/")
    if len(parts) < 3 or parts[0] != "" or parts[1] != "api" or len(parts) > 5:
        return None
    kind = COLLECTION_KINDS.get(parts[2])
    if kind is None:
        return None
    resource_id = parts[3] if len(parts) > 3 else None
    action = parts[4] if len(parts) > 4 else None
    return ApiPath(kind, resource_id, action)

from __future__ import annotations

from . import api_get_me, api_get_resources


def handle(handler, path: str, query: str) -> bool:
    for mod in (
        api_get_me,
        api_get_resources,
    ):
        if mod.try_handle(handler, path, query):
            return True
    return False

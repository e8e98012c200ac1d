from __future__ import annotations

from . import api_post_auth, api_post_digests, api_post_jobs, api_post_orders, api_post_reports, api_post_resources


def handle(handler, path: str, query: str) -> bool:
    for mod in (
        api_post_auth,
        api_post_orders,
        api_post_jobs,
        api_post_reports,
        api_post_digests,
        api_post_resources,
    ):
        if mod.try_handle(handler, path, query):
            return True
    return False

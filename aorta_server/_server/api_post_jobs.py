from __future__ import annotations

from http import HTTPStatus

from .. import lifecycle, store
from ..errors import ExecutorNotConfigured
from .jsonutil import read_object
from .paths import split_api_path


def try_handle(handler, path: str, query: str) -> bool:
    api_path = split_api_path(path)
    if api_path is None or api_path.kind != "job" or api_path.action not in ("complete", "run"):
        return False

    payload = read_object(handler)
    # Completing a job creates its reports.
    caller = handler._authorize("report", "create", payload)
    job_id = str(api_path.resource_id)
    with store.connect(handler.server.data_dir) as conn:
        if api_path.action == "complete":
            report_ids = lifecycle.complete_job(
                conn, job_id, caller, payload.get("reports"), notifier=handler.server.notifier
            )
        else:
            if handler.server.executor is None:
                raise ExecutorNotConfigured()
            report_ids = lifecycle.run_job(
                conn, job_id, caller, handler.server.executor, notifier=handler.server.notifier
            )
    handler._send_json(HTTPStatus.CREATED, {"job": job_id, "reports": report_ids})
    return True

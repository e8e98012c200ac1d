"""Resource lifecycle: scripts, batches and users by name; order -> job -> report."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from . import store
from .auth import ROLES, lookup_user, user_roles
from .errors import (
    DuplicateId,
    InvalidRole,
    MalformedBody,
    MissingField,
    MissingId,
    MissingTester,
    NotFound,
    TesterLacksRole,
    TesterMismatch,
    UnknownJob,
    UnknownOrder,
    UnknownTester,
)
from .ids import ORDER_ID_RESOLUTION_MS, new_order_id, require_valid_id, split_digest_id


logger = logging.getLogger(__name__)

Executor = Callable[[dict[str, Any]], None]

ORDER_ID_ATTEMPTS = 5

# Fields a completed job hands down to each of its reports.
_JOB_FIELDS_FOR_REPORTS = ("scriptName", "batchName", "creator")


def _iso(now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    dt = datetime.fromtimestamp(now_ms / 1000, timezone.utc)
    return dt.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_body(body: Any) -> dict[str, Any]:
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError as e:
            raise MalformedBody(e.msg) from None
    if not isinstance(body, dict):
        raise MalformedBody()
    return dict(body)


def _describe_order(obj: dict[str, Any]) -> str:
    text = str(obj.get("scriptName", ""))
    if obj.get("batchName"):
        text += f" on {obj['batchName']}"
    return f"{text}, ordered by {obj.get('creator', '?')}"


_DESCRIBERS: dict[str, Callable[[dict[str, Any]], str]] = {
    "script": lambda obj: str(obj.get("what", "")),
    "batch": lambda obj: str(obj.get("what", "")),
    "order": _describe_order,
    "job": lambda obj: f"{_describe_order(obj)}, assigned to {obj.get('tester', '?')}",
    "report": lambda obj: str(obj.get("what") or f"{obj.get('scriptName') or 'report'} by {obj.get('tester', '?')}"),
    "user": lambda obj: ", ".join(sorted(user_roles(obj))),
}


def list_resources(conn: store.StoreConnection, resource_type: str) -> list[dict[str, str]]:
    if resource_type == "digest":
        items = []
        for key in store.list_keys(conn, "digest"):
            report_id, host = split_digest_id(key)
            suffix = f", host {host}" if host else ""
            items.append({"id": key, "description": f"digest of report {report_id}{suffix}"})
        return items
    describe = _DESCRIBERS[resource_type]
    return [
        {"id": str(obj.get("id") or key), "description": describe(obj)}
        for key, obj in store.list_records(conn, resource_type)
    ]


def get_resource(conn: store.StoreConnection, resource_type: str, resource_id: str) -> dict[str, Any]:
    require_valid_id(resource_id)
    obj = store.read_record(conn, resource_type, resource_id)
    if obj is None:
        raise NotFound(f"{resource_type} {resource_id}")
    obj.setdefault("id", resource_id)
    if resource_type == "user":
        obj.pop("authCode", None)
    return obj


def get_digest(conn: store.StoreConnection, digest_id: str) -> str:
    split_digest_id(digest_id)
    html = store.read_text(conn, "digest", digest_id)
    if html is None:
        raise NotFound(f"digest {digest_id}")
    return html


def _store_new(conn: store.StoreConnection, kind: str, key: str, obj: dict[str, Any], replace: bool) -> None:
    if replace:
        store.write_record(conn, kind, key, obj)
    else:
        store.create_record(conn, kind, key, obj)


def create_named(
    conn: store.StoreConnection,
    resource_type: str,
    resource_id: str | None,
    body: Any,
    *,
    replace: bool = False,
) -> str:
    obj = parse_body(body)
    if not resource_id:
        raise MissingField("id")
    require_valid_id(resource_id)
    if not obj.get("what"):
        raise MissingField("what")
    _store_new(conn, resource_type, resource_id, obj, replace)
    logger.info("%s %s %s", resource_type, resource_id, "replaced" if replace else "created")
    return resource_id


def create_user(conn: store.StoreConnection, body: Any, *, replace: bool = False) -> str:
    obj = parse_body(body)
    user_id = obj.get("id")
    if not user_id:
        raise MissingField("id")
    require_valid_id(user_id)
    if not obj.get("authCode"):
        raise MissingField("authCode")
    roles = obj.get("roles", [])
    if isinstance(roles, str):
        roles = [r for r in roles.replace(";", ",").replace(" ", ",").split(",") if r]
    if not isinstance(roles, list):
        raise InvalidRole()
    unknown = [r for r in roles if r not in ROLES]
    if unknown:
        raise InvalidRole(", ".join(map(str, unknown)))
    obj["authCode"] = str(obj["authCode"])
    obj["roles"] = list(dict.fromkeys(roles))
    _store_new(conn, "user", user_id, obj, replace)
    logger.info("user %s %s with roles %s", user_id, "replaced" if replace else "created", obj["roles"])
    return user_id


def _embedded(conn: store.StoreConnection, kind: str, name: str) -> tuple[dict[str, Any], bool]:
    try:
        obj = store.read_record(conn, kind, name)
    except ValueError:
        logger.warning("%s %s is not valid JSON", kind, name)
        return {}, False
    if obj is None:
        return {}, False
    return obj, True


def create_order(conn: store.StoreConnection, caller: str, body: Any, *, now_ms: int | None = None) -> str:
    obj = parse_body(body)
    script_name = obj.get("scriptName")
    if not script_name:
        raise MissingField("scriptName")
    require_valid_id(script_name)
    batch_name = obj.get("batchName") or None
    if batch_name is not None:
        require_valid_id(batch_name)

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    script, script_ok = _embedded(conn, "script", script_name)
    fields: dict[str, Any] = {
        "creator": caller,
        "creationTime": _iso(now_ms),
        "scriptName": script_name,
        "script": script,
        "scriptIsValid": script_ok,
    }
    if batch_name is not None:
        batch, batch_ok = _embedded(conn, "batch", batch_name)
        fields.update({"batchName": batch_name, "batch": batch, "batchIsValid": batch_ok})

    # A taken id moves the order to the next tick.
    for attempt in range(ORDER_ID_ATTEMPTS):
        order_id = new_order_id(now_ms + attempt * ORDER_ID_RESOLUTION_MS)
        order = {"id": order_id, **fields}
        try:
            with store.key_lock(conn, "order", order_id):
                if store.exists(conn, "job", order_id):
                    raise DuplicateId(f"order {order_id}")
                store.create_record(conn, "order", order_id, order)
        except DuplicateId:
            continue
        break
    else:
        raise DuplicateId("no free order id")
    logger.info("order %s created by %s for script %s", order_id, caller, script_name)
    return order_id


def _checked_report_id(obj: dict[str, Any], caller: str) -> str:
    tester = obj.get("tester")
    if not tester:
        raise MissingTester()
    if tester != caller:
        raise TesterMismatch()
    report_id = obj.get("id")
    if not report_id:
        raise MissingId()
    return require_valid_id(report_id)


def invalidate_digests(conn: store.StoreConnection, report_id: str) -> int:
    removed = 0
    for key in store.list_keys(conn, "digest"):
        if key == report_id or key.startswith(f"{report_id}-"):
            if store.delete_record(conn, "digest", key):
                removed += 1
    if removed:
        logger.info("removed %d digest(s) of report %s", removed, report_id)
    return removed


def _announce(conn: store.StoreConnection, notifier, report: dict[str, Any]) -> None:
    if notifier is None:
        return
    # The report is stored; a failed notice must not fail the request.
    try:
        notifier.notify_report(conn, report)
    except Exception:
        logger.exception("could not announce report %s", report.get("id"))


def create_report(
    conn: store.StoreConnection,
    caller: str,
    body: Any,
    *,
    replace: bool = False,
    notifier=None,
) -> str:
    obj = parse_body(body)
    report_id = _checked_report_id(obj, caller)
    with store.key_lock(conn, "report", report_id):
        if replace:
            existing = store.read_record(conn, "report", report_id)
            if existing is not None and existing.get("tester") != caller:
                raise TesterMismatch()
            invalidate_digests(conn, report_id)
            store.write_record(conn, "report", report_id, obj)
        else:
            store.create_record(conn, "report", report_id, obj)
            # Digests left from an earlier report with this id.
            invalidate_digests(conn, report_id)
    logger.info("report %s %s by %s", report_id, "replaced" if replace else "created", caller)
    _announce(conn, notifier, obj)
    return report_id


def create_resource(
    conn: store.StoreConnection,
    resource_type: str,
    body: Any,
    *,
    caller: str,
    resource_id: str | None = None,
    replace: bool = False,
    notifier=None,
) -> str:
    if resource_type in ("script", "batch"):
        return create_named(conn, resource_type, resource_id, body, replace=replace)
    if resource_type == "user":
        return create_user(conn, body, replace=replace)
    if resource_type == "order":
        return create_order(conn, caller, body)
    if resource_type == "report":
        return create_report(conn, caller, body, replace=replace, notifier=notifier)
    if resource_type == "job":
        raise MalformedBody("jobs are made by assigning orders")
    if resource_type == "digest":
        raise MalformedBody("digests are made from reports")
    raise ValueError(f"unknown resource type: {resource_type}")


def assign_order(
    conn: store.StoreConnection,
    order_id: str,
    assigner: str,
    tester_id: str | None,
    *,
    now_ms: int | None = None,
) -> dict[str, Any]:
    require_valid_id(order_id)
    with store.key_lock(conn, "order", order_id):
        order = store.read_record(conn, "order", order_id)
        if order is None:
            raise UnknownOrder(order_id)
        tester = lookup_user(conn, str(tester_id or ""))
        if not tester:
            raise UnknownTester(None if not tester_id else str(tester_id))
        if "test" not in user_roles(tester):
            raise TesterLacksRole(str(tester_id))

        job = dict(order)
        job.update(
            {
                "assigner": assigner,
                "assignmentTime": _iso(now_ms),
                "tester": str(tester_id),
                "log": [],
                "reports": [],
            }
        )
        try:
            store.move_record(conn, "order", "job", order_id, job)
        except FileNotFoundError:
            # Another process consumed the order.
            raise UnknownOrder(order_id) from None
    logger.info("order %s assigned by %s to %s", order_id, assigner, tester_id)
    return job


def _read_own_job(conn: store.StoreConnection, job_id: str, caller: str) -> dict[str, Any]:
    job = store.read_record(conn, "job", job_id)
    if job is None:
        raise UnknownJob(job_id)
    if job.get("tester") != caller:
        raise TesterMismatch()
    return job


def complete_job(
    conn: store.StoreConnection,
    job_id: str,
    caller: str,
    reports: Any,
    *,
    notifier=None,
) -> list[str]:
    """Store the reports of a job and consume the job.

    Every report is checked before any is written; a write that still collides
    removes the reports already written for this job.
    """
    require_valid_id(job_id)
    if not isinstance(reports, list) or not reports:
        raise MissingField("reports")
    with store.key_lock(conn, "job", job_id):
        job = _read_own_job(conn, job_id, caller)
        prepared: list[dict[str, Any]] = []
        seen: set[str] = set()
        for body in reports:
            obj = parse_body(body)
            obj.setdefault("tester", caller)
            obj.setdefault("jobID", job_id)
            for field in _JOB_FIELDS_FOR_REPORTS:
                if field in job:
                    obj.setdefault(field, job[field])
            report_id = _checked_report_id(obj, caller)
            if report_id in seen or store.exists(conn, "report", report_id):
                raise DuplicateId(f"report {report_id}")
            seen.add(report_id)
            prepared.append(obj)

        written: list[str] = []
        try:
            for obj in prepared:
                with store.key_lock(conn, "report", obj["id"]):
                    store.create_record(conn, "report", obj["id"], obj)
                    invalidate_digests(conn, obj["id"])
                written.append(obj["id"])
        except DuplicateId:
            for report_id in written:
                store.delete_record(conn, "report", report_id)
            raise
        store.delete_record(conn, "job", job_id)

    logger.info("job %s completed by %s with report(s) %s", job_id, caller, ", ".join(written))
    for obj in prepared:
        _announce(conn, notifier, obj)
    return written


def run_job(
    conn: store.StoreConnection,
    job_id: str,
    caller: str,
    executor: Executor,
    *,
    notifier=None,
) -> list[str]:
    """Hand a job to the test executor, then complete it with what the executor reported."""
    require_valid_id(job_id)
    job = _read_own_job(conn, job_id, caller)
    work: dict[str, Any] = {"id": job_id, "script": job.get("script", {}), "log": [], "reports": []}
    if job.get("batchName"):
        work["batch"] = job.get("batch", {})
    executor(work)

    results = [r for r in work["reports"] if isinstance(r, dict)]
    if not results:
        raise RuntimeError(f"executor produced no report for job {job_id}")
    if "batch" in work:
        host_results = []
        for i, r in enumerate(results):
            r = dict(r)
            r["id"] = str(r.get("id") or i)
            host_results.append(r)
        report: dict[str, Any] = {"id": job_id, "hostResults": host_results}
    else:
        report = dict(results[0])
        report["id"] = job_id
    report["log"] = work["log"]
    return complete_job(conn, job_id, caller, [report], notifier=notifier)


def remove_resource(conn: store.StoreConnection, resource_type: str, resource_id: str) -> None:
    if resource_type == "digest":
        split_digest_id(resource_id)
    else:
        require_valid_id(resource_id)
    with store.key_lock(conn, resource_type, resource_id):
        if not store.delete_record(conn, resource_type, resource_id):
            raise NotFound(f"{resource_type} {resource_id}")
        if resource_type == "report":
            invalidate_digests(conn, resource_id)
    logger.info("%s %s removed", resource_type, resource_id)

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

from . import store
from .digesters import TEMPLATES_DIR, Digester
from .errors import NotFound, UnknownDigester
from .ids import split_digest_id
from .templating import render


logger = logging.getLogger(__name__)


def resolve_report(conn: store.StoreConnection, digest_id: str) -> dict[str, Any]:
    """Find the report a digest id names.

    ``rpt1`` is the report itself; ``rpt1-host`` is the entry of its ``hostResults``
    whose id ends with ``host``, merged over the report's own fields.
    """
    report_id, host = split_digest_id(digest_id)
    report = store.read_record(conn, "report", report_id)
    if report is None:
        raise NotFound(f"report {report_id}")
    if host is None:
        return report
    for sub in report.get("hostResults") or []:
        if isinstance(sub, dict) and str(sub.get("id", "")).endswith(host):
            merged = {k: v for k, v in report.items() if k != "hostResults"}
            merged.update(sub)
            merged["id"] = digest_id
            merged["reportID"] = report_id
            return merged
    raise NotFound(f"host {host} in report {report_id}")


def script_name_of(report: Mapping[str, Any]) -> str:
    name = report.get("scriptName")
    if not name and isinstance(report.get("script"), dict):
        name = report["script"].get("id")
    return str(name or "")


def create_digest(
    conn: store.StoreConnection,
    digest_id: str,
    digesters: Mapping[str, Digester],
    templates_dir: Path = TEMPLATES_DIR,
) -> str:
    report_id, _ = split_digest_id(digest_id)
    # Held against a concurrent replacement of the report.
    with store.key_lock(conn, "report", report_id):
        report = resolve_report(conn, digest_id)
        name = script_name_of(report)
        digester = digesters.get(name)
        if digester is None:
            raise UnknownDigester(name or None)
        template_path = templates_dir / f"{name}.html"
        if not template_path.is_file():
            logger.error("digester %s has no template at %s", name, template_path)
            raise UnknownDigester(name)

        query: dict[str, Any] = {}
        digester(report, query)
        html = render(template_path.read_text(encoding="utf-8"), query)
        store.write_text(conn, "digest", digest_id, html)
    logger.info("digest %s created with %s", digest_id, name)
    return html

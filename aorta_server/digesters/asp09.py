"""Digester for reports scored with the asp09 procedure."""

from __future__ import annotations

from html import escape
from typing import Any, Callable


JOINER = "\n      "
INNER_JOINER = "\n        "

PACKAGE_TESTS = ("aatt", "axe", "ibm", "wave")


def _esc(value: Any) -> str:
    return escape(str(value), quote=False)


def _items(failures) -> str:
    return INNER_JOINER.join(f"<li>{_esc(f)}</li>" for f in failures)


def _obj_items(fail_obj: dict[str, Any]) -> str:
    return INNER_JOINER.join(f"<li>{_esc(k)}: {_esc(v)}</li>" for k, v in fail_obj.items())


def _json_link(report_id: str) -> str:
    return f'<a href="/api/reports/{_esc(report_id)}">JSON-format report</a>'


def _succeed_text(test: str) -> str:
    return f"<p>The page <strong>passed</strong> the <code>{test}</code> test.</p>"


def _crash_text(score, test: str) -> str:
    return (
        f"<p>The <code>{test}</code> test could not be performed. "
        f"The page received an inferred score of {_esc(score)} on <code>{test}</code>.</p>"
    )


def _package_fail_text(score, test: str, failures: str, report_id: str) -> str:
    return (
        f"<p>The page <strong>did not pass</strong> the <code>{test}</code> test and received a score of "
        f"{_esc(score)} on <code>{test}</code>. The details are in the {_json_link(report_id)}, in the section "
        f'starting with <code>"which": "{test}"</code>. There was at least one failure of:</p>'
        f"{JOINER}<ul>{INNER_JOINER}{failures}{JOINER}</ul>"
    )


def _custom_fail_text(score, test: str, failures: str, report_id: str) -> str:
    return (
        f"<p>The page <strong>did not pass</strong> the <code>{test}</code> test and received a score of "
        f"{_esc(score)} on <code>{test}</code>. The details are in the {_json_link(report_id)}, in the section "
        f'starting with <code>"which": "{test}"</code>.</p>'
        f"{JOINER}<p>Summary of the details:</p>{JOINER}<ul>{INNER_JOINER}{failures}{JOINER}</ul>"
    )


# package tests: result -> list of failure descriptions


def _aatt_failures(result) -> list[str]:
    warnings = dict.fromkeys(f"warning: {i.get('msg')}" for i in result if i.get("type") == "warning")
    errors = dict.fromkeys(f"error: {i.get('msg')}" for i in result if i.get("type") == "error")
    return list(warnings) + list(errors)


def _axe_failures(result) -> list[str]:
    return [f"{i.get('rule')}: {i.get('description')}" for i in result.get("items", [])]


def _ibm_failures(result) -> list[str]:
    items = []
    for part in ("content", "url"):
        items.extend((result.get(part) or {}).get("items") or [])
    return list(dict.fromkeys(f"{i.get('ruleId')}: {i.get('message')}" for i in items))


def _wave_failures(result) -> list[str]:
    categories = result.get("categories", {})
    out = []
    for category in ("error", "contrast", "alert"):
        for name, item in (categories.get(category, {}).get("items") or {}).items():
            out.append(f"{category}/{name}: {item.get('description')}")
    return out


_PACKAGE_FAILURES: dict[str, Callable[[Any], list[str]]] = {
    "aatt": _aatt_failures,
    "axe": _axe_failures,
    "ibm": _ibm_failures,
    "wave": _wave_failures,
}


# custom tests: result -> {label: count}


def _focind(result):
    types = result["totals"]["types"]
    return {k: types[k]["total"] for k in ("indicatorMissing", "nonOutlinePresent")}


def _focop(result):
    types = result["totals"]["types"]
    return {k: types[k]["total"] for k in ("onlyFocusable", "onlyOperable")}


def _labclash(result):
    return {k: v for k, v in result["totals"].items() if k != "wellLabeled"}


def _menunav(result):
    totals = result["totals"]
    return {
        "navigations": totals["navigations"]["all"]["incorrect"],
        "menuItems": totals["menuItems"]["incorrect"],
        "menus": totals["menus"]["incorrect"],
    }


def _motion(result):
    out = dict(result)
    for key in ("bytes", "localRatios", "pixelChanges"):
        if isinstance(out.get(key), list):
            out[key] = ", ".join(map(str, out[key]))
    return out


def _role(result):
    return {k: v for k, v in result.items() if k != "tagNames"}


def _stylediff(result):
    counts = {}
    for key, data in result["totals"].items():
        count = len(data["subtotals"]) if isinstance(data, dict) and data.get("subtotals") else 1
        counts[key] = f"{count} {'style' if count == 1 else 'different styles'}"
    return counts


def _tabnav(result):
    totals = result["totals"]
    return {
        "navigations": totals["navigations"]["all"]["incorrect"],
        "tabElements": totals["tabElements"]["incorrect"],
        "tabLists": totals["tabLists"]["incorrect"],
    }


_CUSTOM_FAILURES: dict[str, Callable[[Any], dict[str, Any]]] = {
    "embAc": lambda r: r["totals"],
    "focAll": lambda r: r,
    "focInd": _focind,
    "focOp": _focop,
    "hover": lambda r: r["totals"],
    "labClash": _labclash,
    "linkUl": lambda r: r["totals"]["inline"],
    "menuNav": _menunav,
    "motion": _motion,
    "radioSet": lambda r: r["totals"],
    "role": _role,
    "styleDiff": _stylediff,
    "tabNav": _tabnav,
    "zIndex": lambda r: r["totals"]["tagNames"],
}

_LOG_FIELDS = ("logCount", "logSize", "visitRejectionCount", "prohibitedCount", "visitTimeoutCount")


def parameters(report: dict[str, Any], query: dict[str, Any]) -> None:
    report_id = str(report.get("reportID") or report.get("id", ""))
    score = report.get("score") or {}
    deficit = score.get("deficit") or {}
    inferences = score.get("inferences") or {}
    deficit_data = {**deficit, **inferences}
    test_data = {
        act.get("which"): act.get("result")
        for act in report.get("acts") or []
        if isinstance(act, dict) and act.get("type") == "test"
    }
    source_data = report.get("sourceData") or {}
    host = report.get("host") or {}

    query["dateISO"] = _esc(str(report.get("endTime", ""))[:10])
    query["dateSlash"] = query["dateISO"].replace("-", "/")
    query["reportID"] = _esc(report.get("id", ""))
    query["scoreProc"] = __name__.rsplit(".", 1)[-1]
    query["org"] = _esc(host.get("what", ""))
    query["url"] = _esc(host.get("which", ""))
    query["totalScore"] = _esc(deficit.get("total", 0))
    query["deficitRows"] = INNER_JOINER.join(
        f"<tr><th>{_esc(k)}</th><td>{_esc(v)}</td></tr>"
        for k, v in sorted(deficit_data.items(), key=lambda kv: kv[1], reverse=True)
    )
    query["scoreTable"] = "\n".join(f"  {_esc(k)}: {_esc(v)}" for k, v in deficit.items())

    for test in PACKAGE_TESTS:
        key = f"{test}Result"
        if deficit.get(test):
            failures = _items(_PACKAGE_FAILURES[test](test_data[test]))
            query[key] = _package_fail_text(deficit[test], test, failures, report_id)
        elif inferences.get(test):
            query[key] = _crash_text(deficit_data[test], test)
        else:
            query[key] = _succeed_text(test)

    if deficit.get("bulk"):
        count = test_data["bulk"]["visibleElements"]
        query["bulkResult"] = (
            f"<p>The page <strong>did not pass</strong> the <code>bulk</code> test. The count of visible "
            f"elements in the page was {_esc(count)}, resulting in a score of {_esc(deficit['bulk'])} on "
            f"<code>bulk</code>.</p>"
        )
    elif inferences.get("bulk"):
        query["bulkResult"] = _crash_text(deficit_data["bulk"], "bulk")
    else:
        query["bulkResult"] = _succeed_text("bulk")

    tests: dict[str, Callable[[], dict[str, Any]]] = {
        name: (lambda fn=fn, name=name: fn(test_data[name])) for name, fn in _CUSTOM_FAILURES.items()
    }
    tests["log"] = lambda: {k: source_data.get(k) for k in _LOG_FIELDS}
    for test, failures in tests.items():
        key = f"{test}Result"
        if deficit.get(test):
            query[key] = _custom_fail_text(deficit[test], test, _obj_items(failures()), report_id)
        elif inferences.get(test):
            query[key] = _crash_text(deficit_data[test], test)
        else:
            query[key] = _succeed_text(test)

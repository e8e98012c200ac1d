"""Digesters turn a report into the values of an HTML template named after its script.

A digester is ``parameters(report, query)``: it fills ``query`` with one string per
``__placeholder__`` of ``<script name>.html`` in this directory.
"""

from __future__ import annotations

from importlib import import_module
from pathlib import Path
from typing import Any, Callable


Digester = Callable[[dict[str, Any], dict[str, Any]], None]

TEMPLATES_DIR = Path(__file__).resolve().parent

BUILTIN = ("asp09",)


def load(name: str) -> Digester:
    return import_module(f"{__name__}.{name}").parameters


def registry() -> dict[str, Digester]:
    return {name: load(name) for name in BUILTIN}

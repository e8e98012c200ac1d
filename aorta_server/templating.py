from __future__ import annotations

import re
from typing import Any, Mapping

from .errors import MissingPlaceholderValue


PLACEHOLDER_RE = re.compile(r"__([a-zA-Z]+)__")


def render(template: str, values: Mapping[str, Any]) -> str:
    """Replace each ``__name__`` in ``template`` with ``values[name]``.

    Every placeholder needs a value; an absent one raises MissingPlaceholderValue.
    """

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name not in values:
            raise MissingPlaceholderValue(name)
        return str(values[name])

    return PLACEHOLDER_RE.sub(_sub, template)


def placeholders(template: str) -> set[str]:
    return set(PLACEHOLDER_RE.findall(template))

"""Placeholder substitution for outbound message text."""

from __future__ import annotations

import re
from typing import Mapping

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def has_placeholders(text: str) -> bool:
    return "{{" in text


def render(text: str, variables: Mapping[str, str]) -> str:
    """Replace ``{{name}}`` with captured values; unknown names stay as written."""

    def _substitute(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return value if value else match.group(0)

    return _PLACEHOLDER.sub(_substitute, text)

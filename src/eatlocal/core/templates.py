"""``{{ variable }}`` substitution for notification subjects and bodies."""

from __future__ import annotations

import re
from typing import Callable, Mapping

from eatlocal.types import TemplateValue

_VARIABLE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def format_value(value: TemplateValue) -> str:
    """Render one template value: ``None`` as empty, booleans lowercase."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_template(
    template: str,
    data: Mapping[str, TemplateValue] | None,
    encode: Callable[[str], str] | None = None,
) -> str:
    """Replace every ``{{ name }}`` marker in *template* with ``data[name]``.

    Variables missing from *data* render as the empty string.  *encode*, if
    given, is applied to each substituted value but never to the template
    text around it (the email dispatcher passes ``html.escape``).
    """
    data = data or {}

    def _substitute(match: re.Match[str]) -> str:
        text = format_value(data.get(match.group(1)))
        return encode(text) if encode is not None else text

    return _VARIABLE.sub(_substitute, template)

"""Prompt template rendering.

Templates use ``%{name}`` placeholders. ``%%`` renders a literal ``%``;
any other ``%`` is left alone so agent-written prose like "100% sure"
survives. Unknown or unfilled placeholders are errors, never silently
blank.
"""

import re
from typing import Iterable, Mapping

from helixmem.protocols import TemplateError

_TOKEN = re.compile(r"%(%|\{([^{}]*)\})")


def placeholders(template: str) -> list:
    """Placeholder names referenced by a template, in order of first use."""
    names = []
    for match in _TOKEN.finditer(template or ""):
        name = match.group(2)
        if name is not None and name not in names:
            names.append(name)
    return names


def validate_template(template: str, allowed: Iterable[str]) -> None:
    """Raise TemplateError if the template references a placeholder outside ``allowed``."""
    allowed = sorted(allowed)
    for name in placeholders(template):
        if name not in allowed:
            raise TemplateError(
                f"Unknown placeholder %{{{name}}}. Allowed: "
                + (", ".join(f"%{{{a}}}" for a in allowed) or "none"),
                placeholder=name,
                allowed=allowed,
            )


def render_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute ``%{name}`` placeholders from ``values``.

    Raises:
        TemplateError: If a placeholder has no value
    """
    allowed = sorted(values)

    def _sub(match):
        if match.group(1) == "%":
            return "%"
        name = match.group(2)
        if name not in values:
            raise TemplateError(
                f"Template placeholder %{{{name}}} has no value",
                placeholder=name,
                allowed=allowed,
            )
        return str(values[name])

    return _TOKEN.sub(_sub, template)

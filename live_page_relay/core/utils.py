"""Shared helpers with no dependencies on other relay modules.

- Error template rendering (``{name}`` placeholders, ``{{#if name}}...{{/if}}`` guards)
- String normalization (_normalize_optional_str, _split_csv, _truncate)
"""

from __future__ import annotations

import re
from typing import Any, Optional

_TEMPLATE_IF_TOKEN_RE = re.compile(r"\{\{\s*(?:#if\s+(\w+)|/if)\s*\}\}")
_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


def _template_value_present(value: Any) -> bool:
    """Return True when a template value should count as present."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return bool(value)
    return True


def _render_error_template(template: str, values: dict[str, Any]) -> str:
    """Render ``template`` line by line.

    ``{{#if name}}`` guards (which may span lines) hide text while ``name`` is
    empty. A line that still references an empty value after the guards are
    applied is dropped entirely, so optional details never leave dangling
    labels. Unknown placeholders are left untouched.
    """
    rendered: list[str] = []
    guards: list[bool] = []

    for raw_line in template.splitlines():
        kept: list[str] = []
        position = 0
        for match in _TEMPLATE_IF_TOKEN_RE.finditer(raw_line):
            if all(guards):
                kept.append(raw_line[position:match.start()])
            name = match.group(1)
            if name is not None:
                guards.append(_template_value_present(values.get(name)))
            elif guards:
                guards.pop()
            position = match.end()
        if all(guards):
            kept.append(raw_line[position:])

        line = "".join(kept)
        if not line.strip():
            if not raw_line.strip() and all(guards):
                rendered.append("")
            continue

        names = [name for name in _PLACEHOLDER_RE.findall(line) if name in values]
        if any(not _template_value_present(values[name]) for name in names):
            continue
        rendered.append(
            _PLACEHOLDER_RE.sub(
                lambda m: str(values[m.group(1)]) if m.group(1) in values else m.group(0),
                line,
            )
        )
    return "\n".join(rendered).strip()


def _normalize_optional_str(value: Any) -> Optional[str]:
    """Return a stripped string or None when empty/non-string."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _split_csv(value: Optional[str]) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _truncate(text: str, limit: int = 200) -> str:
    """Shorten ``text`` for log lines."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}… ({len(text)} chars)"

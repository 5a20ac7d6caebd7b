"""
Template rendering — `{{name}}` placeholder substitution.

Pure and deterministic: each `{{name}}` whose name is a key of `data` is
replaced by the value's text (`null` for None); every other token is left
verbatim. Keys may hold any characters (`order-id`, `user.name`).
"""
from __future__ import annotations

import json
import re
import structlog
from typing import Any, Mapping

logger = structlog.get_logger()

_PLACEHOLDER = re.compile(r"\{\{(.+?)\}\}")


def _text(value: Any) -> str:
    return "null" if value is None else str(value)


def render(template_text: str, data: Mapping[str, Any]) -> str:
    if not template_text:
        return ""
    if not data:
        return template_text

    # One pass over the text, longest key first, so substituted values are
    # never rescanned.
    keys = sorted((str(k) for k in data), key=len, reverse=True)
    pattern = re.compile(r"\{\{(" + "|".join(re.escape(k) for k in keys) + r")\}\}")
    values = {str(k): v for k, v in data.items()}
    return pattern.sub(lambda m: _text(values[m.group(1)]), template_text)


def placeholders(template_text: str) -> list[str]:
    """Names referenced by a template, in order of first appearance."""
    seen: list[str] = []
    for name in _PLACEHOLDER.findall(template_text or ""):
        if name not in seen:
            seen.append(name)
    return seen


def parse_payload(payload: str) -> dict[str, Any]:
    """Decode a job payload; anything that is not a JSON object becomes {}."""
    if not payload:
        return {}
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        logger.warning("payload_parse_failed", error=str(e))
        return {}
    if not isinstance(data, dict):
        logger.warning("payload_not_a_mapping", kind=type(data).__name__)
        return {}
    return data

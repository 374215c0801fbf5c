"""Template interpolation for payloads pushed into node content.

Tokens look like ``{{job.id}}``, ``{{node.path}}`` or ``{{instance.index}}``
and are resolved by dot path against an interpolation context.
"""

from __future__ import annotations

import json
import re
from typing import Any

_TOKEN_RE = re.compile(r"\{\{([^}]+)\}\}")
_INSTANCE_TOKEN_RE = re.compile(r"(^|\.)i\d+(\.|$)")

_MISSING = object()


def _lookup(context: Any, path: str) -> Any:
    """Value at dot ``path`` in ``context``, or ``_MISSING`` when absent."""
    if not context or not path:
        return _MISSING
    current = context
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return _MISSING
    return current


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None or isinstance(value, (bool, dict, list)):
        return json.dumps(value)
    return str(value)


def interpolate_string(template: str, context: dict[str, Any]) -> str:
    """Replace ``{{a.b}}`` tokens; unknown tokens are left verbatim.

    Present ``None`` renders as ``null`` and containers render as JSON.
    """
    if not template or not isinstance(template, str):
        return template

    def _replace(match: re.Match[str]) -> str:
        value = _lookup(context, match.group(1).strip())
        return match.group(0) if value is _MISSING else _stringify(value)

    return _TOKEN_RE.sub(_replace, template)


def interpolate_json(value: Any, context: dict[str, Any]) -> Any:
    if isinstance(value, str):
        return interpolate_string(value, context)
    if isinstance(value, list):
        return [interpolate_json(item, context) for item in value]
    if isinstance(value, dict):
        return {key: interpolate_json(item, context) for key, item in value.items()}
    return value


def has_interpolation_tokens(value: Any) -> bool:
    return isinstance(value, str) and _TOKEN_RE.search(value) is not None


def extract_tokens(value: Any) -> list[str]:
    if not isinstance(value, str):
        return []
    return [match.strip() for match in _TOKEN_RE.findall(value)]


def create_context(
    *,
    job_id: str | None = None,
    node_id: str | None = None,
    node_path: str | None = None,
    instance_id: str | None = None,
    instance_index: int | None = None,
    custom: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build an interpolation context for the common job/node/instance case."""
    context: dict[str, Any] = {}

    if job_id:
        context["job"] = {"id": job_id}

    if node_id or node_path:
        node: dict[str, Any] = {}
        if node_id:
            node["id"] = node_id
        if node_path:
            node["path"] = node_path
        context["node"] = node

    if instance_id is not None:
        instance: dict[str, Any] = {"id": instance_id, "path": instance_id}
        if instance_index is not None:
            instance["index"] = instance_index
        context["instance"] = instance

    if custom:
        context.update(custom)

    return context


def normalize_path(path: str) -> str:
    """Convert bracket notation to dot selectors (``a[3]`` -> ``a.i3``)."""
    normalized = re.sub(r"\[(\d+)\]", r".i\1", path)
    normalized = re.sub(r"\[\"([^\"]+)\"\]", r".\1", normalized)
    normalized = re.sub(r"\['([^']+)'\]", r".\1", normalized)
    return normalized[1:] if normalized.startswith(".") else normalized


def interpolate_instance_path(base_path: str, instance_id: str) -> str:
    normalized = normalize_path(base_path)
    if "instances" in normalized and not _INSTANCE_TOKEN_RE.search(normalized):
        return f"{normalized}.i{instance_id}"
    return normalized

"""
JSON path walking over node content documents.

Node content is informal JSON. Selectors are resolved per container:

- objects select by key;
- arrays accept ``iN`` (1-based instance token), a plain integer (0-based
  index), or a label matched against an element's ``ref``, the last label
  of its ``path``, or its ``instance_id``.

All writers return a new document and never mutate their input.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from aiscenes.kernel.errors import ConflictError, NotFoundError
from aiscenes.kernel.serialization import deep_copy_json
from aiscenes.ltree.addresses import parse_instance_token

logger = structlog.get_logger()

_MISSING = object()


class PathNotFound(NotFoundError):
    def __init__(self, keys: Sequence[str], depth: int):
        trail = ".".join(keys[: depth + 1])
        super().__init__(
            message=f"Path not found: {trail}",
            code="ltree.path_not_found",
            meta={"path": ".".join(keys), "missing_at": trail},
        )
        self.keys = list(keys)
        self.depth = depth


class PathConflict(ConflictError):
    def __init__(self, keys: Sequence[str], depth: int):
        trail = ".".join(keys[:depth])
        super().__init__(
            message=f"Cannot descend into scalar value at {trail or '<root>'}",
            code="ltree.path_conflict",
            meta={"path": ".".join(keys), "scalar_at": trail},
        )


@dataclass(frozen=True)
class FieldPath:
    json_path: str
    field_ref: str
    parent_path: str | None = None
    is_in_collection: bool = False
    instance_id: str | None = None


# =============================================================================
# Selection
# =============================================================================


def _label_of(item: Any) -> set[str]:
    if not isinstance(item, dict):
        return set()
    labels: set[str] = set()
    ref = item.get("ref")
    if isinstance(ref, str):
        labels.add(ref)
    path = item.get("path")
    if isinstance(path, str) and path:
        labels.add(path.rsplit(".", 1)[-1])
    instance_id = item.get("instance_id")
    if instance_id is not None:
        labels.add(str(instance_id))
    return labels


def list_index(items: list[Any], key: str) -> int | None:
    """Index of the element a selector addresses, or None."""
    n = parse_instance_token(key)
    if n is not None:
        return n - 1 if n <= len(items) else None

    if key.isdigit():
        idx = int(key)
        return idx if idx < len(items) else None

    for idx, item in enumerate(items):
        if key in _label_of(item):
            return idx
    return None


def _child(container: Any, key: str) -> Any:
    if isinstance(container, dict):
        return container.get(key, _MISSING)
    if isinstance(container, list):
        idx = list_index(container, key)
        return _MISSING if idx is None else container[idx]
    return _MISSING


# =============================================================================
# Read / write
# =============================================================================


def resolve_path(document: Any, keys: Sequence[str]) -> Any:
    """Return the value at ``keys``; raise PathNotFound when any step is absent."""
    current = document
    for depth, key in enumerate(keys):
        current = _child(current, key)
        if current is _MISSING:
            raise PathNotFound(keys, depth)
    return current


def path_exists(document: Any, keys: Sequence[str]) -> bool:
    try:
        resolve_path(document, keys)
    except PathNotFound:
        return False
    return True


def set_path(document: Any, keys: Sequence[str], value: Any) -> Any:
    """Return a copy of ``document`` with ``value`` stored at ``keys``.

    Missing object keys are created as objects. In arrays, ``i{len+1}``
    appends; any other miss raises PathNotFound.
    """
    keys = list(keys)

    def _set(node: Any, depth: int) -> Any:
        if depth == len(keys):
            return deep_copy_json(value)

        key = keys[depth]
        last = depth == len(keys) - 1

        if isinstance(node, dict):
            child = node.get(key)
            if child is None and not last:
                child = {}
            elif not last and not isinstance(child, (dict, list)):
                raise PathConflict(keys, depth + 1)
            updated = dict(node)
            updated[key] = _set(child, depth + 1)
            return updated

        if isinstance(node, list):
            idx = list_index(node, key)
            updated = list(node)
            if idx is None:
                if parse_instance_token(key) == len(node) + 1:
                    updated.append(_set({} if not last else None, depth + 1))
                    return updated
                raise PathNotFound(keys, depth)
            child = node[idx]
            if not last and not isinstance(child, (dict, list)):
                if child is not None:
                    raise PathConflict(keys, depth + 1)
                child = {}
            updated[idx] = _set(child, depth + 1)
            return updated

        raise PathConflict(keys, depth)

    return _set({} if document is None else document, 0)


def delete_path(document: Any, keys: Sequence[str]) -> Any:
    """Return a copy of ``document`` without the value at ``keys``."""
    keys = list(keys)
    if not keys:
        return None

    def _delete(node: Any, depth: int) -> Any:
        key = keys[depth]
        last = depth == len(keys) - 1
        if isinstance(node, dict):
            if key not in node:
                raise PathNotFound(keys, depth)
            updated = dict(node)
            if last:
                del updated[key]
            else:
                updated[key] = _delete(node[key], depth + 1)
            return updated
        if isinstance(node, list):
            idx = list_index(node, key)
            if idx is None:
                raise PathNotFound(keys, depth)
            updated = list(node)
            if last:
                del updated[idx]
            else:
                updated[idx] = _delete(node[idx], depth + 1)
            return updated
        raise PathNotFound(keys, depth)

    return _delete(document, 0)


# =============================================================================
# Field discovery
# =============================================================================

_COLLECTION_SECTION_KINDS = {"CollectionSectionItem", "CollectionSection"}


def _iter_field_paths(
    node: Any,
    path: str,
    parent: str | None = None,
    instance_id: str | None = None,
) -> Iterator[FieldPath]:
    if isinstance(node, list):
        for idx, item in enumerate(node):
            yield from _iter_field_paths(item, f"{path}.{idx}", parent, instance_id)
        return

    if not isinstance(node, dict):
        return

    if node.get("kind") == "FieldItem" and node.get("ref"):
        yield FieldPath(
            json_path=f"{path}.value",
            field_ref=str(node["ref"]),
            parent_path=parent,
            is_in_collection=instance_id is not None,
            instance_id=instance_id,
        )

    is_materialized_collection = (
        node.get("kind") in _COLLECTION_SECTION_KINDS and isinstance(node.get("instances"), list)
    )
    if is_materialized_collection:
        for idx, instance in enumerate(node["instances"]):
            if isinstance(instance, dict) and instance.get("children"):
                instance_path = f"{path}.instances.{idx}"
                raw_id = instance.get("instance_id")
                yield from _iter_field_paths(
                    instance["children"],
                    f"{instance_path}.children",
                    instance_path,
                    str(raw_id) if raw_id is not None else str(idx + 1),
                )

    for key, value in node.items():
        if key in ("instances", "value") or not isinstance(value, (dict, list)):
            continue
        # Template children of an expanded collection hold no values.
        if key == "children" and is_materialized_collection:
            continue
        yield from _iter_field_paths(value, f"{path}.{key}", path, instance_id)


def find_field_paths(content: Any, base_path: str = "content") -> dict[str, FieldPath]:
    """Map every FieldItem ref to the JSON path of its value.

    When a ref occurs more than once the last occurrence wins; use
    `validate_field_addresses` to detect that.
    """
    return {fp.field_ref: fp for fp in _iter_field_paths(content, base_path)}


def field_address(node_addr: str, content: Any, field_ref: str) -> str | None:
    field_path = find_field_paths(content).get(field_ref)
    if field_path is None:
        logger.warning("Field not found in content structure", node_addr=node_addr, field_ref=field_ref)
        return None
    return f"{node_addr}#{field_path.json_path}"


def validate_field_addresses(content: Any) -> tuple[bool, list[str]]:
    """Report refs that occur at more than one location in the content.

    Collection instances repeat the same refs by construction, so a ref is
    only a duplicate when it repeats within one instance (or outside any).
    """
    locations: dict[tuple[str | None, str], list[str]] = {}
    for fp in _iter_field_paths(content, "content"):
        locations.setdefault((fp.instance_id, fp.field_ref), []).append(fp.json_path)

    duplicates = [
        f"{ref}: {', '.join(paths)}"
        for (_, ref), paths in locations.items()
        if len(paths) > 1
    ]
    return not duplicates, duplicates


def _iter_field_items(items: Any) -> Iterator[dict[str, Any]]:
    for item in items or []:
        if not isinstance(item, dict):
            continue
        if item.get("kind") == "FieldItem" and item.get("ref"):
            yield item
        yield from _iter_field_items(item.get("children"))
        yield from _iter_field_items(item.get("items"))
        for instance in item.get("instances") or []:
            if isinstance(instance, dict):
                yield from _iter_field_items(instance.get("children"))


def collect_field_refs(items: Any) -> list[str]:
    """Field refs in document order, without duplicates."""
    return list(dict.fromkeys(item["ref"] for item in _iter_field_items(items)))


def apply_field_values(content: Any, values: dict[str, Any]) -> Any:
    """Copy of form content with each FieldItem in ``values`` set to its value."""
    updated = deep_copy_json(content) if content is not None else {}
    if not isinstance(updated, dict):
        return updated
    for item in _iter_field_items(updated.get("items")):
        if item["ref"] in values:
            item["value"] = deep_copy_json(values[item["ref"]])
    return updated

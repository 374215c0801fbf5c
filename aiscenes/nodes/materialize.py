"""
Template materialization.

Forms and groups are authored as templates: forms declare collection fields
and sections with a default instance count, groups declare a `collection`
block and a list of `node_library` ids as template children. Materializing
turns those templates into runtime instances inside a job.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from aiscenes.kernel.errors import ConflictError, NotFoundError, ValidationError
from aiscenes.kernel.serialization import deep_copy_json
from aiscenes.ltree.addresses import i_token
from aiscenes.ltree.store import NewNode, NodeNotFoundError, NodeRecord, NodeStore

logger = structlog.get_logger()

_LABEL_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_]+")


def _instance_count(*candidates: Any) -> int:
    for candidate in candidates:
        if candidate is None:
            continue
        try:
            return max(int(candidate), 0)
        except (TypeError, ValueError):
            return 0
    return 0


# =============================================================================
# Forms
# =============================================================================


def _rebase_children(children: list[Any], base: str) -> list[Any]:
    rebased = deep_copy_json(children)

    def _renumber(items: list[Any], base_path: str) -> list[Any]:
        for idx, child in enumerate(items):
            if not isinstance(child, dict):
                continue
            child["idx"] = idx + 1
            tail = str(child.get("path") or f"item_{idx + 1}").rsplit(".", 1)[-1]
            child["path"] = f"{base_path}.{tail}"
            kind = child.get("kind")
            if kind == "SectionItem":
                child["children"] = _renumber(child.get("children") or [], child["path"])
            elif kind == "CollectionSection":
                # Nested collections keep their template; instances are built later.
                child["instances"] = []
                child["children"] = child.get("children") or []
            elif kind == "FieldItem":
                child["value"] = None
        return items

    return _renumber(rebased, base)


def _expand_items(items: list[Any]) -> list[Any]:
    expanded: list[Any] = []
    for item in items:
        if not isinstance(item, dict):
            expanded.append(item)
            continue

        kind = item.get("kind")
        copy = deep_copy_json(item)

        if kind == "FieldItem":
            copy["value"] = None
        elif kind == "CollectionFieldItem":
            count = _instance_count(item.get("default_instances"), item.get("min_instances"))
            copy["instances"] = [
                {"instance_id": k, "path": f"{copy.get('path')}.inst_{k}", "value": None}
                for k in range(1, count + 1)
            ]
        elif kind == "SectionItem":
            copy["children"] = _expand_items(copy.get("children") or [])
        elif kind == "CollectionSection":
            count = _instance_count(item.get("default_instances"), item.get("min_instances"))
            template = copy.get("children") or []
            copy["instances"] = [
                {
                    "instance_id": k,
                    "path": f"{copy.get('path')}.inst_{k}",
                    "children": _rebase_children(template, f"{copy.get('path')}.inst_{k}"),
                }
                for k in range(1, count + 1)
            ]
        expanded.append(copy)
    return expanded


def expand_form_content(content: Any) -> Any:
    """Expand a FormContent template into runtime instances.

    Content of any other kind is returned unchanged. The input is never
    mutated.
    """
    if not isinstance(content, dict) or content.get("kind") != "FormContent":
        return content
    expanded = deep_copy_json(content)
    expanded["items"] = _expand_items(expanded.get("items") or [])
    return expanded


# =============================================================================
# Groups
# =============================================================================


def _child_label(library: dict[str, Any], position: int, taken: set[str]) -> str:
    raw = library.get("slug") or library.get("title") or ""
    label = _LABEL_UNSAFE_RE.sub("_", str(raw)).strip("_").lower()
    if not label:
        label = f"{library.get('node_type') or 'node'}_{position}"
    candidate = label
    suffix = 2
    while candidate in taken:
        candidate = f"{label}_{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


class Materializer:
    """Plans form and group expansion for job nodes, then writes it in one batch.

    Every library lookup happens while planning, so a missing template fails
    the call before anything is written.
    """

    def __init__(self, store: NodeStore):
        self.store = store
        self.inserts: list[NewNode] = []
        self.contents: dict[str, Any] = {}
        self._library: dict[str, dict[str, Any]] = {}

    async def _library_node(self, library_id: str) -> dict[str, Any]:
        if library_id not in self._library:
            library = await self.store.get_library_node(library_id)
            if library is None:
                raise NotFoundError(
                    message="Library node not found",
                    code="nodes.library_node_not_found",
                    meta={"library_id": library_id},
                )
            self._library[library_id] = library
        return self._library[library_id]

    async def plan_node(self, node: NodeRecord) -> None:
        if node.node_type == "group":
            content = await self._group_content(node.job_id, node.addr, node.content)
            if content is not None:
                self.contents[node.id] = content
        elif node.node_type == "form":
            self.contents[node.id] = expand_form_content(node.content)

    async def _group_content(self, job_id: str, addr: str, content: Any) -> dict[str, Any] | None:
        content = deep_copy_json(content) if isinstance(content, dict) else {}
        collection = content.get("collection")
        if not collection:
            return None
        if content.get("instances"):
            raise ConflictError(
                message="Group collection is already materialized",
                code="nodes.already_materialized",
                meta={"job_id": job_id, "addr": addr},
            )

        count = _instance_count(collection.get("default_instances"), collection.get("min"))
        libraries = [await self._library_node(str(c)) for c in content.get("children") or []]
        taken: set[str] = set()
        labels = [_child_label(library, position, taken) for position, library in enumerate(libraries, start=1)]

        instances: list[dict[str, Any]] = []
        for i in range(1, count + 1):
            child_ids = [
                await self._clone(library, job_id, f"{addr}.{i_token(i)}.{label}")
                for library, label in zip(libraries, labels)
            ]
            instances.append({"i": i, "idx": i, "children": child_ids})

        content["instances"] = instances
        logger.debug("Group collection planned", job_id=job_id, addr=addr, instances=count)
        return content

    async def _clone(self, library: dict[str, Any], job_id: str, addr: str) -> str:
        node_type = str(library["node_type"])
        clone = NewNode(job_id=job_id, addr=addr, node_type=node_type, title=library.get("title"))
        self.inserts.append(clone)

        content = deep_copy_json(library.get("content"))
        if node_type == "group":
            expanded = await self._group_content(job_id, addr, content)
            clone.content = content if expanded is None else expanded
        elif node_type == "form":
            clone.content = expand_form_content(content)
        else:
            clone.content = content
        return clone.id

    async def write(self) -> None:
        if self.inserts or self.contents:
            await self.store.write_nodes(inserts=self.inserts, contents=self.contents)


async def materialize_collections(store: NodeStore, job_id: str, node_ids: list[str]) -> dict[str, Any]:
    """Expand every listed node of ``job_id``; media and other nodes are no-ops.

    Nothing is written unless every node expands.
    """
    materializer = Materializer(store)
    for node_id in node_ids:
        node = await store.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id=node_id)
        if node.job_id != job_id:
            raise ValidationError(
                message=f"Node {node_id} does not belong to job {job_id}",
                code="nodes.job_mismatch",
                meta={"node_id": node_id, "job_id": job_id},
                status_code=400,
            )
        await materializer.plan_node(node)

    await materializer.write()
    logger.info(
        "Collections materialized",
        job_id=job_id,
        nodes=len(node_ids),
        cloned=len(materializer.inserts),
    )
    return {"ok": True, "materialized": len(node_ids)}

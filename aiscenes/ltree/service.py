"""
Hybrid address service.

Reads and writes values inside node content documents addressed by
``<ltree node path>#<json dot path>``. Every write is a read-modify-write of
a single node row performed under a row lock, so concurrent writers to
different paths of the same node do not overwrite each other.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog
from prometheus_client import Counter

from aiscenes.ltree.addresses import AddressError, ParsedAddress, i_token, parse_hybrid, parse_instance_token
from aiscenes.ltree.document import PathNotFound, resolve_path, set_path
from aiscenes.ltree.interpolate import interpolate_json
from aiscenes.ltree.store import NodeNotFoundError, NodeRecord, NodeStore

logger = structlog.get_logger()

resolver_writes_total = Counter(
    "aiscenes_resolver_writes_total",
    "Node content writes through the hybrid resolver",
    ["operation"],
)


class HybridAddrService:
    """Resolve, write and inspect hybrid addresses for one backing store."""

    def __init__(self, store: NodeStore):
        self.store = store

    @staticmethod
    def parse_address(address: str) -> ParsedAddress:
        return parse_hybrid(address)

    async def _node_for(self, job_id: str, parsed: ParsedAddress) -> NodeRecord:
        node = await self.store.find_node(job_id, parsed.ltree_path)
        if node is None:
            raise NodeNotFoundError(job_id=job_id, addr=parsed.ltree_path)
        return node

    async def get_item_at(self, job_id: str, address: str) -> Any:
        """Value at `address`, or None when the JSON path is absent.

        A pure ltree address returns the whole node content.
        """
        parsed = self.parse_address(address)
        node = await self._node_for(job_id, parsed)
        try:
            return resolve_path(node.content, parsed.json_keys)
        except PathNotFound:
            return None

    async def set_item_at(self, job_id: str, address: str, value: Any) -> Any:
        """Store `value` at `address` and return the node's new content."""
        parsed = self.parse_address(address)
        node = await self.store.update_content(
            job_id,
            parsed.ltree_path,
            lambda content: set_path(content, parsed.json_keys, value),
        )
        resolver_writes_total.labels(operation="set").inc()
        logger.info("Hybrid value set", job_id=job_id, address=address, node_id=node.id)
        return node.content

    async def set_many(self, job_id: str, writes: Iterable[tuple[str, Any]]) -> dict[str, Any]:
        """Apply several writes; writes to one node share a single lock and UPDATE.

        Returns the new content per node addr. Writes are applied in the
        given order, so a later write to the same path wins.
        """
        by_node: dict[str, list[tuple[list[str], Any]]] = {}
        for address, value in writes:
            parsed = self.parse_address(address)
            by_node.setdefault(parsed.ltree_path, []).append((parsed.json_keys, value))

        results: dict[str, Any] = {}
        for node_addr, node_writes in by_node.items():

            def _apply(content: Any, node_writes: list[tuple[list[str], Any]] = node_writes) -> Any:
                for keys, value in node_writes:
                    content = set_path(content, keys, value)
                return content

            node = await self.store.update_content(job_id, node_addr, _apply)
            results[node_addr] = node.content
            resolver_writes_total.labels(operation="set_many").inc(len(node_writes))

        logger.info(
            "Hybrid values set",
            job_id=job_id,
            nodes=len(by_node),
            writes=sum(len(w) for w in by_node.values()),
        )
        return results

    async def resolve_many(self, job_id: str, addresses: Iterable[str]) -> dict[str, Any]:
        """Resolve several addresses; a failed lookup yields None for that address."""
        addresses = list(addresses)
        nodes: dict[str, NodeRecord | None] = {}
        output: dict[str, Any] = {}

        for address in addresses:
            try:
                parsed = self.parse_address(address)
                if parsed.ltree_path not in nodes:
                    nodes[parsed.ltree_path] = await self.store.find_node(job_id, parsed.ltree_path)
                node = nodes[parsed.ltree_path]
                if node is None:
                    raise NodeNotFoundError(job_id=job_id, addr=parsed.ltree_path)
                output[address] = resolve_path(node.content, parsed.json_keys)
            except (AddressError, PathNotFound, NodeNotFoundError) as exc:
                logger.warning("Failed to resolve address", job_id=job_id, address=address, error=str(exc))
                output[address] = None

        return output

    async def push_payload(
        self,
        job_id: str,
        target_addr: str,
        payload: dict[str, Any],
        context: dict[str, Any] | None = None,
    ) -> Any:
        """Interpolate `payload` against the job context and store it at `target_addr`."""
        interpolated = interpolate_json(payload, {"job": {"id": job_id}, **(context or {})})
        return await self.set_item_at(job_id, target_addr, interpolated)

    async def address_exists(self, job_id: str, address: str) -> bool:
        try:
            value = await self.get_item_at(job_id, address)
        except NodeNotFoundError:
            return False
        return value is not None

    async def list_children(self, job_id: str, address: str) -> list[NodeRecord]:
        parsed = self.parse_address(address)
        node = await self._node_for(job_id, parsed)
        return await self.store.related(node, "children")

    async def get_collection_instances(self, job_id: str, collection_address: str) -> list[dict[str, Any]]:
        """Instances of the collection at `collection_address` as `{id, path, data}`.

        `path` is the full address of the instance (``...instances.iN``).
        """
        parsed = self.parse_address(collection_address)
        collection = await self.get_item_at(job_id, collection_address)
        if not isinstance(collection, dict):
            return []

        instances = collection.get("instances")
        base = f"{parsed.ltree_path}#{'.'.join([*parsed.json_keys, 'instances'])}"

        if isinstance(instances, list):
            entries = []
            for n, data in enumerate(instances, start=1):
                instance_id = data.get("instance_id", n) if isinstance(data, dict) else n
                entries.append({"id": str(instance_id), "path": f"{base}.{i_token(n)}", "data": data})
            return entries

        if isinstance(instances, dict):
            numbered = sorted(
                (n, key, data)
                for key, data in instances.items()
                if (n := parse_instance_token(key)) is not None
            )
            return [{"id": key, "path": f"{base}.{key}", "data": data} for _, key, data in numbered]

        return []

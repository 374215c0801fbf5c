"""Tests for HybridAddrService against the in-memory node store."""

import asyncio

import pytest

from aiscenes.ltree.addresses import AddressError
from aiscenes.ltree.document import PathConflict
from aiscenes.ltree.service import HybridAddrService
from aiscenes.ltree.store import NodeNotFoundError

JOB_ID = "11111111-1111-4111-8111-111111111111"


@pytest.fixture
def service(node_store):
    node_store.add(
        job_id=JOB_ID,
        addr="root.user_input",
        content={
            "kind": "FormContent",
            "items": [
                {"kind": "FieldItem", "ref": "lead_name", "value": "Nour"},
                {"kind": "FieldItem", "ref": "language", "value": None},
            ],
        },
    )
    node_store.add(job_id=JOB_ID, addr="root.user_input.notes", node_type="text", content={"text": ""})
    node_store.add(
        job_id=JOB_ID,
        addr="root.scenes",
        node_type="group",
        content={
            "kind": "CollectionSection",
            "instances": [
                {"instance_id": "a", "title": "Opening"},
                {"instance_id": "b", "title": "Chase"},
            ],
        },
    )
    return HybridAddrService(node_store)


@pytest.mark.asyncio
class TestReads:
    async def test_get_item_at_json_path(self, service):
        assert await service.get_item_at(JOB_ID, "root.user_input#items.lead_name.value") == "Nour"

    async def test_pure_ltree_address_returns_whole_content(self, service):
        content = await service.get_item_at(JOB_ID, "root.user_input.notes")
        assert content == {"text": ""}

    async def test_missing_json_path_is_none(self, service):
        assert await service.get_item_at(JOB_ID, "root.user_input#items.nope.value") is None

    async def test_missing_node_raises(self, service):
        with pytest.raises(NodeNotFoundError) as exc:
            await service.get_item_at(JOB_ID, "root.unknown#x")
        assert exc.value.meta == {"job_id": JOB_ID, "addr": "root.unknown"}

    async def test_invalid_address_raises(self, service):
        with pytest.raises(AddressError):
            await service.get_item_at(JOB_ID, "root.user_input#bad-key")

    async def test_resolve_many_tolerates_failures(self, service):
        result = await service.resolve_many(
            JOB_ID,
            [
                "root.user_input#items.lead_name.value",
                "root.missing#x",
                "not valid!",
                "root.user_input#items.ghost",
            ],
        )
        assert result == {
            "root.user_input#items.lead_name.value": "Nour",
            "root.missing#x": None,
            "not valid!": None,
            "root.user_input#items.ghost": None,
        }

    async def test_address_exists(self, service):
        assert await service.address_exists(JOB_ID, "root.user_input#items.lead_name")
        assert not await service.address_exists(JOB_ID, "root.user_input#items.language.value")
        assert not await service.address_exists(JOB_ID, "root.nowhere")

    async def test_list_children(self, service):
        children = await service.list_children(JOB_ID, "root.user_input")
        assert [child.addr for child in children] == ["root.user_input.notes"]

    async def test_collection_instances_from_list(self, service):
        instances = await service.get_collection_instances(JOB_ID, "root.scenes")
        assert [(entry["id"], entry["path"]) for entry in instances] == [
            ("a", "root.scenes#instances.i1"),
            ("b", "root.scenes#instances.i2"),
        ]
        assert instances[1]["data"]["title"] == "Chase"

    async def test_collection_instances_from_mapping(self, service, node_store):
        node_store.add(
            job_id=JOB_ID,
            addr="root.shots",
            content={"cuts": {"instances": {"i10": {"n": 10}, "i2": {"n": 2}, "meta": {}}}},
        )
        instances = await service.get_collection_instances(JOB_ID, "root.shots#cuts")
        assert [entry["id"] for entry in instances] == ["i2", "i10"]
        assert instances[0]["path"] == "root.shots#cuts.instances.i2"

    async def test_collection_instances_of_non_collection(self, service):
        assert await service.get_collection_instances(JOB_ID, "root.user_input#items.lead_name.value") == []


@pytest.mark.asyncio
class TestWrites:
    async def test_set_item_at_returns_new_content(self, service, node_store):
        content = await service.set_item_at(JOB_ID, "root.user_input#items.language.value", "ar")
        assert content["items"][1]["value"] == "ar"
        stored = node_store.by_addr(JOB_ID, "root.user_input")
        assert stored.content["items"][1]["value"] == "ar"

    async def test_set_item_at_creates_missing_keys(self, service, node_store):
        await service.set_item_at(JOB_ID, "root.user_input.notes#meta.author", "sami")
        assert node_store.by_addr(JOB_ID, "root.user_input.notes").content == {
            "text": "",
            "meta": {"author": "sami"},
        }

    async def test_set_item_at_on_scalar_conflicts(self, service):
        with pytest.raises(PathConflict):
            await service.set_item_at(JOB_ID, "root.user_input.notes#text.deeper", 1)

    async def test_set_item_at_unknown_node(self, service):
        with pytest.raises(NodeNotFoundError):
            await service.set_item_at(JOB_ID, "root.ghost#a", 1)

    async def test_concurrent_writes_to_one_node_both_survive(self, service, node_store):
        await asyncio.gather(
            service.set_item_at(JOB_ID, "root.user_input#items.lead_name.value", "Omar"),
            service.set_item_at(JOB_ID, "root.user_input#items.language.value", "en"),
        )
        items = node_store.by_addr(JOB_ID, "root.user_input").content["items"]
        assert items[0]["value"] == "Omar"
        assert items[1]["value"] == "en"

    async def test_set_many_groups_writes_per_node(self, service, node_store):
        before = node_store.updates
        results = await service.set_many(
            JOB_ID,
            [
                ("root.user_input#items.lead_name.value", "Lina"),
                ("root.user_input#items.language.value", "fr"),
                ("root.user_input#items.language.value", "es"),
                ("root.user_input.notes#text", "hello"),
            ],
        )
        assert node_store.updates - before == 2
        assert set(results) == {"root.user_input", "root.user_input.notes"}
        assert results["root.user_input"]["items"][1]["value"] == "es"
        assert results["root.user_input.notes"]["text"] == "hello"

    async def test_push_payload_interpolates_job_context(self, service, node_store):
        await service.push_payload(
            JOB_ID,
            "root.user_input.notes#last_run",
            {"job": "{{job.id}}", "by": "{{user.name}}", "raw": "{{unknown}}"},
            {"user": {"name": "sami"}},
        )
        stored = node_store.by_addr(JOB_ID, "root.user_input.notes").content
        assert stored["last_run"] == {"job": JOB_ID, "by": "sami", "raw": "{{unknown}}"}

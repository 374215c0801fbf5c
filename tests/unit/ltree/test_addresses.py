from __future__ import annotations

import pytest

from aiscenes.ltree.addresses import (
    AddressError,
    FormAddr,
    GroupAddr,
    MediaAddr,
    append_instance,
    assert_node_addr,
    field_value_addr,
    i_token,
    is_address,
    is_under,
    parse,
    parse_hybrid,
    parse_instance_token,
    replace_last_instance,
    section_field_value_addr,
    validate_address,
)


@pytest.mark.unit
class TestValidateAddress:
    def test_pure_ltree_path(self):
        result = validate_address("root.user_input")
        assert result.is_valid
        assert result.parsed.ltree_path == "root.user_input"
        assert result.parsed.is_pure_ltree

    def test_hybrid_address_splits_json_keys(self):
        result = validate_address("root.user_input#content.items.lead_name.value")
        assert result.is_valid
        assert result.parsed.json_keys == ["content", "items", "lead_name", "value"]

    @pytest.mark.parametrize(
        "address",
        [
            "",
            "root.user_input#content.items[0]",
            "root.user input",
            "root#",
            "root#content..value",
            "1root.a",
            "root.a#content.0",
            "root.a#b#c",
        ],
    )
    def test_rejects_malformed_addresses(self, address):
        result = validate_address(address)
        assert not result.is_valid
        assert result.error

    def test_parse_hybrid_raises_typed_error(self):
        with pytest.raises(AddressError) as exc:
            parse_hybrid("root.a#bad-key")
        assert exc.value.code == "ltree.invalid_address"
        assert exc.value.status_code == 400
        assert exc.value.meta == {"address": "root.a#bad-key"}


@pytest.mark.unit
class TestCanonicalAddresses:
    def test_node_addr_must_start_at_root(self):
        assert assert_node_addr("root.user_input") == "root.user_input"
        with pytest.raises(AddressError):
            assert_node_addr("user_input")

    def test_parse_requires_hash(self):
        assert parse("root.a#content.value") == ("root.a", "content.value")
        with pytest.raises(AddressError):
            parse("root.a")

    def test_is_address(self):
        assert is_address("root.a#content")
        assert not is_address("root.a")
        assert not is_address("#content")
        assert not is_address("other.a#content")

    def test_instance_tokens_are_one_based(self):
        assert i_token(3) == "i3"
        assert parse_instance_token("i3") == 3
        assert parse_instance_token("i0") is None
        assert parse_instance_token("x3") is None
        with pytest.raises(AddressError):
            i_token(0)
        with pytest.raises(AddressError):
            i_token(True)

    def test_is_under_uses_label_boundaries(self):
        assert is_under("root.a.b#content.value", "root.a")
        assert is_under("root.a", "root.a#content")
        assert not is_under("root.ab", "root.a")
        assert not is_under("root", "root.a")


@pytest.mark.unit
class TestInstanceHelpers:
    def test_append_instance(self):
        assert append_instance("root.a#content.items.cast", 2) == "root.a#content.items.cast.instances.i2"

    def test_replace_last_instance_touches_only_the_innermost_token(self):
        address = "root.a#content.items.scenes.instances.i1.children.shots.instances.i2.value"
        assert replace_last_instance(address, 5) == (
            "root.a#content.items.scenes.instances.i1.children.shots.instances.i5.value"
        )

    def test_replace_last_instance_requires_a_token(self):
        with pytest.raises(AddressError):
            replace_last_instance("root.a#content.value", 1)


@pytest.mark.unit
class TestBuilders:
    def test_form_field_addresses(self):
        assert FormAddr.field_value("root.user_input", "lead_name") == (
            "root.user_input#content.items.lead_name.value"
        )
        assert field_value_addr("root.user_input", "genres", 2) == (
            "root.user_input#content.items.genres.instances.i2.value"
        )

    def test_section_field_addresses(self):
        assert section_field_value_addr("root.user_input", "characters", "name") == (
            "root.user_input#content.items.characters.children.name.value"
        )
        assert section_field_value_addr("root.user_input", "characters", "name", 2) == (
            "root.user_input#content.items.characters.instances.i2.children.name.value"
        )

    def test_labels_are_validated(self):
        with pytest.raises(AddressError):
            FormAddr.field_value("root.user_input", "lead-name")
        with pytest.raises(AddressError):
            FormAddr.section_root("root.user_input", "2nd_section")

    def test_media_and_group_addresses(self):
        assert MediaAddr.version_item("root.poster", 1) == "root.poster#content.versions.i1.item"
        assert MediaAddr.selected_version_idx("root.poster") == "root.poster#content.selected_version_idx"
        assert GroupAddr.instance_children("root.scenes", 3) == "root.scenes#content.instances.i3.children"

"""
Hybrid address helpers for node content.

Address shape: ``<node_addr>#<json_subpath>``

- ``node_addr`` is an ltree path rooted at ``root`` (``root.user_input``).
- ``json_subpath`` is dot selectors only, no bracket indexes.

Conventions:
- Fields are addressed by their ``ref``, sections by their ``path`` label.
- Collections use ``.instances.iN`` (1-based), media versions ``.versions.iN``
  with a single ``item`` per version.
- Array numeric indexes never appear in canonical addresses.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

from aiscenes.kernel.errors import ValidationError

NODE_ADDR_RE = re.compile(r"^root(\.[A-Za-z0-9_]+)*$")
LABEL_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
LTREE_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
ADDRESS_CHARS_RE = re.compile(r"^[A-Za-z0-9_.]+(#[A-Za-z0-9_.]+)?$")
INSTANCE_TOKEN_RE = re.compile(r"^i(\d+)$")
_LAST_INSTANCE_RE = re.compile(r"\.i\d+(?=(\.|$))")


class AddressError(ValidationError):
    def __init__(self, message: str, *, address: str | None = None):
        meta = {"address": address} if address is not None else None
        super().__init__(message=message, code="ltree.invalid_address", meta=meta, status_code=400)


@dataclass(frozen=True)
class ParsedAddress:
    ltree_path: str
    json_keys: list[str] = field(default_factory=list)

    @property
    def is_pure_ltree(self) -> bool:
        return not self.json_keys


@dataclass(frozen=True)
class AddressValidation:
    is_valid: bool
    error: str | None = None
    parsed: ParsedAddress | None = None


# =============================================================================
# Validation & formatting
# =============================================================================


def assert_node_addr(addr: str) -> str:
    if not isinstance(addr, str) or not NODE_ADDR_RE.fullmatch(addr):
        raise AddressError(
            f'Invalid node addr "{addr}". Must start with "root" and use dot-separated labels.',
            address=addr if isinstance(addr, str) else None,
        )
    return addr


def assert_label(label: str, kind: Literal["fieldRef", "sectionPath"]) -> str:
    if not isinstance(label, str) or not LABEL_RE.fullmatch(label):
        raise AddressError(
            f'Invalid {kind} "{label}". Must be label-like (A-Z, 0-9, underscore; start with a letter).'
        )
    return label


def i_token(n: int) -> str:
    if isinstance(n, bool) or not isinstance(n, int) or n < 1:
        raise AddressError(f"Instance index must be >= 1, got {n}")
    return f"i{n}"


def parse_instance_token(token: str) -> int | None:
    """Return N for an ``iN`` token (N >= 1), else None."""
    match = INSTANCE_TOKEN_RE.fullmatch(token or "")
    if not match:
        return None
    n = int(match.group(1))
    return n if n >= 1 else None


# =============================================================================
# Join / parse
# =============================================================================


def join(node_addr: str, subpath: str) -> str:
    assert_node_addr(node_addr)
    if not subpath or subpath.startswith("#"):
        raise AddressError(
            f'Invalid subpath "{subpath}". Must be a non-empty JSON path without leading "#".'
        )
    return f"{node_addr}#{subpath}"


def parse(address: str) -> tuple[str, str]:
    """Split a canonical address into ``(node_addr, subpath)``."""
    node_addr, sep, subpath = (address or "").partition("#")
    if not node_addr or not sep:
        raise AddressError(
            f'Invalid address "{address}". Expected "<nodeAddr>#<json_subpath>".',
            address=address,
        )
    assert_node_addr(node_addr)
    return node_addr, subpath


def is_address(value: str) -> bool:
    """True if a string looks like a full address (``root...#...``)."""
    if not isinstance(value, str):
        return False
    hash_pos = value.find("#")
    if hash_pos <= 0:
        return False
    return NODE_ADDR_RE.fullmatch(value[:hash_pos]) is not None


def node_part(address: str) -> str:
    return str(address or "").split("#", 1)[0]


def is_under(child: str, parent: str) -> bool:
    """ltree containment on the node part of two addresses."""
    child_root = node_part(child)
    parent_root = node_part(parent)
    return child_root == parent_root or child_root.startswith(parent_root + ".")


def validate_address(address: str) -> AddressValidation:
    """Validate an API-supplied hybrid address without raising.

    Accepts either a pure ltree path or ``ltree.path#json.keys``.
    """
    if not address or not isinstance(address, str):
        return AddressValidation(False, "Address must be a non-empty string")

    if not ADDRESS_CHARS_RE.fullmatch(address):
        return AddressValidation(
            False,
            "Address contains invalid characters. Use only letters, numbers, underscores, dots, and hash.",
        )

    ltree_path, sep, json_path = address.partition("#")
    json_keys = json_path.split(".") if sep else []

    if not LTREE_PATH_RE.fullmatch(ltree_path):
        return AddressValidation(
            False, "Invalid ltree path format. Each segment must start with letter/underscore."
        )

    for key in json_keys:
        if not key or not IDENTIFIER_RE.fullmatch(key):
            return AddressValidation(
                False, f"Invalid JSON key: {key}. Keys must be valid identifiers."
            )

    return AddressValidation(True, parsed=ParsedAddress(ltree_path, json_keys))


def parse_hybrid(address: str) -> ParsedAddress:
    result = validate_address(address)
    if not result.is_valid or result.parsed is None:
        raise AddressError(result.error or "Invalid address", address=address)
    return result.parsed


# =============================================================================
# Instance helpers
# =============================================================================


def append_instance(address: str, n: int) -> str:
    node_addr, subpath = parse(address)
    return join(node_addr, f"{subpath}.instances.{i_token(n)}")


def replace_last_instance(address: str, n: int) -> str:
    """Replace the last ``.iK`` segment with ``.iN`` (used when reindexing)."""
    node_addr, subpath = parse(address)
    matches = list(_LAST_INSTANCE_RE.finditer(subpath))
    if not matches:
        raise AddressError(f'No .iN segment found in address "{address}" to replace.', address=address)
    last = matches[-1]
    replaced = f"{subpath[:last.start()]}.{i_token(n)}{subpath[last.end():]}"
    return join(node_addr, replaced)


# =============================================================================
# Builders
# =============================================================================


class NodeAddrPath:
    @staticmethod
    def content(addr: str) -> str:
        return join(addr, "content")

    @staticmethod
    def validation_status(addr: str) -> str:
        return join(addr, "validation_status")

    @staticmethod
    def generation_status(addr: str) -> str:
        return join(addr, "generation_status")


class FormAddr:
    """Form fields and sections; ``n`` is always a 1-based instance number."""

    @staticmethod
    def field_root(addr: str, field_ref: str) -> str:
        assert_label(field_ref, "fieldRef")
        return join(addr, f"content.items.{field_ref}")

    @staticmethod
    def field_value(addr: str, field_ref: str) -> str:
        assert_label(field_ref, "fieldRef")
        return join(addr, f"content.items.{field_ref}.value")

    @staticmethod
    def field_instance_root(addr: str, field_ref: str, n: int) -> str:
        assert_label(field_ref, "fieldRef")
        return join(addr, f"content.items.{field_ref}.instances.{i_token(n)}")

    @staticmethod
    def field_instance_value(addr: str, field_ref: str, n: int) -> str:
        assert_label(field_ref, "fieldRef")
        return join(addr, f"content.items.{field_ref}.instances.{i_token(n)}.value")

    @staticmethod
    def section_root(addr: str, section_path: str) -> str:
        assert_label(section_path, "sectionPath")
        return join(addr, f"content.items.{section_path}")

    @staticmethod
    def section_field_value(addr: str, section_path: str, field_ref: str) -> str:
        assert_label(section_path, "sectionPath")
        assert_label(field_ref, "fieldRef")
        return join(addr, f"content.items.{section_path}.children.{field_ref}.value")

    @staticmethod
    def section_instance_root(addr: str, section_path: str, n: int) -> str:
        assert_label(section_path, "sectionPath")
        return join(addr, f"content.items.{section_path}.instances.{i_token(n)}")

    @staticmethod
    def section_instance_field_value(addr: str, section_path: str, n: int, field_ref: str) -> str:
        assert_label(section_path, "sectionPath")
        assert_label(field_ref, "fieldRef")
        return join(
            addr,
            f"content.items.{section_path}.instances.{i_token(n)}.children.{field_ref}.value",
        )


class MediaAddr:
    @staticmethod
    def versions(addr: str) -> str:
        return join(addr, "content.versions")

    @staticmethod
    def version(addr: str, n: int) -> str:
        return join(addr, f"content.versions.{i_token(n)}")

    @staticmethod
    def version_item(addr: str, n: int) -> str:
        return join(addr, f"content.versions.{i_token(n)}.item")

    @staticmethod
    def selected_version_idx(addr: str) -> str:
        return join(addr, "content.selected_version_idx")


class GroupAddr:
    @staticmethod
    def children(addr: str) -> str:
        return join(addr, "content.children")

    @staticmethod
    def instance(addr: str, n: int) -> str:
        return join(addr, f"content.instances.{i_token(n)}")

    @staticmethod
    def instance_children(addr: str, n: int) -> str:
        return join(addr, f"content.instances.{i_token(n)}.children")


def field_value_addr(addr: str, field_ref: str, n: int | None = None) -> str:
    if n is not None:
        return FormAddr.field_instance_value(addr, field_ref, n)
    return FormAddr.field_value(addr, field_ref)


def section_field_value_addr(
    addr: str,
    section_path: str,
    field_ref: str,
    n: int | None = None,
) -> str:
    if n is not None:
        return FormAddr.section_instance_field_value(addr, section_path, n, field_ref)
    return FormAddr.section_field_value(addr, section_path, field_ref)

"""Shared ULID primitives for binary primary keys and string identifiers."""

from packages.governance_shared.ids.constants import ULID_DOMAIN_NAME
from packages.governance_shared.ids.sqlalchemy import (
    ULID_BYTES_LENGTH,
    ulid_column,
    ulid_primary_key_column,
)
from packages.governance_shared.ids.ulid import (
    generate_ulid_bytes,
    generate_ulid_str,
    is_ulid_str,
    ulid_bytes_to_str,
    ulid_str_to_bytes,
)

__all__ = [
    "ULID_BYTES_LENGTH",
    "ULID_DOMAIN_NAME",
    "generate_ulid_bytes",
    "generate_ulid_str",
    "is_ulid_str",
    "ulid_bytes_to_str",
    "ulid_column",
    "ulid_primary_key_column",
    "ulid_str_to_bytes",
]

"""SQLAlchemy helpers for ULID-backed key columns."""

from __future__ import annotations

from typing import Any

from sqlalchemy import CheckConstraint, Column, ForeignKey
from sqlalchemy.dialects.postgresql import BYTEA

ULID_BYTES_LENGTH = 16


def ulid_primary_key_column(name: str = "id") -> Column[bytes]:
    """Return a standard ULID primary-key column definition.

    Uses PostgreSQL BYTEA with a strict 16-byte check constraint to represent
    canonical 128-bit ULIDs generated in application code.
    """
    return Column(
        name,
        BYTEA,
        ulid_length_check(name, f"ck_{name}_ulid_16"),
        primary_key=True,
        nullable=False,
    )


def ulid_column(
    name: str,
    *,
    foreign_key: str | None = None,
    nullable: bool = False,
    **kwargs: Any,
) -> Column[bytes]:
    """Return a ULID reference column, optionally bound to one foreign key."""
    args: list[Any] = []
    if foreign_key is not None:
        args.append(ForeignKey(foreign_key, ondelete="RESTRICT"))
    return Column(name, BYTEA, *args, nullable=nullable, **kwargs)


def ulid_length_check(column_name: str, constraint_name: str) -> CheckConstraint:
    """Return a CHECK constraint enforcing fixed 16-byte ULID storage."""
    return CheckConstraint(
        f"octet_length({column_name}) = {ULID_BYTES_LENGTH}",
        name=constraint_name,
    )

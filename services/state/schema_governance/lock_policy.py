"""Lock policy decisions over schema versions and proposed change types."""

from __future__ import annotations

from services.state.schema_governance.domain import (
    ApprovalStatus,
    ChangeType,
    SchemaLockType,
    SchemaVersion,
    is_destructive,
)
from services.state.schema_governance.errors import InvalidTransition, SchemaLocked


def permits(lock_type: SchemaLockType, change_type: ChangeType) -> bool:
    """Return whether ``lock_type`` allows a change of ``change_type``.

    Soft locks are advisory and never block here; they only disable
    downstream auto-suggestion flows.
    """
    if lock_type == SchemaLockType.HARD_LOCK:
        return False
    if lock_type == SchemaLockType.ADDITIVE_ONLY:
        return not is_destructive(change_type)
    return True


def ensure_permits(version: SchemaVersion, change_type: ChangeType) -> None:
    """Raise ``SchemaLocked`` when the version's lock blocks ``change_type``."""
    if permits(version.lock_type, change_type):
        return
    if version.lock_type == SchemaLockType.HARD_LOCK:
        message = "schema version is hard-locked"
    else:
        message = "schema version only allows additive changes"
    raise SchemaLocked(
        version.id,
        lock_type=version.lock_type.value,
        change_type=change_type.value,
        message=message,
    )


def ensure_lock_mutable(version: SchemaVersion, *, operation: str) -> None:
    """Require an applied version before any lock change."""
    if version.status != ApprovalStatus.APPLIED:
        raise InvalidTransition(
            "locks can only change on an applied schema version",
            entity_type="schema_version",
            entity_id=version.id,
            current_status=version.status.value,
            operation=operation,
        )


def suggestions_enabled(version: SchemaVersion) -> bool:
    """Return whether auto-suggestion flows may target this version."""
    return version.lock_type == SchemaLockType.NONE

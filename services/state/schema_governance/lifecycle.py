"""Schema version lifecycle state machine.

Versions move strictly one step at a time:
``pending -> submitted -> technical_approved -> business_approved ->
fully_approved -> applied -> rolled_back``, with ``rejected`` reachable from
every state before ``applied``. Each transition returns a new model with the
revision incremented; nothing here touches storage.
"""

from __future__ import annotations

from datetime import datetime

from services.state.schema_governance import lock_policy
from services.state.schema_governance.domain import (
    INITIAL_VERSION,
    Actor,
    ApprovalLayer,
    ApprovalStatus,
    SchemaLockType,
    SchemaVersion,
    SemanticVersion,
)
from services.state.schema_governance.errors import (
    GovernanceValidationError,
    InvalidTransition,
    SchemaLocked,
)

_APPROVAL_STEPS: dict[ApprovalLayer, tuple[ApprovalStatus, ApprovalStatus]] = {
    ApprovalLayer.TECHNICAL: (
        ApprovalStatus.SUBMITTED,
        ApprovalStatus.TECHNICAL_APPROVED,
    ),
    ApprovalLayer.BUSINESS: (
        ApprovalStatus.TECHNICAL_APPROVED,
        ApprovalStatus.BUSINESS_APPROVED,
    ),
    ApprovalLayer.DATA_GOVERNANCE: (
        ApprovalStatus.BUSINESS_APPROVED,
        ApprovalStatus.FULLY_APPROVED,
    ),
}

_REJECTABLE = frozenset(
    {
        ApprovalStatus.PENDING,
        ApprovalStatus.SUBMITTED,
        ApprovalStatus.TECHNICAL_APPROVED,
        ApprovalStatus.BUSINESS_APPROVED,
        ApprovalStatus.FULLY_APPROVED,
        ApprovalStatus.REJECTED,
    }
)


def new_version(
    *,
    version_id: str,
    data_source_id: str,
    number: SemanticVersion,
    schema_definition: str,
    orm_mappings: str,
    migration_script: str,
    rollback_script: str,
    change_description: str,
    parent: SchemaVersion | None,
    actor: Actor,
    at: datetime,
) -> SchemaVersion:
    """Build one pending version chained to an optional parent."""
    if parent is not None:
        if parent.data_source_id != data_source_id:
            raise GovernanceValidationError(
                "parent version belongs to a different data source",
                field="parent_version_id",
                entity_type="schema_version",
                entity_id=parent.id,
            )
        if parent.is_fully_locked:
            raise SchemaLocked(
                parent.id,
                lock_type=parent.lock_type.value,
                message="parent schema version is hard-locked",
            )
    return SchemaVersion(
        id=version_id,
        data_source_id=data_source_id,
        version=number,
        schema_definition=schema_definition,
        orm_mappings=orm_mappings,
        migration_script=migration_script,
        rollback_script=rollback_script,
        change_description=change_description,
        parent_version_id=None if parent is None else parent.id,
        created_at=at,
        created_by=actor.actor_id,
    )


def next_version_number(latest: SemanticVersion | None) -> SemanticVersion:
    """Return ``1.0.0`` for a new chain, else the latest with patch + 1."""
    if latest is None:
        return INITIAL_VERSION
    return latest.next_patch()


def submit(version: SchemaVersion, *, actor: Actor, at: datetime) -> SchemaVersion:
    """Move a pending version into review."""
    _require(version, ApprovalStatus.PENDING, operation="submit")
    return _advance(version, actor=actor, at=at, status=ApprovalStatus.SUBMITTED)


def approve(
    version: SchemaVersion,
    *,
    layer: ApprovalLayer,
    actor: Actor,
    at: datetime,
) -> SchemaVersion:
    """Record one layer's approval, only from the exact preceding state."""
    required, target = _APPROVAL_STEPS[layer]
    _require(version, required, operation=f"approve_{layer.value}")
    return _advance(version, actor=actor, at=at, status=target)


def reject(version: SchemaVersion, *, actor: Actor, at: datetime) -> SchemaVersion:
    """Reject a version that has not been applied yet."""
    if version.status not in _REJECTABLE:
        raise _invalid(version, operation="reject")
    return _advance(version, actor=actor, at=at, status=ApprovalStatus.REJECTED)


def mark_applied(version: SchemaVersion, *, actor: Actor, at: datetime) -> SchemaVersion:
    """Apply a fully approved version."""
    _require(version, ApprovalStatus.FULLY_APPROVED, operation="apply")
    return _advance(
        version,
        actor=actor,
        at=at,
        status=ApprovalStatus.APPLIED,
        applied_at=at,
        applied_by=actor.actor_id,
    )


def mark_rolled_back(
    version: SchemaVersion, *, actor: Actor, at: datetime
) -> SchemaVersion:
    """Roll back an applied version."""
    _require(version, ApprovalStatus.APPLIED, operation="rollback")
    return _advance(
        version,
        actor=actor,
        at=at,
        status=ApprovalStatus.ROLLED_BACK,
        rolled_back_at=at,
        rolled_back_by=actor.actor_id,
    )


def apply_lock(
    version: SchemaVersion,
    *,
    lock_type: SchemaLockType,
    actor: Actor,
    at: datetime,
) -> SchemaVersion:
    """Attach a lock policy to an applied version."""
    lock_policy.ensure_lock_mutable(version, operation="apply_lock")
    return _advance(version, actor=actor, at=at, lock_type=lock_type)


def remove_lock(version: SchemaVersion, *, actor: Actor, at: datetime) -> SchemaVersion:
    """Clear the lock on an applied version; no approval layer is involved."""
    lock_policy.ensure_lock_mutable(version, operation="remove_lock")
    return _advance(version, actor=actor, at=at, lock_type=SchemaLockType.NONE)


def _require(version: SchemaVersion, status: ApprovalStatus, *, operation: str) -> None:
    if version.status != status:
        raise _invalid(version, operation=operation, expected=status)


def _invalid(
    version: SchemaVersion,
    *,
    operation: str,
    expected: ApprovalStatus | None = None,
) -> InvalidTransition:
    message = f"cannot {operation} schema version in status {version.status.value}"
    if expected is not None:
        message = f"{message}; requires {expected.value}"
    return InvalidTransition(
        message,
        entity_type="schema_version",
        entity_id=version.id,
        current_status=version.status.value,
        operation=operation,
    )


def _advance(
    version: SchemaVersion, *, actor: Actor, at: datetime, **changes: object
) -> SchemaVersion:
    return version.model_copy(
        update={
            **changes,
            "updated_at": at,
            "updated_by": actor.actor_id,
            "revision": version.revision + 1,
        }
    )

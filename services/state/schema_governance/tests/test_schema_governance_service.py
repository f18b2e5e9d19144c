"""Behavior tests for Schema Governance Service over the in-memory store."""

from __future__ import annotations

import threading

import pytest

from packages.governance_shared.envelope import EnvelopeKind, new_meta
from services.state.schema_governance.config import SchemaGovernanceSettings
from services.state.schema_governance.data import InMemoryGovernanceStore
from services.state.schema_governance.domain import (
    Actor,
    ApprovalLayer,
    ApprovalStatus,
    AuditAction,
    ChangeType,
    DataSourceType,
    EntityType,
    ReviewOutcome,
    SchemaLockType,
    SchemaVersion,
    SemanticVersion,
)
from services.state.schema_governance.errors import DuplicateVersion, TransactionFailure
from services.state.schema_governance.implementation import (
    DefaultSchemaGovernanceService,
)
from services.state.schema_governance.transactions import CancellationToken

_JUSTIFICATION = (
    "Fulfilment reporting needs the carrier code on every order row before launch."
)
_ALICE = Actor(actor_id="alice", name="Alice Example")
_BOB = Actor(actor_id="bob", name="Bob Example")
_ALL_LAYERS = (
    ApprovalLayer.TECHNICAL,
    ApprovalLayer.BUSINESS,
    ApprovalLayer.DATA_GOVERNANCE,
)


def _meta() -> object:
    """Return valid envelope metadata for governance test requests."""
    return new_meta(kind=EnvelopeKind.COMMAND, source="test", principal="operator")


def _service(
    settings: SchemaGovernanceSettings | None = None,
) -> tuple[DefaultSchemaGovernanceService, InMemoryGovernanceStore]:
    """Build deterministic governance service with in-memory storage."""
    store = InMemoryGovernanceStore()
    service = DefaultSchemaGovernanceService(
        settings=settings or SchemaGovernanceSettings(),
        store=store,
    )
    return service, store


def _register(service: DefaultSchemaGovernanceService, name: str = "Orders-DB") -> str:
    result = service.register_data_source(
        meta=_meta(),
        name=name,
        source_type=DataSourceType.SQL_SERVER,
        actor=_ALICE,
        description="Order management database",
    )
    assert result.ok is True, result.errors
    return result.value.id


def _create_version(service: DefaultSchemaGovernanceService, data_source_id: str, **kwargs):
    result = service.create_schema_version(
        meta=_meta(),
        data_source_id=data_source_id,
        schema_definition="CREATE TABLE orders (id INT PRIMARY KEY);",
        orm_mappings="Order -> orders",
        migration_script="-- up",
        rollback_script="-- down",
        actor=_ALICE,
        **kwargs,
    )
    assert result.ok is True, result.errors
    return result.value


def _applied_version(service: DefaultSchemaGovernanceService, data_source_id: str):
    version = _create_version(service, data_source_id)
    assert service.submit_schema_version(
        meta=_meta(), schema_version_id=version.id, actor=_ALICE
    ).ok
    for layer in _ALL_LAYERS:
        assert service.approve_schema_version(
            meta=_meta(), schema_version_id=version.id, layer=layer, actor=_BOB
        ).ok
    applied = service.apply_schema_version(
        meta=_meta(), schema_version_id=version.id, actor=_ALICE
    )
    assert applied.ok is True, applied.errors
    return applied.value


def _approved_change_request(
    service: DefaultSchemaGovernanceService,
    schema_version_id: str,
    change_type: ChangeType = ChangeType.ADD_COLUMN,
):
    created = service.create_change_request(
        meta=_meta(),
        schema_version_id=schema_version_id,
        change_type=change_type,
        change_details="ALTER TABLE orders ADD carrier_code VARCHAR(8) NULL;",
        description="Add carrier code to orders",
        actor=_ALICE,
    )
    assert created.ok is True, created.errors
    request_id = created.value.id
    assert service.submit_change_request(
        meta=_meta(),
        change_request_id=request_id,
        actor=_ALICE,
        justification=_JUSTIFICATION,
    ).ok
    for layer in (ApprovalLayer.DATA_GOVERNANCE, ApprovalLayer.TECHNICAL, ApprovalLayer.BUSINESS):
        decision = service.approve_change_request(
            meta=_meta(),
            change_request_id=request_id,
            layer=layer,
            is_approved=True,
            actor=_BOB,
        )
        assert decision.ok is True, decision.errors
    assert decision.value.status == ApprovalStatus.FULLY_APPROVED
    return decision.value


def test_register_data_source_rejects_duplicate_name() -> None:
    """Data source names should be unique across the registry."""
    service, _store = _service()
    _register(service)

    duplicate = service.register_data_source(
        meta=_meta(),
        name="Orders-DB",
        source_type=DataSourceType.POSTGRESQL,
        actor=_ALICE,
    )

    assert duplicate.ok is False
    assert duplicate.codes == ["ALREADY_EXISTS"]
    assert duplicate.errors[0].category.value == "conflict"


def test_get_data_source_by_name_and_missing_id() -> None:
    """Lookups should resolve by name and map unknown ids to not-found."""
    service, _store = _service()
    data_source_id = _register(service)

    by_name = service.get_data_source_by_name(meta=_meta(), name="Orders-DB")
    missing = service.get_data_source(
        meta=_meta(), data_source_id="01ARZ3NDEKTSV4RRFFQ69G5FAV"
    )

    assert by_name.ok is True
    assert by_name.value.id == data_source_id
    assert missing.ok is False
    assert missing.codes == ["ENTITY_NOT_FOUND"]
    assert missing.errors[0].category.value == "not_found"


def test_invalid_identifier_maps_to_validation_error() -> None:
    """Malformed ids should fail request validation before storage access."""
    service, _store = _service()

    result = service.get_schema_version(meta=_meta(), schema_version_id="not-a-ulid")

    assert result.ok is False
    assert result.codes == ["INVALID_ARGUMENT"]
    assert result.errors[0].metadata["field"] == "schema_version_id"


def test_unspecified_envelope_kind_is_rejected() -> None:
    """Envelope metadata must carry a concrete kind."""
    service, _store = _service()
    meta = new_meta(kind=EnvelopeKind.UNSPECIFIED, source="test", principal="operator")

    result = service.list_data_sources(meta=meta)

    assert result.ok is False
    assert result.errors[0].category.value == "validation"


def test_create_schema_version_auto_numbers_from_latest() -> None:
    """Versions without explicit numbers should start at 1.0.0 then bump patch."""
    service, _store = _service()
    data_source_id = _register(service)

    first = _create_version(service, data_source_id)
    second = _create_version(service, data_source_id)
    explicit = _create_version(service, data_source_id, major=2, minor=0, patch=0)
    third = _create_version(service, data_source_id)

    assert first.version == SemanticVersion(major=1, minor=0, patch=0)
    assert second.version == SemanticVersion(major=1, minor=0, patch=1)
    assert explicit.version_string == "2.0.0"
    assert third.version_string == "2.0.1"
    assert first.status == ApprovalStatus.PENDING


def test_create_schema_version_rejects_duplicate_number() -> None:
    """Version numbers should be unique per data source."""
    service, _store = _service()
    data_source_id = _register(service)
    _create_version(service, data_source_id, major=1, minor=2, patch=3)

    duplicate = service.create_schema_version(
        meta=_meta(),
        data_source_id=data_source_id,
        schema_definition="x",
        orm_mappings="x",
        migration_script="x",
        rollback_script="x",
        actor=_ALICE,
        major=1,
        minor=2,
        patch=3,
    )

    assert duplicate.ok is False
    assert duplicate.codes == ["DUPLICATE_VERSION"]


def test_create_schema_version_requires_all_numbers_together() -> None:
    """Partial version numbers should fail validation."""
    service, _store = _service()
    data_source_id = _register(service)

    result = service.create_schema_version(
        meta=_meta(),
        data_source_id=data_source_id,
        schema_definition="x",
        orm_mappings="x",
        migration_script="x",
        rollback_script="x",
        actor=_ALICE,
        major=1,
    )

    assert result.ok is False
    assert result.codes == ["INVALID_ARGUMENT"]


def test_create_schema_version_for_unknown_data_source_is_not_found() -> None:
    """Versions must reference a registered data source."""
    service, _store = _service()

    result = service.create_schema_version(
        meta=_meta(),
        data_source_id="01ARZ3NDEKTSV4RRFFQ69G5FAV",
        schema_definition="x",
        orm_mappings="x",
        migration_script="x",
        rollback_script="x",
        actor=_ALICE,
    )

    assert result.ok is False
    assert result.codes == ["ENTITY_NOT_FOUND"]


def test_out_of_order_version_approval_leaves_state_unchanged() -> None:
    """Skipping an approval layer should fail without mutating the version."""
    service, _store = _service()
    data_source_id = _register(service)
    version = _create_version(service, data_source_id)
    submitted = service.submit_schema_version(
        meta=_meta(), schema_version_id=version.id, actor=_ALICE
    )

    skipped = service.approve_schema_version(
        meta=_meta(),
        schema_version_id=version.id,
        layer=ApprovalLayer.BUSINESS,
        actor=_BOB,
    )
    current = service.get_schema_version(meta=_meta(), schema_version_id=version.id)

    assert skipped.ok is False
    assert skipped.codes == ["INVALID_TRANSITION"]
    assert skipped.errors[0].metadata["current_status"] == "submitted"
    assert current.value.status == ApprovalStatus.SUBMITTED
    assert current.value.revision == submitted.value.revision


def test_rejected_transition_is_audited_as_operation_rejected() -> None:
    """Business rejections on existing entities should leave an audit trace."""
    service, _store = _service()
    data_source_id = _register(service)
    version = _create_version(service, data_source_id)

    applied = service.apply_schema_version(
        meta=_meta(), schema_version_id=version.id, actor=_BOB
    )
    trail = service.list_entity_audit(
        meta=_meta(),
        entity_type=EntityType.SCHEMA_VERSION,
        entity_id=version.id,
    )

    assert applied.codes == ["INVALID_TRANSITION"]
    assert trail.ok is True
    assert trail.value[0].action == AuditAction.OPERATION_REJECTED
    assert trail.value[0].actor_id == "bob"
    assert trail.value[-1].action == AuditAction.CREATE


def test_version_reject_is_repeatable_until_applied() -> None:
    """Rejecting an already rejected version should succeed and bump the revision."""
    service, _store = _service()
    data_source_id = _register(service)
    version = _create_version(service, data_source_id)

    first = service.reject_schema_version(
        meta=_meta(),
        schema_version_id=version.id,
        actor=_BOB,
        reason="Superseded by a different design",
    )
    second = service.reject_schema_version(
        meta=_meta(), schema_version_id=version.id, actor=_BOB
    )

    assert first.ok is True
    assert first.value.status == ApprovalStatus.REJECTED
    assert second.ok is True, second.errors
    assert second.value.status == ApprovalStatus.REJECTED
    assert second.value.revision == first.value.revision + 1


def test_apply_stamps_data_source_and_correlates_audit() -> None:
    """Applying a version should validate its data source in the same transaction."""
    service, _store = _service()
    data_source_id = _register(service)

    applied = _applied_version(service, data_source_id)
    data_source = service.get_data_source(meta=_meta(), data_source_id=data_source_id)
    latest = service.get_latest_applied_version(meta=_meta(), data_source_id=data_source_id)
    applied_entries = service.query_audit_log(
        meta=_meta(), action=AuditAction.SCHEMA_CHANGE_APPLIED
    )
    correlation_id = applied_entries.value.items[0].correlation_id
    correlated = service.list_correlated_audit(meta=_meta(), correlation_id=correlation_id)

    assert applied.status == ApprovalStatus.APPLIED
    assert applied.applied_by == "alice"
    assert data_source.value.last_validated_at == applied.applied_at
    assert latest.value.id == applied.id
    assert correlation_id is not None
    assert {item.entity_type for item in correlated.value} == {
        EntityType.SCHEMA_VERSION,
        EntityType.DATA_SOURCE,
    }


def test_rollback_requires_applied_version() -> None:
    """Rollback should only be legal from applied."""
    service, _store = _service()
    data_source_id = _register(service)
    pending = _create_version(service, data_source_id)
    applied = _applied_version(service, data_source_id)

    refused = service.rollback_schema_version(
        meta=_meta(), schema_version_id=pending.id, actor=_ALICE
    )
    rolled_back = service.rollback_schema_version(
        meta=_meta(),
        schema_version_id=applied.id,
        actor=_ALICE,
        reason="Deployment regression",
    )

    assert refused.codes == ["INVALID_TRANSITION"]
    assert rolled_back.ok is True
    assert rolled_back.value.status == ApprovalStatus.ROLLED_BACK
    assert rolled_back.value.rolled_back_by == "alice"


def test_apply_fault_rolls_back_and_raises_transaction_failure(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Unexpected faults in apply should roll back every write and escape typed."""
    service, store = _service()
    data_source_id = _register(service)
    version = _create_version(service, data_source_id)
    service.submit_schema_version(meta=_meta(), schema_version_id=version.id, actor=_ALICE)
    for layer in _ALL_LAYERS:
        service.approve_schema_version(
            meta=_meta(), schema_version_id=version.id, layer=layer, actor=_BOB
        )

    def _explode(**_kwargs: object) -> None:
        raise RuntimeError("disk full")

    with store.begin() as repos:
        registry = repos.data_sources
    monkeypatch.setattr(registry, "record_validation", _explode)

    with pytest.raises(TransactionFailure) as raised:
        service.apply_schema_version(
            meta=_meta(), schema_version_id=version.id, actor=_ALICE
        )

    current = service.get_schema_version(meta=_meta(), schema_version_id=version.id)
    trail = service.list_entity_audit(
        meta=_meta(),
        entity_type=EntityType.SCHEMA_VERSION,
        entity_id=version.id,
    )
    assert raised.value.entity_id == version.id
    assert isinstance(raised.value.cause, RuntimeError)
    assert current.value.status == ApprovalStatus.FULLY_APPROVED
    assert trail.value[0].action == AuditAction.SCHEMA_CHANGE_APPLIED
    assert trail.value[0].note.startswith("Failed to apply schema version")


def test_cancelled_token_prevents_any_write() -> None:
    """A pre-cancelled token should fail fast without persisting."""
    service, _store = _service()
    data_source_id = _register(service)
    token = CancellationToken()
    token.cancel()

    result = _try_create(service, data_source_id, cancellation=token)
    listed = service.list_schema_versions(meta=_meta(), data_source_id=data_source_id)

    assert result.ok is False
    assert result.codes == ["OPERATION_CANCELLED"]
    assert listed.value == []


def test_cancellation_before_commit_rolls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    """Cancelling while work runs should roll the transaction back at commit."""
    service, store = _service()
    data_source_id = _register(service)
    token = CancellationToken()

    with store.begin() as repos:
        versions = repos.versions
    original_insert = versions.insert

    def _insert_then_cancel(**kwargs: object):
        stored = original_insert(**kwargs)
        token.cancel()
        return stored

    monkeypatch.setattr(versions, "insert", _insert_then_cancel)

    result = _try_create(service, data_source_id, cancellation=token)
    listed = service.list_schema_versions(meta=_meta(), data_source_id=data_source_id)

    assert result.codes == ["OPERATION_CANCELLED"]
    assert listed.value == []


def _try_create(service: DefaultSchemaGovernanceService, data_source_id: str, **kwargs):
    return service.create_schema_version(
        meta=_meta(),
        data_source_id=data_source_id,
        schema_definition="x",
        orm_mappings="x",
        migration_script="x",
        rollback_script="x",
        actor=_ALICE,
        **kwargs,
    )


def test_lock_requires_applied_version() -> None:
    """Locks should only attach to applied versions."""
    service, _store = _service()
    data_source_id = _register(service)
    pending = _create_version(service, data_source_id)

    result = service.apply_schema_lock(
        meta=_meta(),
        schema_version_id=pending.id,
        lock_type=SchemaLockType.HARD_LOCK,
        actor=_ALICE,
    )

    assert result.codes == ["INVALID_TRANSITION"]


def test_lock_apply_and_removal_are_audited_with_snapshots() -> None:
    """Lock changes write ledger entries carrying before and after lock types."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)

    locked = service.apply_schema_lock(
        meta=_meta(),
        schema_version_id=v1.id,
        lock_type=SchemaLockType.HARD_LOCK,
        actor=_ALICE,
    )
    unlocked = service.remove_schema_lock(
        meta=_meta(), schema_version_id=v1.id, actor=_BOB
    )
    trail = service.list_entity_audit(
        meta=_meta(),
        entity_type=EntityType.SCHEMA_VERSION,
        entity_id=v1.id,
    )
    by_action = {item.action: item for item in trail.value}

    assert locked.ok is True, locked.errors
    assert unlocked.value.lock_type == SchemaLockType.NONE
    applied_entry = by_action[AuditAction.SCHEMA_LOCK_APPLIED]
    removed_entry = by_action[AuditAction.SCHEMA_LOCK_REMOVED]
    assert applied_entry.actor_id == "alice"
    assert removed_entry.actor_id == "bob"
    assert SchemaVersion.model_validate_json(applied_entry.state_before).lock_type == (
        SchemaLockType.NONE
    )
    assert SchemaVersion.model_validate_json(applied_entry.state_after).lock_type == (
        SchemaLockType.HARD_LOCK
    )
    assert SchemaVersion.model_validate_json(removed_entry.state_before).lock_type == (
        SchemaLockType.HARD_LOCK
    )
    assert SchemaVersion.model_validate_json(removed_entry.state_after).lock_type == (
        SchemaLockType.NONE
    )


def test_orders_db_additive_only_scenario() -> None:
    """Additive-only lock should block destructive changes and allow additive ones."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    locked = service.apply_schema_lock(
        meta=_meta(),
        schema_version_id=v1.id,
        lock_type=SchemaLockType.ADDITIVE_ONLY,
        actor=_ALICE,
    )
    assert locked.ok is True

    blocked = service.create_change_request(
        meta=_meta(),
        schema_version_id=v1.id,
        change_type=ChangeType.REMOVE_COLUMN,
        change_details="ALTER TABLE orders DROP COLUMN legacy_flag;",
        description="Drop legacy flag",
        actor=_ALICE,
    )
    assert blocked.ok is False
    assert blocked.codes == ["SCHEMA_LOCKED"]
    assert blocked.errors[0].category.value == "policy"
    assert blocked.errors[0].metadata["lock_type"] == "additive_only"

    request = _approved_change_request(service, v1.id)
    applied = service.apply_change_request(
        meta=_meta(), change_request_id=request.id, actor=_ALICE
    )

    assert applied.ok is True, applied.errors
    new_version = applied.value.new_version
    assert applied.value.change_request.status == ApprovalStatus.APPLIED
    assert applied.value.change_request.applied_version_id == new_version.id
    assert new_version.version_string == "1.0.1"
    assert new_version.parent_version_id == v1.id
    assert new_version.status == ApprovalStatus.PENDING
    assert new_version.change_description == "Applied change: Add carrier code to orders"
    assert new_version.schema_definition == v1.schema_definition

    correlated = service.query_audit_log(
        meta=_meta(),
        entity_type=EntityType.CHANGE_REQUEST,
        entity_id=request.id,
        action=AuditAction.SCHEMA_CHANGE_APPLIED,
    )
    correlation_id = correlated.value.items[0].correlation_id
    group = service.list_correlated_audit(meta=_meta(), correlation_id=correlation_id)
    assert {item.action for item in group.value} == {
        AuditAction.CREATE,
        AuditAction.SCHEMA_CHANGE_APPLIED,
    }


def test_hard_lock_blocks_every_change_type() -> None:
    """Hard-locked versions should refuse every change request."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    service.apply_schema_lock(
        meta=_meta(),
        schema_version_id=v1.id,
        lock_type=SchemaLockType.HARD_LOCK,
        actor=_ALICE,
    )

    result = service.create_change_request(
        meta=_meta(),
        schema_version_id=v1.id,
        change_type=ChangeType.ADD_INDEX,
        change_details="CREATE INDEX ix ON orders(id);",
        description="Index orders",
        actor=_ALICE,
    )
    unlocked = service.remove_schema_lock(
        meta=_meta(), schema_version_id=v1.id, actor=_ALICE
    )

    assert result.codes == ["SCHEMA_LOCKED"]
    assert unlocked.value.lock_type == SchemaLockType.NONE


def test_submit_change_request_requires_justification() -> None:
    """Submission without a justification should fail validation."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    created = service.create_change_request(
        meta=_meta(),
        schema_version_id=v1.id,
        change_type=ChangeType.ADD_TABLE,
        change_details="CREATE TABLE shipments (id INT);",
        description="Add shipments",
        actor=_ALICE,
    )

    missing = service.submit_change_request(
        meta=_meta(), change_request_id=created.value.id, actor=_ALICE
    )
    short = service.submit_change_request(
        meta=_meta(),
        change_request_id=created.value.id,
        actor=_ALICE,
        justification="too short",
    )

    assert missing.codes == ["INVALID_ARGUMENT"]
    assert missing.errors[0].metadata["field"] == "justification"
    assert short.codes == ["INVALID_ARGUMENT"]


def test_change_request_rejection_and_duplicate_layer() -> None:
    """One rejecting layer should reject the request; layers decide only once."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    created = service.create_change_request(
        meta=_meta(),
        schema_version_id=v1.id,
        change_type=ChangeType.ADD_TABLE,
        change_details="CREATE TABLE shipments (id INT);",
        description="Add shipments",
        actor=_ALICE,
        justification=_JUSTIFICATION,
    )
    request_id = created.value.id
    service.submit_change_request(meta=_meta(), change_request_id=request_id, actor=_ALICE)

    technical = service.approve_change_request(
        meta=_meta(),
        change_request_id=request_id,
        layer=ApprovalLayer.TECHNICAL,
        is_approved=True,
        actor=_BOB,
    )
    duplicate = service.approve_change_request(
        meta=_meta(),
        change_request_id=request_id,
        layer=ApprovalLayer.TECHNICAL,
        is_approved=True,
        actor=_BOB,
    )
    rejected = service.approve_change_request(
        meta=_meta(),
        change_request_id=request_id,
        layer=ApprovalLayer.BUSINESS,
        is_approved=False,
        actor=_BOB,
        comments="Not this quarter",
    )
    pending = service.list_pending_approvals(meta=_meta())

    assert technical.value.status == ApprovalStatus.TECHNICAL_APPROVED
    assert duplicate.codes == ["DUPLICATE_APPROVAL"]
    assert rejected.value.status == ApprovalStatus.REJECTED
    assert len(rejected.value.approvals) == 2
    assert pending.value == []


def test_apply_change_request_requires_full_approval() -> None:
    """Applying before every layer approved should fail and create nothing."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    created = service.create_change_request(
        meta=_meta(),
        schema_version_id=v1.id,
        change_type=ChangeType.ADD_TABLE,
        change_details="CREATE TABLE shipments (id INT);",
        description="Add shipments",
        actor=_ALICE,
    )

    result = service.apply_change_request(
        meta=_meta(), change_request_id=created.value.id, actor=_ALICE
    )
    versions = service.list_schema_versions(meta=_meta(), data_source_id=data_source_id)

    assert result.codes == ["INVALID_TRANSITION"]
    assert len(versions.value) == 1


def test_lock_added_after_approval_blocks_apply() -> None:
    """The lock policy should be checked again at apply time."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    request = _approved_change_request(service, v1.id, change_type=ChangeType.MODIFY_COLUMN)
    service.apply_schema_lock(
        meta=_meta(),
        schema_version_id=v1.id,
        lock_type=SchemaLockType.ADDITIVE_ONLY,
        actor=_ALICE,
    )

    result = service.apply_change_request(
        meta=_meta(), change_request_id=request.id, actor=_ALICE
    )
    current = service.get_change_request(meta=_meta(), change_request_id=request.id)

    assert result.codes == ["SCHEMA_LOCKED"]
    assert current.value.status == ApprovalStatus.FULLY_APPROVED


def test_double_apply_with_stale_revision_creates_one_version() -> None:
    """Two applies holding the same revision should yield exactly one version."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    request = _approved_change_request(service, v1.id)

    first = service.apply_change_request(
        meta=_meta(),
        change_request_id=request.id,
        actor=_ALICE,
        expected_revision=request.revision,
    )
    second = service.apply_change_request(
        meta=_meta(),
        change_request_id=request.id,
        actor=_BOB,
        expected_revision=request.revision,
    )
    versions = service.list_schema_versions(meta=_meta(), data_source_id=data_source_id)

    assert first.ok is True
    assert second.codes == ["CONCURRENCY_CONFLICT"]
    assert second.errors[0].retryable is True
    assert len(versions.value) == 2


def test_concurrent_double_apply_creates_one_version() -> None:
    """Racing applies from two threads should produce one success and one conflict."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    request = _approved_change_request(service, v1.id)
    barrier = threading.Barrier(2)
    outcomes: list[object] = []
    lock = threading.Lock()

    def _apply(actor: Actor) -> None:
        barrier.wait()
        result = service.apply_change_request(
            meta=_meta(),
            change_request_id=request.id,
            actor=actor,
            expected_revision=request.revision,
        )
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_apply, args=(actor,)) for actor in (_ALICE, _BOB)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    versions = service.list_schema_versions(meta=_meta(), data_source_id=data_source_id)
    assert sorted(tuple(item.codes) for item in outcomes) == [
        (),
        ("CONCURRENCY_CONFLICT",),
    ]
    assert len(versions.value) == 2


def test_apply_reports_taken_version_number_as_concurrency_conflict(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A successor number claimed by a racing writer should surface as a stale revision."""
    service, store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    request = _approved_change_request(service, v1.id)
    with store.begin() as repos:
        versions = repos.versions

    def taken(*, version):
        raise DuplicateVersion(version.data_source_id, version=str(version.version))

    monkeypatch.setattr(versions, "insert", taken)
    result = service.apply_change_request(
        meta=_meta(),
        change_request_id=request.id,
        actor=_BOB,
        expected_revision=request.revision,
    )
    monkeypatch.undo()

    current = service.get_change_request(meta=_meta(), change_request_id=request.id)
    trail = service.list_entity_audit(
        meta=_meta(),
        entity_type=EntityType.CHANGE_REQUEST,
        entity_id=request.id,
    )
    listed = service.list_schema_versions(meta=_meta(), data_source_id=data_source_id)

    assert result.codes == ["CONCURRENCY_CONFLICT"]
    assert result.errors[0].retryable is True
    assert current.value.status == ApprovalStatus.FULLY_APPROVED
    assert trail.value[0].action == AuditAction.OPERATION_REJECTED
    assert len(listed.value) == 1


def test_ai_suggestion_confidence_is_clamped() -> None:
    """Out-of-range confidence should be clamped into [0, 100]."""
    service, _store = _service()
    data_source_id = _register(service)

    high = service.create_ai_suggestion(
        meta=_meta(),
        data_source_id=data_source_id,
        suggested_change_type=ChangeType.ADD_INDEX,
        suggestion_details="CREATE INDEX ix_orders_created ON orders(created_at);",
        reasoning="Frequent range scans on created_at",
        confidence_score=150,
    )
    low = service.create_ai_suggestion(
        meta=_meta(),
        data_source_id=data_source_id,
        suggested_change_type=ChangeType.ADD_INDEX,
        suggestion_details="CREATE INDEX ix_orders_status ON orders(status);",
        reasoning="Occasional status filters",
        confidence_score=-10,
    )
    queue = service.list_unreviewed_suggestions(meta=_meta())

    assert high.value.confidence_score == 100.0
    assert low.value.confidence_score == 0.0
    assert [item.id for item in queue.value] == [high.value.id, low.value.id]

    trail = service.list_entity_audit(
        meta=_meta(),
        entity_type=EntityType.AI_SUGGESTION,
        entity_id=high.value.id,
    )
    assert trail.value[0].action == AuditAction.AI_SUGGESTION_GENERATED
    assert trail.value[0].actor_id == "ai-system"


def test_ai_suggestion_rejects_nan_confidence() -> None:
    """A NaN confidence is invalid input, never clamped to full confidence."""
    service, _store = _service()
    data_source_id = _register(service)

    result = service.create_ai_suggestion(
        meta=_meta(),
        data_source_id=data_source_id,
        suggested_change_type=ChangeType.REMOVE_COLUMN,
        suggestion_details="ALTER TABLE orders DROP COLUMN legacy_flag;",
        reasoning="Column never read",
        confidence_score=float("nan"),
    )
    queue = service.list_unreviewed_suggestions(meta=_meta())

    assert result.codes == ["INVALID_ARGUMENT"]
    assert queue.value == []


def test_accept_suggestion_drafts_linked_change_request() -> None:
    """Accepting a targeted suggestion should spawn a pending AI change request."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    suggestion = service.create_ai_suggestion(
        meta=_meta(),
        data_source_id=data_source_id,
        schema_version_id=v1.id,
        suggested_change_type=ChangeType.ADD_INDEX,
        suggestion_details="CREATE INDEX ix_orders_created ON orders(created_at);",
        reasoning="Frequent range scans on created_at",
        triggering_patterns=("slow_query", "range_scan"),
        confidence_score=72.5,
    ).value

    accepted = service.accept_ai_suggestion(
        meta=_meta(), suggestion_id=suggestion.id, actor=_BOB, comments="Looks right"
    )
    again = service.reject_ai_suggestion(
        meta=_meta(), suggestion_id=suggestion.id, actor=_BOB
    )

    assert accepted.ok is True, accepted.errors
    drafted = accepted.value.change_request
    assert accepted.value.suggestion.outcome == ReviewOutcome.ACCEPTED
    assert accepted.value.suggestion.change_request_id == drafted.id
    assert drafted.is_ai_suggested is True
    assert drafted.ai_confidence == 72.5
    assert drafted.status == ApprovalStatus.PENDING
    assert drafted.description == "[AI Suggested] Frequent range scans on created_at"
    assert drafted.requires_extra_approval is True
    assert "slow_query, range_scan" in drafted.impact_analysis
    assert again.codes == ["ALREADY_REVIEWED"]


def test_accept_suggestion_on_locked_version_records_acceptance_only() -> None:
    """A lock blocking the suggested change should not block the review itself."""
    service, _store = _service()
    data_source_id = _register(service)
    v1 = _applied_version(service, data_source_id)
    suggestion = service.create_ai_suggestion(
        meta=_meta(),
        data_source_id=data_source_id,
        schema_version_id=v1.id,
        suggested_change_type=ChangeType.REMOVE_INDEX,
        suggestion_details="DROP INDEX ix_unused;",
        reasoning="Index never used",
        confidence_score=95,
    ).value
    service.apply_schema_lock(
        meta=_meta(),
        schema_version_id=v1.id,
        lock_type=SchemaLockType.HARD_LOCK,
        actor=_ALICE,
    )

    accepted = service.accept_ai_suggestion(
        meta=_meta(), suggestion_id=suggestion.id, actor=_BOB
    )

    assert accepted.ok is True
    assert accepted.value.change_request is None
    assert accepted.value.suggestion.outcome == ReviewOutcome.ACCEPTED
    assert accepted.value.suggestion.change_request_id is None


def test_suggestion_version_must_belong_to_data_source() -> None:
    """A suggestion target version must belong to the suggestion's data source."""
    service, _store = _service()
    orders = _register(service)
    billing = _register(service, name="Billing-DB")
    v1 = _create_version(service, orders)

    result = service.create_ai_suggestion(
        meta=_meta(),
        data_source_id=billing,
        schema_version_id=v1.id,
        suggested_change_type=ChangeType.ADD_TABLE,
        suggestion_details="CREATE TABLE invoices (id INT);",
        reasoning="Missing table",
        confidence_score=50,
    )

    assert result.codes == ["INVALID_ARGUMENT"]
    assert result.errors[0].metadata["field"] == "schema_version_id"


def test_query_audit_log_pages_newest_first() -> None:
    """Audit queries should page results newest first with a total count."""
    service, _store = _service()
    for index in range(3):
        _register(service, name=f"source-{index}")

    first = service.query_audit_log(
        meta=_meta(), entity_type=EntityType.DATA_SOURCE, limit=2
    )
    second = service.query_audit_log(
        meta=_meta(), entity_type=EntityType.DATA_SOURCE, offset=2, limit=2
    )
    too_big = service.query_audit_log(meta=_meta(), limit=10_000)

    assert first.value.total == 3
    assert len(first.value.items) == 2
    assert len(second.value.items) == 1
    assert first.value.items[0].created_at >= first.value.items[1].created_at
    assert too_big.codes == ["INVALID_ARGUMENT"]


def test_entity_audit_requires_entity_id() -> None:
    """Entity trail listing should refuse a blank entity id."""
    service, _store = _service()

    result = service.list_entity_audit(
        meta=_meta(), entity_type=EntityType.SCHEMA_VERSION, entity_id=" "
    )

    assert result.codes == ["MISSING_REQUIRED_FIELD"]


def test_health_reports_store_ready() -> None:
    """Health should report readiness of the owned store."""
    service, _store = _service()

    result = service.health(meta=_meta())

    assert result.ok is True
    assert result.value.service_ready is True
    assert result.value.store_ready is True


def test_list_limit_is_capped_by_settings() -> None:
    """List limits above the configured maximum should fail validation."""
    service, _store = _service(SchemaGovernanceSettings(list_limit_default=5, list_limit_max=10))

    result = service.list_data_sources(meta=_meta(), limit=11)

    assert result.codes == ["INVALID_ARGUMENT"]
    assert result.errors[0].metadata["field"] == "limit"

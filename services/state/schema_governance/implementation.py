"""Concrete Schema Governance Service implementation."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from packages.governance_shared.config import GovernanceSettings
from packages.governance_shared.envelope import (
    Envelope,
    EnvelopeMeta,
    failure,
    success,
    validate_meta,
)
from packages.governance_shared.errors import (
    ErrorCategory,
    ErrorDetail,
    codes,
    dependency_error,
    validation_error,
)
from packages.governance_shared.ids import generate_ulid_str
from packages.governance_shared.logging import get_logger, public_api_instrumented
from resources.substrates.postgres.errors import (
    is_postgres_error,
    normalize_postgres_error,
)
from services.state.schema_governance import (
    lifecycle,
    lock_policy,
    suggestions,
    workflow,
)
from services.state.schema_governance.audit import AuditLedger, Outbox, audit_entry
from services.state.schema_governance.component import SERVICE_COMPONENT_ID
from services.state.schema_governance.config import (
    SchemaGovernanceSettings,
    resolve_schema_governance_settings,
)
from services.state.schema_governance.domain import (
    Actor,
    AiSuggestion,
    ApprovalLayer,
    AuditAction,
    AuditLogEntry,
    AuditPage,
    AuditQuery,
    ChangeApproval,
    ChangeRequest,
    ChangeRequestApplyResult,
    ChangeType,
    DataSource,
    DataSourceType,
    EntityType,
    HealthStatus,
    SchemaLockType,
    SchemaVersion,
    SemanticVersion,
    SuggestionReviewResult,
    utc_now,
)
from services.state.schema_governance.errors import (
    AlreadyReviewed,
    ConcurrencyConflict,
    DuplicateApproval,
    DuplicateVersion,
    EntityNotFound,
    GovernanceError,
    GovernanceValidationError,
    InvalidTransition,
    SchemaLocked,
    TransactionFailure,
)
from services.state.schema_governance.interfaces import (
    GovernanceRepositories,
    GovernanceStore,
)
from services.state.schema_governance.service import SchemaGovernanceService
from services.state.schema_governance.transactions import (
    CancellationToken,
    TransactionCoordinator,
)
from services.state.schema_governance.validation import (
    ApplySchemaLockRequest,
    ApproveChangeRequestRequest,
    ApproveSchemaVersionRequest,
    AuditQueryRequest,
    ChangeRequestIdRequest,
    ChangeRequestTransitionRequest,
    CreateAiSuggestionRequest,
    CreateChangeRequestRequest,
    CreateSchemaVersionRequest,
    DataSourceIdRequest,
    DataSourceNameRequest,
    LimitRequest,
    ListByDataSourceRequest,
    ListByVersionRequest,
    ListDataSourcesRequest,
    RegisterDataSourceRequest,
    ReviewSuggestionRequest,
    SchemaVersionIdRequest,
    SchemaVersionTransitionRequest,
    SubmitChangeRequestRequest,
    SuggestionIdRequest,
)

_LOGGER = get_logger(__name__)

T = TypeVar("T")
Work = Callable[[GovernanceRepositories, Outbox], T]

_AUDITED_REJECTIONS = (
    InvalidTransition,
    SchemaLocked,
    AlreadyReviewed,
    ConcurrencyConflict,
    DuplicateApproval,
)


class DefaultSchemaGovernanceService(SchemaGovernanceService):
    """Default governance implementation over one transactional store."""

    def __init__(
        self,
        *,
        settings: SchemaGovernanceSettings,
        store: GovernanceStore,
    ) -> None:
        self._settings = settings
        self._store = store
        self._transactions = TransactionCoordinator(store)
        self._ledger = AuditLedger(store, max_attempts=settings.audit_publish_attempts)
        self._ai_actor = Actor(actor_id=settings.ai_actor_id, name=settings.ai_actor_name)

    @classmethod
    def from_settings(
        cls, settings: GovernanceSettings
    ) -> "DefaultSchemaGovernanceService":
        """Build the service from typed settings and the owned Postgres schema."""
        from services.state.schema_governance.data import (
            PostgresGovernanceStore,
            SchemaGovernancePostgresRuntime,
        )

        runtime = SchemaGovernancePostgresRuntime.from_settings(settings)
        return cls(
            settings=resolve_schema_governance_settings(settings),
            store=PostgresGovernanceStore(runtime.schema_sessions),
        )

    @property
    def ledger(self) -> AuditLedger:
        """Return the audit ledger fed by this service."""
        return self._ledger

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return readiness based on owned store availability."""
        errors = validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        try:
            store_ready = self._store.ping()
        except Exception as exc:  # noqa: BLE001
            if is_postgres_error(exc):
                return failure(meta=meta, errors=[normalize_postgres_error(exc)])
            return self._dependency_failure(meta=meta, operation="health", exc=exc)
        return success(
            meta=meta,
            payload=HealthStatus(
                service_ready=True,
                store_ready=store_ready,
                detail="ok" if store_ready else "store unavailable",
            ),
        )

    # Data source registry

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("name",),
    )
    def register_data_source(
        self,
        *,
        meta: EnvelopeMeta,
        name: str,
        source_type: DataSourceType,
        actor: Actor,
        description: str = "",
        connection_reference: str = "",
    ) -> Envelope[DataSource]:
        """Register one external data source under governance."""
        request, errors = self._validate_request(
            meta=meta,
            model=RegisterDataSourceRequest,
            payload={
                "name": name,
                "source_type": source_type,
                "actor": actor,
                "description": description,
                "connection_reference": connection_reference,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def work(repos: GovernanceRepositories, outbox: Outbox) -> DataSource:
            created = repos.data_sources.register(
                data_source=DataSource(
                    id=generate_ulid_str(),
                    name=request.name,
                    description=request.description,
                    source_type=request.source_type,
                    connection_reference=request.connection_reference,
                    created_at=utc_now(),
                )
            )
            outbox.record(
                action=AuditAction.CREATE,
                entity_type=EntityType.DATA_SOURCE,
                entity_id=created.id,
                actor=request.actor,
                after=created,
            )
            return created

        return self._mutate(
            meta=meta,
            operation="register_data_source",
            entity_id=request.name,
            actor=request.actor,
            work=work,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("data_source_id",),
    )
    def get_data_source(
        self, *, meta: EnvelopeMeta, data_source_id: str
    ) -> Envelope[DataSource]:
        """Read one data source by id."""
        request, errors = self._validate_request(
            meta=meta, model=DataSourceIdRequest, payload={"data_source_id": data_source_id}
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._read(
            meta=meta,
            operation="get_data_source",
            work=lambda repos: _require_data_source(repos, request.data_source_id),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("name",),
    )
    def get_data_source_by_name(
        self, *, meta: EnvelopeMeta, name: str
    ) -> Envelope[DataSource]:
        """Read one data source by unique name."""
        request, errors = self._validate_request(
            meta=meta, model=DataSourceNameRequest, payload={"name": name}
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def work(repos: GovernanceRepositories) -> DataSource:
            found = repos.data_sources.get_by_name(name=request.name)
            if found is None:
                raise EntityNotFound("data_source", request.name)
            return found

        return self._read(meta=meta, operation="get_data_source_by_name", work=work)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def list_data_sources(
        self,
        *,
        meta: EnvelopeMeta,
        active_only: bool = False,
        limit: int | None = None,
    ) -> Envelope[list[DataSource]]:
        """List data sources ordered by name."""
        request, errors = self._validate_request(
            meta=meta,
            model=ListDataSourcesRequest,
            payload={"active_only": active_only, "limit": self._list_limit(limit)},
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._read(
            meta=meta,
            operation="list_data_sources",
            work=lambda repos: list(
                repos.data_sources.list(active_only=request.active_only, limit=request.limit)
            ),
        )

    # Schema version lifecycle

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("data_source_id", "parent_version_id"),
    )
    def create_schema_version(
        self,
        *,
        meta: EnvelopeMeta,
        data_source_id: str,
        schema_definition: str,
        orm_mappings: str,
        migration_script: str,
        rollback_script: str,
        actor: Actor,
        change_description: str = "",
        parent_version_id: str | None = None,
        major: int | None = None,
        minor: int | None = None,
        patch: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[SchemaVersion]:
        """Create one pending version, auto-numbered when no numbers are given."""
        request, errors = self._validate_request(
            meta=meta,
            model=CreateSchemaVersionRequest,
            payload={
                "data_source_id": data_source_id,
                "schema_definition": schema_definition,
                "orm_mappings": orm_mappings,
                "migration_script": migration_script,
                "rollback_script": rollback_script,
                "actor": actor,
                "change_description": change_description,
                "parent_version_id": parent_version_id,
                "major": major,
                "minor": minor,
                "patch": patch,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def work(repos: GovernanceRepositories, outbox: Outbox) -> SchemaVersion:
            _require_data_source(repos, request.data_source_id)
            parent = None
            if request.parent_version_id is not None:
                parent = _require_version(repos, request.parent_version_id)
            if request.has_explicit_number:
                number = SemanticVersion(
                    major=request.major, minor=request.minor, patch=request.patch
                )
            else:
                latest = repos.versions.latest_for_data_source(
                    data_source_id=request.data_source_id
                )
                number = lifecycle.next_version_number(
                    None if latest is None else latest.version
                )
            created = repos.versions.insert(
                version=lifecycle.new_version(
                    version_id=generate_ulid_str(),
                    data_source_id=request.data_source_id,
                    number=number,
                    schema_definition=request.schema_definition,
                    orm_mappings=request.orm_mappings,
                    migration_script=request.migration_script,
                    rollback_script=request.rollback_script,
                    change_description=request.change_description,
                    parent=parent,
                    actor=request.actor,
                    at=utc_now(),
                )
            )
            outbox.record(
                action=AuditAction.CREATE,
                entity_type=EntityType.SCHEMA_VERSION,
                entity_id=created.id,
                actor=request.actor,
                after=created,
                note=f"Created schema version {created.version_string}",
            )
            return created

        return self._mutate(
            meta=meta,
            operation="create_schema_version",
            entity_id=request.data_source_id,
            actor=request.actor,
            work=work,
            cancellation=cancellation,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("schema_version_id",),
    )
    def get_schema_version(
        self, *, meta: EnvelopeMeta, schema_version_id: str
    ) -> Envelope[SchemaVersion]:
        """Read one schema version by id."""
        request, errors = self._validate_request(
            meta=meta,
            model=SchemaVersionIdRequest,
            payload={"schema_version_id": schema_version_id},
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._read(
            meta=meta,
            operation="get_schema_version",
            work=lambda repos: _require_version(repos, request.schema_version_id),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("data_source_id",),
    )
    def list_schema_versions(
        self, *, meta: EnvelopeMeta, data_source_id: str, limit: int | None = None
    ) -> Envelope[list[SchemaVersion]]:
        """List versions of one data source, highest number first."""
        request, errors = self._validate_request(
            meta=meta,
            model=ListByDataSourceRequest,
            payload={"data_source_id": data_source_id, "limit": self._list_limit(limit)},
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._read(
            meta=meta,
            operation="list_schema_versions",
            work=lambda repos: list(
                repos.versions.list_for_data_source(
                    data_source_id=request.data_source_id, limit=request.limit
                )
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("data_source_id",),
    )
    def get_latest_applied_version(
        self, *, meta: EnvelopeMeta, data_source_id: str
    ) -> Envelope[SchemaVersion]:
        """Read the most recently applied version of one data source."""
        request, errors = self._validate_request(
            meta=meta, model=DataSourceIdRequest, payload={"data_source_id": data_source_id}
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def work(repos: GovernanceRepositories) -> SchemaVersion:
            latest = repos.versions.latest_applied(data_source_id=request.data_source_id)
            if latest is None:
                raise EntityNotFound("schema_version", request.data_source_id)
            return latest

        return self._read(meta=meta, operation="get_latest_applied_version", work=work)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("schema_version_id",),
    )
    def submit_schema_version(
        self,
        *,
        meta: EnvelopeMeta,
        schema_version_id: str,
        actor: Actor,
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[SchemaVersion]:
        """Move a pending version into review."""
        request, errors = self._validate_request(
            meta=meta,
            model=SchemaVersionTransitionRequest,
            payload={
                "schema_version_id": schema_version_id,
                "actor": actor,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._transition_version(
            meta=meta,
            request=request,
            operation="submit_schema_version",
            action=AuditAction.SCHEMA_CHANGE_PROPOSED,
            transition=lambda version, at: lifecycle.submit(
                version, actor=request.actor, at=at
            ),
            cancellation=cancellation,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("schema_version_id", "layer"),
    )
    def approve_schema_version(
        self,
        *,
        meta: EnvelopeMeta,
        schema_version_id: str,
        layer: ApprovalLayer,
        actor: Actor,
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[SchemaVersion]:
        """Record the next sequential layer approval of a version."""
        request, errors = self._validate_request(
            meta=meta,
            model=ApproveSchemaVersionRequest,
            payload={
                "schema_version_id": schema_version_id,
                "layer": layer,
                "actor": actor,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._transition_version(
            meta=meta,
            request=request,
            operation="approve_schema_version",
            action=AuditAction.SCHEMA_CHANGE_APPROVED,
            transition=lambda version, at: lifecycle.approve(
                version, layer=request.layer, actor=request.actor, at=at
            ),
            note=f"Approved at {request.layer.value} layer",
            cancellation=cancellation,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("schema_version_id",),
    )
    def reject_schema_version(
        self,
        *,
        meta: EnvelopeMeta,
        schema_version_id: str,
        actor: Actor,
        reason: str = "",
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[SchemaVersion]:
        """Reject a version that has not been applied."""
        request, errors = self._validate_request(
            meta=meta,
            model=SchemaVersionTransitionRequest,
            payload={
                "schema_version_id": schema_version_id,
                "actor": actor,
                "reason": reason,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._transition_version(
            meta=meta,
            request=request,
            operation="reject_schema_version",
            action=AuditAction.SCHEMA_CHANGE_REJECTED,
            transition=lambda version, at: lifecycle.reject(
                version, actor=request.actor, at=at
            ),
            note=request.reason,
            cancellation=cancellation,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("schema_version_id",),
    )
    def apply_schema_version(
        self,
        *,
        meta: EnvelopeMeta,
        schema_version_id: str,
        actor: Actor,
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[SchemaVersion]:
        """Apply a fully approved version and stamp its data source."""
        request, errors = self._validate_request(
            meta=meta,
            model=SchemaVersionTransitionRequest,
            payload={
                "schema_version_id": schema_version_id,
                "actor": actor,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def stamp_data_source(
            repos: GovernanceRepositories,
            outbox: Outbox,
            applied: SchemaVersion,
            at: datetime,
        ) -> None:
            before = _require_data_source(repos, applied.data_source_id)
            after = repos.data_sources.record_validation(
                data_source_id=applied.data_source_id, at=at
            )
            outbox.record(
                action=AuditAction.UPDATE,
                entity_type=EntityType.DATA_SOURCE,
                entity_id=after.id,
                actor=request.actor,
                before=before,
                after=after,
                note=f"Validated by applying schema version {applied.version_string}",
                at=at,
            )

        return self._transition_version(
            meta=meta,
            request=request,
            operation="apply_schema_version",
            action=AuditAction.SCHEMA_CHANGE_APPLIED,
            transition=lambda version, at: lifecycle.mark_applied(
                version, actor=request.actor, at=at
            ),
            after_update=stamp_data_source,
            cancellation=cancellation,
            fault_description="apply schema version",
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("schema_version_id",),
    )
    def rollback_schema_version(
        self,
        *,
        meta: EnvelopeMeta,
        schema_version_id: str,
        actor: Actor,
        reason: str = "",
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[SchemaVersion]:
        """Roll back an applied version."""
        request, errors = self._validate_request(
            meta=meta,
            model=SchemaVersionTransitionRequest,
            payload={
                "schema_version_id": schema_version_id,
                "actor": actor,
                "reason": reason,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._transition_version(
            meta=meta,
            request=request,
            operation="rollback_schema_version",
            action=AuditAction.SCHEMA_CHANGE_ROLLED_BACK,
            transition=lambda version, at: lifecycle.mark_rolled_back(
                version, actor=request.actor, at=at
            ),
            note=request.reason,
            cancellation=cancellation,
            fault_description="roll back schema version",
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("schema_version_id", "lock_type"),
    )
    def apply_schema_lock(
        self,
        *,
        meta: EnvelopeMeta,
        schema_version_id: str,
        lock_type: SchemaLockType,
        actor: Actor,
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[SchemaVersion]:
        """Attach a lock policy to an applied version."""
        request, errors = self._validate_request(
            meta=meta,
            model=ApplySchemaLockRequest,
            payload={
                "schema_version_id": schema_version_id,
                "lock_type": lock_type,
                "actor": actor,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._transition_version(
            meta=meta,
            request=request,
            operation="apply_schema_lock",
            action=AuditAction.SCHEMA_LOCK_APPLIED,
            transition=lambda version, at: lifecycle.apply_lock(
                version, lock_type=request.lock_type, actor=request.actor, at=at
            ),
            note=f"Lock set to {request.lock_type.value}",
            cancellation=cancellation,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("schema_version_id",),
    )
    def remove_schema_lock(
        self,
        *,
        meta: EnvelopeMeta,
        schema_version_id: str,
        actor: Actor,
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[SchemaVersion]:
        """Clear the lock on an applied version."""
        request, errors = self._validate_request(
            meta=meta,
            model=SchemaVersionTransitionRequest,
            payload={
                "schema_version_id": schema_version_id,
                "actor": actor,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._transition_version(
            meta=meta,
            request=request,
            operation="remove_schema_lock",
            action=AuditAction.SCHEMA_LOCK_REMOVED,
            transition=lambda version, at: lifecycle.remove_lock(
                version, actor=request.actor, at=at
            ),
            cancellation=cancellation,
        )

    # Change request workflow

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("schema_version_id", "change_type"),
    )
    def create_change_request(
        self,
        *,
        meta: EnvelopeMeta,
        schema_version_id: str,
        change_type: ChangeType,
        change_details: str,
        description: str,
        actor: Actor,
        justification: str = "",
        impact_analysis: str = "",
        is_ai_suggested: bool = False,
        ai_confidence: float | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[ChangeRequest]:
        """Propose one change against a version its lock policy allows."""
        request, errors = self._validate_request(
            meta=meta,
            model=CreateChangeRequestRequest,
            payload={
                "schema_version_id": schema_version_id,
                "change_type": change_type,
                "change_details": change_details,
                "description": description,
                "actor": actor,
                "justification": justification,
                "impact_analysis": impact_analysis,
                "is_ai_suggested": is_ai_suggested,
                "ai_confidence": ai_confidence,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def work(repos: GovernanceRepositories, outbox: Outbox) -> ChangeRequest:
            target = _require_version(repos, request.schema_version_id)
            created = repos.change_requests.insert(
                request=workflow.new_change_request(
                    request_id=generate_ulid_str(),
                    target=target,
                    change_type=request.change_type,
                    change_details=request.change_details,
                    description=request.description,
                    justification=request.justification,
                    impact_analysis=request.impact_analysis,
                    is_ai_suggested=request.is_ai_suggested,
                    ai_confidence=request.ai_confidence,
                    actor=request.actor,
                    at=utc_now(),
                )
            )
            outbox.record(
                action=AuditAction.CREATE,
                entity_type=EntityType.CHANGE_REQUEST,
                entity_id=created.id,
                actor=request.actor,
                after=created,
            )
            return created

        return self._mutate(
            meta=meta,
            operation="create_change_request",
            entity_id=request.schema_version_id,
            actor=request.actor,
            work=work,
            cancellation=cancellation,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("change_request_id",),
    )
    def get_change_request(
        self, *, meta: EnvelopeMeta, change_request_id: str
    ) -> Envelope[ChangeRequest]:
        """Read one change request with its approvals."""
        request, errors = self._validate_request(
            meta=meta,
            model=ChangeRequestIdRequest,
            payload={"change_request_id": change_request_id},
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._read(
            meta=meta,
            operation="get_change_request",
            work=lambda repos: _require_change_request(repos, request.change_request_id),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("schema_version_id",),
    )
    def list_change_requests(
        self, *, meta: EnvelopeMeta, schema_version_id: str, limit: int | None = None
    ) -> Envelope[list[ChangeRequest]]:
        """List requests targeting one version, newest first."""
        request, errors = self._validate_request(
            meta=meta,
            model=ListByVersionRequest,
            payload={
                "schema_version_id": schema_version_id,
                "limit": self._list_limit(limit),
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._read(
            meta=meta,
            operation="list_change_requests",
            work=lambda repos: list(
                repos.change_requests.list_for_version(
                    schema_version_id=request.schema_version_id, limit=request.limit
                )
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def list_pending_approvals(
        self, *, meta: EnvelopeMeta, limit: int | None = None
    ) -> Envelope[list[ChangeRequest]]:
        """List submitted requests still collecting layer decisions."""
        request, errors = self._validate_request(
            meta=meta, model=LimitRequest, payload={"limit": self._list_limit(limit)}
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._read(
            meta=meta,
            operation="list_pending_approvals",
            work=lambda repos: list(
                repos.change_requests.list_pending_approvals(limit=request.limit)
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("change_request_id",),
    )
    def submit_change_request(
        self,
        *,
        meta: EnvelopeMeta,
        change_request_id: str,
        actor: Actor,
        justification: str | None = None,
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[ChangeRequest]:
        """Submit a pending request; a justification is required."""
        request, errors = self._validate_request(
            meta=meta,
            model=SubmitChangeRequestRequest,
            payload={
                "change_request_id": change_request_id,
                "actor": actor,
                "justification": justification,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._transition_change_request(
            meta=meta,
            request=request,
            operation="submit_change_request",
            action=AuditAction.SCHEMA_CHANGE_PROPOSED,
            transition=lambda repos, current, at: workflow.submit(
                current,
                justification=request.justification,
                actor=request.actor,
                at=at,
            ),
            cancellation=cancellation,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("change_request_id", "layer"),
    )
    def approve_change_request(
        self,
        *,
        meta: EnvelopeMeta,
        change_request_id: str,
        layer: ApprovalLayer,
        is_approved: bool,
        actor: Actor,
        comments: str = "",
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[ChangeRequest]:
        """Record one layer decision in any order."""
        request, errors = self._validate_request(
            meta=meta,
            model=ApproveChangeRequestRequest,
            payload={
                "change_request_id": change_request_id,
                "layer": layer,
                "is_approved": is_approved,
                "actor": actor,
                "comments": comments,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def transition(
            repos: GovernanceRepositories, current: ChangeRequest, at: datetime
        ) -> ChangeRequest:
            approval = ChangeApproval(
                id=generate_ulid_str(),
                request_id=current.id,
                layer=request.layer,
                is_approved=request.is_approved,
                approver_id=request.actor.actor_id,
                approver_name=request.actor.name,
                comments=request.comments,
                approved_at=at,
            )
            updated = workflow.add_approval(
                current, approval=approval, actor=request.actor, at=at
            )
            repos.change_requests.add_approval(approval=approval)
            return updated

        decision = "approved" if request.is_approved else "rejected"
        return self._transition_change_request(
            meta=meta,
            request=request,
            operation="approve_change_request",
            action=(
                AuditAction.SCHEMA_CHANGE_APPROVED
                if request.is_approved
                else AuditAction.SCHEMA_CHANGE_REJECTED
            ),
            transition=transition,
            note=f"{request.layer.value} layer {decision}",
            cancellation=cancellation,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("change_request_id",),
    )
    def reject_change_request(
        self,
        *,
        meta: EnvelopeMeta,
        change_request_id: str,
        actor: Actor,
        reason: str = "",
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[ChangeRequest]:
        """Reject a request that is not applied or rolled back."""
        request, errors = self._validate_request(
            meta=meta,
            model=ChangeRequestTransitionRequest,
            payload={
                "change_request_id": change_request_id,
                "actor": actor,
                "reason": reason,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._transition_change_request(
            meta=meta,
            request=request,
            operation="reject_change_request",
            action=AuditAction.SCHEMA_CHANGE_REJECTED,
            transition=lambda repos, current, at: workflow.reject(
                current, actor=request.actor, at=at
            ),
            note=request.reason,
            cancellation=cancellation,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("change_request_id",),
    )
    def apply_change_request(
        self,
        *,
        meta: EnvelopeMeta,
        change_request_id: str,
        actor: Actor,
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[ChangeRequestApplyResult]:
        """Create the successor version and mark the request applied, atomically."""
        request, errors = self._validate_request(
            meta=meta,
            model=ChangeRequestTransitionRequest,
            payload={
                "change_request_id": change_request_id,
                "actor": actor,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def work(
            repos: GovernanceRepositories, outbox: Outbox
        ) -> ChangeRequestApplyResult:
            at = utc_now()
            current = _require_change_request(
                repos, request.change_request_id, for_update=True
            )
            _check_expected_revision(
                "change_request", current.id, current.revision, request.expected_revision
            )
            new_version_id = generate_ulid_str()
            applied = workflow.mark_applied(
                current, applied_version_id=new_version_id, actor=request.actor, at=at
            )
            target = _require_version(repos, current.schema_version_id)
            lock_policy.ensure_permits(target, current.change_type)
            latest = repos.versions.latest_for_data_source(
                data_source_id=target.data_source_id
            )
            successor = _insert_successor(
                repos,
                current,
                version=lifecycle.new_version(
                    version_id=new_version_id,
                    data_source_id=target.data_source_id,
                    number=lifecycle.next_version_number(
                        None if latest is None else latest.version
                    ),
                    schema_definition=target.schema_definition,
                    orm_mappings=target.orm_mappings,
                    migration_script=target.migration_script,
                    rollback_script=target.rollback_script,
                    change_description=workflow.applied_change_description(current),
                    parent=target,
                    actor=request.actor,
                    at=at,
                )
            )
            stored = repos.change_requests.update(
                request=applied, expected_revision=current.revision
            )
            outbox.record(
                action=AuditAction.CREATE,
                entity_type=EntityType.SCHEMA_VERSION,
                entity_id=successor.id,
                actor=request.actor,
                after=successor,
                note=f"Created by applying change request {current.id}",
                at=at,
            )
            outbox.record(
                action=AuditAction.SCHEMA_CHANGE_APPLIED,
                entity_type=EntityType.CHANGE_REQUEST,
                entity_id=stored.id,
                actor=request.actor,
                before=current,
                after=stored,
                at=at,
            )
            return ChangeRequestApplyResult(change_request=stored, new_version=successor)

        return self._mutate(
            meta=meta,
            operation="apply_change_request",
            entity_id=request.change_request_id,
            actor=request.actor,
            work=work,
            cancellation=cancellation,
            correlated=True,
            fault_entity_type=EntityType.CHANGE_REQUEST,
            fault_action=AuditAction.SCHEMA_CHANGE_APPLIED,
            fault_description="apply change request",
        )

    # AI suggestion gate

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("data_source_id", "schema_version_id"),
    )
    def create_ai_suggestion(
        self,
        *,
        meta: EnvelopeMeta,
        data_source_id: str,
        suggested_change_type: ChangeType,
        suggestion_details: str,
        reasoning: str,
        confidence_score: float,
        schema_version_id: str | None = None,
        triggering_patterns: tuple[str, ...] = (),
        cancellation: CancellationToken | None = None,
    ) -> Envelope[AiSuggestion]:
        """Record one system-generated suggestion awaiting review."""
        request, errors = self._validate_request(
            meta=meta,
            model=CreateAiSuggestionRequest,
            payload={
                "data_source_id": data_source_id,
                "schema_version_id": schema_version_id,
                "suggested_change_type": suggested_change_type,
                "suggestion_details": suggestion_details,
                "reasoning": reasoning,
                "triggering_patterns": tuple(triggering_patterns),
                "confidence_score": confidence_score,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def work(repos: GovernanceRepositories, outbox: Outbox) -> AiSuggestion:
            _require_data_source(repos, request.data_source_id)
            if request.schema_version_id is not None:
                target = _require_version(repos, request.schema_version_id)
                if target.data_source_id != request.data_source_id:
                    raise GovernanceValidationError(
                        "schema version belongs to a different data source",
                        field="schema_version_id",
                        entity_type="schema_version",
                        entity_id=target.id,
                    )
            created = repos.suggestions.insert(
                suggestion=suggestions.new_suggestion(
                    suggestion_id=generate_ulid_str(),
                    data_source_id=request.data_source_id,
                    schema_version_id=request.schema_version_id,
                    suggested_change_type=request.suggested_change_type,
                    suggestion_details=request.suggestion_details,
                    reasoning=request.reasoning,
                    triggering_patterns=request.triggering_patterns,
                    confidence_score=request.confidence_score,
                    at=utc_now(),
                )
            )
            outbox.record(
                action=AuditAction.AI_SUGGESTION_GENERATED,
                entity_type=EntityType.AI_SUGGESTION,
                entity_id=created.id,
                actor=self._ai_actor,
                after=created,
            )
            return created

        return self._mutate(
            meta=meta,
            operation="create_ai_suggestion",
            entity_id=request.data_source_id,
            actor=self._ai_actor,
            work=work,
            cancellation=cancellation,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("suggestion_id",),
    )
    def get_ai_suggestion(
        self, *, meta: EnvelopeMeta, suggestion_id: str
    ) -> Envelope[AiSuggestion]:
        """Read one suggestion by id."""
        request, errors = self._validate_request(
            meta=meta, model=SuggestionIdRequest, payload={"suggestion_id": suggestion_id}
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._read(
            meta=meta,
            operation="get_ai_suggestion",
            work=lambda repos: _require_suggestion(repos, request.suggestion_id),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def list_unreviewed_suggestions(
        self, *, meta: EnvelopeMeta, limit: int | None = None
    ) -> Envelope[list[AiSuggestion]]:
        """List unreviewed suggestions by confidence, then newest first."""
        request, errors = self._validate_request(
            meta=meta, model=LimitRequest, payload={"limit": self._list_limit(limit)}
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._read(
            meta=meta,
            operation="list_unreviewed_suggestions",
            work=lambda repos: list(repos.suggestions.list_unreviewed(limit=request.limit)),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("data_source_id",),
    )
    def list_suggestions(
        self, *, meta: EnvelopeMeta, data_source_id: str, limit: int | None = None
    ) -> Envelope[list[AiSuggestion]]:
        """List suggestions for one data source, newest first."""
        request, errors = self._validate_request(
            meta=meta,
            model=ListByDataSourceRequest,
            payload={"data_source_id": data_source_id, "limit": self._list_limit(limit)},
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        return self._read(
            meta=meta,
            operation="list_suggestions",
            work=lambda repos: list(
                repos.suggestions.list_for_data_source(
                    data_source_id=request.data_source_id, limit=request.limit
                )
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("suggestion_id",),
    )
    def accept_ai_suggestion(
        self,
        *,
        meta: EnvelopeMeta,
        suggestion_id: str,
        actor: Actor,
        comments: str = "",
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[SuggestionReviewResult]:
        """Accept a suggestion, drafting a change request when it targets a version."""
        request, errors = self._validate_request(
            meta=meta,
            model=ReviewSuggestionRequest,
            payload={
                "suggestion_id": suggestion_id,
                "actor": actor,
                "comments": comments,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def work(repos: GovernanceRepositories, outbox: Outbox) -> SuggestionReviewResult:
            at = utc_now()
            current = _require_suggestion(repos, request.suggestion_id)
            _check_expected_revision(
                "ai_suggestion", current.id, current.revision, request.expected_revision
            )
            reviewed = suggestions.accept(
                current, actor=request.actor, comments=request.comments, at=at
            )
            drafted = None
            note = "Suggestion accepted"
            if reviewed.schema_version_id is not None:
                target = _require_version(repos, reviewed.schema_version_id)
                try:
                    draft = workflow.new_change_request(
                        request_id=generate_ulid_str(),
                        target=target,
                        change_type=reviewed.suggested_change_type,
                        change_details=reviewed.suggestion_details,
                        description=suggestions.draft_description(reviewed),
                        justification="",
                        impact_analysis=suggestions.draft_impact_analysis(reviewed),
                        is_ai_suggested=True,
                        ai_confidence=reviewed.confidence_score,
                        actor=request.actor,
                        at=at,
                    )
                except SchemaLocked as exc:
                    note = f"Suggestion accepted; change request not created: {exc.message}"
                else:
                    drafted = repos.change_requests.insert(request=draft)
                    reviewed = suggestions.link_change_request(
                        reviewed, change_request_id=drafted.id
                    )
                    outbox.record(
                        action=AuditAction.CREATE,
                        entity_type=EntityType.CHANGE_REQUEST,
                        entity_id=drafted.id,
                        actor=request.actor,
                        after=drafted,
                        note=f"Drafted from AI suggestion {current.id}",
                        at=at,
                    )
            stored = repos.suggestions.update(
                suggestion=reviewed, expected_revision=current.revision
            )
            outbox.record(
                action=AuditAction.UPDATE,
                entity_type=EntityType.AI_SUGGESTION,
                entity_id=stored.id,
                actor=request.actor,
                before=current,
                after=stored,
                note=note,
                at=at,
            )
            return SuggestionReviewResult(suggestion=stored, change_request=drafted)

        return self._mutate(
            meta=meta,
            operation="accept_ai_suggestion",
            entity_id=request.suggestion_id,
            actor=request.actor,
            work=work,
            cancellation=cancellation,
            correlated=True,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("suggestion_id",),
    )
    def reject_ai_suggestion(
        self,
        *,
        meta: EnvelopeMeta,
        suggestion_id: str,
        actor: Actor,
        comments: str = "",
        expected_revision: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Envelope[SuggestionReviewResult]:
        """Reject a suggestion."""
        request, errors = self._validate_request(
            meta=meta,
            model=ReviewSuggestionRequest,
            payload={
                "suggestion_id": suggestion_id,
                "actor": actor,
                "comments": comments,
                "expected_revision": expected_revision,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None

        def work(repos: GovernanceRepositories, outbox: Outbox) -> SuggestionReviewResult:
            at = utc_now()
            current = _require_suggestion(repos, request.suggestion_id)
            _check_expected_revision(
                "ai_suggestion", current.id, current.revision, request.expected_revision
            )
            stored = repos.suggestions.update(
                suggestion=suggestions.reject(
                    current, actor=request.actor, comments=request.comments, at=at
                ),
                expected_revision=current.revision,
            )
            outbox.record(
                action=AuditAction.UPDATE,
                entity_type=EntityType.AI_SUGGESTION,
                entity_id=stored.id,
                actor=request.actor,
                before=current,
                after=stored,
                note="Suggestion rejected",
                at=at,
            )
            return SuggestionReviewResult(suggestion=stored)

        return self._mutate(
            meta=meta,
            operation="reject_ai_suggestion",
            entity_id=request.suggestion_id,
            actor=request.actor,
            work=work,
            cancellation=cancellation,
        )

    # Audit ledger

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("entity_id", "correlation_id"),
    )
    def query_audit_log(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: EntityType | None = None,
        entity_id: str | None = None,
        actor_id: str | None = None,
        action: AuditAction | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        correlation_id: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> Envelope[AuditPage]:
        """Return one filtered page of audit entries, newest first."""
        request, errors = self._validate_request(
            meta=meta,
            model=AuditQueryRequest,
            payload={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "actor_id": actor_id,
                "action": action,
                "created_from": created_from,
                "created_to": created_to,
                "correlation_id": correlation_id,
                "offset": offset,
                "limit": self._audit_limit(limit),
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert request is not None
        query = AuditQuery.model_validate(request.model_dump())
        return self._guard(
            meta=meta,
            operation="query_audit_log",
            call=lambda: self._ledger.query(query),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("entity_type", "entity_id"),
    )
    def list_entity_audit(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: EntityType,
        entity_id: str,
        limit: int | None = None,
    ) -> Envelope[list[AuditLogEntry]]:
        """List the audit trail of one entity, newest first."""
        request, errors = self._validate_request(
            meta=meta,
            model=AuditQueryRequest,
            payload={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "limit": self._audit_limit(limit),
            },
        )
        if not errors and request.entity_id is None:
            errors = [_required_filter("entity_id")]
        if errors:
            return failure(meta=meta, errors=errors)
        return self._guard(
            meta=meta,
            operation="list_entity_audit",
            call=lambda: list(
                self._ledger.by_entity(
                    entity_type=request.entity_type,
                    entity_id=request.entity_id,
                    limit=request.limit,
                )
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("correlation_id",),
    )
    def list_correlated_audit(
        self, *, meta: EnvelopeMeta, correlation_id: str, limit: int | None = None
    ) -> Envelope[list[AuditLogEntry]]:
        """List audit entries written by one multi-step operation."""
        request, errors = self._validate_request(
            meta=meta,
            model=AuditQueryRequest,
            payload={"correlation_id": correlation_id, "limit": self._audit_limit(limit)},
        )
        if not errors and request.correlation_id is None:
            errors = [_required_filter("correlation_id")]
        if errors:
            return failure(meta=meta, errors=errors)
        return self._guard(
            meta=meta,
            operation="list_correlated_audit",
            call=lambda: list(
                self._ledger.by_correlation(
                    correlation_id=request.correlation_id, limit=request.limit
                )
            ),
        )

    # Shared plumbing

    def _transition_version(
        self,
        *,
        meta: EnvelopeMeta,
        request: Any,
        operation: str,
        action: AuditAction,
        transition: Callable[[SchemaVersion, datetime], SchemaVersion],
        note: str = "",
        after_update: Callable[
            [GovernanceRepositories, Outbox, SchemaVersion, datetime], None
        ]
        | None = None,
        cancellation: CancellationToken | None = None,
        fault_description: str | None = None,
    ) -> Envelope[SchemaVersion]:
        """Load, transition and compare-and-swap one schema version."""

        def work(repos: GovernanceRepositories, outbox: Outbox) -> SchemaVersion:
            at = utc_now()
            current = _require_version(repos, request.schema_version_id)
            _check_expected_revision(
                "schema_version", current.id, current.revision, request.expected_revision
            )
            stored = repos.versions.update(
                version=transition(current, at), expected_revision=current.revision
            )
            outbox.record(
                action=action,
                entity_type=EntityType.SCHEMA_VERSION,
                entity_id=stored.id,
                actor=request.actor,
                before=current,
                after=stored,
                note=note,
                at=at,
            )
            if after_update is not None:
                after_update(repos, outbox, stored, at)
            return stored

        multi_step = fault_description is not None
        return self._mutate(
            meta=meta,
            operation=operation,
            entity_id=request.schema_version_id,
            actor=request.actor,
            work=work,
            cancellation=cancellation,
            correlated=multi_step,
            fault_entity_type=EntityType.SCHEMA_VERSION if multi_step else None,
            fault_action=action if multi_step else None,
            fault_description=fault_description,
        )

    def _transition_change_request(
        self,
        *,
        meta: EnvelopeMeta,
        request: Any,
        operation: str,
        action: AuditAction,
        transition: Callable[
            [GovernanceRepositories, ChangeRequest, datetime], ChangeRequest
        ],
        note: str = "",
        cancellation: CancellationToken | None = None,
    ) -> Envelope[ChangeRequest]:
        """Load, transition and compare-and-swap one change request."""

        def work(repos: GovernanceRepositories, outbox: Outbox) -> ChangeRequest:
            at = utc_now()
            current = _require_change_request(repos, request.change_request_id)
            _check_expected_revision(
                "change_request", current.id, current.revision, request.expected_revision
            )
            updated = transition(repos, current, at)
            stored = repos.change_requests.update(
                request=updated, expected_revision=current.revision
            )
            outbox.record(
                action=action,
                entity_type=EntityType.CHANGE_REQUEST,
                entity_id=stored.id,
                actor=request.actor,
                before=current,
                after=stored,
                note=note,
                at=at,
            )
            return stored

        return self._mutate(
            meta=meta,
            operation=operation,
            entity_id=request.change_request_id,
            actor=request.actor,
            work=work,
            cancellation=cancellation,
        )

    def _mutate(
        self,
        *,
        meta: EnvelopeMeta,
        operation: str,
        entity_id: str,
        actor: Actor,
        work: Work[T],
        cancellation: CancellationToken | None = None,
        correlated: bool = False,
        fault_entity_type: EntityType | None = None,
        fault_action: AuditAction | None = None,
        fault_description: str | None = None,
    ) -> Envelope[T]:
        """Run one mutation in a transaction and publish its audit outbox.

        Faults in operations that name a ``fault_action`` are audited best
        effort and re-raised as ``TransactionFailure``; every other outcome
        becomes an envelope.
        """
        outbox = Outbox(correlation_id=generate_ulid_str() if correlated else None)
        try:
            with self._transactions.scope(
                entity_id=entity_id, operation=operation, cancellation=cancellation
            ) as repos:
                result = work(repos, outbox)
        except TransactionFailure as exc:
            cause = exc.cause
            if isinstance(cause, GovernanceError):
                self._audit_rejection(
                    operation=operation,
                    error=cause,
                    actor=actor,
                    correlation_id=outbox.correlation_id,
                )
                return failure(meta=meta, errors=[cause.to_error()])
            if is_postgres_error(cause):
                normalized = normalize_postgres_error(cause)
                if normalized.category == ErrorCategory.CONFLICT:
                    return failure(meta=meta, errors=[normalized])
            if fault_action is not None and fault_entity_type is not None:
                self._audit_fault(
                    description=fault_description or operation,
                    action=fault_action,
                    entity_type=fault_entity_type,
                    failure_exc=exc,
                    actor=actor,
                    correlation_id=outbox.correlation_id,
                )
                raise
            if is_postgres_error(cause):
                return failure(meta=meta, errors=[normalize_postgres_error(cause)])
            return self._dependency_failure(
                meta=meta, operation=operation, exc=cause  # type: ignore[arg-type]
            )
        self._ledger.publish(outbox)
        return success(meta=meta, payload=result)

    def _read(
        self,
        *,
        meta: EnvelopeMeta,
        operation: str,
        work: Callable[[GovernanceRepositories], T],
    ) -> Envelope[T]:
        """Run one read-only unit of work and wrap its outcome."""

        def call() -> T:
            with self._store.begin() as repos:
                return work(repos)

        return self._guard(meta=meta, operation=operation, call=call)

    def _guard(
        self,
        *,
        meta: EnvelopeMeta,
        operation: str,
        call: Callable[[], T],
    ) -> Envelope[T]:
        """Map governance and dependency exceptions from ``call`` into envelopes."""
        try:
            result = call()
        except GovernanceError as exc:
            return failure(meta=meta, errors=[exc.to_error()])
        except Exception as exc:  # noqa: BLE001
            if is_postgres_error(exc):
                return failure(meta=meta, errors=[normalize_postgres_error(exc)])
            return self._dependency_failure(meta=meta, operation=operation, exc=exc)
        return success(meta=meta, payload=result)

    def _audit_rejection(
        self,
        *,
        operation: str,
        error: GovernanceError,
        actor: Actor,
        correlation_id: str | None,
    ) -> None:
        """Best-effort ledger entry for a business rejection on an existing entity."""
        if not isinstance(error, _AUDITED_REJECTIONS) or not error.entity_id:
            return
        self._ledger.append_best_effort(
            audit_entry(
                action=AuditAction.OPERATION_REJECTED,
                entity_type=EntityType(error.entity_type),
                entity_id=error.entity_id,
                actor=actor,
                note=f"{operation} rejected: {error.message}",
                correlation_id=correlation_id,
            )
        )

    def _audit_fault(
        self,
        *,
        description: str,
        action: AuditAction,
        entity_type: EntityType,
        failure_exc: TransactionFailure,
        actor: Actor,
        correlation_id: str | None,
    ) -> None:
        """Best-effort ledger entry for a rolled-back transaction fault."""
        _LOGGER.warning(
            "Transaction failed: operation=%s entity_id=%s exception_type=%s",
            failure_exc.operation,
            failure_exc.entity_id,
            type(failure_exc.cause).__name__,
            exc_info=failure_exc.cause,
        )
        self._ledger.append_best_effort(
            audit_entry(
                action=action,
                entity_type=entity_type,
                entity_id=failure_exc.entity_id,
                actor=actor,
                note=(
                    f"Failed to {description}: "
                    f"{type(failure_exc.cause).__name__}: {failure_exc.cause}"
                ),
                correlation_id=correlation_id,
            )
        )

    def _validate_request(
        self,
        *,
        meta: EnvelopeMeta,
        model: type[BaseModel],
        payload: dict[str, Any] | None,
    ) -> tuple[Any | None, list[ErrorDetail]]:
        """Validate envelope metadata and request payload model."""
        errors = validate_meta(meta)
        if errors:
            return None, errors

        data = payload or {}
        try:
            request = model.model_validate(data, context={"settings": self._settings})
        except ValidationError as exc:
            return None, [
                validation_error(
                    f"request validation failed: {err['msg']}",
                    code=codes.INVALID_ARGUMENT,
                    metadata={"field": ".".join(str(p) for p in err["loc"])},
                )
                for err in exc.errors()
            ]

        return request, []

    def _dependency_failure(
        self,
        *,
        meta: EnvelopeMeta,
        operation: str,
        exc: Exception,
    ) -> Envelope[Any]:
        """Map one dependency/runtime exception into structured envelope errors."""
        _LOGGER.warning(
            "%s failed due to dependency error: exception_type=%s",
            operation,
            type(exc).__name__,
            exc_info=exc,
        )
        return failure(
            meta=meta,
            errors=[
                dependency_error(
                    f"{operation} failed",
                    code=codes.DEPENDENCY_FAILURE,
                    metadata={"exception_type": type(exc).__name__},
                )
            ],
        )

    def _list_limit(self, limit: int | None) -> int:
        return self._settings.list_limit_default if limit is None else limit

    def _audit_limit(self, limit: int | None) -> int:
        return self._settings.audit_page_size_default if limit is None else limit


def _check_expected_revision(
    entity_type: str, entity_id: str, actual: int, expected: int | None
) -> None:
    """Reject a caller holding a stale revision token."""
    if expected is not None and expected != actual:
        raise ConcurrencyConflict(
            entity_type=entity_type,
            entity_id=entity_id,
            expected=expected,
            actual=actual,
        )


def _require_data_source(repos: GovernanceRepositories, data_source_id: str) -> DataSource:
    found = repos.data_sources.get(data_source_id=data_source_id)
    if found is None:
        raise EntityNotFound("data_source", data_source_id)
    return found


def _require_version(repos: GovernanceRepositories, schema_version_id: str) -> SchemaVersion:
    found = repos.versions.get(schema_version_id=schema_version_id)
    if found is None:
        raise EntityNotFound("schema_version", schema_version_id)
    return found


def _require_change_request(
    repos: GovernanceRepositories, change_request_id: str, *, for_update: bool = False
) -> ChangeRequest:
    if for_update:
        found = repos.change_requests.get_for_update(change_request_id=change_request_id)
    else:
        found = repos.change_requests.get(change_request_id=change_request_id)
    if found is None:
        raise EntityNotFound("change_request", change_request_id)
    return found


def _insert_successor(
    repos: GovernanceRepositories, request: ChangeRequest, *, version: SchemaVersion
) -> SchemaVersion:
    """Insert the version created by applying ``request``.

    A taken version number means another writer applied against the same
    data source first, so it is reported as a stale revision.
    """
    try:
        return repos.versions.insert(version=version)
    except DuplicateVersion as exc:
        raise ConcurrencyConflict(
            entity_type="change_request",
            entity_id=request.id,
            expected=request.revision,
            actual=None,
        ) from exc


def _require_suggestion(repos: GovernanceRepositories, suggestion_id: str) -> AiSuggestion:
    found = repos.suggestions.get(suggestion_id=suggestion_id)
    if found is None:
        raise EntityNotFound("ai_suggestion", suggestion_id)
    return found


def _required_filter(field: str) -> ErrorDetail:
    return validation_error(
        f"{field} is required",
        code=codes.MISSING_REQUIRED_FIELD,
        metadata={"field": field},
    )

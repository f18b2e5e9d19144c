"""Authoritative in-process Python API for Schema Governance Service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from packages.governance_shared.config import GovernanceSettings
from packages.governance_shared.envelope import Envelope, EnvelopeMeta
from services.state.schema_governance.domain import (
    Actor,
    AiSuggestion,
    ApprovalLayer,
    AuditAction,
    AuditLogEntry,
    AuditPage,
    ChangeRequest,
    ChangeRequestApplyResult,
    ChangeType,
    DataSource,
    DataSourceType,
    EntityType,
    HealthStatus,
    SchemaLockType,
    SchemaVersion,
    SuggestionReviewResult,
)
from services.state.schema_governance.interfaces import GovernanceStore
from services.state.schema_governance.transactions import CancellationToken


class SchemaGovernanceService(ABC):
    """Public API for governed schema evolution.

    Every operation returns an ``Envelope``. Business rejections come back as
    typed errors; the only exception that escapes is ``TransactionFailure``
    from a multi-entity apply or rollback.
    """

    # Data source registry

    @abstractmethod
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

    @abstractmethod
    def get_data_source(
        self, *, meta: EnvelopeMeta, data_source_id: str
    ) -> Envelope[DataSource]:
        """Read one data source by id."""

    @abstractmethod
    def get_data_source_by_name(
        self, *, meta: EnvelopeMeta, name: str
    ) -> Envelope[DataSource]:
        """Read one data source by unique name."""

    @abstractmethod
    def list_data_sources(
        self,
        *,
        meta: EnvelopeMeta,
        active_only: bool = False,
        limit: int | None = None,
    ) -> Envelope[list[DataSource]]:
        """List data sources ordered by name."""

    # Schema version lifecycle

    @abstractmethod
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

    @abstractmethod
    def get_schema_version(
        self, *, meta: EnvelopeMeta, schema_version_id: str
    ) -> Envelope[SchemaVersion]:
        """Read one schema version by id."""

    @abstractmethod
    def list_schema_versions(
        self, *, meta: EnvelopeMeta, data_source_id: str, limit: int | None = None
    ) -> Envelope[list[SchemaVersion]]:
        """List versions of one data source, highest number first."""

    @abstractmethod
    def get_latest_applied_version(
        self, *, meta: EnvelopeMeta, data_source_id: str
    ) -> Envelope[SchemaVersion]:
        """Read the most recently applied version of one data source."""

    @abstractmethod
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

    @abstractmethod
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

    @abstractmethod
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

    @abstractmethod
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

    @abstractmethod
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

    @abstractmethod
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

    @abstractmethod
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

    # Change request workflow

    @abstractmethod
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

    @abstractmethod
    def get_change_request(
        self, *, meta: EnvelopeMeta, change_request_id: str
    ) -> Envelope[ChangeRequest]:
        """Read one change request with its approvals."""

    @abstractmethod
    def list_change_requests(
        self, *, meta: EnvelopeMeta, schema_version_id: str, limit: int | None = None
    ) -> Envelope[list[ChangeRequest]]:
        """List requests targeting one version, newest first."""

    @abstractmethod
    def list_pending_approvals(
        self, *, meta: EnvelopeMeta, limit: int | None = None
    ) -> Envelope[list[ChangeRequest]]:
        """List submitted requests still collecting layer decisions."""

    @abstractmethod
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

    @abstractmethod
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

    @abstractmethod
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

    @abstractmethod
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

    # AI suggestion gate

    @abstractmethod
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

    @abstractmethod
    def get_ai_suggestion(
        self, *, meta: EnvelopeMeta, suggestion_id: str
    ) -> Envelope[AiSuggestion]:
        """Read one suggestion by id."""

    @abstractmethod
    def list_unreviewed_suggestions(
        self, *, meta: EnvelopeMeta, limit: int | None = None
    ) -> Envelope[list[AiSuggestion]]:
        """List unreviewed suggestions by confidence, then newest first."""

    @abstractmethod
    def list_suggestions(
        self, *, meta: EnvelopeMeta, data_source_id: str, limit: int | None = None
    ) -> Envelope[list[AiSuggestion]]:
        """List suggestions for one data source, newest first."""

    @abstractmethod
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

    @abstractmethod
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

    # Audit ledger

    @abstractmethod
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

    @abstractmethod
    def list_entity_audit(
        self,
        *,
        meta: EnvelopeMeta,
        entity_type: EntityType,
        entity_id: str,
        limit: int | None = None,
    ) -> Envelope[list[AuditLogEntry]]:
        """List the audit trail of one entity, newest first."""

    @abstractmethod
    def list_correlated_audit(
        self, *, meta: EnvelopeMeta, correlation_id: str, limit: int | None = None
    ) -> Envelope[list[AuditLogEntry]]:
        """List audit entries written by one multi-step operation."""

    @abstractmethod
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return service and owned store readiness."""


def build_schema_governance_service(
    *,
    settings: GovernanceSettings,
    store: GovernanceStore | None = None,
) -> SchemaGovernanceService:
    """Build default Schema Governance implementation from typed settings."""
    from services.state.schema_governance.config import (
        resolve_schema_governance_settings,
    )
    from services.state.schema_governance.data import (
        PostgresGovernanceStore,
        SchemaGovernancePostgresRuntime,
    )
    from services.state.schema_governance.implementation import (
        DefaultSchemaGovernanceService,
    )

    if store is None:
        runtime = SchemaGovernancePostgresRuntime.from_settings(settings)
        store = PostgresGovernanceStore(runtime.schema_sessions)
    return DefaultSchemaGovernanceService(
        settings=resolve_schema_governance_settings(settings),
        store=store,
    )

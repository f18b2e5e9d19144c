"""Transport-neutral protocol interfaces used by Schema Governance Service."""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from services.state.schema_governance.domain import (
    AiSuggestion,
    AuditLogEntry,
    AuditPage,
    AuditQuery,
    ChangeApproval,
    ChangeRequest,
    DataSource,
    SchemaVersion,
)


class DataSourceRegistry(Protocol):
    """Protocol for data source lookup and validation stamping."""

    def get(self, *, data_source_id: str) -> DataSource | None:
        """Read one data source by id."""

    def get_by_name(self, *, name: str) -> DataSource | None:
        """Read one data source by unique name."""

    def list(self, *, active_only: bool, limit: int) -> Sequence[DataSource]:
        """List data sources ordered by name."""

    def register(self, *, data_source: DataSource) -> DataSource:
        """Insert one new data source."""

    def record_validation(self, *, data_source_id: str, at: datetime) -> DataSource:
        """Stamp the last-validated timestamp and return the updated source."""


class SchemaVersionRepository(Protocol):
    """Protocol for schema version persistence with compare-and-swap updates."""

    def get(self, *, schema_version_id: str) -> SchemaVersion | None:
        """Read one version by id."""

    def list_for_data_source(
        self, *, data_source_id: str, limit: int
    ) -> Sequence[SchemaVersion]:
        """List versions of one data source, highest number first."""

    def latest_for_data_source(self, *, data_source_id: str) -> SchemaVersion | None:
        """Return the highest-numbered version of one data source."""

    def latest_applied(self, *, data_source_id: str) -> SchemaVersion | None:
        """Return the most recently applied version of one data source."""

    def insert(self, *, version: SchemaVersion) -> SchemaVersion:
        """Insert one new version; numbers are unique per data source."""

    def update(self, *, version: SchemaVersion, expected_revision: int) -> SchemaVersion:
        """Replace one version when the stored revision equals ``expected_revision``."""


class ChangeRequestRepository(Protocol):
    """Protocol for change requests and their per-layer approvals."""

    def get(self, *, change_request_id: str) -> ChangeRequest | None:
        """Read one request with its approvals."""

    def get_for_update(self, *, change_request_id: str) -> ChangeRequest | None:
        """Read one request and hold a row lock until the transaction ends."""

    def list_for_version(
        self, *, schema_version_id: str, limit: int
    ) -> Sequence[ChangeRequest]:
        """List requests targeting one version, newest first."""

    def list_pending_approvals(self, *, limit: int) -> Sequence[ChangeRequest]:
        """List requests awaiting further layer decisions, newest first."""

    def insert(self, *, request: ChangeRequest) -> ChangeRequest:
        """Insert one new request."""

    def update(self, *, request: ChangeRequest, expected_revision: int) -> ChangeRequest:
        """Replace request fields when the stored revision matches."""

    def add_approval(self, *, approval: ChangeApproval) -> ChangeApproval:
        """Insert one approval; a second one for the same layer must fail."""


class AiSuggestionRepository(Protocol):
    """Protocol for AI suggestion persistence."""

    def get(self, *, suggestion_id: str) -> AiSuggestion | None:
        """Read one suggestion by id."""

    def insert(self, *, suggestion: AiSuggestion) -> AiSuggestion:
        """Insert one new suggestion."""

    def update(self, *, suggestion: AiSuggestion, expected_revision: int) -> AiSuggestion:
        """Replace one suggestion when the stored revision matches."""

    def list_unreviewed(self, *, limit: int) -> Sequence[AiSuggestion]:
        """List unreviewed suggestions by confidence, then newest first."""

    def list_for_data_source(
        self, *, data_source_id: str, limit: int
    ) -> Sequence[AiSuggestion]:
        """List suggestions for one data source, newest first."""


class AuditLogRepository(Protocol):
    """Protocol for the append-only audit ledger."""

    def append(self, *, entry: AuditLogEntry) -> bool:
        """Append one entry; return ``False`` when its id already exists."""

    def query(self, *, query: AuditQuery) -> AuditPage:
        """Return one filtered page, newest first."""


@dataclass(frozen=True)
class GovernanceRepositories:
    """Repositories bound to one open store transaction."""

    data_sources: DataSourceRegistry
    versions: SchemaVersionRepository
    change_requests: ChangeRequestRepository
    suggestions: AiSuggestionRepository
    audit: AuditLogRepository


class GovernanceStore(Protocol):
    """Transactional store owning every governed entity."""

    def begin(self) -> AbstractContextManager[GovernanceRepositories]:
        """Open one transaction; commit on clean exit, roll back on error."""

    def ping(self) -> bool:
        """Return whether the store is reachable."""

"""In-process governance store with lock-serialized, snapshot-rollback transactions."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock

from services.state.schema_governance.domain import (
    AiSuggestion,
    ApprovalStatus,
    AuditLogEntry,
    AuditPage,
    AuditQuery,
    ChangeApproval,
    ChangeRequest,
    DataSource,
    ReviewOutcome,
    SchemaVersion,
)
from services.state.schema_governance.errors import (
    ConcurrencyConflict,
    DataSourceExists,
    DuplicateApproval,
    DuplicateVersion,
    EntityNotFound,
)
from services.state.schema_governance.interfaces import GovernanceRepositories

_PENDING_APPROVAL = frozenset(
    {
        ApprovalStatus.SUBMITTED,
        ApprovalStatus.TECHNICAL_APPROVED,
        ApprovalStatus.BUSINESS_APPROVED,
    }
)


@dataclass
class _Tables:
    data_sources: dict[str, DataSource] = field(default_factory=dict)
    versions: dict[str, SchemaVersion] = field(default_factory=dict)
    change_requests: dict[str, ChangeRequest] = field(default_factory=dict)
    approvals: dict[str, tuple[ChangeApproval, ...]] = field(default_factory=dict)
    suggestions: dict[str, AiSuggestion] = field(default_factory=dict)
    audit: dict[str, AuditLogEntry] = field(default_factory=dict)

    def snapshot(self) -> "_Tables":
        return _Tables(
            data_sources=dict(self.data_sources),
            versions=dict(self.versions),
            change_requests=dict(self.change_requests),
            approvals=dict(self.approvals),
            suggestions=dict(self.suggestions),
            audit=dict(self.audit),
        )

    def restore(self, other: "_Tables") -> None:
        for name in (
            "data_sources",
            "versions",
            "change_requests",
            "approvals",
            "suggestions",
            "audit",
        ):
            table = getattr(self, name)
            table.clear()
            table.update(getattr(other, name))


class InMemoryGovernanceStore:
    """Governance store kept in process memory.

    Transactions are serialized by one re-entrant lock. Any exception inside
    ``begin`` restores the table snapshot taken when the transaction opened.
    """

    def __init__(self) -> None:
        self._tables = _Tables()
        self._lock = RLock()
        self._repositories = GovernanceRepositories(
            data_sources=InMemoryDataSourceRegistry(self._tables),
            versions=InMemorySchemaVersionRepository(self._tables),
            change_requests=InMemoryChangeRequestRepository(self._tables),
            suggestions=InMemoryAiSuggestionRepository(self._tables),
            audit=InMemoryAuditLogRepository(self._tables),
        )

    @contextmanager
    def begin(self) -> Iterator[GovernanceRepositories]:
        """Open one serialized transaction."""
        with self._lock:
            snapshot = self._tables.snapshot()
            try:
                yield self._repositories
            except BaseException:
                self._tables.restore(snapshot)
                raise

    def ping(self) -> bool:
        """Return ``True``; memory is always reachable."""
        return True


class InMemoryDataSourceRegistry:
    """Data source registry over in-memory tables."""

    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def get(self, *, data_source_id: str) -> DataSource | None:
        return self._tables.data_sources.get(data_source_id)

    def get_by_name(self, *, name: str) -> DataSource | None:
        for item in self._tables.data_sources.values():
            if item.name == name:
                return item
        return None

    def list(self, *, active_only: bool, limit: int) -> Sequence[DataSource]:
        items = sorted(self._tables.data_sources.values(), key=lambda item: item.name)
        if active_only:
            items = [item for item in items if item.is_active]
        return items[:limit]

    def register(self, *, data_source: DataSource) -> DataSource:
        if self.get_by_name(name=data_source.name) is not None:
            raise DataSourceExists(data_source.name)
        self._tables.data_sources[data_source.id] = data_source
        return data_source

    def record_validation(self, *, data_source_id: str, at: datetime) -> DataSource:
        current = self._tables.data_sources.get(data_source_id)
        if current is None:
            raise EntityNotFound("data_source", data_source_id)
        updated = current.model_copy(
            update={"last_validated_at": at, "revision": current.revision + 1}
        )
        self._tables.data_sources[data_source_id] = updated
        return updated


class InMemorySchemaVersionRepository:
    """Schema version repository over in-memory tables."""

    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def get(self, *, schema_version_id: str) -> SchemaVersion | None:
        return self._tables.versions.get(schema_version_id)

    def list_for_data_source(
        self, *, data_source_id: str, limit: int
    ) -> Sequence[SchemaVersion]:
        return self._for_source(data_source_id)[:limit]

    def latest_for_data_source(self, *, data_source_id: str) -> SchemaVersion | None:
        items = self._for_source(data_source_id)
        return items[0] if items else None

    def latest_applied(self, *, data_source_id: str) -> SchemaVersion | None:
        applied = [
            item
            for item in self._tables.versions.values()
            if item.data_source_id == data_source_id
            and item.status == ApprovalStatus.APPLIED
            and item.applied_at is not None
        ]
        if not applied:
            return None
        return max(applied, key=lambda item: item.applied_at)  # type: ignore[arg-type,return-value]

    def insert(self, *, version: SchemaVersion) -> SchemaVersion:
        for item in self._tables.versions.values():
            if item.data_source_id == version.data_source_id and item.version == version.version:
                raise DuplicateVersion(version.data_source_id, version=str(version.version))
        self._tables.versions[version.id] = version
        return version

    def update(self, *, version: SchemaVersion, expected_revision: int) -> SchemaVersion:
        current = self._tables.versions.get(version.id)
        _check_revision("schema_version", version.id, current, expected_revision)
        assert current is not None
        stored = version.model_copy(update={"parent_version_id": current.parent_version_id})
        self._tables.versions[version.id] = stored
        return stored

    def _for_source(self, data_source_id: str) -> list[SchemaVersion]:
        return sorted(
            (
                item
                for item in self._tables.versions.values()
                if item.data_source_id == data_source_id
            ),
            key=lambda item: item.version.key,
            reverse=True,
        )


class InMemoryChangeRequestRepository:
    """Change request repository over in-memory tables."""

    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def get(self, *, change_request_id: str) -> ChangeRequest | None:
        current = self._tables.change_requests.get(change_request_id)
        return None if current is None else self._hydrate(current)

    def get_for_update(self, *, change_request_id: str) -> ChangeRequest | None:
        # Transactions are already serialized by the store lock.
        return self.get(change_request_id=change_request_id)

    def list_for_version(
        self, *, schema_version_id: str, limit: int
    ) -> Sequence[ChangeRequest]:
        items = [
            item
            for item in self._tables.change_requests.values()
            if item.schema_version_id == schema_version_id
        ]
        return [self._hydrate(item) for item in _newest_first(items)[:limit]]

    def list_pending_approvals(self, *, limit: int) -> Sequence[ChangeRequest]:
        items = [
            item
            for item in self._tables.change_requests.values()
            if item.status in _PENDING_APPROVAL
        ]
        return [self._hydrate(item) for item in _newest_first(items)[:limit]]

    def insert(self, *, request: ChangeRequest) -> ChangeRequest:
        self._tables.change_requests[request.id] = request.model_copy(update={"approvals": ()})
        self._tables.approvals.setdefault(request.id, ())
        return self._hydrate(request)

    def update(self, *, request: ChangeRequest, expected_revision: int) -> ChangeRequest:
        current = self._tables.change_requests.get(request.id)
        _check_revision("change_request", request.id, current, expected_revision)
        self._tables.change_requests[request.id] = request.model_copy(update={"approvals": ()})
        return self._hydrate(request)

    def add_approval(self, *, approval: ChangeApproval) -> ChangeApproval:
        if approval.request_id not in self._tables.change_requests:
            raise EntityNotFound("change_request", approval.request_id)
        existing = self._tables.approvals.get(approval.request_id, ())
        if any(item.layer == approval.layer for item in existing):
            raise DuplicateApproval(approval.request_id, layer=approval.layer.value)
        self._tables.approvals[approval.request_id] = (*existing, approval)
        return approval

    def _hydrate(self, request: ChangeRequest) -> ChangeRequest:
        approvals = tuple(
            sorted(
                self._tables.approvals.get(request.id, ()),
                key=lambda item: item.approved_at,
            )
        )
        return request.model_copy(update={"approvals": approvals})


class InMemoryAiSuggestionRepository:
    """AI suggestion repository over in-memory tables."""

    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def get(self, *, suggestion_id: str) -> AiSuggestion | None:
        return self._tables.suggestions.get(suggestion_id)

    def insert(self, *, suggestion: AiSuggestion) -> AiSuggestion:
        self._tables.suggestions[suggestion.id] = suggestion
        return suggestion

    def update(self, *, suggestion: AiSuggestion, expected_revision: int) -> AiSuggestion:
        current = self._tables.suggestions.get(suggestion.id)
        _check_revision("ai_suggestion", suggestion.id, current, expected_revision)
        self._tables.suggestions[suggestion.id] = suggestion
        return suggestion

    def list_unreviewed(self, *, limit: int) -> Sequence[AiSuggestion]:
        items = [
            item
            for item in self._tables.suggestions.values()
            if item.outcome == ReviewOutcome.UNREVIEWED
        ]
        items.sort(key=lambda item: (item.confidence_score, item.created_at, item.id), reverse=True)
        return items[:limit]

    def list_for_data_source(
        self, *, data_source_id: str, limit: int
    ) -> Sequence[AiSuggestion]:
        items = [
            item
            for item in self._tables.suggestions.values()
            if item.data_source_id == data_source_id
        ]
        return _newest_first(items)[:limit]


class InMemoryAuditLogRepository:
    """Append-only audit ledger over in-memory tables."""

    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def append(self, *, entry: AuditLogEntry) -> bool:
        if entry.id in self._tables.audit:
            return False
        self._tables.audit[entry.id] = entry
        return True

    def query(self, *, query: AuditQuery) -> AuditPage:
        matches = [item for item in self._tables.audit.values() if _matches(item, query)]
        ordered = _newest_first(matches)
        return AuditPage(
            items=tuple(ordered[query.offset : query.offset + query.limit]),
            total=len(ordered),
            offset=query.offset,
            limit=query.limit,
        )


def _matches(entry: AuditLogEntry, query: AuditQuery) -> bool:
    if query.entity_type is not None and entry.entity_type != query.entity_type:
        return False
    if query.entity_id is not None and entry.entity_id != query.entity_id:
        return False
    if query.actor_id is not None and entry.actor_id != query.actor_id:
        return False
    if query.action is not None and entry.action != query.action:
        return False
    if query.correlation_id is not None and entry.correlation_id != query.correlation_id:
        return False
    if query.created_from is not None and entry.created_at < query.created_from:
        return False
    if query.created_to is not None and entry.created_at > query.created_to:
        return False
    return True


def _newest_first(items: list) -> list:
    return sorted(items, key=lambda item: (item.created_at, item.id), reverse=True)


def _check_revision(
    entity_type: str,
    entity_id: str,
    current: SchemaVersion | ChangeRequest | AiSuggestion | None,
    expected_revision: int,
) -> None:
    if current is None:
        raise EntityNotFound(entity_type, entity_id)
    if current.revision != expected_revision:
        raise ConcurrencyConflict(
            entity_type=entity_type,
            entity_id=entity_id,
            expected=expected_revision,
            actual=current.revision,
        )

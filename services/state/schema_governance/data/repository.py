"""Authoritative Postgres repositories for Schema Governance Service state."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Table, func, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from packages.governance_shared.ids import ulid_bytes_to_str, ulid_str_to_bytes
from resources.substrates.postgres.schema_session import ServiceSchemaSessionProvider
from services.state.schema_governance.domain import (
    AiSuggestion,
    ApprovalLayer,
    ApprovalStatus,
    AuditAction,
    AuditLogEntry,
    AuditPage,
    AuditQuery,
    ChangeApproval,
    ChangeRequest,
    ChangeType,
    DataSource,
    DataSourceType,
    EntityType,
    ReviewOutcome,
    SchemaLockType,
    SchemaVersion,
    SemanticVersion,
)
from services.state.schema_governance.errors import (
    ConcurrencyConflict,
    DataSourceExists,
    DuplicateApproval,
    DuplicateVersion,
    EntityNotFound,
)
from services.state.schema_governance.interfaces import GovernanceRepositories

from .schema import (
    ai_suggestions,
    audit_log_entries,
    change_approvals,
    change_requests,
    data_sources,
    schema_versions,
)

_PENDING_APPROVAL = (
    ApprovalStatus.SUBMITTED.value,
    ApprovalStatus.TECHNICAL_APPROVED.value,
    ApprovalStatus.BUSINESS_APPROVED.value,
)


class PostgresGovernanceStore:
    """Governance store over service-owned Postgres schema tables."""

    def __init__(self, sessions: ServiceSchemaSessionProvider) -> None:
        self._sessions = sessions

    @contextmanager
    def begin(self) -> Iterator[GovernanceRepositories]:
        """Open one schema-scoped transaction and bind repositories to it."""
        with self._sessions.session() as session:
            yield GovernanceRepositories(
                data_sources=PostgresDataSourceRegistry(session),
                versions=PostgresSchemaVersionRepository(session),
                change_requests=PostgresChangeRequestRepository(session),
                suggestions=PostgresAiSuggestionRepository(session),
                audit=PostgresAuditLogRepository(session),
            )

    def ping(self) -> bool:
        """Return whether the owned schema answers a trivial query."""
        with self._sessions.session() as session:
            session.execute(text("SELECT 1"))
        return True


class PostgresDataSourceRegistry:
    """SQL data source registry."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, *, data_source_id: str) -> DataSource | None:
        """Read one data source row by id."""
        row = _one_or_none(
            self._session,
            select(data_sources).where(data_sources.c.id == _id(data_source_id)),
        )
        return None if row is None else _to_data_source(row)

    def get_by_name(self, *, name: str) -> DataSource | None:
        """Read one data source row by unique name."""
        row = _one_or_none(
            self._session, select(data_sources).where(data_sources.c.name == name)
        )
        return None if row is None else _to_data_source(row)

    def list(self, *, active_only: bool, limit: int) -> Sequence[DataSource]:
        """List data source rows ordered by name."""
        stmt = select(data_sources).order_by(data_sources.c.name).limit(limit)
        if active_only:
            stmt = stmt.where(data_sources.c.is_active.is_(True))
        rows = self._session.execute(stmt).mappings().all()
        return [_to_data_source(row) for row in rows]

    def register(self, *, data_source: DataSource) -> DataSource:
        """Insert one data source row; names are unique."""
        stmt = (
            insert(data_sources)
            .values(
                id=_id(data_source.id),
                name=data_source.name,
                description=data_source.description,
                source_type=data_source.source_type.value,
                connection_reference=data_source.connection_reference,
                is_active=data_source.is_active,
                last_connected_at=data_source.last_connected_at,
                last_validated_at=data_source.last_validated_at,
                created_at=data_source.created_at,
                revision=data_source.revision,
            )
            .on_conflict_do_nothing(constraint="uq_data_sources_name")
        )
        result = self._session.execute(stmt)
        if int(result.rowcount or 0) == 0:
            raise DataSourceExists(data_source.name)
        return data_source

    def record_validation(self, *, data_source_id: str, at: datetime) -> DataSource:
        """Stamp last-validated time and bump the revision."""
        row = (
            self._session.execute(
                update(data_sources)
                .where(data_sources.c.id == _id(data_source_id))
                .values(last_validated_at=at, revision=data_sources.c.revision + 1)
                .returning(*data_sources.c)
            )
            .mappings()
            .one_or_none()
        )
        if row is None:
            raise EntityNotFound("data_source", data_source_id)
        return _to_data_source(row)


class PostgresSchemaVersionRepository:
    """SQL schema version repository with revision compare-and-swap."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, *, schema_version_id: str) -> SchemaVersion | None:
        """Read one version row by id."""
        row = _one_or_none(
            self._session,
            select(schema_versions).where(schema_versions.c.id == _id(schema_version_id)),
        )
        return None if row is None else _to_version(row)

    def list_for_data_source(
        self, *, data_source_id: str, limit: int
    ) -> Sequence[SchemaVersion]:
        """List version rows for one data source, highest number first."""
        rows = (
            self._session.execute(
                select(schema_versions)
                .where(schema_versions.c.data_source_id == _id(data_source_id))
                .order_by(
                    schema_versions.c.major.desc(),
                    schema_versions.c.minor.desc(),
                    schema_versions.c.patch.desc(),
                )
                .limit(limit)
            )
            .mappings()
            .all()
        )
        return [_to_version(row) for row in rows]

    def latest_for_data_source(self, *, data_source_id: str) -> SchemaVersion | None:
        """Return the highest-numbered version row."""
        items = self.list_for_data_source(data_source_id=data_source_id, limit=1)
        return items[0] if items else None

    def latest_applied(self, *, data_source_id: str) -> SchemaVersion | None:
        """Return the applied version with the newest applied-at stamp."""
        row = _one_or_none(
            self._session,
            select(schema_versions)
            .where(
                schema_versions.c.data_source_id == _id(data_source_id),
                schema_versions.c.status == ApprovalStatus.APPLIED.value,
                schema_versions.c.applied_at.is_not(None),
            )
            .order_by(schema_versions.c.applied_at.desc())
            .limit(1),
        )
        return None if row is None else _to_version(row)

    def insert(self, *, version: SchemaVersion) -> SchemaVersion:
        """Insert one version row; numbers are unique per data source."""
        stmt = (
            insert(schema_versions)
            .values(
                id=_id(version.id),
                data_source_id=_id(version.data_source_id),
                major=version.version.major,
                minor=version.version.minor,
                patch=version.version.patch,
                parent_version_id=_id_or_none(version.parent_version_id),
                created_at=version.created_at,
                created_by=version.created_by,
                **_version_mutable_values(version),
            )
            .on_conflict_do_nothing(constraint="uq_schema_versions_number")
        )
        result = self._session.execute(stmt)
        if int(result.rowcount or 0) == 0:
            raise DuplicateVersion(version.data_source_id, version=str(version.version))
        return version

    def update(self, *, version: SchemaVersion, expected_revision: int) -> SchemaVersion:
        """Update mutable version columns when the stored revision matches.

        The parent link is never written after insert.
        """
        row = _compare_and_swap(
            self._session,
            table=schema_versions,
            entity_type="schema_version",
            entity_id=version.id,
            expected_revision=expected_revision,
            values=_version_mutable_values(version),
        )
        return _to_version(row)


class PostgresChangeRequestRepository:
    """SQL change request repository with per-layer approval rows."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, *, change_request_id: str) -> ChangeRequest | None:
        """Read one request row hydrated with approval rows."""
        row = _one_or_none(
            self._session,
            select(change_requests).where(change_requests.c.id == _id(change_request_id)),
        )
        return None if row is None else self._hydrate(row)

    def get_for_update(self, *, change_request_id: str) -> ChangeRequest | None:
        """Read one request row with ``FOR UPDATE`` so racing writers queue."""
        row = _one_or_none(
            self._session,
            select(change_requests)
            .where(change_requests.c.id == _id(change_request_id))
            .with_for_update(),
        )
        return None if row is None else self._hydrate(row)

    def list_for_version(
        self, *, schema_version_id: str, limit: int
    ) -> Sequence[ChangeRequest]:
        """List requests targeting one version, newest first."""
        rows = (
            self._session.execute(
                select(change_requests)
                .where(change_requests.c.schema_version_id == _id(schema_version_id))
                .order_by(change_requests.c.created_at.desc(), change_requests.c.id.desc())
                .limit(limit)
            )
            .mappings()
            .all()
        )
        return [self._hydrate(row) for row in rows]

    def list_pending_approvals(self, *, limit: int) -> Sequence[ChangeRequest]:
        """List requests still collecting layer decisions, newest first."""
        rows = (
            self._session.execute(
                select(change_requests)
                .where(change_requests.c.status.in_(_PENDING_APPROVAL))
                .order_by(change_requests.c.created_at.desc(), change_requests.c.id.desc())
                .limit(limit)
            )
            .mappings()
            .all()
        )
        return [self._hydrate(row) for row in rows]

    def insert(self, *, request: ChangeRequest) -> ChangeRequest:
        """Insert one request row."""
        self._session.execute(
            insert(change_requests).values(
                id=_id(request.id),
                schema_version_id=_id(request.schema_version_id),
                change_type=request.change_type.value,
                change_details=request.change_details,
                description=request.description,
                is_ai_suggested=request.is_ai_suggested,
                ai_confidence=request.ai_confidence,
                is_destructive=request.is_destructive,
                created_at=request.created_at,
                created_by=request.created_by,
                **_request_mutable_values(request),
            )
        )
        return request.model_copy(update={"approvals": ()})

    def update(self, *, request: ChangeRequest, expected_revision: int) -> ChangeRequest:
        """Update mutable request columns when the stored revision matches."""
        row = _compare_and_swap(
            self._session,
            table=change_requests,
            entity_type="change_request",
            entity_id=request.id,
            expected_revision=expected_revision,
            values=_request_mutable_values(request),
        )
        return self._hydrate(row)

    def add_approval(self, *, approval: ChangeApproval) -> ChangeApproval:
        """Insert one approval row; the (request, layer) pair is unique."""
        result = self._session.execute(
            insert(change_approvals)
            .values(
                id=_id(approval.id),
                request_id=_id(approval.request_id),
                layer=approval.layer.value,
                is_approved=approval.is_approved,
                approver_id=approval.approver_id,
                approver_name=approval.approver_name,
                comments=approval.comments,
                approved_at=approval.approved_at,
            )
            .on_conflict_do_nothing(constraint="uq_change_approvals_request_layer")
        )
        if int(result.rowcount or 0) == 0:
            raise DuplicateApproval(approval.request_id, layer=approval.layer.value)
        return approval

    def _hydrate(self, row: Any) -> ChangeRequest:
        approval_rows = (
            self._session.execute(
                select(change_approvals)
                .where(change_approvals.c.request_id == row["id"])
                .order_by(change_approvals.c.approved_at)
            )
            .mappings()
            .all()
        )
        return _to_request(row, approvals=tuple(_to_approval(item) for item in approval_rows))


class PostgresAiSuggestionRepository:
    """SQL AI suggestion repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, *, suggestion_id: str) -> AiSuggestion | None:
        """Read one suggestion row by id."""
        row = _one_or_none(
            self._session,
            select(ai_suggestions).where(ai_suggestions.c.id == _id(suggestion_id)),
        )
        return None if row is None else _to_suggestion(row)

    def insert(self, *, suggestion: AiSuggestion) -> AiSuggestion:
        """Insert one suggestion row."""
        self._session.execute(
            insert(ai_suggestions).values(
                id=_id(suggestion.id),
                data_source_id=_id(suggestion.data_source_id),
                schema_version_id=_id_or_none(suggestion.schema_version_id),
                suggested_change_type=suggestion.suggested_change_type.value,
                suggestion_details=suggestion.suggestion_details,
                reasoning=suggestion.reasoning,
                triggering_patterns=list(suggestion.triggering_patterns),
                confidence_score=suggestion.confidence_score,
                created_at=suggestion.created_at,
                **_suggestion_mutable_values(suggestion),
            )
        )
        return suggestion

    def update(self, *, suggestion: AiSuggestion, expected_revision: int) -> AiSuggestion:
        """Update review columns when the stored revision matches."""
        row = _compare_and_swap(
            self._session,
            table=ai_suggestions,
            entity_type="ai_suggestion",
            entity_id=suggestion.id,
            expected_revision=expected_revision,
            values=_suggestion_mutable_values(suggestion),
        )
        return _to_suggestion(row)

    def list_unreviewed(self, *, limit: int) -> Sequence[AiSuggestion]:
        """List unreviewed suggestions by confidence, then newest first."""
        rows = (
            self._session.execute(
                select(ai_suggestions)
                .where(ai_suggestions.c.outcome == ReviewOutcome.UNREVIEWED.value)
                .order_by(
                    ai_suggestions.c.confidence_score.desc(),
                    ai_suggestions.c.created_at.desc(),
                    ai_suggestions.c.id.desc(),
                )
                .limit(limit)
            )
            .mappings()
            .all()
        )
        return [_to_suggestion(row) for row in rows]

    def list_for_data_source(
        self, *, data_source_id: str, limit: int
    ) -> Sequence[AiSuggestion]:
        """List suggestions for one data source, newest first."""
        rows = (
            self._session.execute(
                select(ai_suggestions)
                .where(ai_suggestions.c.data_source_id == _id(data_source_id))
                .order_by(ai_suggestions.c.created_at.desc(), ai_suggestions.c.id.desc())
                .limit(limit)
            )
            .mappings()
            .all()
        )
        return [_to_suggestion(row) for row in rows]


class PostgresAuditLogRepository:
    """Append-only SQL audit ledger."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def append(self, *, entry: AuditLogEntry) -> bool:
        """Insert one entry; a replayed id is ignored."""
        result = self._session.execute(
            insert(audit_log_entries)
            .values(
                id=_id(entry.id),
                action=entry.action.value,
                entity_type=entry.entity_type.value,
                entity_id=entry.entity_id,
                actor_id=entry.actor_id,
                actor_name=entry.actor_name,
                state_before=entry.state_before,
                state_after=entry.state_after,
                note=entry.note,
                correlation_id=entry.correlation_id,
                created_at=entry.created_at,
            )
            .on_conflict_do_nothing(index_elements=["id"])
        )
        return int(result.rowcount or 0) > 0

    def query(self, *, query: AuditQuery) -> AuditPage:
        """Return one filtered page of entries, newest first, with total count."""
        conditions = []
        if query.entity_type is not None:
            conditions.append(audit_log_entries.c.entity_type == query.entity_type.value)
        if query.entity_id is not None:
            conditions.append(audit_log_entries.c.entity_id == query.entity_id)
        if query.actor_id is not None:
            conditions.append(audit_log_entries.c.actor_id == query.actor_id)
        if query.action is not None:
            conditions.append(audit_log_entries.c.action == query.action.value)
        if query.correlation_id is not None:
            conditions.append(audit_log_entries.c.correlation_id == query.correlation_id)
        if query.created_from is not None:
            conditions.append(audit_log_entries.c.created_at >= query.created_from)
        if query.created_to is not None:
            conditions.append(audit_log_entries.c.created_at <= query.created_to)

        total = int(
            self._session.execute(
                select(func.count()).select_from(audit_log_entries).where(*conditions)
            ).scalar_one()
        )
        rows = (
            self._session.execute(
                select(audit_log_entries)
                .where(*conditions)
                .order_by(audit_log_entries.c.created_at.desc(), audit_log_entries.c.id.desc())
                .offset(query.offset)
                .limit(query.limit)
            )
            .mappings()
            .all()
        )
        return AuditPage(
            items=tuple(_to_audit(row) for row in rows),
            total=total,
            offset=query.offset,
            limit=query.limit,
        )


def _compare_and_swap(
    session: Session,
    *,
    table: Table,
    entity_type: str,
    entity_id: str,
    expected_revision: int,
    values: dict[str, Any],
) -> Any:
    """Update one row guarded by its revision and return the new row."""
    row = (
        session.execute(
            update(table)
            .where(table.c.id == _id(entity_id), table.c.revision == expected_revision)
            .values(**values)
            .returning(*table.c)
        )
        .mappings()
        .one_or_none()
    )
    if row is not None:
        return row
    actual = session.execute(
        select(table.c.revision).where(table.c.id == _id(entity_id))
    ).scalar_one_or_none()
    if actual is None:
        raise EntityNotFound(entity_type, entity_id)
    raise ConcurrencyConflict(
        entity_type=entity_type,
        entity_id=entity_id,
        expected=expected_revision,
        actual=int(actual),
    )


def _version_mutable_values(version: SchemaVersion) -> dict[str, Any]:
    return {
        "schema_definition": version.schema_definition,
        "orm_mappings": version.orm_mappings,
        "migration_script": version.migration_script,
        "rollback_script": version.rollback_script,
        "change_description": version.change_description,
        "status": version.status.value,
        "lock_type": version.lock_type.value,
        "applied_at": version.applied_at,
        "applied_by": version.applied_by,
        "rolled_back_at": version.rolled_back_at,
        "rolled_back_by": version.rolled_back_by,
        "updated_at": version.updated_at,
        "updated_by": version.updated_by,
        "revision": version.revision,
    }


def _request_mutable_values(request: ChangeRequest) -> dict[str, Any]:
    return {
        "justification": request.justification,
        "impact_analysis": request.impact_analysis,
        "status": request.status.value,
        "applied_version_id": _id_or_none(request.applied_version_id),
        "updated_at": request.updated_at,
        "updated_by": request.updated_by,
        "revision": request.revision,
    }


def _suggestion_mutable_values(suggestion: AiSuggestion) -> dict[str, Any]:
    return {
        "outcome": suggestion.outcome.value,
        "reviewed_by": suggestion.reviewed_by,
        "reviewed_at": suggestion.reviewed_at,
        "review_comments": suggestion.review_comments,
        "change_request_id": _id_or_none(suggestion.change_request_id),
        "revision": suggestion.revision,
    }


def _one_or_none(session: Session, stmt: Any) -> Any:
    return session.execute(stmt).mappings().one_or_none()


def _id(value: str) -> bytes:
    return ulid_str_to_bytes(value)


def _id_or_none(value: str | None) -> bytes | None:
    return None if value is None else ulid_str_to_bytes(value)


def _str_id(value: Any) -> str:
    return ulid_bytes_to_str(bytes(value))


def _str_id_or_none(value: Any) -> str | None:
    return None if value is None else _str_id(value)


def _to_data_source(row: Any) -> DataSource:
    """Map one SQL row to a data source model."""
    return DataSource(
        id=_str_id(row["id"]),
        name=str(row["name"]),
        description=str(row["description"]),
        source_type=DataSourceType(row["source_type"]),
        connection_reference=str(row["connection_reference"]),
        is_active=bool(row["is_active"]),
        last_connected_at=_row_dt_or_none(row, "last_connected_at"),
        last_validated_at=_row_dt_or_none(row, "last_validated_at"),
        created_at=_row_dt(row, "created_at"),
        revision=int(row["revision"]),
    )


def _to_version(row: Any) -> SchemaVersion:
    """Map one SQL row to a schema version model."""
    return SchemaVersion(
        id=_str_id(row["id"]),
        data_source_id=_str_id(row["data_source_id"]),
        version=SemanticVersion(
            major=int(row["major"]), minor=int(row["minor"]), patch=int(row["patch"])
        ),
        schema_definition=str(row["schema_definition"]),
        orm_mappings=str(row["orm_mappings"]),
        migration_script=str(row["migration_script"]),
        rollback_script=str(row["rollback_script"]),
        change_description=str(row["change_description"]),
        status=ApprovalStatus(row["status"]),
        lock_type=SchemaLockType(row["lock_type"]),
        parent_version_id=_str_id_or_none(row["parent_version_id"]),
        applied_at=_row_dt_or_none(row, "applied_at"),
        applied_by=row["applied_by"],
        rolled_back_at=_row_dt_or_none(row, "rolled_back_at"),
        rolled_back_by=row["rolled_back_by"],
        created_at=_row_dt(row, "created_at"),
        created_by=str(row["created_by"]),
        updated_at=_row_dt_or_none(row, "updated_at"),
        updated_by=row["updated_by"],
        revision=int(row["revision"]),
    )


def _to_request(row: Any, *, approvals: tuple[ChangeApproval, ...]) -> ChangeRequest:
    """Map one SQL row plus approvals to a change request model."""
    confidence = row["ai_confidence"]
    return ChangeRequest(
        id=_str_id(row["id"]),
        schema_version_id=_str_id(row["schema_version_id"]),
        change_type=ChangeType(row["change_type"]),
        change_details=str(row["change_details"]),
        description=str(row["description"]),
        justification=str(row["justification"]),
        impact_analysis=str(row["impact_analysis"]),
        status=ApprovalStatus(row["status"]),
        is_ai_suggested=bool(row["is_ai_suggested"]),
        ai_confidence=None if confidence is None else float(confidence),
        is_destructive=bool(row["is_destructive"]),
        approvals=approvals,
        applied_version_id=_str_id_or_none(row["applied_version_id"]),
        created_at=_row_dt(row, "created_at"),
        created_by=str(row["created_by"]),
        updated_at=_row_dt_or_none(row, "updated_at"),
        updated_by=row["updated_by"],
        revision=int(row["revision"]),
    )


def _to_approval(row: Any) -> ChangeApproval:
    """Map one SQL row to a layer approval model."""
    return ChangeApproval(
        id=_str_id(row["id"]),
        request_id=_str_id(row["request_id"]),
        layer=ApprovalLayer(row["layer"]),
        is_approved=bool(row["is_approved"]),
        approver_id=str(row["approver_id"]),
        approver_name=str(row["approver_name"]),
        comments=str(row["comments"]),
        approved_at=_row_dt(row, "approved_at"),
    )


def _to_suggestion(row: Any) -> AiSuggestion:
    """Map one SQL row to an AI suggestion model."""
    return AiSuggestion(
        id=_str_id(row["id"]),
        data_source_id=_str_id(row["data_source_id"]),
        schema_version_id=_str_id_or_none(row["schema_version_id"]),
        suggested_change_type=ChangeType(row["suggested_change_type"]),
        suggestion_details=str(row["suggestion_details"]),
        reasoning=str(row["reasoning"]),
        triggering_patterns=tuple(str(item) for item in row["triggering_patterns"] or ()),
        confidence_score=float(row["confidence_score"]),
        outcome=ReviewOutcome(row["outcome"]),
        reviewed_by=row["reviewed_by"],
        reviewed_at=_row_dt_or_none(row, "reviewed_at"),
        review_comments=str(row["review_comments"]),
        change_request_id=_str_id_or_none(row["change_request_id"]),
        created_at=_row_dt(row, "created_at"),
        revision=int(row["revision"]),
    )


def _to_audit(row: Any) -> AuditLogEntry:
    """Map one SQL row to an audit entry model."""
    return AuditLogEntry(
        id=_str_id(row["id"]),
        action=AuditAction(row["action"]),
        entity_type=EntityType(row["entity_type"]),
        entity_id=str(row["entity_id"]),
        actor_id=str(row["actor_id"]),
        actor_name=str(row["actor_name"]),
        state_before=row["state_before"],
        state_after=row["state_after"],
        note=str(row["note"]),
        correlation_id=row["correlation_id"],
        created_at=_row_dt(row, "created_at"),
    )


def _row_dt(row: Any, column: str) -> datetime:
    """Read and normalize one timezone-aware datetime field from SQL row."""
    value = row.get(column)
    if not isinstance(value, datetime):
        raise ValueError(f"expected datetime column for {column}")
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _row_dt_or_none(row: Any, column: str) -> datetime | None:
    if row.get(column) is None:
        return None
    return _row_dt(row, column)

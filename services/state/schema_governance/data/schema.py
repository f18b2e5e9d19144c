"""SQLAlchemy table definitions owned by Schema Governance Service."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

from packages.governance_shared.ids import ulid_column, ulid_primary_key_column

metadata = MetaData()


def _created_at() -> Column:
    return Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


def _revision() -> Column:
    return Column("revision", Integer, nullable=False, server_default="1")


data_sources = Table(
    "data_sources",
    metadata,
    ulid_primary_key_column("id"),
    Column("name", String(200), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("source_type", String(32), nullable=False),
    Column("connection_reference", Text, nullable=False, server_default=""),
    Column("is_active", Boolean, nullable=False, server_default="true"),
    Column("last_connected_at", DateTime(timezone=True), nullable=True),
    Column("last_validated_at", DateTime(timezone=True), nullable=True),
    _created_at(),
    _revision(),
    UniqueConstraint("name", name="uq_data_sources_name"),
    CheckConstraint("revision >= 1", name="ck_data_sources_revision"),
)

schema_versions = Table(
    "schema_versions",
    metadata,
    ulid_primary_key_column("id"),
    ulid_column("data_source_id", foreign_key="data_sources.id"),
    Column("major", Integer, nullable=False),
    Column("minor", Integer, nullable=False),
    Column("patch", Integer, nullable=False),
    Column("schema_definition", Text, nullable=False),
    Column("orm_mappings", Text, nullable=False),
    Column("migration_script", Text, nullable=False),
    Column("rollback_script", Text, nullable=False),
    Column("change_description", Text, nullable=False, server_default=""),
    Column("status", String(32), nullable=False),
    Column("lock_type", String(32), nullable=False, server_default="none"),
    ulid_column("parent_version_id", foreign_key="schema_versions.id", nullable=True),
    Column("applied_at", DateTime(timezone=True), nullable=True),
    Column("applied_by", String(128), nullable=True),
    Column("rolled_back_at", DateTime(timezone=True), nullable=True),
    Column("rolled_back_by", String(128), nullable=True),
    _created_at(),
    Column("created_by", String(128), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
    Column("updated_by", String(128), nullable=True),
    _revision(),
    UniqueConstraint(
        "data_source_id",
        "major",
        "minor",
        "patch",
        name="uq_schema_versions_number",
    ),
    CheckConstraint(
        "major >= 0 AND minor >= 0 AND patch >= 0",
        name="ck_schema_versions_number_nonnegative",
    ),
    CheckConstraint("revision >= 1", name="ck_schema_versions_revision"),
    Index("ix_schema_versions_applied", "data_source_id", "applied_at"),
)

change_requests = Table(
    "change_requests",
    metadata,
    ulid_primary_key_column("id"),
    ulid_column("schema_version_id", foreign_key="schema_versions.id"),
    Column("change_type", String(32), nullable=False),
    Column("change_details", Text, nullable=False),
    Column("description", Text, nullable=False),
    Column("justification", Text, nullable=False, server_default=""),
    Column("impact_analysis", Text, nullable=False, server_default=""),
    Column("status", String(32), nullable=False),
    Column("is_ai_suggested", Boolean, nullable=False, server_default="false"),
    Column("ai_confidence", Float, nullable=True),
    Column("is_destructive", Boolean, nullable=False, server_default="false"),
    ulid_column("applied_version_id", foreign_key="schema_versions.id", nullable=True),
    _created_at(),
    Column("created_by", String(128), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
    Column("updated_by", String(128), nullable=True),
    _revision(),
    CheckConstraint("revision >= 1", name="ck_change_requests_revision"),
    Index("ix_change_requests_status_created", "status", "created_at"),
)

change_approvals = Table(
    "change_approvals",
    metadata,
    ulid_primary_key_column("id"),
    ulid_column("request_id", foreign_key="change_requests.id"),
    Column("layer", String(32), nullable=False),
    Column("is_approved", Boolean, nullable=False),
    Column("approver_id", String(128), nullable=False),
    Column("approver_name", String(200), nullable=False),
    Column("comments", Text, nullable=False, server_default=""),
    Column(
        "approved_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    ),
    UniqueConstraint("request_id", "layer", name="uq_change_approvals_request_layer"),
)

ai_suggestions = Table(
    "ai_suggestions",
    metadata,
    ulid_primary_key_column("id"),
    ulid_column("data_source_id", foreign_key="data_sources.id"),
    ulid_column("schema_version_id", foreign_key="schema_versions.id", nullable=True),
    Column("suggested_change_type", String(32), nullable=False),
    Column("suggestion_details", Text, nullable=False),
    Column("reasoning", Text, nullable=False),
    Column("triggering_patterns", JSONB, nullable=False, server_default="[]"),
    Column("confidence_score", Float, nullable=False),
    Column("outcome", String(16), nullable=False, server_default="unreviewed"),
    Column("reviewed_by", String(128), nullable=True),
    Column("reviewed_at", DateTime(timezone=True), nullable=True),
    Column("review_comments", Text, nullable=False, server_default=""),
    ulid_column("change_request_id", foreign_key="change_requests.id", nullable=True),
    _created_at(),
    _revision(),
    CheckConstraint(
        "confidence_score >= 0 AND confidence_score <= 100",
        name="ck_ai_suggestions_confidence_range",
    ),
    CheckConstraint(
        "change_request_id IS NULL OR outcome = 'accepted'",
        name="ck_ai_suggestions_link_requires_accept",
    ),
    CheckConstraint("revision >= 1", name="ck_ai_suggestions_revision"),
    Index("ix_ai_suggestions_unreviewed", "outcome", "confidence_score", "created_at"),
)

audit_log_entries = Table(
    "audit_log_entries",
    metadata,
    ulid_primary_key_column("id"),
    Column("action", String(64), nullable=False),
    Column("entity_type", String(32), nullable=False),
    Column("entity_id", String(26), nullable=False),
    Column("actor_id", String(128), nullable=False),
    Column("actor_name", String(200), nullable=False),
    Column("state_before", Text, nullable=True),
    Column("state_after", Text, nullable=True),
    Column("note", Text, nullable=False, server_default=""),
    Column("correlation_id", String(64), nullable=True),
    _created_at(),
    Index("ix_audit_log_entries_entity", "entity_type", "entity_id"),
    Index("ix_audit_log_entries_correlation", "correlation_id"),
    Index("ix_audit_log_entries_created_at", "created_at"),
)

"""create schema governance tables"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from packages.governance_shared.ids import ULID_DOMAIN_NAME
from services.state.schema_governance.data.runtime import (
    schema_governance_postgres_schema,
)

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _schema() -> str:
    """Resolve the canonical governance-owned schema name."""
    return schema_governance_postgres_schema()


def _ulid_domain(schema: str) -> postgresql.DOMAIN:
    """Return schema-local ULID domain reference."""
    return postgresql.DOMAIN(
        name=ULID_DOMAIN_NAME,
        data_type=postgresql.BYTEA(),
        schema=schema,
        create_type=False,
    )


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _revision(table: str) -> list[sa.SchemaItem]:
    return [
        sa.Column("revision", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("revision >= 1", name=f"ck_{table}_revision"),
    ]


def upgrade() -> None:
    """Create governance authoritative schema objects."""
    schema = _schema()

    op.create_table(
        "data_sources",
        sa.Column("id", _ulid_domain(schema), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("connection_reference", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("last_connected_at", nullable=True),
        _timestamp("last_validated_at", nullable=True),
        _timestamp("created_at"),
        *_revision("data_sources"),
        sa.UniqueConstraint("name", name="uq_data_sources_name"),
        schema=schema,
    )

    op.create_table(
        "schema_versions",
        sa.Column("id", _ulid_domain(schema), primary_key=True, nullable=False),
        sa.Column("data_source_id", _ulid_domain(schema), nullable=False),
        sa.Column("major", sa.Integer(), nullable=False),
        sa.Column("minor", sa.Integer(), nullable=False),
        sa.Column("patch", sa.Integer(), nullable=False),
        sa.Column("schema_definition", sa.Text(), nullable=False),
        sa.Column("orm_mappings", sa.Text(), nullable=False),
        sa.Column("migration_script", sa.Text(), nullable=False),
        sa.Column("rollback_script", sa.Text(), nullable=False),
        sa.Column("change_description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("lock_type", sa.String(length=32), nullable=False, server_default="none"),
        sa.Column("parent_version_id", _ulid_domain(schema), nullable=True),
        _timestamp("applied_at", nullable=True),
        sa.Column("applied_by", sa.String(length=128), nullable=True),
        _timestamp("rolled_back_at", nullable=True),
        sa.Column("rolled_back_by", sa.String(length=128), nullable=True),
        _timestamp("created_at"),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        _timestamp("updated_at", nullable=True),
        sa.Column("updated_by", sa.String(length=128), nullable=True),
        *_revision("schema_versions"),
        sa.ForeignKeyConstraint(["data_source_id"], [f"{schema}.data_sources.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["parent_version_id"], [f"{schema}.schema_versions.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("data_source_id", "major", "minor", "patch", name="uq_schema_versions_number"),
        sa.CheckConstraint(
            "major >= 0 AND minor >= 0 AND patch >= 0",
            name="ck_schema_versions_number_nonnegative",
        ),
        schema=schema,
    )

    op.create_table(
        "change_requests",
        sa.Column("id", _ulid_domain(schema), primary_key=True, nullable=False),
        sa.Column("schema_version_id", _ulid_domain(schema), nullable=False),
        sa.Column("change_type", sa.String(length=32), nullable=False),
        sa.Column("change_details", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("justification", sa.Text(), nullable=False, server_default=""),
        sa.Column("impact_analysis", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("is_ai_suggested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ai_confidence", sa.Float(), nullable=True),
        sa.Column("is_destructive", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("applied_version_id", _ulid_domain(schema), nullable=True),
        _timestamp("created_at"),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        _timestamp("updated_at", nullable=True),
        sa.Column("updated_by", sa.String(length=128), nullable=True),
        *_revision("change_requests"),
        sa.ForeignKeyConstraint(["schema_version_id"], [f"{schema}.schema_versions.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["applied_version_id"], [f"{schema}.schema_versions.id"], ondelete="RESTRICT"),
        schema=schema,
    )

    op.create_table(
        "change_approvals",
        sa.Column("id", _ulid_domain(schema), primary_key=True, nullable=False),
        sa.Column("request_id", _ulid_domain(schema), nullable=False),
        sa.Column("layer", sa.String(length=32), nullable=False),
        sa.Column("is_approved", sa.Boolean(), nullable=False),
        sa.Column("approver_id", sa.String(length=128), nullable=False),
        sa.Column("approver_name", sa.String(length=200), nullable=False),
        sa.Column("comments", sa.Text(), nullable=False, server_default=""),
        _timestamp("approved_at"),
        sa.ForeignKeyConstraint(["request_id"], [f"{schema}.change_requests.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("request_id", "layer", name="uq_change_approvals_request_layer"),
        schema=schema,
    )

    op.create_table(
        "ai_suggestions",
        sa.Column("id", _ulid_domain(schema), primary_key=True, nullable=False),
        sa.Column("data_source_id", _ulid_domain(schema), nullable=False),
        sa.Column("schema_version_id", _ulid_domain(schema), nullable=True),
        sa.Column("suggested_change_type", sa.String(length=32), nullable=False),
        sa.Column("suggestion_details", sa.Text(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column(
            "triggering_patterns",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("outcome", sa.String(length=16), nullable=False, server_default="unreviewed"),
        sa.Column("reviewed_by", sa.String(length=128), nullable=True),
        _timestamp("reviewed_at", nullable=True),
        sa.Column("review_comments", sa.Text(), nullable=False, server_default=""),
        sa.Column("change_request_id", _ulid_domain(schema), nullable=True),
        _timestamp("created_at"),
        *_revision("ai_suggestions"),
        sa.ForeignKeyConstraint(["data_source_id"], [f"{schema}.data_sources.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["schema_version_id"], [f"{schema}.schema_versions.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["change_request_id"], [f"{schema}.change_requests.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 100",
            name="ck_ai_suggestions_confidence_range",
        ),
        sa.CheckConstraint(
            "change_request_id IS NULL OR outcome = 'accepted'",
            name="ck_ai_suggestions_link_requires_accept",
        ),
        schema=schema,
    )

    op.create_table(
        "audit_log_entries",
        sa.Column("id", _ulid_domain(schema), primary_key=True, nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=26), nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("actor_name", sa.String(length=200), nullable=False),
        sa.Column("state_before", sa.Text(), nullable=True),
        sa.Column("state_after", sa.Text(), nullable=True),
        sa.Column("note", sa.Text(), nullable=False, server_default=""),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        _timestamp("created_at"),
        schema=schema,
    )

    op.create_index(
        "ix_schema_versions_applied",
        "schema_versions",
        ["data_source_id", "applied_at"],
        unique=False,
        schema=schema,
    )
    op.create_index(
        "ix_change_requests_status_created",
        "change_requests",
        ["status", "created_at"],
        unique=False,
        schema=schema,
    )
    op.create_index(
        "ix_ai_suggestions_unreviewed",
        "ai_suggestions",
        ["outcome", "confidence_score", "created_at"],
        unique=False,
        schema=schema,
    )
    op.create_index(
        "ix_audit_log_entries_entity",
        "audit_log_entries",
        ["entity_type", "entity_id"],
        unique=False,
        schema=schema,
    )
    op.create_index(
        "ix_audit_log_entries_correlation",
        "audit_log_entries",
        ["correlation_id"],
        unique=False,
        schema=schema,
    )
    op.create_index(
        "ix_audit_log_entries_created_at",
        "audit_log_entries",
        ["created_at"],
        unique=False,
        schema=schema,
    )


def downgrade() -> None:
    """Drop governance authoritative schema objects."""
    schema = _schema()

    op.drop_index("ix_audit_log_entries_created_at", table_name="audit_log_entries", schema=schema)
    op.drop_index("ix_audit_log_entries_correlation", table_name="audit_log_entries", schema=schema)
    op.drop_index("ix_audit_log_entries_entity", table_name="audit_log_entries", schema=schema)
    op.drop_index("ix_ai_suggestions_unreviewed", table_name="ai_suggestions", schema=schema)
    op.drop_index("ix_change_requests_status_created", table_name="change_requests", schema=schema)
    op.drop_index("ix_schema_versions_applied", table_name="schema_versions", schema=schema)

    op.drop_table("audit_log_entries", schema=schema)
    op.drop_table("ai_suggestions", schema=schema)
    op.drop_table("change_approvals", schema=schema)
    op.drop_table("change_requests", schema=schema)
    op.drop_table("schema_versions", schema=schema)
    op.drop_table("data_sources", schema=schema)

"""Domain contracts for Schema Governance Service entities and payloads.

All entities are immutable pydantic models. Mutations produce a new instance
with ``revision`` incremented by one; the previous revision is the
compare-and-swap token the store checks on update.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

EXTRA_APPROVAL_CONFIDENCE_THRESHOLD = 80.0
AI_CONFIDENCE_MIN = 0.0
AI_CONFIDENCE_MAX = 100.0


def utc_now() -> datetime:
    """Return current UTC timestamp."""
    return datetime.now(UTC)


class ApprovalLayer(str, Enum):
    """Independent sign-off gates shared by versions and change requests."""

    TECHNICAL = "technical"
    BUSINESS = "business"
    DATA_GOVERNANCE = "data_governance"


class ApprovalStatus(str, Enum):
    """Approval status shared by schema versions and change requests."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    TECHNICAL_APPROVED = "technical_approved"
    BUSINESS_APPROVED = "business_approved"
    FULLY_APPROVED = "fully_approved"
    REJECTED = "rejected"
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"


class SchemaLockType(str, Enum):
    """Lock policy attached to an applied schema version."""

    NONE = "none"
    SOFT_LOCK = "soft_lock"
    HARD_LOCK = "hard_lock"
    ADDITIVE_ONLY = "additive_only"


class ChangeType(str, Enum):
    """Structural change classification for change requests and suggestions."""

    ADD_TABLE = "add_table"
    ADD_COLUMN = "add_column"
    MODIFY_COLUMN = "modify_column"
    REMOVE_TABLE = "remove_table"
    REMOVE_COLUMN = "remove_column"
    ADD_INDEX = "add_index"
    REMOVE_INDEX = "remove_index"
    ADD_RELATIONSHIP = "add_relationship"
    MODIFY_RELATIONSHIP = "modify_relationship"
    REMOVE_RELATIONSHIP = "remove_relationship"
    RENAME_TABLE = "rename_table"
    RENAME_COLUMN = "rename_column"


DESTRUCTIVE_CHANGE_TYPES: frozenset[ChangeType] = frozenset(
    {
        ChangeType.REMOVE_TABLE,
        ChangeType.REMOVE_COLUMN,
        ChangeType.REMOVE_INDEX,
        ChangeType.REMOVE_RELATIONSHIP,
        ChangeType.MODIFY_COLUMN,
    }
)

HIGH_CONFIDENCE_CHANGE_TYPES: frozenset[ChangeType] = frozenset(
    {
        ChangeType.REMOVE_TABLE,
        ChangeType.REMOVE_COLUMN,
        ChangeType.MODIFY_COLUMN,
    }
)


class AuditAction(str, Enum):
    """Kinds of governed transitions recorded in the audit ledger."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SCHEMA_CHANGE_PROPOSED = "schema_change_proposed"
    SCHEMA_CHANGE_APPROVED = "schema_change_approved"
    SCHEMA_CHANGE_REJECTED = "schema_change_rejected"
    SCHEMA_CHANGE_APPLIED = "schema_change_applied"
    SCHEMA_CHANGE_ROLLED_BACK = "schema_change_rolled_back"
    AI_SUGGESTION_GENERATED = "ai_suggestion_generated"
    SCHEMA_LOCK_APPLIED = "schema_lock_applied"
    SCHEMA_LOCK_REMOVED = "schema_lock_removed"
    DATA_VALIDATION_EXECUTED = "data_validation_executed"
    OPERATION_REJECTED = "operation_rejected"


class EntityType(str, Enum):
    """Governed entity kinds referenced by audit entries."""

    DATA_SOURCE = "data_source"
    SCHEMA_VERSION = "schema_version"
    CHANGE_REQUEST = "change_request"
    AI_SUGGESTION = "ai_suggestion"


class DataSourceType(str, Enum):
    """Kinds of externally-owned data stores under governance."""

    SQL_SERVER = "sql_server"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    CSV_FILE = "csv_file"
    JSON_FILE = "json_file"
    REST_API = "rest_api"
    CLOUD_STORAGE = "cloud_storage"


class ReviewOutcome(str, Enum):
    """One-shot review outcome of an AI suggestion."""

    UNREVIEWED = "unreviewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Actor(BaseModel):
    """Opaque acting identity used only for audit attribution."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    actor_id: str = Field(min_length=1)
    name: str = Field(min_length=1)


class SemanticVersion(BaseModel):
    """Semantic version triple of one schema version."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    major: int = Field(ge=0)
    minor: int = Field(ge=0)
    patch: int = Field(ge=0)

    @property
    def key(self) -> tuple[int, int, int]:
        """Return the sortable (major, minor, patch) tuple."""
        return (self.major, self.minor, self.patch)

    def next_patch(self) -> "SemanticVersion":
        """Return this version with the patch number incremented."""
        return SemanticVersion(major=self.major, minor=self.minor, patch=self.patch + 1)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


INITIAL_VERSION = SemanticVersion(major=1, minor=0, patch=0)


class DataSource(BaseModel):
    """Registered external data source whose schema is governed."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str
    description: str = ""
    source_type: DataSourceType
    connection_reference: str = ""
    is_active: bool = True
    last_connected_at: datetime | None = None
    last_validated_at: datetime | None = None
    created_at: datetime
    revision: int = Field(default=1, ge=1)


class SchemaVersion(BaseModel):
    """Versioned snapshot of one data source's structural definition."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    data_source_id: str
    version: SemanticVersion
    schema_definition: str
    orm_mappings: str
    migration_script: str
    rollback_script: str
    change_description: str = ""
    status: ApprovalStatus = ApprovalStatus.PENDING
    lock_type: SchemaLockType = SchemaLockType.NONE
    parent_version_id: str | None = None
    applied_at: datetime | None = None
    applied_by: str | None = None
    rolled_back_at: datetime | None = None
    rolled_back_by: str | None = None
    created_at: datetime
    created_by: str
    updated_at: datetime | None = None
    updated_by: str | None = None
    revision: int = Field(default=1, ge=1)

    @property
    def version_string(self) -> str:
        """Return the dotted ``major.minor.patch`` string."""
        return str(self.version)

    @property
    def can_be_modified(self) -> bool:
        """Return whether no lock restricts dependent changes at all."""
        return self.lock_type in (SchemaLockType.NONE, SchemaLockType.SOFT_LOCK)

    @property
    def allows_only_additive(self) -> bool:
        """Return whether only non-destructive changes may target this version."""
        return self.lock_type == SchemaLockType.ADDITIVE_ONLY

    @property
    def is_fully_locked(self) -> bool:
        """Return whether no change may target this version."""
        return self.lock_type == SchemaLockType.HARD_LOCK


class ChangeApproval(BaseModel):
    """One layer's sign-off decision on a change request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    request_id: str
    layer: ApprovalLayer
    is_approved: bool
    approver_id: str
    approver_name: str
    comments: str = ""
    approved_at: datetime


class ChangeRequest(BaseModel):
    """Proposed modification against one schema version."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    schema_version_id: str
    change_type: ChangeType
    change_details: str
    description: str
    justification: str = ""
    impact_analysis: str = ""
    status: ApprovalStatus = ApprovalStatus.PENDING
    is_ai_suggested: bool = False
    ai_confidence: float | None = None
    is_destructive: bool = False
    approvals: tuple[ChangeApproval, ...] = ()
    applied_version_id: str | None = None
    created_at: datetime
    created_by: str
    updated_at: datetime | None = None
    updated_by: str | None = None
    revision: int = Field(default=1, ge=1)

    @property
    def approved_layers(self) -> frozenset[ApprovalLayer]:
        """Return layers that recorded an approving decision."""
        return frozenset(item.layer for item in self.approvals if item.is_approved)

    @property
    def is_ready_for_approval(self) -> bool:
        """Return whether the request was submitted with a justification."""
        return self.status == ApprovalStatus.SUBMITTED and bool(
            self.justification.strip()
        )

    @property
    def requires_extra_approval(self) -> bool:
        """Return the advisory extra-scrutiny flag.

        True for destructive changes and for AI-suggested changes whose
        confidence is below the threshold. Nothing gates on it.
        """
        if self.is_destructive:
            return True
        return (
            self.is_ai_suggested
            and self.ai_confidence is not None
            and self.ai_confidence < EXTRA_APPROVAL_CONFIDENCE_THRESHOLD
        )

    def approval_for(self, layer: ApprovalLayer) -> ChangeApproval | None:
        """Return the approval recorded for one layer, if any."""
        for item in self.approvals:
            if item.layer == layer:
                return item
        return None


class AiSuggestion(BaseModel):
    """System-generated, unapplied proposal awaiting one human review."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    data_source_id: str
    schema_version_id: str | None = None
    suggested_change_type: ChangeType
    suggestion_details: str
    reasoning: str
    triggering_patterns: tuple[str, ...] = ()
    confidence_score: float
    outcome: ReviewOutcome = ReviewOutcome.UNREVIEWED
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_comments: str = ""
    change_request_id: str | None = None
    created_at: datetime
    revision: int = Field(default=1, ge=1)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: object) -> float:
        """Clamp any numeric confidence into the inclusive [0, 100] range."""
        return clamp_confidence(float(value))  # type: ignore[arg-type]

    @property
    def is_reviewed(self) -> bool:
        """Return whether the single review already happened."""
        return self.outcome != ReviewOutcome.UNREVIEWED

    @property
    def is_accepted(self) -> bool:
        """Return whether the review accepted the suggestion."""
        return self.outcome == ReviewOutcome.ACCEPTED

    @property
    def requires_high_confidence(self) -> bool:
        """Return whether auto-suggestion flows should demand high confidence."""
        return self.suggested_change_type in HIGH_CONFIDENCE_CHANGE_TYPES


class AuditLogEntry(BaseModel):
    """Immutable record of one governed transition."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    action: AuditAction
    entity_type: EntityType
    entity_id: str
    actor_id: str
    actor_name: str
    state_before: str | None = None
    state_after: str | None = None
    note: str = ""
    correlation_id: str | None = None
    created_at: datetime


class AuditQuery(BaseModel):
    """Filter and paging arguments for audit-ledger queries."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_type: EntityType | None = None
    entity_id: str | None = None
    actor_id: str | None = None
    action: AuditAction | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    correlation_id: str | None = None
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=50, gt=0)


class AuditPage(BaseModel):
    """One page of audit entries, newest first, plus the unpaged total."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    items: tuple[AuditLogEntry, ...]
    total: int
    offset: int
    limit: int


class ChangeRequestApplyResult(BaseModel):
    """Payload of a successful change-request apply."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    change_request: ChangeRequest
    new_version: SchemaVersion


class SuggestionReviewResult(BaseModel):
    """Payload of one suggestion review, with any spawned change request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    suggestion: AiSuggestion
    change_request: ChangeRequest | None = None


class HealthStatus(BaseModel):
    """Service and owned store readiness payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_ready: bool
    store_ready: bool
    detail: str


def clamp_confidence(value: float) -> float:
    """Clamp one confidence score into ``[0, 100]``; NaN is not a score."""
    if math.isnan(value):
        raise ValueError("confidence score must be a number")
    return max(AI_CONFIDENCE_MIN, min(AI_CONFIDENCE_MAX, value))


def is_destructive(change_type: ChangeType) -> bool:
    """Return whether one change type removes or rewrites existing structure."""
    return change_type in DESTRUCTIVE_CHANGE_TYPES

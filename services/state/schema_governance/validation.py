"""Pydantic request-validation models for Schema Governance Service API.

Configurable length bounds arrive through the validation context under the
``"settings"`` key as a ``SchemaGovernanceSettings`` instance.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from packages.governance_shared.ids import is_ulid_str
from services.state.schema_governance.config import SchemaGovernanceSettings
from services.state.schema_governance.domain import (
    Actor,
    ApprovalLayer,
    AuditAction,
    ChangeType,
    DataSourceType,
    EntityType,
    SchemaLockType,
)

_DEFAULT_SETTINGS = SchemaGovernanceSettings()


def _settings(info: ValidationInfo) -> SchemaGovernanceSettings:
    """Return service settings from validation context, or defaults."""
    context = info.context or {}
    resolved = context.get("settings")
    if isinstance(resolved, SchemaGovernanceSettings):
        return resolved
    return _DEFAULT_SETTINGS


def _normalize_id(value: str, info: ValidationInfo) -> str:
    """Require a canonical ULID and normalize it to upper case."""
    normalized = value.strip().upper()
    if normalized == "":
        raise ValueError(f"{info.field_name} is required")
    if not is_ulid_str(normalized):
        raise ValueError(f"{info.field_name} must be a valid ULID string")
    return normalized


def _require_text(value: str, info: ValidationInfo) -> str:
    """Reject blank text."""
    if value.strip() == "":
        raise ValueError(f"{info.field_name} is required")
    return value


def _max_length(value: str, limit: int, info: ValidationInfo) -> str:
    if len(value) > limit:
        raise ValueError(f"{info.field_name} must be at most {limit} characters")
    return value


class _ValidationModel(BaseModel):
    """Base request model with strict shape semantics."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class _ActorRequest(_ValidationModel):
    """Request carrying the acting identity."""

    actor: Actor

    @field_validator("actor")
    @classmethod
    def _validate_actor(cls, value: Actor, info: ValidationInfo) -> Actor:
        """Bound the audit display name."""
        limit = _settings(info).max_approver_name_length
        if not value.name.strip():
            raise ValueError("actor.name is required")
        if len(value.name) > limit:
            raise ValueError(f"actor.name must be at most {limit} characters")
        return value


class _RevisionedRequest(_ActorRequest):
    """Mutating request with an optional compare-and-swap token."""

    expected_revision: int | None = Field(default=None, ge=1)


class LimitRequest(_ValidationModel):
    """Validated list paging request."""

    limit: int = Field(gt=0)

    @field_validator("limit")
    @classmethod
    def _validate_limit(cls, value: int, info: ValidationInfo) -> int:
        """Cap list sizes to configured maximum."""
        maximum = _settings(info).list_limit_max
        if value > maximum:
            raise ValueError(f"limit must be <= {maximum}")
        return value


class RegisterDataSourceRequest(_ActorRequest):
    """Validated data source registration."""

    name: str
    description: str = ""
    source_type: DataSourceType
    connection_reference: str = ""

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str, info: ValidationInfo) -> str:
        """Require a bounded, trimmed name."""
        normalized = _require_text(value, info).strip()
        return _max_length(normalized, _settings(info).max_data_source_name_length, info)

    @field_validator("description")
    @classmethod
    def _validate_description(cls, value: str, info: ValidationInfo) -> str:
        """Bound description length."""
        return _max_length(value.strip(), _settings(info).max_description_length, info)


class DataSourceIdRequest(_ValidationModel):
    """Validated request keyed by data source id."""

    data_source_id: str

    @field_validator("data_source_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)


class DataSourceNameRequest(_ValidationModel):
    """Validated request keyed by data source name."""

    name: str

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str, info: ValidationInfo) -> str:
        """Require a non-blank name."""
        return _require_text(value, info).strip()


class ListDataSourcesRequest(LimitRequest):
    """Validated data source listing."""

    active_only: bool = False


class ListByDataSourceRequest(LimitRequest):
    """Validated listing scoped to one data source."""

    data_source_id: str

    @field_validator("data_source_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)


class CreateSchemaVersionRequest(_ActorRequest):
    """Validated schema version creation."""

    data_source_id: str
    schema_definition: str
    orm_mappings: str
    migration_script: str
    rollback_script: str
    change_description: str = ""
    parent_version_id: str | None = None
    major: int | None = Field(default=None, ge=0)
    minor: int | None = Field(default=None, ge=0)
    patch: int | None = Field(default=None, ge=0)

    @field_validator("data_source_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)

    @field_validator("parent_version_id")
    @classmethod
    def _validate_parent(cls, value: str | None, info: ValidationInfo) -> str | None:
        """Validate optional parent ULID."""
        if value is None or value.strip() == "":
            return None
        return _normalize_id(value, info)

    @field_validator("schema_definition", "orm_mappings", "migration_script", "rollback_script")
    @classmethod
    def _validate_blobs(cls, value: str, info: ValidationInfo) -> str:
        """Require non-blank definition and script blobs."""
        return _require_text(value, info)

    @field_validator("change_description")
    @classmethod
    def _validate_description(cls, value: str, info: ValidationInfo) -> str:
        """Bound description length."""
        return _max_length(value.strip(), _settings(info).max_description_length, info)

    @model_validator(mode="after")
    def _numbers_all_or_nothing(self) -> "CreateSchemaVersionRequest":
        """Require either all three version numbers or none."""
        given = [item is not None for item in (self.major, self.minor, self.patch)]
        if any(given) and not all(given):
            raise ValueError("major, minor and patch must be given together")
        return self

    @property
    def has_explicit_number(self) -> bool:
        """Return whether the caller supplied a version number."""
        return self.major is not None


class SchemaVersionIdRequest(_ValidationModel):
    """Validated request keyed by schema version id."""

    schema_version_id: str

    @field_validator("schema_version_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)


class SchemaVersionTransitionRequest(_RevisionedRequest):
    """Validated schema version state transition."""

    schema_version_id: str
    reason: str = ""

    @field_validator("schema_version_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)

    @field_validator("reason")
    @classmethod
    def _validate_reason(cls, value: str, info: ValidationInfo) -> str:
        """Bound free-text reason."""
        return _max_length(value.strip(), _settings(info).max_description_length, info)


class ListByVersionRequest(LimitRequest):
    """Validated listing scoped to one schema version."""

    schema_version_id: str

    @field_validator("schema_version_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)


class ApproveSchemaVersionRequest(SchemaVersionTransitionRequest):
    """Validated sequential layer approval of a schema version."""

    layer: ApprovalLayer


class ApplySchemaLockRequest(SchemaVersionTransitionRequest):
    """Validated lock change on an applied schema version."""

    lock_type: SchemaLockType


class CreateChangeRequestRequest(_ActorRequest):
    """Validated change request creation."""

    schema_version_id: str
    change_type: ChangeType
    change_details: str
    description: str
    justification: str = ""
    impact_analysis: str = ""
    is_ai_suggested: bool = False
    ai_confidence: float | None = Field(default=None, ge=0.0, le=100.0)

    @field_validator("schema_version_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)

    @field_validator("change_details")
    @classmethod
    def _validate_details(cls, value: str, info: ValidationInfo) -> str:
        """Require change details."""
        return _require_text(value, info)

    @field_validator("description")
    @classmethod
    def _validate_description(cls, value: str, info: ValidationInfo) -> str:
        """Require a bounded description."""
        normalized = _require_text(value, info).strip()
        return _max_length(normalized, _settings(info).max_description_length, info)

    @field_validator("justification")
    @classmethod
    def _validate_justification(cls, value: str, info: ValidationInfo) -> str:
        """Bound an optional up-front justification."""
        normalized = value.strip()
        if normalized == "":
            return normalized
        return _justification_bounds(normalized, info)

    @field_validator("impact_analysis")
    @classmethod
    def _validate_impact(cls, value: str, info: ValidationInfo) -> str:
        """Bound impact analysis length."""
        return _max_length(value.strip(), _settings(info).max_impact_analysis_length, info)


class ChangeRequestIdRequest(_ValidationModel):
    """Validated request keyed by change request id."""

    change_request_id: str

    @field_validator("change_request_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)


class ChangeRequestTransitionRequest(_RevisionedRequest):
    """Validated change request state transition."""

    change_request_id: str
    reason: str = ""

    @field_validator("change_request_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)

    @field_validator("reason")
    @classmethod
    def _validate_reason(cls, value: str, info: ValidationInfo) -> str:
        """Bound free-text reason."""
        return _max_length(value.strip(), _settings(info).max_description_length, info)


class SubmitChangeRequestRequest(ChangeRequestTransitionRequest):
    """Validated change request submission."""

    justification: str | None = None

    @field_validator("justification")
    @classmethod
    def _validate_justification(cls, value: str | None, info: ValidationInfo) -> str | None:
        """Bound the justification when one is supplied."""
        if value is None:
            return None
        return _justification_bounds(_require_text(value, info).strip(), info)


class ApproveChangeRequestRequest(ChangeRequestTransitionRequest):
    """Validated layer decision on a change request."""

    layer: ApprovalLayer
    is_approved: bool
    comments: str = ""

    @field_validator("comments")
    @classmethod
    def _validate_comments(cls, value: str, info: ValidationInfo) -> str:
        """Bound comment length."""
        return _max_length(value.strip(), _settings(info).max_description_length, info)


class CreateAiSuggestionRequest(_ValidationModel):
    """Validated AI suggestion intake."""

    data_source_id: str
    schema_version_id: str | None = None
    suggested_change_type: ChangeType
    suggestion_details: str
    reasoning: str
    triggering_patterns: tuple[str, ...] = ()
    confidence_score: float = Field(allow_inf_nan=False)

    @field_validator("data_source_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)

    @field_validator("schema_version_id")
    @classmethod
    def _validate_version(cls, value: str | None, info: ValidationInfo) -> str | None:
        """Validate optional target version ULID."""
        if value is None or value.strip() == "":
            return None
        return _normalize_id(value, info)

    @field_validator("suggestion_details", "reasoning")
    @classmethod
    def _validate_text(cls, value: str, info: ValidationInfo) -> str:
        """Require suggestion text."""
        return _require_text(value, info)

    @field_validator("triggering_patterns")
    @classmethod
    def _normalize_patterns(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        """Drop blank patterns while keeping order."""
        return tuple(item.strip() for item in value if item.strip())


class SuggestionIdRequest(_ValidationModel):
    """Validated request keyed by suggestion id."""

    suggestion_id: str

    @field_validator("suggestion_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)


class ReviewSuggestionRequest(_RevisionedRequest):
    """Validated one-shot suggestion review."""

    suggestion_id: str
    comments: str = ""

    @field_validator("suggestion_id")
    @classmethod
    def _validate_id(cls, value: str, info: ValidationInfo) -> str:
        """Validate ULID identifier."""
        return _normalize_id(value, info)

    @field_validator("comments")
    @classmethod
    def _validate_comments(cls, value: str, info: ValidationInfo) -> str:
        """Bound comment length."""
        return _max_length(value.strip(), _settings(info).max_description_length, info)


class AuditQueryRequest(_ValidationModel):
    """Validated audit ledger query."""

    entity_type: EntityType | None = None
    entity_id: str | None = None
    actor_id: str | None = None
    action: AuditAction | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    correlation_id: str | None = None
    offset: int = Field(default=0, ge=0)
    limit: int = Field(gt=0)

    @field_validator("limit")
    @classmethod
    def _validate_limit(cls, value: int, info: ValidationInfo) -> int:
        """Cap audit page size to configured maximum."""
        maximum = _settings(info).audit_page_size_max
        if value > maximum:
            raise ValueError(f"limit must be <= {maximum}")
        return value

    @field_validator("entity_id", "actor_id", "correlation_id")
    @classmethod
    def _blank_as_none(cls, value: str | None) -> str | None:
        """Treat blank filters as absent."""
        if value is None or value.strip() == "":
            return None
        return value.strip()

    @model_validator(mode="after")
    def _ordered_range(self) -> "AuditQueryRequest":
        """Require an ordered created-at range."""
        if (
            self.created_from is not None
            and self.created_to is not None
            and self.created_from > self.created_to
        ):
            raise ValueError("created_from must be <= created_to")
        return self


def _justification_bounds(value: str, info: ValidationInfo) -> str:
    settings = _settings(info)
    if len(value) < settings.justification_min_length:
        raise ValueError(
            f"justification must be at least {settings.justification_min_length} characters"
        )
    return _max_length(value, settings.justification_max_length, info)

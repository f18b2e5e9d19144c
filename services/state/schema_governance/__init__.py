"""Schema Governance Service native package exports."""

from packages.governance_shared.envelope import Envelope, EnvelopeKind, EnvelopeMeta
from packages.governance_shared.errors import ErrorCategory, ErrorDetail
from services.state.schema_governance.component import MANIFEST
from services.state.schema_governance.config import SchemaGovernanceSettings
from services.state.schema_governance.domain import (
    Actor,
    AiSuggestion,
    ApprovalLayer,
    ApprovalStatus,
    AuditAction,
    AuditLogEntry,
    AuditPage,
    ChangeApproval,
    ChangeRequest,
    ChangeRequestApplyResult,
    ChangeType,
    DataSource,
    DataSourceType,
    EntityType,
    ReviewOutcome,
    SchemaLockType,
    SchemaVersion,
    SemanticVersion,
    SuggestionReviewResult,
)
from services.state.schema_governance.errors import TransactionFailure
from services.state.schema_governance.implementation import (
    DefaultSchemaGovernanceService,
)
from services.state.schema_governance.service import SchemaGovernanceService
from services.state.schema_governance.transactions import CancellationToken

__all__ = [
    "MANIFEST",
    "SchemaGovernanceService",
    "SchemaGovernanceSettings",
    "DefaultSchemaGovernanceService",
    "Actor",
    "AiSuggestion",
    "ApprovalLayer",
    "ApprovalStatus",
    "AuditAction",
    "AuditLogEntry",
    "AuditPage",
    "CancellationToken",
    "ChangeApproval",
    "ChangeRequest",
    "ChangeRequestApplyResult",
    "ChangeType",
    "DataSource",
    "DataSourceType",
    "EntityType",
    "ReviewOutcome",
    "SchemaLockType",
    "SchemaVersion",
    "SemanticVersion",
    "SuggestionReviewResult",
    "TransactionFailure",
    "Envelope",
    "EnvelopeKind",
    "EnvelopeMeta",
    "ErrorCategory",
    "ErrorDetail",
]

"""Change request approval workflow.

Unlike the version lifecycle, layer approvals here arrive in any order. The
aggregate status is recomputed from the set of recorded decisions after every
addition: one rejection anywhere forces ``rejected``; otherwise the highest
satisfied threshold wins.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from services.state.schema_governance import lock_policy
from services.state.schema_governance.domain import (
    Actor,
    ApprovalLayer,
    ApprovalStatus,
    ChangeApproval,
    ChangeRequest,
    ChangeType,
    SchemaVersion,
    is_destructive,
)
from services.state.schema_governance.errors import (
    DuplicateApproval,
    GovernanceValidationError,
    InvalidTransition,
)

_APPROVABLE = frozenset(
    {
        ApprovalStatus.SUBMITTED,
        ApprovalStatus.TECHNICAL_APPROVED,
        ApprovalStatus.BUSINESS_APPROVED,
    }
)

_TERMINAL = frozenset({ApprovalStatus.APPLIED, ApprovalStatus.ROLLED_BACK})

_THRESHOLDS: tuple[tuple[frozenset[ApprovalLayer], ApprovalStatus], ...] = (
    (
        frozenset(
            {
                ApprovalLayer.TECHNICAL,
                ApprovalLayer.BUSINESS,
                ApprovalLayer.DATA_GOVERNANCE,
            }
        ),
        ApprovalStatus.FULLY_APPROVED,
    ),
    (
        frozenset({ApprovalLayer.TECHNICAL, ApprovalLayer.BUSINESS}),
        ApprovalStatus.BUSINESS_APPROVED,
    ),
    (frozenset({ApprovalLayer.TECHNICAL}), ApprovalStatus.TECHNICAL_APPROVED),
)


def new_change_request(
    *,
    request_id: str,
    target: SchemaVersion,
    change_type: ChangeType,
    change_details: str,
    description: str,
    justification: str,
    impact_analysis: str,
    is_ai_suggested: bool,
    ai_confidence: float | None,
    actor: Actor,
    at: datetime,
) -> ChangeRequest:
    """Build one pending request after the target's lock policy allows it."""
    lock_policy.ensure_permits(target, change_type)
    return ChangeRequest(
        id=request_id,
        schema_version_id=target.id,
        change_type=change_type,
        change_details=change_details,
        description=description,
        justification=justification,
        impact_analysis=impact_analysis,
        is_ai_suggested=is_ai_suggested,
        ai_confidence=ai_confidence,
        is_destructive=is_destructive(change_type),
        created_at=at,
        created_by=actor.actor_id,
    )


def aggregate_status(approvals: Iterable[ChangeApproval]) -> ApprovalStatus:
    """Derive the request status from recorded layer decisions."""
    approved: set[ApprovalLayer] = set()
    for item in approvals:
        if not item.is_approved:
            return ApprovalStatus.REJECTED
        approved.add(item.layer)
    for layers, status in _THRESHOLDS:
        if layers <= approved:
            return status
    return ApprovalStatus.SUBMITTED


def submit(
    request: ChangeRequest,
    *,
    justification: str | None,
    actor: Actor,
    at: datetime,
) -> ChangeRequest:
    """Move a pending request into review; a justification is mandatory."""
    if request.status != ApprovalStatus.PENDING:
        raise _invalid(request, operation="submit")
    text = request.justification if justification is None else justification
    if not text.strip():
        raise GovernanceValidationError(
            "justification is required before submission",
            field="justification",
            entity_type="change_request",
            entity_id=request.id,
        )
    return _advance(
        request,
        actor=actor,
        at=at,
        status=ApprovalStatus.SUBMITTED,
        justification=text.strip(),
    )


def add_approval(
    request: ChangeRequest,
    *,
    approval: ChangeApproval,
    actor: Actor,
    at: datetime,
) -> ChangeRequest:
    """Append one layer decision and recompute the aggregate status."""
    if request.status not in _APPROVABLE:
        raise _invalid(request, operation="approve")
    if not request.justification.strip():
        raise GovernanceValidationError(
            "justification is required before approval",
            field="justification",
            entity_type="change_request",
            entity_id=request.id,
        )
    if request.approval_for(approval.layer) is not None:
        raise DuplicateApproval(request.id, layer=approval.layer.value)
    approvals = (*request.approvals, approval)
    return _advance(
        request,
        actor=actor,
        at=at,
        approvals=approvals,
        status=aggregate_status(approvals),
    )


def reject(request: ChangeRequest, *, actor: Actor, at: datetime) -> ChangeRequest:
    """Reject a request that has not been applied or rolled back."""
    if request.status in _TERMINAL:
        raise _invalid(request, operation="reject")
    return _advance(request, actor=actor, at=at, status=ApprovalStatus.REJECTED)


def mark_applied(
    request: ChangeRequest,
    *,
    applied_version_id: str,
    actor: Actor,
    at: datetime,
) -> ChangeRequest:
    """Mark a fully approved request as applied to a new version."""
    if request.status != ApprovalStatus.FULLY_APPROVED:
        raise _invalid(request, operation="apply")
    return _advance(
        request,
        actor=actor,
        at=at,
        status=ApprovalStatus.APPLIED,
        applied_version_id=applied_version_id,
    )


def applied_change_description(request: ChangeRequest) -> str:
    """Return the change description stamped on the version an apply creates."""
    return f"Applied change: {request.description}"


def _invalid(request: ChangeRequest, *, operation: str) -> InvalidTransition:
    return InvalidTransition(
        f"cannot {operation} change request in status {request.status.value}",
        entity_type="change_request",
        entity_id=request.id,
        current_status=request.status.value,
        operation=operation,
    )


def _advance(
    request: ChangeRequest, *, actor: Actor, at: datetime, **changes: object
) -> ChangeRequest:
    return request.model_copy(
        update={
            **changes,
            "updated_at": at,
            "updated_by": actor.actor_id,
            "revision": request.revision + 1,
        }
    )

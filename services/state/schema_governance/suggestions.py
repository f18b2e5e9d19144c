"""AI suggestion review gate.

A suggestion is reviewed exactly once. Acceptance never applies anything; at
most it drafts a pending change request that still runs the full approval
workflow.
"""

from __future__ import annotations

from datetime import datetime

from services.state.schema_governance.domain import (
    Actor,
    AiSuggestion,
    ChangeType,
    ReviewOutcome,
)
from services.state.schema_governance.errors import (
    AlreadyReviewed,
    InvalidTransition,
)


def new_suggestion(
    *,
    suggestion_id: str,
    data_source_id: str,
    schema_version_id: str | None,
    suggested_change_type: ChangeType,
    suggestion_details: str,
    reasoning: str,
    triggering_patterns: tuple[str, ...],
    confidence_score: float,
    at: datetime,
) -> AiSuggestion:
    """Build one unreviewed suggestion with its confidence clamped."""
    return AiSuggestion(
        id=suggestion_id,
        data_source_id=data_source_id,
        schema_version_id=schema_version_id,
        suggested_change_type=suggested_change_type,
        suggestion_details=suggestion_details,
        reasoning=reasoning,
        triggering_patterns=triggering_patterns,
        confidence_score=confidence_score,
        created_at=at,
    )


def accept(
    suggestion: AiSuggestion, *, actor: Actor, comments: str, at: datetime
) -> AiSuggestion:
    """Record an accepting review."""
    return _review(suggestion, outcome=ReviewOutcome.ACCEPTED, actor=actor, comments=comments, at=at)


def reject(
    suggestion: AiSuggestion, *, actor: Actor, comments: str, at: datetime
) -> AiSuggestion:
    """Record a rejecting review."""
    return _review(suggestion, outcome=ReviewOutcome.REJECTED, actor=actor, comments=comments, at=at)


def link_change_request(suggestion: AiSuggestion, *, change_request_id: str) -> AiSuggestion:
    """Attach the change request spawned by an accepted suggestion."""
    if not suggestion.is_accepted:
        raise InvalidTransition(
            "only accepted suggestions may link to a change request",
            entity_type="ai_suggestion",
            entity_id=suggestion.id,
            current_status=suggestion.outcome.value,
            operation="link_change_request",
        )
    return suggestion.model_copy(
        update={
            "change_request_id": change_request_id,
            "revision": suggestion.revision + 1,
        }
    )


def draft_description(suggestion: AiSuggestion) -> str:
    """Return the description used for a synthesized change request."""
    return f"[AI Suggested] {suggestion.reasoning}"


def draft_impact_analysis(suggestion: AiSuggestion) -> str:
    """Return the impact text used for a synthesized change request."""
    patterns = ", ".join(suggestion.triggering_patterns)
    return (
        f"AI-suggested change with confidence {suggestion.confidence_score:g}%. "
        f"Triggering patterns: {patterns}"
    )


def _review(
    suggestion: AiSuggestion,
    *,
    outcome: ReviewOutcome,
    actor: Actor,
    comments: str,
    at: datetime,
) -> AiSuggestion:
    if suggestion.is_reviewed:
        raise AlreadyReviewed(suggestion.id, outcome=suggestion.outcome.value)
    return suggestion.model_copy(
        update={
            "outcome": outcome,
            "reviewed_by": actor.actor_id,
            "reviewed_at": at,
            "review_comments": comments,
            "revision": suggestion.revision + 1,
        }
    )

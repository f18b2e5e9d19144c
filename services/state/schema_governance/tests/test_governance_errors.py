"""Tests for governance rejection types and their envelope mapping."""

from __future__ import annotations

import pytest

from packages.governance_shared.errors import ErrorCategory
from services.state.schema_governance import errors


def _concrete_errors() -> list[type[errors.GovernanceError]]:
    found: list[type[errors.GovernanceError]] = []
    pending = list(errors.GovernanceError.__subclasses__())
    while pending:
        item = pending.pop()
        found.append(item)
        pending.extend(item.__subclasses__())
    return sorted(found, key=lambda item: item.__name__)


def test_base_rejection_declares_abstract_mapping() -> None:
    """Only concrete rejections know their envelope error."""
    assert errors.GovernanceError.__abstractmethods__ == frozenset({"to_error"})


@pytest.mark.parametrize("error_type", _concrete_errors(), ids=lambda item: item.__name__)
def test_every_rejection_implements_mapping(
    error_type: type[errors.GovernanceError],
) -> None:
    """Each rejection subclass provides its own ``to_error``."""
    assert error_type.__abstractmethods__ == frozenset()


@pytest.mark.parametrize(
    ("error", "code", "category"),
    [
        (
            errors.EntityNotFound("schema_version", "01ARZ3NDEKTSV4RRFFQ69G5FAW"),
            errors.ENTITY_NOT_FOUND,
            ErrorCategory.NOT_FOUND,
        ),
        (
            errors.SchemaLocked("01ARZ3NDEKTSV4RRFFQ69G5FAW", lock_type="hard_lock"),
            errors.SCHEMA_LOCKED,
            ErrorCategory.POLICY,
        ),
        (
            errors.DuplicateVersion("01ARZ3NDEKTSV4RRFFQ69G5FAV", version="1.0.1"),
            errors.DUPLICATE_VERSION,
            ErrorCategory.CONFLICT,
        ),
        (
            errors.OperationCancelled(),
            errors.OPERATION_CANCELLED,
            ErrorCategory.DEPENDENCY,
        ),
    ],
)
def test_rejections_map_to_stable_codes(
    error: errors.GovernanceError, code: str, category: ErrorCategory
) -> None:
    """Rejections should surface with their public code and category."""
    detail = error.to_error()

    assert detail.code == code
    assert detail.category == category

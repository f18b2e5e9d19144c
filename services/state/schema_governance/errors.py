"""Schema Governance error codes and domain exceptions.

Domain modules raise ``GovernanceError`` subclasses for business rejections.
The public API catches them and returns the matching ``ErrorDetail`` as a
typed failure; only ``TransactionFailure`` is allowed to escape.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from packages.governance_shared.errors import (
    ErrorDetail,
    codes,
    conflict_error,
    dependency_error,
    not_found_error,
    policy_error,
    validation_error,
)

ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
INVALID_TRANSITION = "INVALID_TRANSITION"
SCHEMA_LOCKED = "SCHEMA_LOCKED"
ALREADY_REVIEWED = "ALREADY_REVIEWED"
CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
DUPLICATE_APPROVAL = "DUPLICATE_APPROVAL"
DUPLICATE_VERSION = "DUPLICATE_VERSION"
OPERATION_CANCELLED = "OPERATION_CANCELLED"
TRANSACTION_FAILED = "TRANSACTION_FAILED"


class GovernanceError(Exception, ABC):
    """Base class for recoverable governance rejections."""

    def __init__(self, message: str, *, entity_type: str = "", entity_id: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id

    def metadata(self) -> dict[str, str]:
        """Return string metadata identifying the affected entity."""
        data: dict[str, str] = {}
        if self.entity_type:
            data["entity_type"] = self.entity_type
        if self.entity_id:
            data["entity_id"] = self.entity_id
        return data

    @abstractmethod
    def to_error(self) -> ErrorDetail:
        """Map this rejection into a structured envelope error."""


class EntityNotFound(GovernanceError):
    """Referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} not found",
            entity_type=entity_type,
            entity_id=entity_id,
        )

    def to_error(self) -> ErrorDetail:
        return not_found_error(self.message, code=ENTITY_NOT_FOUND, metadata=self.metadata())


class InvalidTransition(GovernanceError):
    """State-machine precondition violated."""

    def __init__(
        self,
        message: str,
        *,
        entity_type: str,
        entity_id: str,
        current_status: str,
        operation: str,
    ) -> None:
        super().__init__(message, entity_type=entity_type, entity_id=entity_id)
        self.current_status = current_status
        self.operation = operation

    def to_error(self) -> ErrorDetail:
        return conflict_error(
            self.message,
            code=INVALID_TRANSITION,
            metadata={
                **self.metadata(),
                "current_status": self.current_status,
                "operation": self.operation,
            },
        )


class SchemaLocked(GovernanceError):
    """Modification blocked by the lock policy of a schema version."""

    def __init__(
        self,
        schema_version_id: str,
        *,
        lock_type: str,
        change_type: str = "",
        message: str = "schema version is locked",
    ) -> None:
        super().__init__(message, entity_type="schema_version", entity_id=schema_version_id)
        self.schema_version_id = schema_version_id
        self.lock_type = lock_type
        self.change_type = change_type

    def to_error(self) -> ErrorDetail:
        metadata = {**self.metadata(), "lock_type": self.lock_type}
        if self.change_type:
            metadata["change_type"] = self.change_type
        return policy_error(self.message, code=SCHEMA_LOCKED, metadata=metadata)


class AlreadyReviewed(GovernanceError):
    """Suggestion already received its single review."""

    def __init__(self, suggestion_id: str, *, outcome: str) -> None:
        super().__init__(
            "suggestion has already been reviewed",
            entity_type="ai_suggestion",
            entity_id=suggestion_id,
        )
        self.outcome = outcome

    def to_error(self) -> ErrorDetail:
        return conflict_error(
            self.message,
            code=ALREADY_REVIEWED,
            metadata={**self.metadata(), "outcome": self.outcome},
        )


class ConcurrencyConflict(GovernanceError):
    """Writer held a stale revision token."""

    def __init__(
        self, *, entity_type: str, entity_id: str, expected: int, actual: int | None
    ) -> None:
        super().__init__(
            "entity was modified concurrently",
            entity_type=entity_type,
            entity_id=entity_id,
        )
        self.expected = expected
        self.actual = actual

    def to_error(self) -> ErrorDetail:
        return conflict_error(
            self.message,
            code=CONCURRENCY_CONFLICT,
            retryable=True,
            metadata={
                **self.metadata(),
                "expected_revision": str(self.expected),
                "actual_revision": "" if self.actual is None else str(self.actual),
            },
        )


class DuplicateApproval(GovernanceError):
    """A decision already exists for this (request, layer) pair."""

    def __init__(self, request_id: str, *, layer: str) -> None:
        super().__init__(
            "approval already recorded for layer",
            entity_type="change_request",
            entity_id=request_id,
        )
        self.layer = layer

    def to_error(self) -> ErrorDetail:
        return conflict_error(
            self.message,
            code=DUPLICATE_APPROVAL,
            metadata={**self.metadata(), "layer": self.layer},
        )


class DuplicateVersion(GovernanceError):
    """Version number already taken for this data source."""

    def __init__(self, data_source_id: str, *, version: str) -> None:
        super().__init__(
            "schema version number already exists for data source",
            entity_type="data_source",
            entity_id=data_source_id,
        )
        self.version = version

    def to_error(self) -> ErrorDetail:
        return conflict_error(
            self.message,
            code=DUPLICATE_VERSION,
            metadata={**self.metadata(), "version": self.version},
        )


class DataSourceExists(GovernanceError):
    """Data source name already registered."""

    def __init__(self, name: str) -> None:
        super().__init__("data source name already registered", entity_type="data_source")
        self.name = name

    def to_error(self) -> ErrorDetail:
        return conflict_error(
            self.message,
            code=codes.ALREADY_EXISTS,
            metadata={**self.metadata(), "name": self.name},
        )


class GovernanceValidationError(GovernanceError):
    """Domain-level argument rejection (blank justification, wrong owner, ...)."""

    def __init__(self, message: str, *, field: str, entity_type: str = "", entity_id: str = "") -> None:
        super().__init__(message, entity_type=entity_type, entity_id=entity_id)
        self.field = field

    def to_error(self) -> ErrorDetail:
        return validation_error(
            self.message,
            code=codes.INVALID_ARGUMENT,
            metadata={**self.metadata(), "field": self.field},
        )


class OperationCancelled(GovernanceError):
    """Caller cancelled the operation before it committed."""

    def __init__(self, message: str = "operation cancelled") -> None:
        super().__init__(message)

    def to_error(self) -> ErrorDetail:
        return dependency_error(self.message, code=OPERATION_CANCELLED, retryable=True)


class TransactionFailure(Exception):
    """Unexpected fault inside a multi-entity transaction, after rollback.

    ``cause`` is the original exception and ``entity_id`` the entity that
    governed the transaction.
    """

    def __init__(self, *, entity_id: str, cause: BaseException, operation: str = "") -> None:
        label = operation or "transaction"
        super().__init__(
            f"{label} failed for entity {entity_id}: {type(cause).__name__}: {cause}"
        )
        self.entity_id = entity_id
        self.cause = cause
        self.operation = operation

"""Transaction coordinator for multi-entity governance mutations."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from threading import Event

from services.state.schema_governance.errors import (
    OperationCancelled,
    TransactionFailure,
)
from services.state.schema_governance.interfaces import (
    GovernanceRepositories,
    GovernanceStore,
)


class CancellationToken:
    """Thread-safe cancellation signal shared between caller and operation."""

    def __init__(self) -> None:
        self._event = Event()

    @property
    def cancelled(self) -> bool:
        """Return whether cancellation was requested."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``OperationCancelled`` once cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelled()


class TransactionCoordinator:
    """Run one unit of work inside a single store transaction.

    Any exception raised inside ``scope`` rolls the transaction back and is
    re-raised as ``TransactionFailure`` carrying the original cause and the
    governing entity id. Cancellation is checked before the transaction opens
    and again right before it commits.
    """

    def __init__(self, store: GovernanceStore) -> None:
        self._store = store

    @contextmanager
    def scope(
        self,
        *,
        entity_id: str,
        operation: str = "",
        cancellation: CancellationToken | None = None,
    ) -> Iterator[GovernanceRepositories]:
        """Yield repositories bound to one transaction."""
        try:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            with self._store.begin() as repos:
                yield repos
                if cancellation is not None:
                    cancellation.raise_if_cancelled()
        except Exception as exc:
            raise TransactionFailure(
                entity_id=entity_id, cause=exc, operation=operation
            ) from exc

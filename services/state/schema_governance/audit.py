"""Audit ledger and post-commit outbox for governed transitions.

Mutations collect ``AuditLogEntry`` records in an ``Outbox`` while their
transaction is open. Once the transaction commits the ``AuditLedger`` drains
the outbox, writing each entry in its own short transaction. An entry whose
write fails stays queued and is retried on the next drain until its attempt
budget runs out, so delivery is at-least-once; appends are idempotent on the
entry id.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock

from pydantic import BaseModel

from packages.governance_shared.ids import generate_ulid_str
from packages.governance_shared.logging import get_logger
from services.state.schema_governance.domain import (
    Actor,
    AuditAction,
    AuditLogEntry,
    AuditPage,
    AuditQuery,
    EntityType,
    utc_now,
)
from services.state.schema_governance.interfaces import GovernanceStore

_LOGGER = get_logger(__name__)

AuditListener = Callable[[AuditLogEntry], None]


def snapshot(entity: BaseModel | None) -> str | None:
    """Serialize one entity state for before/after audit columns."""
    if entity is None:
        return None
    return entity.model_dump_json()


def audit_entry(
    *,
    action: AuditAction,
    entity_type: EntityType,
    entity_id: str,
    actor: Actor,
    before: BaseModel | None = None,
    after: BaseModel | None = None,
    note: str = "",
    correlation_id: str | None = None,
    at: datetime | None = None,
) -> AuditLogEntry:
    """Build one immutable audit entry with serialized state snapshots."""
    return AuditLogEntry(
        id=generate_ulid_str(),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor.actor_id,
        actor_name=actor.name,
        state_before=snapshot(before),
        state_after=snapshot(after),
        note=note,
        correlation_id=correlation_id,
        created_at=utc_now() if at is None else at,
    )


@dataclass
class Outbox:
    """Audit entries produced inside one transaction, published after commit."""

    correlation_id: str | None = None
    entries: list[AuditLogEntry] = field(default_factory=list)

    def record(
        self,
        *,
        action: AuditAction,
        entity_type: EntityType,
        entity_id: str,
        actor: Actor,
        before: BaseModel | None = None,
        after: BaseModel | None = None,
        note: str = "",
        at: datetime | None = None,
    ) -> AuditLogEntry:
        """Build one entry tagged with this outbox's correlation id and queue it."""
        entry = audit_entry(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor,
            before=before,
            after=after,
            note=note,
            correlation_id=self.correlation_id,
            at=at,
        )
        self.entries.append(entry)
        return entry

    def drain(self) -> list[AuditLogEntry]:
        """Remove and return all queued entries."""
        drained, self.entries = self.entries, []
        return drained


@dataclass
class _Pending:
    entry: AuditLogEntry
    attempts: int = 0


class AuditLedger:
    """Append-only ledger writer with retrying post-commit delivery."""

    def __init__(self, store: GovernanceStore, *, max_attempts: int = 3) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._store = store
        self._max_attempts = max_attempts
        self._pending: list[_Pending] = []
        self._listeners: list[AuditListener] = []
        self._lock = Lock()

    @property
    def pending_count(self) -> int:
        """Return how many entries are still waiting for a successful write."""
        with self._lock:
            return len(self._pending)

    def subscribe(self, listener: AuditListener) -> None:
        """Register one callback invoked after each entry is durably written."""
        with self._lock:
            self._listeners.append(listener)

    def publish(self, outbox: Outbox) -> int:
        """Drain ``outbox`` plus any retry backlog; return entries written."""
        with self._lock:
            self._pending.extend(_Pending(entry=item) for item in outbox.drain())
            batch, self._pending = self._pending, []

        written: list[AuditLogEntry] = []
        retry: list[_Pending] = []
        for item in batch:
            if self._write(item.entry):
                written.append(item.entry)
                continue
            item.attempts += 1
            if item.attempts < self._max_attempts:
                retry.append(item)
            else:
                _LOGGER.error(
                    "Dropping audit entry after retries: entry_id=%s action=%s attempts=%s",
                    item.entry.id,
                    item.entry.action.value,
                    item.attempts,
                )

        with self._lock:
            self._pending = retry + self._pending
            listeners = tuple(self._listeners)
        for entry in written:
            self._notify(listeners, entry)
        return len(written)

    def append_best_effort(self, entry: AuditLogEntry) -> bool:
        """Write one entry immediately, logging instead of raising on failure."""
        if not self._write(entry):
            return False
        with self._lock:
            listeners = tuple(self._listeners)
        self._notify(listeners, entry)
        return True

    def query(self, query: AuditQuery) -> AuditPage:
        """Return one filtered page of entries, newest first."""
        with self._store.begin() as repos:
            return repos.audit.query(query=query)

    def by_entity(
        self, *, entity_type: EntityType, entity_id: str, limit: int
    ) -> Sequence[AuditLogEntry]:
        """Return the newest entries recorded for one entity."""
        page = self.query(AuditQuery(entity_type=entity_type, entity_id=entity_id, limit=limit))
        return page.items

    def by_correlation(self, *, correlation_id: str, limit: int) -> Sequence[AuditLogEntry]:
        """Return the entries sharing one correlation id, newest first."""
        page = self.query(AuditQuery(correlation_id=correlation_id, limit=limit))
        return page.items

    def _write(self, entry: AuditLogEntry) -> bool:
        try:
            with self._store.begin() as repos:
                repos.audit.append(entry=entry)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning(
                "Audit append failed: entry_id=%s exception_type=%s",
                entry.id,
                type(exc).__name__,
                exc_info=exc,
            )
            return False
        return True

    def _notify(self, listeners: Sequence[AuditListener], entry: AuditLogEntry) -> None:
        for listener in listeners:
            try:
                listener(entry)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.warning(
                    "Audit listener failed: entry_id=%s exception_type=%s",
                    entry.id,
                    type(exc).__name__,
                    exc_info=exc,
                )

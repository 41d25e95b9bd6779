"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Persists every ``AuditRecord`` the workflow engine and the definition
    service emit as an immutable, hash-chained ``AuditEvent``.  Provides
    chain validation and per-entity traces for review.

Architecture position:
    Kernel > Services -- imperative shell.  Implements the ``AuditSink``
    protocol from ``approval_kernel.domain.providers``.

Invariants enforced:
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    - Append-only: AuditEvent rows are protected by ORM listeners.
    - Each event is written inside a SAVEPOINT, so a failed audit write
      never invalidates the caller's workflow transaction.

Failure modes:
    - IntegrityError when two writers allocate the same ``seq``; the
      SAVEPOINT is rolled back and the error propagates to the engine,
      which logs it as ``audit_emission_failed``.
    - AuditChainBrokenError from ``validate_chain``.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.providers import AuditRecord
from approval_kernel.exceptions import AuditChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditEvent
from approval_kernel.utils.hashing import canonicalize_json, hash_audit_event, hash_payload

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: str
    occurred_at: datetime
    actor_id: str
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events of one entity in chronological order."""

    entity_type: str
    entity_id: str
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(entry.action for entry in self.entries)


class AuditorService:
    """
    Hash-chained audit writer.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record(self, event: AuditRecord) -> None:
        """AuditSink entry point."""
        self._create_audit_event(
            entity_type=event.entity_type,
            entity_id=str(event.entity_id),
            action=event.action,
            actor_id=event.actor_id,
            payload=event.metadata,
        )

    def _last_event(self) -> AuditEvent | None:
        return self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event linked to its predecessor.

        Postconditions:
            - A new ``AuditEvent`` row is flushed with ``seq`` one above
              the current maximum and a valid hash link.
        """
        # Stored payload is the canonical JSON form; validate_chain rehashes it.
        payload_data = json.loads(canonicalize_json(payload or {}))
        payload_hash = hash_payload(payload_data)

        with self._session.begin_nested():
            last = self._last_event()
            seq = (last.seq if last is not None else 0) + 1
            prev_hash = last.hash if last is not None else None

            event_hash = hash_audit_event(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                payload_hash=payload_hash,
                prev_hash=prev_hash,
            )

            audit_event = AuditEvent(
                seq=seq,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                payload=payload_data,
                payload_hash=payload_hash,
                prev_hash=prev_hash,
                hash=event_hash,
            )
            self._session.add(audit_event)
            self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action": action,
                "seq": seq,
            },
        )
        return audit_event

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If any stored hash or link is wrong.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        previous: AuditEvent | None = None
        for event in events:
            expected_prev = previous.hash if previous is not None else None
            if event.prev_hash != expected_prev:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": event.seq, "reason": "prev_hash_mismatch"},
                )
                raise AuditChainBrokenError(
                    str(event.id), expected_prev or "None", event.prev_hash or "None",
                )

            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                action=event.action,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": event.seq, "reason": "hash_mismatch"},
                )
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)
            previous = event

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    # Trace and query methods

    def get_trace(self, entity_type: str, entity_id: Any) -> AuditTrace:
        """Every audit event of one entity, oldest first."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == str(entity_id),
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=str(entity_id),
            entries=tuple(
                AuditTraceEntry(
                    seq=event.seq,
                    action=event.action,
                    occurred_at=event.occurred_at,
                    actor_id=event.actor_id,
                    payload=event.payload or {},
                    hash=event.hash,
                )
                for event in events
            ),
        )

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """The most recent audit events, newest first."""
        return list(
            self._session.execute(
                select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(limit)
            ).scalars()
        )

    def count(self) -> int:
        return self._session.execute(select(func.count()).select_from(AuditEvent)).scalar_one()

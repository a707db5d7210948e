"""
AuditorService -- hash-chained audit events for every state change.

Responsibility:
    Job, QC, rework, return, ledger and workflow services call ``record``
    once per state change.  Each event links to the previous event of the
    same tenant, so a tenant's history is a single chain that
    ``validate_chain`` can recheck end to end.

Architecture position:
    Kernel > Services -- flush-only; the engine facade owns the transaction,
    so an operation that fails leaves no event behind.

Invariants enforced:
    - ``seq`` comes from the ``audit_event`` counter row, never max + 1.
    - ``hash = H(entity_type | entity_id | action | payload_hash | prev_hash)``
      where ``prev_hash`` is the tenant's previous event hash (None for the
      first event of a tenant).
    - Events are append-only (ORM listener plus database trigger).

Failure modes:
    - AuditChainBrokenError from ``validate_chain`` on a broken link or a
      payload that no longer matches its hash.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.exceptions import AuditChainBrokenError
from production_kernel.logging_config import get_logger
from production_kernel.models.audit_event import AuditAction, AuditEvent
from production_kernel.services.sequence_service import SequenceService
from production_kernel.utils.hashing import hash_audit_event, hash_payload, json_safe

logger = get_logger("services.auditor")


def _event_hash(
    entity_type: str, entity_id: UUID, action: AuditAction, payload_hash: str, prev_hash: str | None
) -> str:
    return hash_audit_event(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action.value,
        payload_hash=payload_hash,
        prev_hash=prev_hash,
    )


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str

    @classmethod
    def from_event(cls, event: AuditEvent) -> "AuditTraceEntry":
        return cls(
            seq=event.seq,
            action=AuditAction(event.action),
            occurred_at=event.occurred_at,
            actor_id=event.actor_id,
            payload=dict(event.payload or {}),
            hash=event.hash,
        )


@dataclass(frozen=True)
class AuditTrace:
    """What happened to one job card, rework job, return or item, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def actors(self) -> frozenset[UUID]:
        return frozenset(e.actor_id for e in self.entries)


class AuditorService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def _tenant_events(self, tenant_id: UUID):
        return select(AuditEvent).where(AuditEvent.tenant_id == tenant_id)

    def _chain_head(self, tenant_id: UUID) -> str | None:
        return self._session.execute(
            self._tenant_events(tenant_id)
            .with_only_columns(AuditEvent.hash)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        *,
        tenant_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append one event to the tenant's chain and flush it."""
        stored_payload = json_safe(payload or {})
        payload_hash = hash_payload(stored_payload)
        prev_hash = self._chain_head(tenant_id)

        event = AuditEvent(
            seq=self._sequences.next_value(SequenceService.audit_sequence(tenant_id)),
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=stored_payload,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=_event_hash(entity_type, entity_id, action, payload_hash, prev_hash),
        )
        self._session.add(event)
        self._session.flush()

        logger.debug(
            "audit_event_recorded",
            extra={"entity_type": entity_type, "action": action.value, "seq": event.seq},
        )
        return event

    def validate_chain(self, tenant_id: UUID) -> bool:
        """
        Recompute every hash of the tenant's chain in ``seq`` order.

        Raises:
            AuditChainBrokenError: at the first event whose link or hash
                does not match.
        """
        events = self._session.execute(
            self._tenant_events(tenant_id).order_by(AuditEvent.seq)
        ).scalars()

        expected_prev: str | None = None
        count = 0
        for event in events:
            if event.prev_hash != expected_prev:
                self._report_break(event, expected_prev or "None", event.prev_hash or "None")
            recomputed = _event_hash(
                event.entity_type,
                event.entity_id,
                AuditAction(event.action),
                hash_payload(event.payload or {}),
                event.prev_hash,
            )
            if recomputed != event.hash:
                self._report_break(event, recomputed, event.hash)
            expected_prev = event.hash
            count += 1

        logger.info("audit_chain_valid", extra={"event_count": count})
        return True

    @staticmethod
    def _report_break(event: AuditEvent, expected: str, actual: str) -> None:
        logger.critical(
            "audit_chain_broken", extra={"event_id": str(event.id), "seq": event.seq}
        )
        raise AuditChainBrokenError(str(event.id), expected, actual)

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.seq)
        ).scalars()
        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(AuditTraceEntry.from_event(e) for e in events),
        )

"""
Module: production_kernel.models.audit_event
Responsibility: ORM persistence for the per-tenant, hash-chained audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM + DB trigger).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      where prev_hash is the hash of the tenant's previous event.
    - seq is monotonically increasing per tenant, allocated by SequenceService.

Audit relevance:
    Every state-changing engine operation (job created, stage started,
    inspection recorded, rework spawned, return inspected, stock posted)
    produces one AuditEvent.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Enum as SAEnum, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    JOB_CREATED = "job_created"
    JOB_STAGE_STARTED = "job_stage_started"
    JOB_HOURS_LOGGED = "job_hours_logged"
    JOB_STAGE_COMPLETED = "job_stage_completed"
    JOB_STAGE_ADVANCED = "job_stage_advanced"
    JOB_COMPLETED = "job_completed"
    JOB_SENT_TO_REWORK = "job_sent_to_rework"
    JOB_ASSIGNED = "job_assigned"
    JOB_CANCELLED = "job_cancelled"

    INSPECTION_RECORDED = "inspection_recorded"

    REWORK_SPAWNED = "rework_spawned"
    REWORK_STATUS_CHANGED = "rework_status_changed"
    REWORK_UPDATED = "rework_updated"

    RETURN_CREATED = "return_created"
    RETURN_INSPECTED = "return_inspected"
    RETURN_SETTLED = "return_settled"

    STOCK_POSTED = "stock_posted"
    MATERIAL_ISSUED = "material_issued"
    STOCK_RESERVED = "stock_reserved"
    STOCK_UNRESERVED = "stock_unreserved"

    WORKFLOW_CONFIGURED = "workflow_configured"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only.  Each row's hash includes the
        previous row's hash within the same tenant.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        UniqueConstraint("tenant_id", "seq", name="uq_audit_tenant_seq"),
        Index("idx_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # e.g. "JobCard", "QCRecord", "ReworkJob", "ReturnRecord", "InventoryItem"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(
        SAEnum(AuditAction, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action.value} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

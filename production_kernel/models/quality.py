"""
Module: production_kernel.models.quality
Responsibility: ORM persistence for inspection records and the rework jobs
    they spawn.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Exactly one of production_job_id / delivery_note_id is set, on both
      QCRecord and ReworkJob (CHECK constraints mirroring the domain union).
    - A FAIL QCRecord carries at least one defect (service-enforced; the
      column is JSON).
    - ReworkJob.source_qc_record_id is unique: one QC record causes at most
      one rework job.
    - QCRecord.idempotency_key is unique per tenant when present.
    - QCRecord rows are append-only (ORM listener + DB trigger).

Audit relevance:
    The gate decision for a stage is a pure function of the stage's QC
    records, so keeping them immutable keeps every decision replayable.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import Base, TrackedBase, UUIDString
from production_kernel.domain.sources import Source, source_from_ids
from production_kernel.domain.statuses import QCStatus, ReworkStatus

_EXACTLY_ONE_SOURCE = "(production_job_id IS NULL) <> (delivery_note_id IS NULL)"


class QCRecord(Base):
    """
    The result of one inspection.

    Contract:
        ``stage`` is the inspected stage for production-job subjects and
        NULL for delivery-note subjects.  ``stage_log_id`` names the
        execution of the stage the inspection judged.
    """

    __tablename__ = "qc_records"

    __table_args__ = (
        CheckConstraint(_EXACTLY_ONE_SOURCE, name="ck_qc_record_one_source"),
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_qc_record_idempotency"),
        UniqueConstraint("tenant_id", "seq", name="uq_qc_record_tenant_seq"),
        Index("idx_qc_record_job_stage", "production_job_id", "stage"),
        Index("idx_qc_record_dn", "delivery_note_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    production_job_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("job_cards.id"), nullable=True
    )
    delivery_note_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("delivery_notes.id"), nullable=True
    )

    stage: Mapped[str | None] = mapped_column(String(50), nullable=True)

    stage_log_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("production_stage_logs.id"), nullable=True
    )

    inspector_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    qc_status: Mapped[QCStatus] = mapped_column(
        SAEnum(QCStatus, native_enum=False, length=10), nullable=False
    )

    # [{"desc": str, "severity": LOW|MEDIUM|HIGH, "photo_ref": str?}]
    defects: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    create_rework: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    idempotency_key: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Per-tenant insertion order; "most recent" never depends on clock ties
    seq: Mapped[int] = mapped_column(nullable=False)

    inspected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<QCRecord {self.qc_status.value} {self.stage or 'DN'}>"

    @property
    def source(self) -> Source:
        return source_from_ids(self.production_job_id, self.delivery_note_id)

    @property
    def is_fail(self) -> bool:
        return self.qc_status == QCStatus.FAIL


class ReworkJob(TrackedBase):
    """
    Corrective work raised after a failed inspection or a returned delivery.

    Contract:
        Status changes only through ReworkOrchestrator, which consults the
        rework transition table.  ``version`` is the optimistic-lock counter.
    """

    __tablename__ = "rework_jobs"

    __table_args__ = (
        CheckConstraint(_EXACTLY_ONE_SOURCE, name="ck_rework_job_one_source"),
        UniqueConstraint("source_qc_record_id", name="uq_rework_source_qc_record"),
        UniqueConstraint("source_return_id", name="uq_rework_source_return"),
        Index("idx_rework_tenant_status", "tenant_id", "status"),
        Index("idx_rework_source_job", "production_job_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    production_job_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("job_cards.id"), nullable=True
    )
    delivery_note_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("delivery_notes.id"), nullable=True
    )

    source_qc_record_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("qc_records.id"), nullable=True
    )
    source_return_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("return_records.id"), nullable=True
    )

    status: Mapped[ReworkStatus] = mapped_column(
        SAEnum(ReworkStatus, native_enum=False, length=20),
        nullable=False,
        default=ReworkStatus.OPEN,
    )

    expected_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    assigned_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # [{"item_id": str | None, "description": str | None, "qty": str}]
    material_needed: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ReworkJob {self.id} {self.status.value}>"

    @property
    def source(self) -> Source:
        return source_from_ids(self.production_job_id, self.delivery_note_id)

    @property
    def is_open(self) -> bool:
        return self.status in (ReworkStatus.OPEN, ReworkStatus.IN_PROGRESS)

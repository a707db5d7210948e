"""
Module: production_kernel.models.job_card
Responsibility: ORM persistence for job cards, their per-stage execution
    logs, and the individual labour entries that roll up into those logs.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/statuses.py only.

Invariants enforced:
    - job_card_number is unique per tenant (UniqueConstraint).
    - At most one open ProductionStageLog per (job, stage): partial unique
      index on completed_at IS NULL, in addition to the service check.
    - JobCard.version is the optimistic-lock counter (mapper version_id_col);
      an UPDATE against a stale version raises StaleDataError.
    - LabourLogEntry rows are append-only (ORM listener + DB trigger).

Audit relevance:
    The labour entries are the evidence behind hours_logged and actual_hours.
    Stage logs record who ran each stage and when.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import Base, TrackedBase, UUIDString
from production_kernel.domain.statuses import JobStatus, QCStatus


class JobCard(TrackedBase):
    """
    A unit of production work moving through the tenant's stage catalog.

    Contract:
        Status changes happen only through JobService, which consults the
        job card transition table.  ``stage`` always names a stage of the
        tenant catalog and ``stage_index`` is its position.

    Guarantees:
        - actual_hours is the sum of all labour entries across all stages.
        - actual_qty is the sum of output quantities logged.
    """

    __tablename__ = "job_cards"

    __table_args__ = (
        UniqueConstraint("tenant_id", "job_card_number", name="uq_job_card_tenant_number"),
        Index("idx_job_card_tenant_status", "tenant_id", "status"),
        Index("idx_job_card_project", "project_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("projects.id"), nullable=False
    )

    sub_group_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sub_groups.id"), nullable=False
    )

    # e.g. ACME-JC-20240101-0001
    job_card_number: Mapped[str] = mapped_column(String(50), nullable=False)

    stage: Mapped[str] = mapped_column(String(50), nullable=False)

    stage_index: Mapped[int] = mapped_column(nullable=False, default=0)

    status: Mapped[JobStatus] = mapped_column(
        SAEnum(JobStatus, native_enum=False, length=20),
        nullable=False,
        default=JobStatus.NOT_STARTED,
    )

    planned_qty: Mapped[Decimal] = mapped_column(nullable=False)
    actual_qty: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    planned_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    assigned_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Counter for ProductionStageLog.log_no; only touched under the job lock.
    last_log_no: Mapped[int] = mapped_column(nullable=False, default=0)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    stage_logs: Mapped[list["ProductionStageLog"]] = relationship(
        back_populates="job_card",
        order_by="ProductionStageLog.log_no",
    )

    def __repr__(self) -> str:
        return f"<JobCard {self.job_card_number}: {self.stage} {self.status.value}>"

    @property
    def is_terminal(self) -> bool:
        return self.status == JobStatus.CANCELLED

    def open_log(self, stage: str | None = None) -> "ProductionStageLog | None":
        """The open log for ``stage`` (default: current stage), if any."""
        wanted = stage or self.stage
        for log in self.stage_logs:
            if log.stage == wanted and log.completed_at is None:
                return log
        return None

    def latest_log(self, stage: str | None = None) -> "ProductionStageLog | None":
        """The most recent log for ``stage`` (default: current stage), open or closed."""
        wanted = stage or self.stage
        latest = None
        for log in self.stage_logs:
            if log.stage == wanted:
                latest = log
        return latest


class ProductionStageLog(Base):
    """
    One execution of one stage of a job card.

    A stage may run more than once (after rework), so a job has zero or more
    logs per stage, at most one of which is open.
    """

    __tablename__ = "production_stage_logs"

    __table_args__ = (
        UniqueConstraint("job_card_id", "log_no", name="uq_stage_log_job_seq"),
        Index(
            "uq_stage_log_open",
            "job_card_id",
            "stage",
            unique=True,
            sqlite_where=text("completed_at IS NULL"),
            postgresql_where=text("completed_at IS NULL"),
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    job_card_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("job_cards.id"), nullable=False
    )

    log_no: Mapped[int] = mapped_column(nullable=False)

    stage: Mapped[str] = mapped_column(String(50), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    started_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    completed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    hours_logged: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    output_qty: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    qc_status: Mapped[QCStatus | None] = mapped_column(
        SAEnum(QCStatus, native_enum=False, length=10), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    job_card: Mapped[JobCard] = relationship(back_populates="stage_logs")

    labour_entries: Mapped[list["LabourLogEntry"]] = relationship(
        back_populates="stage_log",
        order_by="LabourLogEntry.logged_at",
    )

    @property
    def is_open(self) -> bool:
        return self.completed_at is None

    def append_note(self, note: str | None) -> None:
        if not note:
            return
        self.notes = f"{self.notes}\n{note}" if self.notes else note


class LabourLogEntry(Base):
    """An individual hours booking against an open stage log.  Append-only."""

    __tablename__ = "labour_log_entries"

    __table_args__ = (
        Index("idx_labour_job", "job_card_id"),
        Index("idx_labour_user_date", "user_id", "work_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    job_card_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("job_cards.id"), nullable=False
    )

    stage_log_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("production_stage_logs.id"), nullable=False
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    hours: Mapped[Decimal] = mapped_column(nullable=False)
    output_qty: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    logged_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    stage_log: Mapped[ProductionStageLog] = relationship(back_populates="labour_entries")

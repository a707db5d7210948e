"""
Module: production_kernel.models.reference
Responsibility: Reference rows owned by collaborating systems that the
    production engine reads but never edits through its own operations:
    tenant workflow configuration, projects and their sub-groups, and
    delivery notes.
Architecture position: Kernel > Models.  May import from db/base.py only.

Tenant provisioning, project management and dispatch live elsewhere.  They
write these tables; the engine validates references against them.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import Base, TrackedBase, UUIDString


class TenantWorkflow(TrackedBase):
    """
    Per-tenant production configuration (the stage catalog).

    Contract:
        ``stages`` is the ordered list every job card of the tenant walks.
        ``non_inspected_stages`` is a subset whose completion needs no QC
        record.  ``auto_resume_after_rework`` decides whether completing
        the last open rework of a job puts the job back IN_PROGRESS.
    """

    __tablename__ = "tenant_workflows"

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)

    # Short uppercase code used in document numbers (e.g. "ACME")
    tenant_code: Mapped[str] = mapped_column(String(20), nullable=False)

    stages: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    non_inspected_stages: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    auto_resume_after_rework: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<TenantWorkflow {self.tenant_code}: {' > '.join(self.stages or [])}>"


class Project(Base):
    """A client project that job cards are raised against."""

    __tablename__ = "projects"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_project_tenant_code"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    sub_groups: Mapped[list["SubGroup"]] = relationship(back_populates="project")


class SubGroup(Base):
    """A buildable unit within a project (a cabinet run, a room, ...)."""

    __tablename__ = "sub_groups"

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)
    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("projects.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    project: Mapped[Project] = relationship(back_populates="sub_groups")


class DeliveryNote(Base):
    """A dispatched delivery note; inspections and returns may reference it."""

    __tablename__ = "delivery_notes"

    __table_args__ = (
        UniqueConstraint("tenant_id", "dn_number", name="uq_delivery_note_tenant_number"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)
    dn_number: Mapped[str] = mapped_column(String(50), nullable=False)
    project_id: Mapped[UUID | None] = mapped_column(UUIDString(), ForeignKey("projects.id"))
    client_id: Mapped[UUID | None] = mapped_column(UUIDString())

    lines: Mapped[list["DeliveryNoteLine"]] = relationship(
        back_populates="delivery_note", order_by="DeliveryNoteLine.line_no"
    )


class DeliveryNoteLine(Base):
    """A delivered line; returns may cite it to bound the returned quantity."""

    __tablename__ = "delivery_note_lines"

    __table_args__ = (
        Index("idx_dn_line_note", "delivery_note_id"),
    )

    delivery_note_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("delivery_notes.id"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(nullable=False, default=1)
    item_id: Mapped[UUID | None] = mapped_column(UUIDString())
    production_job_id: Mapped[UUID | None] = mapped_column(UUIDString())
    description: Mapped[str | None] = mapped_column(String(255))
    qty: Mapped[Decimal] = mapped_column(nullable=False)

    delivery_note: Mapped[DeliveryNote] = relationship(back_populates="lines")

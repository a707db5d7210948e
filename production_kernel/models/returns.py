"""
Module: production_kernel.models.returns
Responsibility: ORM persistence for client returns of delivered goods.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - return_number is unique per tenant.
    - outcome is written exactly once, when status leaves PENDING through
      inspection (service-enforced under the return lock; version counter
      turns a lost race into a conflict).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import TrackedBase, UUIDString
from production_kernel.domain.statuses import ReturnOutcome, ReturnStatus
from production_kernel.domain.values import ReturnItem


class ReturnRecord(TrackedBase):
    """A client return against a delivery note."""

    __tablename__ = "return_records"

    __table_args__ = (
        UniqueConstraint("tenant_id", "return_number", name="uq_return_tenant_number"),
        Index("idx_return_tenant_status", "tenant_id", "status"),
        Index("idx_return_dn", "delivery_note_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # e.g. ACME-RET-20240101-0001
    return_number: Mapped[str] = mapped_column(String(50), nullable=False)

    delivery_note_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("delivery_notes.id"), nullable=False
    )

    invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # [{"item_id", "description", "qty", "dn_line_id"}]
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[ReturnStatus] = mapped_column(
        SAEnum(ReturnStatus, native_enum=False, length=20),
        nullable=False,
        default=ReturnStatus.PENDING,
    )

    outcome: Mapped[ReturnOutcome | None] = mapped_column(
        SAEnum(ReturnOutcome, native_enum=False, length=20), nullable=True
    )

    inspected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    inspected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    settled_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ReturnRecord {self.return_number}: {self.status.value}>"

    @property
    def return_items(self) -> list[ReturnItem]:
        return [ReturnItem.from_dict(raw) for raw in self.items or []]

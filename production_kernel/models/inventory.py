"""
Module: production_kernel.models.inventory
Responsibility: ORM persistence for the materials ledger: stock items with
    their running balance, the append-only stock transaction log, material
    issue headers, and wastage records.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - StockTransaction rows are append-only (ORM listener + DB trigger).
    - (item_id, item_seq) is unique: each item's transactions form a total
      order with no duplicates.
    - qty is never zero.
    - 0 <= reserved_qty <= available_qty on every item (CHECK constraint
      backing the service checks).

Audit relevance:
    For every item, the transactions ordered by item_seq replay to the
    item's available_qty: each balance_after is the prefix sum of qty.
    LedgerSelector.verify_item_ledger() performs that replay.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import Base, UUIDString
from production_kernel.domain.statuses import ReferenceType, TransactionType


class InventoryItem(Base):
    """
    A stocked item and its current balance.

    ``available_qty`` is a cache of the last transaction's balance_after.
    The ledger service checks the two agree before every append.
    """

    __tablename__ = "inventory_items"

    __table_args__ = (
        UniqueConstraint("tenant_id", "item_code", name="uq_inventory_item_tenant_code"),
        CheckConstraint("reserved_qty >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint("reserved_qty <= available_qty", name="ck_inventory_reserved_within_available"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    uom: Mapped[str] = mapped_column(String(20), nullable=False, default="NOS")

    available_qty: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    reserved_qty: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    reorder_level: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Counter for StockTransaction.item_seq; only touched under the item lock.
    ledger_seq: Mapped[int] = mapped_column(nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<InventoryItem {self.item_code}: {self.available_qty} {self.uom}>"

    @property
    def free_qty(self) -> Decimal:
        """Quantity neither consumed nor reserved."""
        return self.available_qty - self.reserved_qty

    @property
    def is_below_reorder_level(self) -> bool:
        return self.reorder_level is not None and self.available_qty <= self.reorder_level


class StockTransaction(Base):
    """One signed movement of one item.  Append-only."""

    __tablename__ = "stock_transactions"

    __table_args__ = (
        UniqueConstraint("item_id", "item_seq", name="uq_stock_transaction_item_seq"),
        CheckConstraint("qty <> 0", name="ck_stock_transaction_nonzero"),
        Index("idx_stock_transaction_reference", "reference_type", "reference_id"),
        Index("idx_stock_transaction_tenant", "tenant_id", "created_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inventory_items.id"), nullable=False
    )

    item_seq: Mapped[int] = mapped_column(nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType, native_enum=False, length=20), nullable=False
    )

    # Signed: IN > 0, OUT < 0, ADJUSTMENT / TRANSFER either sign
    qty: Mapped[Decimal] = mapped_column(nullable=False)

    balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    reference_type: Mapped[ReferenceType] = mapped_column(
        SAEnum(ReferenceType, native_enum=False, length=30), nullable=False
    )
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StockTransaction {self.transaction_type.value} {self.qty} "
            f"-> {self.balance_after} #{self.item_seq}>"
        )


class MaterialIssue(Base):
    """Header grouping the OUT transactions of one issue to a job, rework or work order."""

    __tablename__ = "material_issues"

    __table_args__ = (
        Index("idx_material_issue_target", "reference_type", "reference_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    reference_type: Mapped[ReferenceType] = mapped_column(
        SAEnum(ReferenceType, native_enum=False, length=30), nullable=False
    )
    reference_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # [{"item_id", "qty", "wastage", "batch_no", "transaction_id"}]
    lines: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    issued_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)


class WastageRecord(Base):
    """Material lost during production, or returned goods written off."""

    __tablename__ = "wastage_records"

    __table_args__ = (
        Index("idx_wastage_reference", "reference_type", "reference_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("inventory_items.id"), nullable=True
    )
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    qty: Mapped[Decimal] = mapped_column(nullable=False)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    reference_type: Mapped[ReferenceType] = mapped_column(
        SAEnum(ReferenceType, native_enum=False, length=30), nullable=False
    )
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    recorded_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

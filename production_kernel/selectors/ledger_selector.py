"""
Module: production_kernel.selectors.ledger_selector
Responsibility: Read-only stock queries: item balances, the transaction
    history of an item, low-stock items, and replay verification of an
    item's balance chain.
Architecture position: Kernel > Selectors.

Invariants verified:
    - balance_after of row n equals the sum of qty over rows 1..n, read in
      item_seq order, and the last balance_after equals the item's stored
      available_qty.
    - item_seq runs 1..n without gaps.

Audit relevance:
    ``verify_item_ledger`` is the replay check operators run after an
    incident, and the property the concurrency tests assert.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from production_kernel.domain.dtos import (
    InventoryItemInfo,
    LedgerVerification,
    StockTransactionInfo,
    WastageInfo,
)
from production_kernel.domain.statuses import ReferenceType
from production_kernel.models.inventory import InventoryItem, StockTransaction, WastageRecord
from production_kernel.selectors.base import BaseSelector, Page


class LedgerSelector(BaseSelector[StockTransaction]):
    def get_item(self, tenant_id: UUID, item_id: UUID) -> InventoryItemInfo | None:
        item = self._item(tenant_id, item_id)
        return InventoryItemInfo.from_model(item) if item is not None else None

    def _item(self, tenant_id: UUID, item_id: UUID) -> InventoryItem | None:
        return self.session.execute(
            select(InventoryItem).where(
                InventoryItem.id == item_id, InventoryItem.tenant_id == tenant_id
            )
        ).scalar_one_or_none()

    def list_items(self, tenant_id: UUID, *, below_reorder_only: bool = False) -> list[InventoryItemInfo]:
        rows = self.session.execute(
            select(InventoryItem)
            .where(InventoryItem.tenant_id == tenant_id)
            .order_by(InventoryItem.item_code)
        ).scalars().all()
        items = [InventoryItemInfo.from_model(i) for i in rows]
        if below_reorder_only:
            items = [i for i in items if i.is_below_reorder_level]
        return items

    def transactions(
        self,
        tenant_id: UUID,
        item_id: UUID,
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[StockTransactionInfo]:
        stmt = (
            select(StockTransaction)
            .where(StockTransaction.tenant_id == tenant_id, StockTransaction.item_id == item_id)
            .order_by(StockTransaction.item_seq)
        )
        rows, total, limit, offset = self.paginate(stmt, limit, offset)
        return Page(
            items=tuple(StockTransactionInfo.from_model(t) for t in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

    def transactions_for_reference(
        self, tenant_id: UUID, reference_type: ReferenceType, reference_id: UUID
    ) -> list[StockTransactionInfo]:
        rows = self.session.execute(
            select(StockTransaction)
            .where(
                StockTransaction.tenant_id == tenant_id,
                StockTransaction.reference_type == ReferenceType(reference_type),
                StockTransaction.reference_id == reference_id,
            )
            .order_by(StockTransaction.created_at, StockTransaction.item_seq)
        ).scalars().all()
        return [StockTransactionInfo.from_model(t) for t in rows]

    def wastage_for_reference(
        self, tenant_id: UUID, reference_type: ReferenceType, reference_id: UUID
    ) -> list[WastageInfo]:
        rows = self.session.execute(
            select(WastageRecord).where(
                WastageRecord.tenant_id == tenant_id,
                WastageRecord.reference_type == ReferenceType(reference_type),
                WastageRecord.reference_id == reference_id,
            )
        ).scalars().all()
        return [WastageInfo.from_model(w) for w in rows]

    def verify_item_ledger(self, tenant_id: UUID, item_id: UUID) -> LedgerVerification | None:
        """Replay an item's transactions and compare against the stored balance."""
        item = self._item(tenant_id, item_id)
        if item is None:
            return None
        rows = self.session.execute(
            select(StockTransaction)
            .where(StockTransaction.item_id == item_id)
            .order_by(StockTransaction.item_seq)
        ).scalars().all()

        running = Decimal("0")
        errors: list[str] = []
        first_broken: int | None = None
        for expected_seq, txn in enumerate(rows, start=1):
            running += txn.qty
            problems = []
            if txn.item_seq != expected_seq:
                problems.append(f"seq {txn.item_seq}: expected item_seq {expected_seq}")
            if txn.balance_after != running:
                problems.append(
                    f"seq {txn.item_seq}: balance_after {txn.balance_after} != running sum {running}"
                )
            if txn.balance_after < 0:
                problems.append(f"seq {txn.item_seq}: negative balance {txn.balance_after}")
            if problems and first_broken is None:
                first_broken = txn.item_seq
            errors.extend(problems)

        if running != item.available_qty:
            errors.append(f"stored balance {item.available_qty} != replayed {running}")
        if len(rows) != item.ledger_seq:
            errors.append(f"stored ledger_seq {item.ledger_seq} != {len(rows)} transactions")

        return LedgerVerification(
            item_id=item.id,
            transaction_count=len(rows),
            replayed_balance=running,
            stored_balance=item.available_qty,
            is_consistent=not errors,
            first_broken_seq=first_broken,
            errors=tuple(errors),
        )

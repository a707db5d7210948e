"""
LedgerService -- the append-only, balance-preserving materials ledger.

Responsibility:
    Writes StockTransaction rows and keeps each item's running balance and
    reservation consistent with them.  Every stock movement in the engine
    (receipts, adjustments, material issues to jobs, rework and work
    orders, accepted returns) passes through ``_append``.

Architecture position:
    Kernel > Services -- imperative shell.  Called by ProductionEngine for
    direct ledger operations, and by ReturnInspector for accepted returns.

Invariants enforced:
    - balance_after of every new row equals the previous row's
      balance_after plus qty; the previous row is re-read and compared with
      the item's cached balance before each append.  A mismatch aborts the
      operation with LedgerIntegrityError and nothing is written.
    - qty sign matches the type: IN > 0, OUT < 0, ADJUSTMENT/TRANSFER != 0.
    - Balances never go negative and never drop below reserved_qty.
    - 0 <= reserved_qty <= available_qty.
    - Item rows are taken with SELECT ... FOR UPDATE, in item id order when
      an operation touches several items.

Failure modes:
    - ValidationError / InsufficientStockError / ReservationError on bad input.
    - NotFoundError for an unknown item or target in the tenant.
    - InvalidTransitionError when issuing to a closed job or rework.
    - LedgerIntegrityError (fatal) on a broken balance chain.

Audit relevance:
    Each call writes one AuditEvent (STOCK_POSTED, MATERIAL_ISSUED,
    STOCK_RESERVED, STOCK_UNRESERVED).
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.sources import JobTarget, MaterialTarget, ReworkTarget
from production_kernel.domain.statuses import JobStatus, ReferenceType, TransactionType
from production_kernel.domain.values import MaterialLine
from production_kernel.exceptions import (
    InsufficientStockError,
    InvalidTransitionError,
    LedgerIntegrityError,
    NotFoundError,
    ReservationError,
    ValidationError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.audit_event import AuditAction
from production_kernel.models.inventory import (
    InventoryItem,
    MaterialIssue,
    StockTransaction,
    WastageRecord,
)
from production_kernel.models.job_card import JobCard
from production_kernel.models.quality import ReworkJob
from production_kernel.services.auditor_service import AuditorService
from production_kernel.services.base import BaseService

logger = get_logger("services.ledger")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class IssueOutcome:
    """ORM rows written by one material issue (service-internal)."""

    issue: MaterialIssue
    transactions: list[StockTransaction]
    wastage: list[WastageRecord]


class LedgerService(BaseService[StockTransaction]):
    """
    Stock ledger writes.

    Contract:
        Flush-only.  The caller holds the per-item engine lock and owns the
        transaction.

    Non-goals:
        - Valuation (rates, FIFO layers) is owned by the purchasing system.
    """

    def __init__(self, session: Session, auditor: AuditorService, clock: Clock | None = None):
        super().__init__(session)
        self._auditor = auditor
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def create_item(
        self,
        *,
        tenant_id: UUID,
        item_code: str,
        name: str,
        uom: str = "NOS",
        reorder_level: Decimal | None = None,
    ) -> InventoryItem:
        """Register a stocked item with a zero balance."""
        if not item_code or not name:
            raise ValidationError("item_code and name are required", field="item_code")
        item = InventoryItem(
            tenant_id=tenant_id,
            item_code=item_code,
            name=name,
            uom=uom,
            reorder_level=reorder_level,
            available_qty=_ZERO,
            reserved_qty=_ZERO,
            ledger_seq=0,
        )
        self.session.add(item)
        self.session.flush()
        return item

    def lock_item(self, tenant_id: UUID, item_id: UUID) -> InventoryItem:
        item = self.session.execute(
            select(InventoryItem)
            .where(InventoryItem.id == item_id, InventoryItem.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if item is None:
            raise NotFoundError("InventoryItem", str(item_id))
        return item

    def _last_transaction(self, item_id: UUID) -> StockTransaction | None:
        return self.session.execute(
            select(StockTransaction)
            .where(StockTransaction.item_id == item_id)
            .order_by(StockTransaction.item_seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Core append
    # ------------------------------------------------------------------

    @staticmethod
    def _check_sign(transaction_type: TransactionType, qty: Decimal) -> None:
        if qty == 0:
            raise ValidationError("Quantity cannot be zero", field="qty")
        if transaction_type == TransactionType.IN and qty < 0:
            raise ValidationError("IN transactions must have a positive quantity", field="qty")
        if transaction_type == TransactionType.OUT and qty > 0:
            raise ValidationError("OUT transactions must have a negative quantity", field="qty")

    def _append(
        self,
        item: InventoryItem,
        *,
        transaction_type: TransactionType,
        qty: Decimal,
        reference_type: ReferenceType,
        reference_id: UUID | None,
        actor_id: UUID,
        remarks: str | None = None,
        release_reserved: Decimal = _ZERO,
    ) -> StockTransaction:
        """Append one row for a locked item and move its cached balance."""
        self._check_sign(transaction_type, qty)

        last = self._last_transaction(item.id)
        prior_balance = last.balance_after if last is not None else _ZERO
        prior_seq = last.item_seq if last is not None else 0
        if prior_balance != item.available_qty or prior_seq != item.ledger_seq:
            logger.critical(
                "ledger_integrity_violation",
                extra={
                    "item_id": str(item.id),
                    "chain_balance": str(prior_balance),
                    "cached_balance": str(item.available_qty),
                    "chain_seq": prior_seq,
                    "cached_seq": item.ledger_seq,
                },
            )
            raise LedgerIntegrityError(
                str(item.id),
                expected=str(prior_balance),
                actual=str(item.available_qty),
                detail=f"last item_seq {prior_seq}, cached {item.ledger_seq}",
            )

        new_balance = prior_balance + qty
        new_reserved = item.reserved_qty - release_reserved
        if new_balance < 0 or new_balance < new_reserved:
            raise InsufficientStockError(
                str(item.id),
                requested=str(-qty),
                available=str(prior_balance - item.reserved_qty + release_reserved),
            )

        txn = StockTransaction(
            tenant_id=item.tenant_id,
            item_id=item.id,
            item_seq=prior_seq + 1,
            transaction_type=transaction_type,
            qty=qty,
            balance_after=new_balance,
            reference_type=reference_type,
            reference_id=reference_id,
            remarks=remarks,
            created_by_id=actor_id,
            created_at=self._clock.now(),
        )
        item.available_qty = new_balance
        item.reserved_qty = new_reserved
        item.ledger_seq = prior_seq + 1
        self.session.add(txn)
        self.session.flush()

        logger.info(
            "stock_transaction_appended",
            extra={
                "item_id": str(item.id),
                "item_seq": txn.item_seq,
                "transaction_type": transaction_type.value,
                "qty": str(qty),
                "balance_after": str(new_balance),
                "reference_type": reference_type.value,
            },
        )
        return txn

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def post_transaction(
        self,
        *,
        tenant_id: UUID,
        item_id: UUID,
        transaction_type: TransactionType,
        qty: Decimal,
        reference_type: ReferenceType,
        actor_id: UUID,
        reference_id: UUID | None = None,
        remarks: str | None = None,
    ) -> StockTransaction:
        """Append a single signed movement for one item."""
        item = self.lock_item(tenant_id, item_id)
        txn = self._append(
            item,
            transaction_type=transaction_type,
            qty=qty,
            reference_type=reference_type,
            reference_id=reference_id,
            actor_id=actor_id,
            remarks=remarks,
        )
        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="InventoryItem",
            entity_id=item.id,
            action=AuditAction.STOCK_POSTED,
            actor_id=actor_id,
            payload={
                "transaction_id": txn.id,
                "transaction_type": transaction_type,
                "qty": qty,
                "balance_after": txn.balance_after,
                "reference_type": reference_type,
                "reference_id": reference_id,
            },
        )
        return txn

    def _check_target(self, tenant_id: UUID, target: MaterialTarget) -> None:
        if isinstance(target, JobTarget):
            job = self.session.execute(
                select(JobCard).where(JobCard.id == target.job_id, JobCard.tenant_id == tenant_id)
            ).scalar_one_or_none()
            if job is None:
                raise NotFoundError("JobCard", str(target.job_id))
            if job.status in (JobStatus.CANCELLED, JobStatus.COMPLETED):
                raise InvalidTransitionError(
                    "JobCard",
                    str(job.id),
                    JobStatus(job.status).value,
                    action="issue_material",
                    reason="material cannot be issued to a closed job",
                )
        elif isinstance(target, ReworkTarget):
            rework = self.session.execute(
                select(ReworkJob).where(
                    ReworkJob.id == target.rework_job_id, ReworkJob.tenant_id == tenant_id
                )
            ).scalar_one_or_none()
            if rework is None:
                raise NotFoundError("ReworkJob", str(target.rework_job_id))
            if not rework.is_open:
                raise InvalidTransitionError(
                    "ReworkJob",
                    str(rework.id),
                    rework.status.value,
                    action="issue_material",
                    reason="material cannot be issued to a closed rework job",
                )
        # Subcontract work orders are owned by the purchasing system.

    def issue_material(
        self,
        *,
        tenant_id: UUID,
        target: MaterialTarget,
        lines: Sequence[MaterialLine],
        actor_id: UUID,
        remarks: str | None = None,
    ) -> IssueOutcome:
        """
        Consume material for a job, rework job or subcontract work order.

        Each line writes exactly one OUT transaction for qty + wastage, plus
        a WastageRecord when wastage > 0.  Lines drawing on an existing
        reservation release that much reservation in the same row update.
        """
        if not lines:
            raise ValidationError("At least one material line is required", field="items")
        self._check_target(tenant_id, target)

        items: dict[UUID, InventoryItem] = {}
        for item_id in sorted({line.item_id for line in lines}, key=str):
            items[item_id] = self.lock_item(tenant_id, item_id)

        now = self._clock.now()
        transactions: list[StockTransaction] = []
        wastage_rows: list[WastageRecord] = []
        issue_lines: list[dict] = []

        for line in lines:
            item = items[line.item_id]
            release = _ZERO
            if line.from_reservation:
                if line.total_qty > item.reserved_qty:
                    raise ReservationError(
                        str(item.id),
                        f"issue of {line.total_qty} exceeds reserved {item.reserved_qty}",
                    )
                release = line.total_qty
            txn = self._append(
                item,
                transaction_type=TransactionType.OUT,
                qty=-line.total_qty,
                reference_type=target.reference_type,
                reference_id=target.reference_id,
                actor_id=actor_id,
                remarks=remarks,
                release_reserved=release,
            )
            transactions.append(txn)

            if line.wastage > 0:
                waste = WastageRecord(
                    tenant_id=tenant_id,
                    item_id=item.id,
                    qty=line.wastage,
                    reason=line.wastage_reason,
                    reference_type=target.reference_type,
                    reference_id=target.reference_id,
                    recorded_by=actor_id,
                    recorded_at=now,
                )
                self.session.add(waste)
                wastage_rows.append(waste)

            issue_lines.append(
                {
                    "item_id": str(item.id),
                    "qty": str(line.qty),
                    "wastage": str(line.wastage),
                    "batch_no": line.batch_no,
                    "transaction_id": str(txn.id),
                }
            )

        issue = MaterialIssue(
            tenant_id=tenant_id,
            reference_type=target.reference_type,
            reference_id=target.reference_id,
            lines=issue_lines,
            issued_by=actor_id,
            issued_at=now,
            remarks=remarks,
        )
        self.session.add(issue)
        self.session.flush()

        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="MaterialIssue",
            entity_id=issue.id,
            action=AuditAction.MATERIAL_ISSUED,
            actor_id=actor_id,
            payload={
                "reference_type": target.reference_type,
                "reference_id": target.reference_id,
                "lines": issue_lines,
            },
        )
        logger.info(
            "material_issued",
            extra={
                "reference_type": target.reference_type.value,
                "reference_id": str(target.reference_id),
                "line_count": len(lines),
            },
        )
        return IssueOutcome(issue=issue, transactions=transactions, wastage=wastage_rows)

    def reserve(
        self, *, tenant_id: UUID, item_id: UUID, qty: Decimal, actor_id: UUID
    ) -> InventoryItem:
        """Set aside stock; no ledger row is written."""
        if qty <= 0:
            raise ValidationError("Reservation quantity must be greater than zero", field="qty")
        item = self.lock_item(tenant_id, item_id)
        if item.reserved_qty + qty > item.available_qty:
            raise ReservationError(
                str(item.id),
                f"requested {qty}, free {item.available_qty - item.reserved_qty}",
            )
        item.reserved_qty = item.reserved_qty + qty
        self.session.flush()
        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="InventoryItem",
            entity_id=item.id,
            action=AuditAction.STOCK_RESERVED,
            actor_id=actor_id,
            payload={"qty": qty, "reserved_qty": item.reserved_qty},
        )
        return item

    def unreserve(
        self, *, tenant_id: UUID, item_id: UUID, qty: Decimal, actor_id: UUID
    ) -> InventoryItem:
        """Release previously reserved stock."""
        if qty <= 0:
            raise ValidationError("Unreserve quantity must be greater than zero", field="qty")
        item = self.lock_item(tenant_id, item_id)
        if qty > item.reserved_qty:
            raise ReservationError(
                str(item.id), f"requested {qty}, reserved {item.reserved_qty}"
            )
        item.reserved_qty = item.reserved_qty - qty
        self.session.flush()
        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="InventoryItem",
            entity_id=item.id,
            action=AuditAction.STOCK_UNRESERVED,
            actor_id=actor_id,
            payload={"qty": qty, "reserved_qty": item.reserved_qty},
        )
        return item

    def receive_return(
        self,
        *,
        tenant_id: UUID,
        item_id: UUID,
        qty: Decimal,
        return_id: UUID,
        actor_id: UUID,
        remarks: str | None = None,
    ) -> StockTransaction:
        """Compensating IN for accepted returned goods."""
        item = self.lock_item(tenant_id, item_id)
        return self._append(
            item,
            transaction_type=TransactionType.IN,
            qty=qty,
            reference_type=ReferenceType.CLIENT_RETURN,
            reference_id=return_id,
            actor_id=actor_id,
            remarks=remarks,
        )

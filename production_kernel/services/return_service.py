"""
ReturnInspector -- client returns of delivered goods.

Responsibility:
    Records returns against delivery notes, decides their physical
    disposition exactly once (accept back into stock, rework, or scrap),
    and settles or rejects them afterwards.

Architecture position:
    Kernel > Services -- imperative shell.  Uses ReworkOrchestrator for
    REWORK outcomes and LedgerService for ACCEPT_RETURN stock movements,
    inside the caller's transaction.

Invariants enforced:
    - Inspection happens only from PENDING; the outcome is written once.
    - ACCEPT_RETURN writes one IN transaction per returned line that names
      a stock item.  SCRAP writes wastage rows and moves no stock.  REWORK
      spawns one rework job sourced from the delivery note.
    - A returned quantity never exceeds the delivered quantity of the
      delivery note line it references.

Failure modes:
    - ValidationError for empty or malformed item lists.
    - NotFoundError for an unknown return or delivery note.
    - ReturnAlreadyInspectedError (409) on a second inspection.
    - InvalidTransitionError for settle / reject out of order.
"""

from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.sources import DeliveryNoteSource
from production_kernel.domain.statuses import ReferenceType, ReturnOutcome, ReturnStatus
from production_kernel.domain.values import ReturnItem
from production_kernel.domain.workflow import RETURN_WORKFLOW, require_transition
from production_kernel.exceptions import (
    NotFoundError,
    OptimisticLockError,
    ReturnAlreadyInspectedError,
    ValidationError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.audit_event import AuditAction
from production_kernel.models.inventory import StockTransaction, WastageRecord
from production_kernel.models.quality import ReworkJob
from production_kernel.models.reference import DeliveryNote, DeliveryNoteLine
from production_kernel.models.returns import ReturnRecord
from production_kernel.services.auditor_service import AuditorService
from production_kernel.services.base import BaseService
from production_kernel.services.ledger_service import LedgerService
from production_kernel.services.rework_service import ReworkOrchestrator
from production_kernel.services.sequence_service import SequenceService
from production_kernel.services.stage_catalog_service import StageCatalogService

logger = get_logger("services.returns")

_ENTITY = "ReturnRecord"


class ReturnInspector(BaseService[ReturnRecord]):
    """Client return lifecycle.  Flush-only."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        catalogs: StageCatalogService,
        ledger: LedgerService,
        rework: ReworkOrchestrator,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._auditor = auditor
        self._catalogs = catalogs
        self._ledger = ledger
        self._rework = rework
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def get_return(
        self, tenant_id: UUID, return_id: UUID, for_update: bool = False
    ) -> ReturnRecord:
        stmt = select(ReturnRecord).where(
            ReturnRecord.id == return_id, ReturnRecord.tenant_id == tenant_id
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        record = self.session.execute(stmt).scalar_one_or_none()
        if record is None:
            raise NotFoundError(_ENTITY, str(return_id))
        return record

    def _for_update(
        self, tenant_id: UUID, return_id: UUID, expected_version: int | None
    ) -> ReturnRecord:
        record = self.get_return(tenant_id, return_id, for_update=True)
        if expected_version is not None and record.version != expected_version:
            raise OptimisticLockError(_ENTITY, str(return_id), expected_version, record.version)
        return record

    def _audit(self, record: ReturnRecord, action: AuditAction, actor_id: UUID, payload: dict):
        self._auditor.record(
            tenant_id=record.tenant_id,
            entity_type=_ENTITY,
            entity_id=record.id,
            action=action,
            actor_id=actor_id,
            payload=payload,
        )

    def create_return(
        self,
        *,
        tenant_id: UUID,
        delivery_note_id: UUID,
        items: Sequence[ReturnItem],
        actor_id: UUID,
        client_id: UUID | None = None,
        invoice_id: UUID | None = None,
        reason: str | None = None,
    ) -> ReturnRecord:
        """Record a PENDING return against a delivery note."""
        items = tuple(items)
        if not items:
            raise ValidationError("At least one returned item is required", field="items")

        note = self.session.execute(
            select(DeliveryNote).where(
                DeliveryNote.id == delivery_note_id, DeliveryNote.tenant_id == tenant_id
            )
        ).scalar_one_or_none()
        if note is None:
            raise NotFoundError("DeliveryNote", str(delivery_note_id))

        client = client_id or note.client_id
        if client is None:
            raise ValidationError("client_id is required", field="client_id")

        lines = {line.id: line for line in note.lines}
        returned: dict[UUID, Decimal] = {}
        for item in items:
            if item.dn_line_id is None:
                continue
            line: DeliveryNoteLine | None = lines.get(item.dn_line_id)
            if line is None:
                raise ValidationError(
                    f"Line {item.dn_line_id} is not on delivery note {delivery_note_id}",
                    field="items",
                )
            returned[line.id] = returned.get(line.id, Decimal("0")) + item.qty
            if returned[line.id] > line.qty:
                raise ValidationError(
                    f"Returned quantity {returned[line.id]} exceeds delivered {line.qty}",
                    field="items",
                )

        catalog = self._catalogs.get_catalog(tenant_id)
        now = self._clock.now()
        number = self._sequences.next_value(SequenceService.return_sequence(tenant_id, now))
        record = ReturnRecord(
            tenant_id=tenant_id,
            return_number=f"{catalog.tenant_code}-RET-{now:%Y%m%d}-{number:04d}",
            delivery_note_id=note.id,
            invoice_id=invoice_id,
            client_id=client,
            reason=reason,
            items=[item.to_dict() for item in items],
            status=ReturnStatus.PENDING,
            created_by_id=actor_id,
        )
        self.session.add(record)
        self.session.flush()

        self._audit(
            record,
            AuditAction.RETURN_CREATED,
            actor_id,
            {
                "return_number": record.return_number,
                "delivery_note_id": note.id,
                "item_count": len(items),
                "reason": reason,
            },
        )
        logger.info(
            "return_created",
            extra={"return_id": str(record.id), "return_number": record.return_number},
        )
        return record

    def inspect(
        self,
        *,
        tenant_id: UUID,
        return_id: UUID,
        inspected_by: UUID,
        result: ReturnOutcome,
        remarks: str | None = None,
        rework_assigned_to: UUID | None = None,
        rework_expected_hours: Decimal | None = None,
    ) -> tuple[ReturnRecord, ReworkJob | None, list[StockTransaction], list[WastageRecord]]:
        """
        Decide what happens to returned goods.  Legal only from PENDING.

        Raises:
            ReturnAlreadyInspectedError: the return already has an outcome or
                was rejected.
        """
        result = ReturnOutcome(result)
        record = self.get_return(tenant_id, return_id, for_update=True)
        status = ReturnStatus(record.status)
        if status != ReturnStatus.PENDING or record.outcome is not None:
            logger.warning(
                "return_inspection_rejected",
                extra={"return_id": str(record.id), "status": status.value},
            )
            raise ReturnAlreadyInspectedError(str(record.id), status.value)
        require_transition(
            RETURN_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=record.id,
            current=status,
            action="inspect",
        )

        now = self._clock.now()
        record.outcome = result
        record.status = ReturnStatus.INSPECTED
        record.inspected_by = inspected_by
        record.inspected_at = now
        if remarks:
            record.remarks = remarks
        record.updated_by_id = inspected_by
        self.session.flush()

        rework = None
        transactions: list[StockTransaction] = []
        wastage: list[WastageRecord] = []
        items = record.return_items

        if result == ReturnOutcome.REWORK:
            rework = self._rework.spawn(
                tenant_id=tenant_id,
                source=DeliveryNoteSource(record.delivery_note_id),
                actor_id=inspected_by,
                expected_hours=rework_expected_hours,
                assigned_to=rework_assigned_to,
                notes=remarks or record.reason,
                material_needed=[item.to_dict() for item in items],
                source_return_id=record.id,
            )
        elif result == ReturnOutcome.ACCEPT_RETURN:
            for item in sorted(
                (i for i in items if i.item_id is not None), key=lambda i: str(i.item_id)
            ):
                transactions.append(
                    self._ledger.receive_return(
                        tenant_id=tenant_id,
                        item_id=item.item_id,
                        qty=item.qty,
                        return_id=record.id,
                        actor_id=inspected_by,
                        remarks=f"Return {record.return_number}",
                    )
                )
        else:
            for item in items:
                row = WastageRecord(
                    tenant_id=tenant_id,
                    item_id=item.item_id,
                    description=item.description,
                    qty=item.qty,
                    reason=remarks or "Scrapped on return inspection",
                    reference_type=ReferenceType.CLIENT_RETURN,
                    reference_id=record.id,
                    recorded_by=inspected_by,
                    recorded_at=now,
                )
                self.session.add(row)
                wastage.append(row)
            self.session.flush()

        self._audit(
            record,
            AuditAction.RETURN_INSPECTED,
            inspected_by,
            {
                "outcome": result,
                "rework_job_id": rework.id if rework is not None else None,
                "transaction_count": len(transactions),
                "wastage_count": len(wastage),
            },
        )
        logger.info(
            "return_inspected",
            extra={"return_id": str(record.id), "outcome": result.value},
        )
        return record, rework, transactions, wastage

    def settle(
        self,
        *,
        tenant_id: UUID,
        return_id: UUID,
        accepted: bool,
        settled_by: UUID,
        remarks: str | None = None,
        expected_version: int | None = None,
    ) -> ReturnRecord:
        """Close an inspected return as ACCEPTED or REJECTED.  Outcome is unchanged."""
        record = self._for_update(tenant_id, return_id, expected_version)
        transition = require_transition(
            RETURN_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=record.id,
            current=record.status,
            action="settle_accept" if accepted else "settle_reject",
        )
        record.status = ReturnStatus(transition.to_state)
        record.settled_by = settled_by
        record.settled_at = self._clock.now()
        if remarks:
            record.remarks = remarks
        record.updated_by_id = settled_by
        self.session.flush()
        self._audit(
            record,
            AuditAction.RETURN_SETTLED,
            settled_by,
            {"status": record.status, "remarks": remarks},
        )
        logger.info(
            "return_settled",
            extra={"return_id": str(record.id), "status": record.status.value},
        )
        return record

    def reject(
        self,
        *,
        tenant_id: UUID,
        return_id: UUID,
        actor_id: UUID,
        remarks: str | None = None,
        expected_version: int | None = None,
    ) -> ReturnRecord:
        """Refuse a PENDING return without inspecting the goods."""
        record = self._for_update(tenant_id, return_id, expected_version)
        require_transition(
            RETURN_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=record.id,
            current=record.status,
            action="reject",
        )
        record.status = ReturnStatus.REJECTED
        record.settled_by = actor_id
        record.settled_at = self._clock.now()
        if remarks:
            record.remarks = remarks
        record.updated_by_id = actor_id
        self.session.flush()
        self._audit(
            record,
            AuditAction.RETURN_SETTLED,
            actor_id,
            {"status": record.status, "remarks": remarks},
        )
        logger.info("return_rejected", extra={"return_id": str(record.id)})
        return record

"""
DTOs -- immutable results returned by the engine.

Responsibility:
    Every engine operation returns one of these frozen dataclasses, never
    an ORM entity, so callers can use results after the session closes and
    cannot mutate persisted state by accident.

Architecture position:
    Kernel > Domain.  ``from_model()`` class methods are boundary converters
    invoked only from the service layer; the ORM types are referenced for
    typing alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from production_kernel.domain.statuses import (
    GateDecision,
    JobStatus,
    QCStatus,
    ReferenceType,
    ReturnOutcome,
    ReturnStatus,
    ReworkStatus,
    SourceKind,
    TransactionType,
)

if TYPE_CHECKING:
    from production_kernel.models.inventory import (
        InventoryItem,
        MaterialIssue,
        StockTransaction,
        WastageRecord,
    )
    from production_kernel.models.job_card import JobCard, LabourLogEntry, ProductionStageLog
    from production_kernel.models.quality import QCRecord, ReworkJob
    from production_kernel.models.returns import ReturnRecord


@dataclass(frozen=True)
class StageLogInfo:
    id: UUID
    stage: str
    log_no: int
    started_at: datetime
    completed_at: datetime | None
    started_by: UUID
    completed_by: UUID | None
    hours_logged: Decimal
    output_qty: Decimal
    qc_status: QCStatus | None
    notes: str | None

    @property
    def is_open(self) -> bool:
        return self.completed_at is None

    @classmethod
    def from_model(cls, log: ProductionStageLog) -> StageLogInfo:
        return cls(
            id=log.id,
            stage=log.stage,
            log_no=log.log_no,
            started_at=log.started_at,
            completed_at=log.completed_at,
            started_by=log.started_by,
            completed_by=log.completed_by,
            hours_logged=log.hours_logged,
            output_qty=log.output_qty,
            qc_status=log.qc_status,
            notes=log.notes,
        )


@dataclass(frozen=True)
class JobCardInfo:
    id: UUID
    tenant_id: UUID
    job_card_number: str
    project_id: UUID
    sub_group_id: UUID
    stage: str
    stage_index: int
    status: JobStatus
    planned_qty: Decimal
    actual_qty: Decimal
    planned_hours: Decimal | None
    actual_hours: Decimal
    assigned_to: UUID | None
    cancel_reason: str | None
    version: int
    stage_logs: tuple[StageLogInfo, ...] = ()

    @classmethod
    def from_model(cls, job: JobCard, include_logs: bool = True) -> JobCardInfo:
        return cls(
            id=job.id,
            tenant_id=job.tenant_id,
            job_card_number=job.job_card_number,
            project_id=job.project_id,
            sub_group_id=job.sub_group_id,
            stage=job.stage,
            stage_index=job.stage_index,
            status=JobStatus(job.status),
            planned_qty=job.planned_qty,
            actual_qty=job.actual_qty,
            planned_hours=job.planned_hours,
            actual_hours=job.actual_hours,
            assigned_to=job.assigned_to,
            cancel_reason=job.cancel_reason,
            version=job.version,
            stage_logs=(
                tuple(StageLogInfo.from_model(log) for log in job.stage_logs)
                if include_logs
                else ()
            ),
        )


@dataclass(frozen=True)
class LabourEntryInfo:
    id: UUID
    stage_log_id: UUID
    user_id: UUID
    hours: Decimal
    output_qty: Decimal
    work_date: date
    notes: str | None

    @classmethod
    def from_model(cls, entry: LabourLogEntry) -> LabourEntryInfo:
        return cls(
            id=entry.id,
            stage_log_id=entry.stage_log_id,
            user_id=entry.user_id,
            hours=entry.hours,
            output_qty=entry.output_qty,
            work_date=entry.work_date,
            notes=entry.notes,
        )


@dataclass(frozen=True)
class LogHoursResult:
    job_id: UUID
    stage: str
    entry: LabourEntryInfo
    stage_hours_logged: Decimal
    updated_actual_hours: Decimal
    updated_actual_qty: Decimal


@dataclass(frozen=True)
class QCRecordInfo:
    id: UUID
    tenant_id: UUID
    source_kind: SourceKind
    production_job_id: UUID | None
    delivery_note_id: UUID | None
    stage: str | None
    stage_log_id: UUID | None
    inspector_id: UUID
    qc_status: QCStatus
    defects: tuple[dict[str, Any], ...]
    remarks: str | None
    create_rework: bool
    inspected_at: datetime

    @classmethod
    def from_model(cls, record: QCRecord) -> QCRecordInfo:
        return cls(
            id=record.id,
            tenant_id=record.tenant_id,
            source_kind=record.source.kind,
            production_job_id=record.production_job_id,
            delivery_note_id=record.delivery_note_id,
            stage=record.stage,
            stage_log_id=record.stage_log_id,
            inspector_id=record.inspector_id,
            qc_status=QCStatus(record.qc_status),
            defects=tuple(dict(d) for d in record.defects or []),
            remarks=record.remarks,
            create_rework=record.create_rework,
            inspected_at=record.inspected_at,
        )


@dataclass(frozen=True)
class ReworkJobInfo:
    id: UUID
    tenant_id: UUID
    source_kind: SourceKind
    production_job_id: UUID | None
    delivery_note_id: UUID | None
    source_qc_record_id: UUID | None
    source_return_id: UUID | None
    status: ReworkStatus
    expected_hours: Decimal | None
    actual_hours: Decimal
    assigned_to: UUID | None
    notes: str | None
    material_needed: tuple[dict[str, Any], ...]
    completed_at: datetime | None
    created_by_id: UUID
    version: int

    @classmethod
    def from_model(cls, rework: ReworkJob) -> ReworkJobInfo:
        return cls(
            id=rework.id,
            tenant_id=rework.tenant_id,
            source_kind=rework.source.kind,
            production_job_id=rework.production_job_id,
            delivery_note_id=rework.delivery_note_id,
            source_qc_record_id=rework.source_qc_record_id,
            source_return_id=rework.source_return_id,
            status=ReworkStatus(rework.status),
            expected_hours=rework.expected_hours,
            actual_hours=rework.actual_hours,
            assigned_to=rework.assigned_to,
            notes=rework.notes,
            material_needed=tuple(dict(m) for m in rework.material_needed or []),
            completed_at=rework.completed_at,
            created_by_id=rework.created_by_id,
            version=rework.version,
        )


@dataclass(frozen=True)
class GateResult:
    """What EvaluateStageCompletion decided for a (job, stage)."""

    decision: GateDecision
    job_id: UUID
    stage: str
    next_stage: str | None = None
    qc_record_id: UUID | None = None


@dataclass(frozen=True)
class StageCompletionResult:
    job: JobCardInfo
    completed_log: StageLogInfo
    gate: GateResult
    material_issue: MaterialIssueInfo | None = None


@dataclass(frozen=True)
class InspectionResult:
    """Outcome of RecordInspection; ``replayed`` is True for an idempotent resubmission."""

    qc_record: QCRecordInfo
    gate: GateResult | None
    rework_job_id: UUID | None
    replayed: bool = False

    @property
    def qc_id(self) -> UUID:
        return self.qc_record.id


@dataclass(frozen=True)
class ReworkTransitionResult:
    rework: ReworkJobInfo
    resumed_job: JobCardInfo | None = None


@dataclass(frozen=True)
class ReturnRecordInfo:
    id: UUID
    tenant_id: UUID
    return_number: str
    delivery_note_id: UUID
    invoice_id: UUID | None
    client_id: UUID
    reason: str | None
    items: tuple[dict[str, Any], ...]
    status: ReturnStatus
    outcome: ReturnOutcome | None
    inspected_by: UUID | None
    inspected_at: datetime | None
    remarks: str | None
    version: int

    @classmethod
    def from_model(cls, record: ReturnRecord) -> ReturnRecordInfo:
        return cls(
            id=record.id,
            tenant_id=record.tenant_id,
            return_number=record.return_number,
            delivery_note_id=record.delivery_note_id,
            invoice_id=record.invoice_id,
            client_id=record.client_id,
            reason=record.reason,
            items=tuple(dict(i) for i in record.items or []),
            status=ReturnStatus(record.status),
            outcome=ReturnOutcome(record.outcome) if record.outcome else None,
            inspected_by=record.inspected_by,
            inspected_at=record.inspected_at,
            remarks=record.remarks,
            version=record.version,
        )


@dataclass(frozen=True)
class StockTransactionInfo:
    id: UUID
    item_id: UUID
    item_seq: int
    transaction_type: TransactionType
    qty: Decimal
    balance_after: Decimal
    reference_type: ReferenceType
    reference_id: UUID | None
    remarks: str | None
    created_by_id: UUID
    created_at: datetime

    @classmethod
    def from_model(cls, txn: StockTransaction) -> StockTransactionInfo:
        return cls(
            id=txn.id,
            item_id=txn.item_id,
            item_seq=txn.item_seq,
            transaction_type=TransactionType(txn.transaction_type),
            qty=txn.qty,
            balance_after=txn.balance_after,
            reference_type=ReferenceType(txn.reference_type),
            reference_id=txn.reference_id,
            remarks=txn.remarks,
            created_by_id=txn.created_by_id,
            created_at=txn.created_at,
        )


@dataclass(frozen=True)
class InventoryItemInfo:
    id: UUID
    tenant_id: UUID
    item_code: str
    name: str
    uom: str
    available_qty: Decimal
    reserved_qty: Decimal
    reorder_level: Decimal | None

    @property
    def free_qty(self) -> Decimal:
        return self.available_qty - self.reserved_qty

    @property
    def is_below_reorder_level(self) -> bool:
        return self.reorder_level is not None and self.available_qty <= self.reorder_level

    @classmethod
    def from_model(cls, item: InventoryItem) -> InventoryItemInfo:
        return cls(
            id=item.id,
            tenant_id=item.tenant_id,
            item_code=item.item_code,
            name=item.name,
            uom=item.uom,
            available_qty=item.available_qty,
            reserved_qty=item.reserved_qty,
            reorder_level=item.reorder_level,
        )


@dataclass(frozen=True)
class WastageInfo:
    id: UUID
    item_id: UUID | None
    description: str | None
    qty: Decimal
    reason: str | None
    reference_type: ReferenceType
    reference_id: UUID | None

    @classmethod
    def from_model(cls, record: WastageRecord) -> WastageInfo:
        return cls(
            id=record.id,
            item_id=record.item_id,
            description=record.description,
            qty=record.qty,
            reason=record.reason,
            reference_type=ReferenceType(record.reference_type),
            reference_id=record.reference_id,
        )


@dataclass(frozen=True)
class MaterialIssueInfo:
    id: UUID
    reference_type: ReferenceType
    reference_id: UUID
    issued_by: UUID
    issued_at: datetime
    transactions: tuple[StockTransactionInfo, ...]
    wastage: tuple[WastageInfo, ...] = ()

    @classmethod
    def from_model(
        cls,
        issue: MaterialIssue,
        transactions: list[StockTransaction],
        wastage: list[WastageRecord],
    ) -> MaterialIssueInfo:
        return cls(
            id=issue.id,
            reference_type=ReferenceType(issue.reference_type),
            reference_id=issue.reference_id,
            issued_by=issue.issued_by,
            issued_at=issue.issued_at,
            transactions=tuple(StockTransactionInfo.from_model(t) for t in transactions),
            wastage=tuple(WastageInfo.from_model(w) for w in wastage),
        )


@dataclass(frozen=True)
class ReturnInspectionResult:
    return_record: ReturnRecordInfo
    rework_job_id: UUID | None = None
    transactions: tuple[StockTransactionInfo, ...] = ()
    wastage: tuple[WastageInfo, ...] = ()


@dataclass(frozen=True)
class LedgerVerification:
    """Replay of one item's transactions against its stored balance."""

    item_id: UUID
    transaction_count: int
    replayed_balance: Decimal
    stored_balance: Decimal
    is_consistent: bool
    first_broken_seq: int | None = None
    errors: tuple[str, ...] = field(default_factory=tuple)

"""
Pydantic schemas for the production API.

Request models validate shape only; business rules (positive quantities
against stock, legal transitions, defect requirements) stay in the
kernel so every caller gets the same errors.  Response models read the
kernel's frozen DTOs through ``from_attributes``.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from production_kernel.domain.statuses import (
    DefectSeverity,
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

T = TypeVar("T")


class ResponseBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PageResponse(ResponseBase, Generic[T]):
    items: List[T]
    total: int
    limit: int
    offset: int


# ============================================================================
# JOBS
# ============================================================================

class JobCreate(BaseModel):
    project_id: UUID
    sub_group_id: UUID
    planned_qty: Decimal
    planned_hours: Optional[Decimal] = None
    assigned_to: Optional[UUID] = None
    stage: Optional[str] = None


class StageStart(BaseModel):
    expected_version: Optional[int] = None
    notes: Optional[str] = None


class MaterialLineIn(BaseModel):
    item_id: UUID
    qty: Decimal
    wastage: Decimal = Decimal("0")
    wastage_reason: Optional[str] = None
    batch_no: Optional[str] = None
    from_reservation: bool = False


class StageComplete(BaseModel):
    expected_version: Optional[int] = None
    notes: Optional[str] = None
    materials: List[MaterialLineIn] = Field(default_factory=list)


class HoursLog(BaseModel):
    hours: Decimal
    output_qty: Optional[Decimal] = None
    notes: Optional[str] = None
    work_date: Optional[date] = None
    user_id: Optional[UUID] = None
    expected_version: Optional[int] = None


class JobAssign(BaseModel):
    assigned_to: Optional[UUID] = None
    expected_version: Optional[int] = None


class JobCancel(BaseModel):
    reason: Optional[str] = None
    expected_version: Optional[int] = None


class StageLogResponse(ResponseBase):
    id: UUID
    stage: str
    log_no: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    started_by: UUID
    completed_by: Optional[UUID] = None
    hours_logged: Decimal
    output_qty: Decimal
    qc_status: Optional[QCStatus] = None
    notes: Optional[str] = None


class JobResponse(ResponseBase):
    id: UUID
    job_card_number: str
    project_id: UUID
    sub_group_id: UUID
    stage: str
    stage_index: int
    status: JobStatus
    planned_qty: Decimal
    actual_qty: Decimal
    planned_hours: Optional[Decimal] = None
    actual_hours: Decimal
    assigned_to: Optional[UUID] = None
    cancel_reason: Optional[str] = None
    version: int
    stage_logs: List[StageLogResponse] = Field(default_factory=list)


class LabourEntryResponse(ResponseBase):
    id: UUID
    stage_log_id: UUID
    user_id: UUID
    hours: Decimal
    output_qty: Decimal
    work_date: date
    notes: Optional[str] = None


class LogHoursResponse(ResponseBase):
    job_id: UUID
    stage: str
    entry: LabourEntryResponse
    stage_hours_logged: Decimal
    updated_actual_hours: Decimal
    updated_actual_qty: Decimal


class GateResponse(ResponseBase):
    decision: GateDecision
    job_id: UUID
    stage: str
    next_stage: Optional[str] = None
    qc_record_id: Optional[UUID] = None


# ============================================================================
# INVENTORY
# ============================================================================

class ItemCreate(BaseModel):
    item_code: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    uom: str = "NOS"
    reorder_level: Optional[Decimal] = None


class TransactionCreate(BaseModel):
    item_id: UUID
    transaction_type: TransactionType
    qty: Decimal
    reference_type: ReferenceType = ReferenceType.MANUAL
    reference_id: Optional[UUID] = None
    remarks: Optional[str] = None


class MaterialIssueCreate(BaseModel):
    """Exactly one target must be given."""

    production_job_id: Optional[UUID] = None
    rework_job_id: Optional[UUID] = None
    subcontract_wo_id: Optional[UUID] = None
    lines: List[MaterialLineIn]
    remarks: Optional[str] = None


class ReservationChange(BaseModel):
    qty: Decimal


class ItemResponse(ResponseBase):
    id: UUID
    item_code: str
    name: str
    uom: str
    available_qty: Decimal
    reserved_qty: Decimal
    free_qty: Decimal
    reorder_level: Optional[Decimal] = None
    is_below_reorder_level: bool


class StockTransactionResponse(ResponseBase):
    id: UUID
    item_id: UUID
    item_seq: int
    transaction_type: TransactionType
    qty: Decimal
    balance_after: Decimal
    reference_type: ReferenceType
    reference_id: Optional[UUID] = None
    remarks: Optional[str] = None
    created_by_id: UUID
    created_at: datetime


class WastageResponse(ResponseBase):
    id: UUID
    item_id: Optional[UUID] = None
    description: Optional[str] = None
    qty: Decimal
    reason: Optional[str] = None
    reference_type: ReferenceType
    reference_id: Optional[UUID] = None


class MaterialIssueResponse(ResponseBase):
    id: UUID
    reference_type: ReferenceType
    reference_id: UUID
    issued_by: UUID
    issued_at: datetime
    transactions: List[StockTransactionResponse]
    wastage: List[WastageResponse] = Field(default_factory=list)


class LedgerVerificationResponse(ResponseBase):
    item_id: UUID
    transaction_count: int
    replayed_balance: Decimal
    stored_balance: Decimal
    is_consistent: bool
    first_broken_seq: Optional[int] = None
    errors: List[str] = Field(default_factory=list)


class StageCompletionResponse(ResponseBase):
    job: JobResponse
    completed_log: StageLogResponse
    gate: GateResponse
    material_issue: Optional[MaterialIssueResponse] = None


# ============================================================================
# QUALITY
# ============================================================================

class DefectIn(BaseModel):
    desc: str = Field(..., min_length=1)
    severity: DefectSeverity
    photo_ref: Optional[str] = None


class InspectionCreate(BaseModel):
    production_job_id: Optional[UUID] = None
    delivery_note_id: Optional[UUID] = None
    stage: Optional[str] = None
    qc_status: QCStatus
    defects: List[DefectIn] = Field(default_factory=list)
    remarks: Optional[str] = None
    create_rework: bool = False
    rework_expected_hours: Optional[Decimal] = None
    rework_assigned_to: Optional[UUID] = None
    idempotency_key: Optional[str] = Field(None, max_length=100)


class QCRecordResponse(ResponseBase):
    id: UUID
    source_kind: SourceKind
    production_job_id: Optional[UUID] = None
    delivery_note_id: Optional[UUID] = None
    stage: Optional[str] = None
    stage_log_id: Optional[UUID] = None
    inspector_id: UUID
    qc_status: QCStatus
    defects: List[dict[str, Any]] = Field(default_factory=list)
    remarks: Optional[str] = None
    create_rework: bool
    inspected_at: datetime


class InspectionResponse(ResponseBase):
    qc_record: QCRecordResponse
    gate: Optional[GateResponse] = None
    rework_job_id: Optional[UUID] = None
    replayed: bool = False


# ============================================================================
# REWORK
# ============================================================================

class ReworkCreate(BaseModel):
    production_job_id: Optional[UUID] = None
    delivery_note_id: Optional[UUID] = None
    source_qc_record_id: Optional[UUID] = None
    expected_hours: Optional[Decimal] = None
    assigned_to: Optional[UUID] = None
    notes: Optional[str] = None
    material_needed: List[dict[str, Any]] = Field(default_factory=list)


class ReworkStatusUpdate(BaseModel):
    status: ReworkStatus
    expected_version: Optional[int] = None


class ReworkDetailsUpdate(BaseModel):
    assigned_to: Optional[UUID] = None
    actual_hours: Optional[Decimal] = None
    expected_hours: Optional[Decimal] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class ReworkResponse(ResponseBase):
    id: UUID
    source_kind: SourceKind
    production_job_id: Optional[UUID] = None
    delivery_note_id: Optional[UUID] = None
    source_qc_record_id: Optional[UUID] = None
    source_return_id: Optional[UUID] = None
    status: ReworkStatus
    expected_hours: Optional[Decimal] = None
    actual_hours: Decimal
    assigned_to: Optional[UUID] = None
    notes: Optional[str] = None
    material_needed: List[dict[str, Any]] = Field(default_factory=list)
    completed_at: Optional[datetime] = None
    created_by_id: UUID
    version: int


class ReworkTransitionResponse(ResponseBase):
    rework: ReworkResponse
    resumed_job: Optional[JobResponse] = None


# ============================================================================
# RETURNS
# ============================================================================

class ReturnItemIn(BaseModel):
    qty: Decimal
    item_id: Optional[UUID] = None
    description: Optional[str] = None
    dn_line_id: Optional[UUID] = None


class ReturnCreate(BaseModel):
    delivery_note_id: UUID
    items: List[ReturnItemIn]
    client_id: Optional[UUID] = None
    invoice_id: Optional[UUID] = None
    reason: Optional[str] = None


class ReturnInspect(BaseModel):
    result: ReturnOutcome
    remarks: Optional[str] = None
    rework_assigned_to: Optional[UUID] = None
    rework_expected_hours: Optional[Decimal] = None


class ReturnSettle(BaseModel):
    accepted: bool
    remarks: Optional[str] = None
    expected_version: Optional[int] = None


class ReturnResponse(ResponseBase):
    id: UUID
    return_number: str
    delivery_note_id: UUID
    invoice_id: Optional[UUID] = None
    client_id: UUID
    reason: Optional[str] = None
    items: List[dict[str, Any]] = Field(default_factory=list)
    status: ReturnStatus
    outcome: Optional[ReturnOutcome] = None
    inspected_by: Optional[UUID] = None
    inspected_at: Optional[datetime] = None
    remarks: Optional[str] = None
    version: int


class ReturnInspectionResponse(ResponseBase):
    return_record: ReturnResponse
    rework_job_id: Optional[UUID] = None
    transactions: List[StockTransactionResponse] = Field(default_factory=list)
    wastage: List[WastageResponse] = Field(default_factory=list)

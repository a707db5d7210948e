"""QC inspection endpoints."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from production_api.deps import Actor, Engine
from production_api.schemas import (
    InspectionCreate,
    InspectionResponse,
    PageResponse,
    QCRecordResponse,
)
from production_kernel.domain.statuses import QCStatus

router = APIRouter(prefix="/qc-inspections", tags=["qc"])


@router.post("", response_model=InspectionResponse, status_code=status.HTTP_201_CREATED)
def record_inspection(data: InspectionCreate, engine: Engine, actor: Actor, response: Response):
    """
    Record an inspection of a production job stage or a delivery note.

    A FAIL with ``create_rework`` spawns a rework job in the same
    transaction; its id is returned as ``rework_job_id``.  Resubmitting
    with the same ``idempotency_key`` returns the original record with 200.
    """
    payload = data.model_dump()
    payload["defects"] = [d.model_dump() for d in data.defects]
    result = engine.record_inspection(actor, **payload)
    if result.replayed:
        response.status_code = status.HTTP_200_OK
    return InspectionResponse.model_validate(result)


@router.get("", response_model=PageResponse[QCRecordResponse])
def list_inspections(
    engine: Engine,
    actor: Actor,
    production_job_id: Optional[UUID] = None,
    delivery_note_id: Optional[UUID] = None,
    stage: Optional[str] = None,
    qc_status: Optional[QCStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    page = engine.list_qc_records(
        actor.tenant_id,
        production_job_id=production_job_id,
        delivery_note_id=delivery_note_id,
        stage=stage,
        qc_status=qc_status,
        limit=limit,
        offset=offset,
    )
    return PageResponse[QCRecordResponse].model_validate(page)


@router.get("/{qc_record_id}", response_model=QCRecordResponse)
def get_inspection(qc_record_id: UUID, engine: Engine, actor: Actor):
    return QCRecordResponse.model_validate(engine.get_qc_record(actor.tenant_id, qc_record_id))

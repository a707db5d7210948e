"""Rework job endpoints."""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from production_api.deps import Actor, Engine
from production_api.schemas import (
    PageResponse,
    ReworkCreate,
    ReworkDetailsUpdate,
    ReworkResponse,
    ReworkStatusUpdate,
    ReworkTransitionResponse,
)
from production_kernel.domain.statuses import ReworkStatus

router = APIRouter(prefix="/rework-jobs", tags=["rework"])


@router.post("", response_model=ReworkResponse, status_code=status.HTTP_201_CREATED)
def spawn_rework(data: ReworkCreate, engine: Engine, actor: Actor):
    """Open a rework job for a FAIL QC record that did not request one."""
    rework = engine.spawn_rework(actor, **data.model_dump())
    return ReworkResponse.model_validate(rework)


@router.get("", response_model=PageResponse[ReworkResponse])
def list_reworks(
    engine: Engine,
    actor: Actor,
    status_filter: Optional[ReworkStatus] = Query(None, alias="status"),
    production_job_id: Optional[UUID] = None,
    delivery_note_id: Optional[UUID] = None,
    assigned_to: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    page = engine.list_reworks(
        actor.tenant_id,
        status=status_filter,
        production_job_id=production_job_id,
        delivery_note_id=delivery_note_id,
        assigned_to=assigned_to,
        limit=limit,
        offset=offset,
    )
    return PageResponse[ReworkResponse].model_validate(page)


@router.get("/by-qc-record/{qc_record_id}", response_model=List[ReworkResponse])
def reworks_for_qc_record(qc_record_id: UUID, engine: Engine, actor: Actor):
    return [
        ReworkResponse.model_validate(r)
        for r in engine.reworks_for_qc_record(actor.tenant_id, qc_record_id)
    ]


@router.get("/{rework_id}", response_model=ReworkResponse)
def get_rework(rework_id: UUID, engine: Engine, actor: Actor):
    return ReworkResponse.model_validate(engine.get_rework(actor.tenant_id, rework_id))


@router.post("/{rework_id}/status", response_model=ReworkTransitionResponse)
def update_status(rework_id: UUID, data: ReworkStatusUpdate, engine: Engine, actor: Actor):
    """Move a rework job along OPEN -> IN_PROGRESS -> COMPLETED (or CANCELLED)."""
    result = engine.transition_rework(
        actor, rework_id, data.status, expected_version=data.expected_version
    )
    return ReworkTransitionResponse.model_validate(result)


@router.patch("/{rework_id}", response_model=ReworkResponse)
def update_details(rework_id: UUID, data: ReworkDetailsUpdate, engine: Engine, actor: Actor):
    rework = engine.update_rework(actor, rework_id, **data.model_dump())
    return ReworkResponse.model_validate(rework)

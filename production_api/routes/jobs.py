"""
Production job endpoints.

Endpoints for:
- Job card creation and listing
- Stage start / completion (completion runs the quality gate)
- Labour hours against the running stage
- Assignment and cancellation
"""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from production_api.deps import Actor, Engine
from production_api.schemas import (
    GateResponse,
    HoursLog,
    JobAssign,
    JobCancel,
    JobCreate,
    JobResponse,
    LabourEntryResponse,
    LogHoursResponse,
    PageResponse,
    StageComplete,
    StageCompletionResponse,
    StageStart,
)
from production_kernel.domain.statuses import JobStatus

router = APIRouter(prefix="/production-jobs", tags=["production-jobs"])


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
def create_job(data: JobCreate, engine: Engine, actor: Actor):
    """Create a job card at the first catalog stage (or the stage given)."""
    job = engine.create_job(actor, **data.model_dump())
    return JobResponse.model_validate(job)


@router.get("", response_model=PageResponse[JobResponse])
def list_jobs(
    engine: Engine,
    actor: Actor,
    status_filter: Optional[JobStatus] = Query(None, alias="status"),
    stage: Optional[str] = None,
    project_id: Optional[UUID] = None,
    assigned_to: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    page = engine.list_jobs(
        actor.tenant_id,
        status=status_filter,
        stage=stage,
        project_id=project_id,
        assigned_to=assigned_to,
        limit=limit,
        offset=offset,
    )
    return PageResponse[JobResponse].model_validate(page)


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: UUID, engine: Engine, actor: Actor):
    return JobResponse.model_validate(engine.get_job(actor.tenant_id, job_id))


@router.get("/{job_id}/labour", response_model=List[LabourEntryResponse])
def job_labour(job_id: UUID, engine: Engine, actor: Actor):
    engine.get_job(actor.tenant_id, job_id)
    return [
        LabourEntryResponse.model_validate(e)
        for e in engine.job_labour(actor.tenant_id, job_id)
    ]


@router.post("/{job_id}/start", response_model=JobResponse)
def start_stage(job_id: UUID, engine: Engine, actor: Actor, data: Optional[StageStart] = None):
    data = data or StageStart()
    job = engine.start_stage(
        actor, job_id, expected_version=data.expected_version, notes=data.notes
    )
    return JobResponse.model_validate(job)


@router.post("/{job_id}/complete", response_model=StageCompletionResponse)
def complete_stage(
    job_id: UUID, engine: Engine, actor: Actor, data: Optional[StageComplete] = None
):
    """Close the running stage, issue consumed material and run the quality gate."""
    data = data or StageComplete()
    result = engine.complete_stage(
        actor,
        job_id,
        materials=[m.model_dump() for m in data.materials],
        notes=data.notes,
        expected_version=data.expected_version,
    )
    return StageCompletionResponse.model_validate(result)


@router.post("/{job_id}/evaluate", response_model=GateResponse)
def evaluate_stage(job_id: UUID, engine: Engine, actor: Actor, stage: Optional[str] = None):
    return GateResponse.model_validate(engine.evaluate_stage_completion(actor, job_id, stage))


@router.post("/{job_id}/log-hours", response_model=LogHoursResponse)
def log_hours(job_id: UUID, data: HoursLog, engine: Engine, actor: Actor):
    result = engine.log_hours(actor, job_id, **data.model_dump())
    return LogHoursResponse.model_validate(result)


@router.post("/{job_id}/assign", response_model=JobResponse)
def assign_job(job_id: UUID, data: JobAssign, engine: Engine, actor: Actor):
    job = engine.assign_job(
        actor, job_id, data.assigned_to, expected_version=data.expected_version
    )
    return JobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
def cancel_job(job_id: UUID, engine: Engine, actor: Actor, data: Optional[JobCancel] = None):
    data = data or JobCancel()
    job = engine.cancel_job(
        actor, job_id, reason=data.reason, expected_version=data.expected_version
    )
    return JobResponse.model_validate(job)

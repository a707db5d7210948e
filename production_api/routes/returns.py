"""Client return endpoints."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from production_api.deps import Actor, Engine
from production_api.schemas import (
    PageResponse,
    ReturnCreate,
    ReturnInspect,
    ReturnInspectionResponse,
    ReturnResponse,
    ReturnSettle,
)
from production_kernel.domain.statuses import ReturnStatus

router = APIRouter(prefix="/returns", tags=["returns"])


@router.post("", response_model=ReturnResponse, status_code=status.HTTP_201_CREATED)
def create_return(data: ReturnCreate, engine: Engine, actor: Actor):
    record = engine.create_return(
        actor,
        delivery_note_id=data.delivery_note_id,
        items=[i.model_dump() for i in data.items],
        client_id=data.client_id,
        invoice_id=data.invoice_id,
        reason=data.reason,
    )
    return ReturnResponse.model_validate(record)


@router.get("", response_model=PageResponse[ReturnResponse])
def list_returns(
    engine: Engine,
    actor: Actor,
    status_filter: Optional[ReturnStatus] = Query(None, alias="status"),
    delivery_note_id: Optional[UUID] = None,
    client_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    page = engine.list_returns(
        actor.tenant_id,
        status=status_filter,
        delivery_note_id=delivery_note_id,
        client_id=client_id,
        limit=limit,
        offset=offset,
    )
    return PageResponse[ReturnResponse].model_validate(page)


@router.get("/{return_id}", response_model=ReturnResponse)
def get_return(return_id: UUID, engine: Engine, actor: Actor):
    return ReturnResponse.model_validate(engine.get_return(actor.tenant_id, return_id))


@router.post("/{return_id}/inspect", response_model=ReturnInspectionResponse)
def inspect_return(return_id: UUID, data: ReturnInspect, engine: Engine, actor: Actor):
    """Decide the disposition of returned goods.  Only legal while PENDING."""
    result = engine.inspect_return(
        actor,
        return_id,
        data.result,
        remarks=data.remarks,
        rework_assigned_to=data.rework_assigned_to,
        rework_expected_hours=data.rework_expected_hours,
    )
    return ReturnInspectionResponse.model_validate(result)


@router.post("/{return_id}/settle", response_model=ReturnResponse)
def settle_return(return_id: UUID, data: ReturnSettle, engine: Engine, actor: Actor):
    record = engine.settle_return(
        actor,
        return_id,
        accepted=data.accepted,
        remarks=data.remarks,
        expected_version=data.expected_version,
    )
    return ReturnResponse.model_validate(record)


@router.post("/{return_id}/reject", response_model=ReturnResponse)
def reject_return(return_id: UUID, engine: Engine, actor: Actor, remarks: Optional[str] = None):
    return ReturnResponse.model_validate(engine.reject_return(actor, return_id, remarks=remarks))

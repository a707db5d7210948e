"""
Inventory endpoints.

Endpoints for:
- Stock items and their balances
- Manual stock transactions and material issues
- Reservations
- Ledger history and replay verification
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Query, status

from production_api.deps import Actor, Engine
from production_api.schemas import (
    ItemCreate,
    ItemResponse,
    LedgerVerificationResponse,
    MaterialIssueCreate,
    MaterialIssueResponse,
    PageResponse,
    ReservationChange,
    StockTransactionResponse,
    TransactionCreate,
)
from production_kernel.domain.sources import target_from_ids

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.post("/items", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
def create_item(data: ItemCreate, engine: Engine, actor: Actor):
    return ItemResponse.model_validate(engine.create_item(actor, **data.model_dump()))


@router.get("/items", response_model=List[ItemResponse])
def list_items(engine: Engine, actor: Actor, below_reorder_only: bool = False):
    return [
        ItemResponse.model_validate(i)
        for i in engine.list_items(actor.tenant_id, below_reorder_only=below_reorder_only)
    ]


@router.get("/items/{item_id}", response_model=ItemResponse)
def get_item(item_id: UUID, engine: Engine, actor: Actor):
    return ItemResponse.model_validate(engine.get_item(actor.tenant_id, item_id))


@router.post(
    "/transactions",
    response_model=StockTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_transaction(data: TransactionCreate, engine: Engine, actor: Actor):
    """Append one stock transaction; the balance after it is computed by the ledger."""
    txn = engine.post_transaction(
        actor,
        data.item_id,
        transaction_type=data.transaction_type,
        qty=data.qty,
        reference_type=data.reference_type,
        reference_id=data.reference_id,
        remarks=data.remarks,
    )
    return StockTransactionResponse.model_validate(txn)


@router.post("/issues", response_model=MaterialIssueResponse, status_code=status.HTTP_201_CREATED)
def issue_material(data: MaterialIssueCreate, engine: Engine, actor: Actor):
    target = target_from_ids(data.production_job_id, data.rework_job_id, data.subcontract_wo_id)
    issue = engine.issue_material(
        actor, target, [line.model_dump() for line in data.lines], remarks=data.remarks
    )
    return MaterialIssueResponse.model_validate(issue)


@router.post("/items/{item_id}/reserve", response_model=ItemResponse)
def reserve_stock(item_id: UUID, data: ReservationChange, engine: Engine, actor: Actor):
    return ItemResponse.model_validate(engine.reserve_stock(actor, item_id, data.qty))


@router.post("/items/{item_id}/unreserve", response_model=ItemResponse)
def unreserve_stock(item_id: UUID, data: ReservationChange, engine: Engine, actor: Actor):
    return ItemResponse.model_validate(engine.unreserve_stock(actor, item_id, data.qty))


@router.get("/items/{item_id}/ledger", response_model=PageResponse[StockTransactionResponse])
def item_ledger(
    item_id: UUID,
    engine: Engine,
    actor: Actor,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    engine.get_item(actor.tenant_id, item_id)
    page = engine.item_transactions(actor.tenant_id, item_id, limit=limit, offset=offset)
    return PageResponse[StockTransactionResponse].model_validate(page)


@router.get("/items/{item_id}/verify", response_model=LedgerVerificationResponse)
def verify_ledger(item_id: UUID, engine: Engine, actor: Actor):
    return LedgerVerificationResponse.model_validate(
        engine.verify_item_ledger(actor.tenant_id, item_id)
    )

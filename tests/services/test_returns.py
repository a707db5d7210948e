"""
Return inspector tests.

A client return is inspected exactly once.  ACCEPT_RETURN puts stock back
through the ledger, REWORK spawns a delivery-note rework job, and SCRAP
writes wastage without moving stock.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from production_kernel.domain.statuses import (
    ReferenceType,
    ReturnOutcome,
    ReturnStatus,
    ReworkStatus,
    SourceKind,
    TransactionType,
)
from production_kernel.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ReturnAlreadyInspectedError,
    ValidationError,
)
from tests.conftest import CLIENT_ID, TENANT_ID


@pytest.fixture
def make_return(engine, actor, seed):
    def _make(qty: str = "3", with_loose_line: bool = False, **kwargs):
        items = [{"item_id": seed.item_id, "qty": qty, "dn_line_id": seed.item_line_id}]
        if with_loose_line:
            items.append(
                {"description": "Cabinet door", "qty": "1", "dn_line_id": seed.loose_line_id}
            )
        return engine.create_return(
            actor, delivery_note_id=seed.delivery_note_id, items=items, **kwargs
        )

    return _make


class TestCreateReturn:
    def test_return_is_pending_with_number(self, make_return):
        record = make_return(reason="Wrong finish")

        assert record.status == ReturnStatus.PENDING
        assert record.outcome is None
        assert record.return_number == "DEMO-RET-20240101-0001"
        assert record.client_id == CLIENT_ID
        assert record.reason == "Wrong finish"
        assert record.items[0]["qty"] == "3"

    def test_quantity_cannot_exceed_delivered(self, make_return):
        with pytest.raises(ValidationError):
            make_return(qty="11")

    def test_lines_of_same_delivery_line_are_summed(self, engine, actor, seed):
        line = {"item_id": seed.item_id, "qty": "6", "dn_line_id": seed.item_line_id}
        with pytest.raises(ValidationError):
            engine.create_return(
                actor, delivery_note_id=seed.delivery_note_id, items=[line, line]
            )

    def test_line_must_belong_to_delivery_note(self, engine, actor, seed):
        with pytest.raises(ValidationError):
            engine.create_return(
                actor,
                delivery_note_id=seed.delivery_note_id,
                items=[{"item_id": seed.item_id, "qty": "1", "dn_line_id": uuid4()}],
            )

    @pytest.mark.parametrize(
        "items",
        [
            [],
            [{"qty": "1"}],
            [{"description": "door", "qty": "0"}],
        ],
    )
    def test_malformed_items_rejected(self, engine, actor, seed, items):
        with pytest.raises(ValidationError):
            engine.create_return(actor, delivery_note_id=seed.delivery_note_id, items=items)

    def test_unknown_delivery_note_is_not_found(self, engine, actor, seed):
        with pytest.raises(NotFoundError):
            engine.create_return(
                actor, delivery_note_id=uuid4(), items=[{"description": "door", "qty": "1"}]
            )


class TestInspectReturn:
    def test_scrap_writes_wastage_and_moves_no_stock(self, engine, actor, seed, make_return):
        record = make_return(with_loose_line=True)

        result = engine.inspect_return(actor, record.id, ReturnOutcome.SCRAP, remarks="Water damage")

        assert result.return_record.status == ReturnStatus.INSPECTED
        assert result.return_record.outcome == ReturnOutcome.SCRAP
        assert result.return_record.inspected_by == actor.actor_id
        assert result.transactions == ()
        assert result.rework_job_id is None
        assert len(result.wastage) == 2
        assert {w.reference_type for w in result.wastage} == {ReferenceType.CLIENT_RETURN}
        assert engine.get_item(TENANT_ID, seed.item_id).available_qty == Decimal("100")

    def test_second_inspection_conflicts(self, engine, actor, make_return):
        record = make_return()
        engine.inspect_return(actor, record.id, ReturnOutcome.SCRAP)

        with pytest.raises(ReturnAlreadyInspectedError) as exc_info:
            engine.inspect_return(actor, record.id, ReturnOutcome.ACCEPT_RETURN)

        assert isinstance(exc_info.value, ConflictError)
        assert engine.get_return(TENANT_ID, record.id).outcome == ReturnOutcome.SCRAP

    def test_accept_return_puts_stock_back(self, engine, actor, seed, make_return):
        record = make_return(qty="4", with_loose_line=True)

        result = engine.inspect_return(actor, record.id, ReturnOutcome.ACCEPT_RETURN)

        assert len(result.transactions) == 1
        txn = result.transactions[0]
        assert txn.transaction_type == TransactionType.IN
        assert txn.qty == Decimal("4")
        assert txn.balance_after == Decimal("104")
        assert txn.reference_type == ReferenceType.CLIENT_RETURN
        assert txn.reference_id == record.id
        assert engine.get_item(TENANT_ID, seed.item_id).available_qty == Decimal("104")
        assert engine.verify_item_ledger(TENANT_ID, seed.item_id).is_consistent

    def test_rework_outcome_spawns_delivery_note_rework(self, engine, actor, seed, make_return):
        record = make_return()
        operator = uuid4()

        result = engine.inspect_return(
            actor,
            record.id,
            ReturnOutcome.REWORK,
            remarks="Re-spray",
            rework_assigned_to=operator,
            rework_expected_hours=Decimal("2"),
        )

        rework = engine.get_rework(TENANT_ID, result.rework_job_id)
        assert rework.status == ReworkStatus.OPEN
        assert rework.source_kind == SourceKind.DELIVERY_NOTE
        assert rework.delivery_note_id == seed.delivery_note_id
        assert rework.source_return_id == record.id
        assert rework.assigned_to == operator
        assert rework.expected_hours == Decimal("2")
        assert rework.material_needed[0]["qty"] == "3"
        assert engine.get_item(TENANT_ID, seed.item_id).available_qty == Decimal("100")

    def test_unknown_return_is_not_found(self, engine, actor, seed):
        with pytest.raises(NotFoundError):
            engine.inspect_return(actor, uuid4(), ReturnOutcome.SCRAP)

    def test_rejected_return_cannot_be_inspected(self, engine, actor, make_return):
        record = make_return()
        engine.reject_return(actor, record.id, remarks="Outside return window")

        with pytest.raises(ReturnAlreadyInspectedError):
            engine.inspect_return(actor, record.id, ReturnOutcome.SCRAP)


class TestSettlement:
    def test_settle_after_inspection(self, engine, actor, make_return):
        record = make_return()
        engine.inspect_return(actor, record.id, ReturnOutcome.ACCEPT_RETURN)

        settled = engine.settle_return(actor, record.id, accepted=True, remarks="Credit note raised")

        assert settled.status == ReturnStatus.ACCEPTED
        assert settled.outcome == ReturnOutcome.ACCEPT_RETURN
        assert settled.remarks == "Credit note raised"

    def test_settle_as_rejected(self, engine, actor, make_return):
        record = make_return()
        engine.inspect_return(actor, record.id, ReturnOutcome.SCRAP)
        settled = engine.settle_return(actor, record.id, accepted=False)
        assert settled.status == ReturnStatus.REJECTED

    def test_settle_before_inspection_rejected(self, engine, actor, make_return):
        record = make_return()
        with pytest.raises(InvalidTransitionError):
            engine.settle_return(actor, record.id, accepted=True)

    def test_reject_only_while_pending(self, engine, actor, make_return):
        record = make_return()
        engine.inspect_return(actor, record.id, ReturnOutcome.SCRAP)
        with pytest.raises(InvalidTransitionError):
            engine.reject_return(actor, record.id)

    def test_list_filters_by_status(self, engine, actor, make_return):
        pending = make_return()
        inspected = make_return(qty="1")
        engine.inspect_return(actor, inspected.id, ReturnOutcome.SCRAP)

        page = engine.list_returns(TENANT_ID, status=ReturnStatus.PENDING)
        assert [r.id for r in page.items] == [pending.id]

"""
Concurrency tests for the engine's per-key serialization.

Threads are released together through a Barrier so the calls genuinely
race.  On SQLite the database additionally serializes writers with
BEGIN IMMEDIATE; run with DATABASE_URL pointing at PostgreSQL to exercise
row locks across connections.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from production_kernel.domain.sources import JobTarget
from production_kernel.domain.statuses import QCStatus, TransactionType
from production_kernel.exceptions import (
    DuplicateReworkError,
    InsufficientStockError,
    StageLogAlreadyOpenError,
)
from tests.conftest import FAIL_DEFECTS, TENANT_ID

pytestmark = pytest.mark.slow_locks


def race(n: int, fn):
    """Run ``fn(i)`` on ``n`` threads started together.

    Returns (results, errors) where each list holds what the threads that
    succeeded returned, or what the threads that failed raised.
    """
    barrier = Barrier(n)

    def runner(i):
        barrier.wait()
        try:
            return True, fn(i)
        except Exception as exc:  # collected and asserted on by the caller
            return False, exc

    with ThreadPoolExecutor(max_workers=n) as pool:
        outcomes = list(pool.map(runner, range(n)))
    results = [value for ok, value in outcomes if ok]
    errors = [value for ok, value in outcomes if not ok]
    return results, errors


class TestLedgerUnderContention:
    def test_parallel_issues_never_overdraw(self, engine, actor, seed, make_job):
        """40 issues of 3 against 100 in stock: 33 succeed, the rest are refused."""
        job = make_job()

        results, errors = race(
            40,
            lambda i: engine.issue_material(
                actor, JobTarget(job.id), [{"item_id": seed.item_id, "qty": "3"}]
            ),
        )

        assert len(results) == 33
        assert len(errors) == 7
        assert all(isinstance(e, InsufficientStockError) for e in errors)

        item = engine.get_item(TENANT_ID, seed.item_id)
        assert item.available_qty == Decimal("1")

    def test_balance_chain_is_a_prefix_sum(self, engine, actor, seed):
        def post(i):
            if i % 2:
                return engine.post_transaction(
                    actor, seed.item_id, transaction_type=TransactionType.IN, qty=Decimal("2")
                )
            return engine.post_transaction(
                actor, seed.item_id, transaction_type=TransactionType.OUT, qty=Decimal("-1")
            )

        results, errors = race(20, post)
        assert errors == []
        assert len(results) == 20

        history = engine.item_transactions(TENANT_ID, seed.item_id, limit=100)
        running = Decimal("0")
        for expected_seq, txn in enumerate(history.items, start=1):
            running += txn.qty
            assert txn.item_seq == expected_seq
            assert txn.balance_after == running

        report = engine.verify_item_ledger(TENANT_ID, seed.item_id)
        assert report.is_consistent, report.errors
        assert report.transaction_count == 21
        assert report.stored_balance == Decimal("110")


class TestJobUnderContention:
    def test_only_one_start_wins(self, engine, actor, make_job):
        job = make_job()

        results, errors = race(8, lambda i: engine.start_stage(actor, job.id))

        assert len(results) == 1
        assert len(errors) == 7
        assert all(isinstance(e, StageLogAlreadyOpenError) for e in errors)
        logs = engine.get_job(TENANT_ID, job.id).stage_logs
        assert len(logs) == 1
        assert logs[0].is_open

    def test_concurrent_hours_all_counted(self, engine, actor, make_job):
        job = make_job()
        engine.start_stage(actor, job.id)

        results, errors = race(
            10, lambda i: engine.log_hours(actor, job.id, hours=Decimal("0.5"))
        )

        assert errors == []
        final = engine.get_job(TENANT_ID, job.id)
        assert final.actual_hours == Decimal("5")
        assert final.stage_logs[0].hours_logged == Decimal("5")


class TestQualityUnderContention:
    def test_same_inspection_submitted_twice(self, engine, actor, inspector, job_at_assembly):
        engine.start_stage(actor, job_at_assembly.id)
        engine.complete_stage(actor, job_at_assembly.id)

        results, errors = race(
            6,
            lambda i: engine.record_inspection(
                inspector,
                production_job_id=job_at_assembly.id,
                qc_status=QCStatus.FAIL,
                defects=FAIL_DEFECTS,
                create_rework=True,
                idempotency_key="tablet-3:insp-9",
            ),
        )

        assert errors == []
        assert len({r.qc_record.id for r in results}) == 1
        assert sum(1 for r in results if not r.replayed) == 1
        assert engine.list_reworks(TENANT_ID).total == 1

    def test_parallel_spawn_from_one_record(self, engine, actor, inspector, job_at_assembly):
        engine.start_stage(actor, job_at_assembly.id)
        inspection = engine.record_inspection(
            inspector,
            production_job_id=job_at_assembly.id,
            qc_status=QCStatus.FAIL,
            defects=FAIL_DEFECTS,
        )

        results, errors = race(
            6,
            lambda i: engine.spawn_rework(
                actor,
                production_job_id=job_at_assembly.id,
                source_qc_record_id=inspection.qc_record.id,
            ),
        )

        assert len(results) == 1
        assert len(errors) == 5
        assert all(isinstance(e, DuplicateReworkError) for e in errors)
        assert len(engine.reworks_for_qc_record(TENANT_ID, inspection.qc_record.id)) == 1

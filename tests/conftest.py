"""
Pytest fixtures for the production engine test suite.

Provides:
- A fresh SQLite database file per test (tables + append-only triggers)
- A ProductionEngine on a deterministic clock
- A seeded tenant: workflow CUTTING > ASSEMBLY > QC (CUTTING not inspected),
  a project with a sub-group, one stocked item and a delivery note
- Captured structured logs

Environment Variables:
- DATABASE_URL: run the suite against another database (e.g. PostgreSQL).
  Each test then shares that database, so only use it with an empty one.
"""

import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest

from production_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from production_kernel.domain.clock import DeterministicClock
from production_kernel.domain.statuses import QCStatus, TransactionType
from production_kernel.domain.values import ActorContext
from production_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from production_kernel.models.reference import DeliveryNote, DeliveryNoteLine, Project, SubGroup
from production_kernel.services.production_engine import ProductionEngine

TENANT_ID = UUID("00000000-0000-0000-0000-00000000a001")
OTHER_TENANT_ID = UUID("00000000-0000-0000-0000-00000000b002")
SUPERVISOR_ID = UUID("00000000-0000-0000-0000-000000000101")
INSPECTOR_ID = UUID("00000000-0000-0000-0000-000000000102")
CLIENT_ID = UUID("00000000-0000-0000-0000-000000000c01")

STAGES = ("CUTTING", "ASSEMBLY", "QC")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture production_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.create_job(...)
            logs = captured_logs()
            assert any(r["message"] == "job_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("production_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for lock timeouts"
    )


# =============================================================================
# Database and engine
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'production.db'}"


@pytest.fixture
def session_factory(database_url):
    init_engine_from_url(database_url, busy_timeout_seconds=30.0)
    create_tables()
    yield get_session_factory()
    if not database_url.startswith("sqlite"):
        drop_tables()
    reset_engine()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def engine(session_factory, clock) -> ProductionEngine:
    return ProductionEngine(session_factory, clock=clock, lock_timeout_seconds=10.0)


@pytest.fixture
def actor() -> ActorContext:
    return ActorContext(tenant_id=TENANT_ID, actor_id=SUPERVISOR_ID, role="supervisor")


@pytest.fixture
def inspector() -> ActorContext:
    return ActorContext(tenant_id=TENANT_ID, actor_id=INSPECTOR_ID, role="qc_inspector")


@pytest.fixture
def other_actor() -> ActorContext:
    return ActorContext(tenant_id=OTHER_TENANT_ID, actor_id=uuid4(), role="supervisor")


# =============================================================================
# Seed data
# =============================================================================


@dataclass(frozen=True)
class Seed:
    project_id: UUID
    sub_group_id: UUID
    other_sub_group_id: UUID
    item_id: UUID
    delivery_note_id: UUID
    item_line_id: UUID
    loose_line_id: UUID


@pytest.fixture
def workflow(engine, actor):
    return engine.configure_workflow(
        actor,
        tenant_code="demo",
        stages=STAGES,
        non_inspected_stages=("CUTTING",),
    )


@pytest.fixture
def seed(engine, actor, workflow, session_factory) -> Seed:
    """Project, sub-groups, one item with 100 in stock, and a delivery note."""
    item = engine.create_item(
        actor, item_code="PLY-18", name="Plywood 18mm", uom="SHEET", reorder_level=Decimal("20")
    )
    engine.post_transaction(
        actor,
        item.id,
        transaction_type=TransactionType.IN,
        qty=Decimal("100"),
        remarks="Opening stock",
    )

    with session_scope(session_factory) as session:
        project = Project(tenant_id=TENANT_ID, code="PRJ-001", name="Harbour Apartments")
        session.add(project)
        session.flush()
        sub_group = SubGroup(tenant_id=TENANT_ID, project_id=project.id, name="Kitchen units")
        other_project = Project(tenant_id=TENANT_ID, code="PRJ-002", name="Mill Lofts")
        session.add_all([sub_group, other_project])
        session.flush()
        other_sub_group = SubGroup(
            tenant_id=TENANT_ID, project_id=other_project.id, name="Wardrobes"
        )
        note = DeliveryNote(
            tenant_id=TENANT_ID, dn_number="DN-0001", project_id=project.id, client_id=CLIENT_ID
        )
        session.add_all([other_sub_group, note])
        session.flush()
        item_line = DeliveryNoteLine(
            delivery_note_id=note.id, line_no=1, item_id=item.id, qty=Decimal("10")
        )
        loose_line = DeliveryNoteLine(
            delivery_note_id=note.id, line_no=2, description="Cabinet door", qty=Decimal("4")
        )
        session.add_all([item_line, loose_line])
        session.flush()
        return Seed(
            project_id=project.id,
            sub_group_id=sub_group.id,
            other_sub_group_id=other_sub_group.id,
            item_id=item.id,
            delivery_note_id=note.id,
            item_line_id=item_line.id,
            loose_line_id=loose_line.id,
        )


@pytest.fixture
def make_job(engine, actor, seed):
    """Factory for job cards in the seeded project."""

    def _make(planned_qty: Decimal = Decimal("5"), **kwargs):
        return engine.create_job(
            actor,
            project_id=seed.project_id,
            sub_group_id=seed.sub_group_id,
            planned_qty=planned_qty,
            **kwargs,
        )

    return _make


@pytest.fixture
def job_at_assembly(engine, actor, make_job):
    """A job that has finished CUTTING and waits at ASSEMBLY, not yet started."""
    job = make_job()
    engine.start_stage(actor, job.id)
    engine.log_hours(actor, job.id, hours=Decimal("2"), output_qty=Decimal("5"))
    engine.complete_stage(actor, job.id)
    return engine.get_job(TENANT_ID, job.id)


FAIL_DEFECTS = [{"desc": "crack", "severity": "HIGH"}]


@pytest.fixture
def failed_inspection(engine, actor, inspector, job_at_assembly):
    """FAIL at ASSEMBLY without a rework request; the job waits in REWORK."""
    engine.start_stage(actor, job_at_assembly.id)
    return engine.record_inspection(
        inspector,
        production_job_id=job_at_assembly.id,
        qc_status=QCStatus.FAIL,
        defects=FAIL_DEFECTS,
    )

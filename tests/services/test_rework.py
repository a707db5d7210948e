"""
Rework orchestrator tests: spawning, the one-rework-per-QC-record guard,
status transitions and resuming the source job.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from production_kernel.domain.statuses import JobStatus, QCStatus, ReworkStatus
from production_kernel.exceptions import (
    DuplicateReworkError,
    InvalidSourceError,
    InvalidTransitionError,
    NotFoundError,
    OptimisticLockError,
    UnresolvedReworkError,
    ValidationError,
)
from tests.conftest import FAIL_DEFECTS, STAGES, TENANT_ID


@pytest.fixture
def failed_job(engine, actor, inspector, job_at_assembly):
    """Job sent to REWORK by a FAIL at ASSEMBLY, with one spawned rework job."""
    engine.start_stage(actor, job_at_assembly.id)
    engine.complete_stage(actor, job_at_assembly.id)
    result = engine.record_inspection(
        inspector,
        production_job_id=job_at_assembly.id,
        qc_status=QCStatus.FAIL,
        defects=FAIL_DEFECTS,
        create_rework=True,
    )
    return job_at_assembly, result


class TestSpawn:
    def test_second_rework_for_same_record_rejected(self, engine, actor, failed_job):
        job, inspection = failed_job

        with pytest.raises(DuplicateReworkError) as exc_info:
            engine.spawn_rework(
                actor,
                production_job_id=job.id,
                source_qc_record_id=inspection.qc_record.id,
            )

        assert exc_info.value.existing_rework_id == str(inspection.rework_job_id)
        assert len(engine.reworks_for_qc_record(TENANT_ID, inspection.qc_record.id)) == 1

    def test_manual_spawn_from_fail_record(self, engine, actor, inspector, job_at_assembly):
        engine.start_stage(actor, job_at_assembly.id)
        inspection = engine.record_inspection(
            inspector,
            production_job_id=job_at_assembly.id,
            qc_status=QCStatus.FAIL,
            defects=FAIL_DEFECTS,
        )
        assert inspection.rework_job_id is None

        rework = engine.spawn_rework(
            actor,
            production_job_id=job_at_assembly.id,
            source_qc_record_id=inspection.qc_record.id,
            expected_hours=Decimal("4"),
            material_needed=[{"description": "Hinge", "qty": 2}],
        )

        assert rework.status == ReworkStatus.OPEN
        assert rework.source_qc_record_id == inspection.qc_record.id
        assert rework.material_needed == ({"item_id": None, "description": "Hinge", "qty": "2"},)

    def test_spawn_needs_a_failed_inspection(self, engine, actor, make_job):
        job = make_job()
        with pytest.raises(ValidationError) as exc_info:
            engine.spawn_rework(actor, production_job_id=job.id, notes="edge banding")

        assert exc_info.value.field == "source_qc_record_id"
        assert engine.get_job(TENANT_ID, job.id).status == JobStatus.NOT_STARTED
        assert engine.list_reworks(TENANT_ID).total == 0

    def test_late_spawn_returns_resumed_job_to_rework(
        self, engine, actor, failed_inspection
    ):
        job_id = failed_inspection.qc_record.production_job_id
        assert engine.start_stage(actor, job_id).status == JobStatus.IN_PROGRESS

        rework = engine.spawn_rework(
            actor, production_job_id=job_id, source_qc_record_id=failed_inspection.qc_record.id
        )

        assert rework.status == ReworkStatus.OPEN
        job = engine.get_job(TENANT_ID, job_id)
        assert job.status == JobStatus.REWORK
        assert all(not log.is_open for log in job.stage_logs)
        with pytest.raises(UnresolvedReworkError):
            engine.start_stage(actor, job_id)

    def test_spawn_from_pass_record_rejected(self, engine, actor, inspector, job_at_assembly):
        engine.start_stage(actor, job_at_assembly.id)
        inspection = engine.record_inspection(
            inspector, production_job_id=job_at_assembly.id, qc_status=QCStatus.PASS
        )
        with pytest.raises(ValidationError):
            engine.spawn_rework(
                actor,
                production_job_id=job_at_assembly.id,
                source_qc_record_id=inspection.qc_record.id,
            )

    def test_source_must_match_inspected_subject(self, engine, actor, seed, failed_job):
        _, inspection = failed_job
        with pytest.raises(InvalidSourceError):
            engine.spawn_rework(
                actor,
                delivery_note_id=seed.delivery_note_id,
                source_qc_record_id=inspection.qc_record.id,
            )

    def test_exactly_one_source_required(self, engine, actor, seed, make_job):
        job = make_job()
        with pytest.raises(InvalidSourceError):
            engine.spawn_rework(actor)
        with pytest.raises(InvalidSourceError):
            engine.spawn_rework(
                actor, production_job_id=job.id, delivery_note_id=seed.delivery_note_id
            )

    def test_unknown_source_is_not_found(self, engine, actor, seed):
        with pytest.raises(NotFoundError):
            engine.spawn_rework(actor, production_job_id=uuid4())

    def test_invalid_material_line_rejected(self, engine, actor, failed_inspection):
        record = failed_inspection.qc_record
        with pytest.raises(ValidationError) as exc_info:
            engine.spawn_rework(
                actor,
                production_job_id=record.production_job_id,
                source_qc_record_id=record.id,
                material_needed=[{"qty": 1}],
            )
        assert exc_info.value.field == "material_needed"


class TestTransitions:
    def test_open_to_completed_path(self, engine, actor, failed_job):
        _, inspection = failed_job
        rework_id = inspection.rework_job_id

        started = engine.transition_rework(actor, rework_id, ReworkStatus.IN_PROGRESS)
        assert started.rework.status == ReworkStatus.IN_PROGRESS
        assert started.resumed_job is None

        done = engine.transition_rework(actor, rework_id, ReworkStatus.COMPLETED)
        assert done.rework.status == ReworkStatus.COMPLETED
        assert done.rework.completed_at is not None

    @pytest.mark.parametrize(
        "path",
        [
            (ReworkStatus.COMPLETED,),
            (ReworkStatus.IN_PROGRESS, ReworkStatus.OPEN),
            (ReworkStatus.CANCELLED, ReworkStatus.IN_PROGRESS),
        ],
    )
    def test_illegal_moves_rejected(self, engine, actor, failed_job, path):
        _, inspection = failed_job
        *legal, illegal = path
        for status in legal:
            engine.transition_rework(actor, inspection.rework_job_id, status)

        with pytest.raises(InvalidTransitionError):
            engine.transition_rework(actor, inspection.rework_job_id, illegal)

    def test_stale_version_rejected(self, engine, actor, failed_job):
        _, inspection = failed_job
        rework = engine.get_rework(TENANT_ID, inspection.rework_job_id)
        engine.transition_rework(actor, rework.id, ReworkStatus.IN_PROGRESS)

        with pytest.raises(OptimisticLockError):
            engine.transition_rework(
                actor, rework.id, ReworkStatus.COMPLETED, expected_version=rework.version
            )

    def test_unknown_rework_is_not_found(self, engine, actor, seed):
        with pytest.raises(NotFoundError):
            engine.transition_rework(actor, uuid4(), ReworkStatus.IN_PROGRESS)


class TestResume:
    def test_job_cannot_resume_while_rework_open(self, engine, actor, failed_job):
        job, inspection = failed_job

        with pytest.raises(UnresolvedReworkError) as exc_info:
            engine.start_stage(actor, job.id)
        assert exc_info.value.open_rework_ids == [str(inspection.rework_job_id)]

    def test_job_resumes_at_same_stage_after_rework(self, engine, actor, failed_job):
        job, inspection = failed_job
        engine.transition_rework(actor, inspection.rework_job_id, ReworkStatus.IN_PROGRESS)
        result = engine.transition_rework(actor, inspection.rework_job_id, ReworkStatus.COMPLETED)

        assert result.resumed_job is None
        assert engine.get_job(TENANT_ID, job.id).status == JobStatus.REWORK

        resumed = engine.start_stage(actor, job.id)
        assert resumed.status == JobStatus.IN_PROGRESS
        assert resumed.stage == "ASSEMBLY"
        assert [log.stage for log in resumed.stage_logs] == ["CUTTING", "ASSEMBLY", "ASSEMBLY"]

    def test_cancelled_rework_also_clears_the_job(self, engine, actor, failed_job):
        job, inspection = failed_job
        engine.transition_rework(actor, inspection.rework_job_id, ReworkStatus.CANCELLED)
        assert engine.start_stage(actor, job.id).status == JobStatus.IN_PROGRESS

    def test_auto_resume_when_configured(self, engine, actor, failed_job):
        engine.configure_workflow(
            actor,
            tenant_code="demo",
            stages=STAGES,
            non_inspected_stages=("CUTTING",),
            auto_resume_after_rework=True,
        )
        job, inspection = failed_job
        engine.transition_rework(actor, inspection.rework_job_id, ReworkStatus.IN_PROGRESS)

        result = engine.transition_rework(actor, inspection.rework_job_id, ReworkStatus.COMPLETED)

        assert result.resumed_job is not None
        assert result.resumed_job.id == job.id
        assert result.resumed_job.status == JobStatus.IN_PROGRESS
        assert result.resumed_job.stage_logs[-1].is_open

    def test_auto_resume_waits_for_every_rework(self, engine, actor, inspector, failed_job):
        engine.configure_workflow(
            actor,
            tenant_code="demo",
            stages=STAGES,
            non_inspected_stages=("CUTTING",),
            auto_resume_after_rework=True,
        )
        job, inspection = failed_job
        second_fail = engine.record_inspection(
            inspector,
            production_job_id=job.id,
            qc_status=QCStatus.FAIL,
            defects=[{"desc": "loose hinge", "severity": "MEDIUM"}],
        )
        extra = engine.spawn_rework(
            actor,
            production_job_id=job.id,
            source_qc_record_id=second_fail.qc_record.id,
            notes="second defect",
        )
        engine.transition_rework(actor, inspection.rework_job_id, ReworkStatus.IN_PROGRESS)

        result = engine.transition_rework(actor, inspection.rework_job_id, ReworkStatus.COMPLETED)
        assert result.resumed_job is None

        result = engine.transition_rework(actor, extra.id, ReworkStatus.CANCELLED)
        assert result.resumed_job is None
        assert engine.get_job(TENANT_ID, job.id).status == JobStatus.REWORK


class TestUpdateDetails:
    def test_details_update(self, engine, actor, failed_job):
        _, inspection = failed_job
        operator = uuid4()

        rework = engine.update_rework(
            actor,
            inspection.rework_job_id,
            assigned_to=operator,
            actual_hours=Decimal("1.5"),
            notes="sanded and refilled",
        )

        assert rework.assigned_to == operator
        assert rework.actual_hours == Decimal("1.5")
        assert rework.notes == "sanded and refilled"

    def test_actual_hours_never_decrease(self, engine, actor, failed_job):
        _, inspection = failed_job
        engine.update_rework(actor, inspection.rework_job_id, actual_hours=Decimal("2"))

        with pytest.raises(ValidationError):
            engine.update_rework(actor, inspection.rework_job_id, actual_hours=Decimal("1"))

    def test_empty_update_rejected(self, engine, actor, failed_job):
        _, inspection = failed_job
        with pytest.raises(ValidationError):
            engine.update_rework(actor, inspection.rework_job_id)

    def test_closed_rework_cannot_be_edited(self, engine, actor, failed_job):
        _, inspection = failed_job
        engine.transition_rework(actor, inspection.rework_job_id, ReworkStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError):
            engine.update_rework(actor, inspection.rework_job_id, notes="late note")

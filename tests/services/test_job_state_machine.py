"""
Job card state machine tests.

Covers CreateJob, StartStage, LogHours, CompleteStage, AssignJob and
CancelJob against the CUTTING > ASSEMBLY > QC workflow, where CUTTING is
not inspected.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from production_kernel.domain.statuses import GateDecision, JobStatus, QCStatus
from production_kernel.exceptions import (
    InvalidTransitionError,
    NoOpenStageLogError,
    NotFoundError,
    OptimisticLockError,
    StageCatalogNotConfiguredError,
    StageLogAlreadyOpenError,
    UnknownStageError,
    ValidationError,
)
from tests.conftest import FAIL_DEFECTS, STAGES, TENANT_ID


class TestCreateJob:
    def test_new_job_starts_at_first_stage(self, make_job):
        job = make_job(planned_qty=Decimal("10"), planned_hours=Decimal("8"))

        assert job.status == JobStatus.NOT_STARTED
        assert job.stage == "CUTTING"
        assert job.stage_index == 0
        assert job.planned_qty == Decimal("10")
        assert job.actual_hours == Decimal("0")
        assert job.stage_logs == ()

    def test_job_numbers_are_sequential_per_tenant_and_day(self, make_job):
        first = make_job()
        second = make_job()

        assert first.job_card_number == "DEMO-JC-20240101-0001"
        assert second.job_card_number == "DEMO-JC-20240101-0002"

    def test_explicit_stage_is_honoured(self, make_job):
        job = make_job(stage="ASSEMBLY")
        assert job.stage == "ASSEMBLY"
        assert job.stage_index == 1

    @pytest.mark.parametrize("qty", [Decimal("0"), Decimal("-1")])
    def test_non_positive_quantity_rejected(self, make_job, qty):
        with pytest.raises(ValidationError) as exc_info:
            make_job(planned_qty=qty)
        assert exc_info.value.field == "planned_qty"

    def test_unknown_stage_rejected(self, make_job):
        with pytest.raises(UnknownStageError):
            make_job(stage="PAINTING")

    def test_sub_group_must_belong_to_project(self, engine, actor, seed):
        with pytest.raises(ValidationError) as exc_info:
            engine.create_job(
                actor,
                project_id=seed.project_id,
                sub_group_id=seed.other_sub_group_id,
                planned_qty=Decimal("1"),
            )
        assert exc_info.value.field == "sub_group_id"

    def test_unknown_project_is_not_found(self, engine, actor, seed):
        with pytest.raises(NotFoundError):
            engine.create_job(
                actor,
                project_id=uuid4(),
                sub_group_id=seed.sub_group_id,
                planned_qty=Decimal("1"),
            )

    def test_tenant_without_catalog_rejected(self, engine, other_actor, seed):
        with pytest.raises(StageCatalogNotConfiguredError):
            engine.create_job(
                other_actor,
                project_id=seed.project_id,
                sub_group_id=seed.sub_group_id,
                planned_qty=Decimal("1"),
            )


class TestStartStage:
    def test_start_opens_log_and_moves_to_in_progress(self, engine, actor, make_job):
        job = make_job()
        started = engine.start_stage(actor, job.id)

        assert started.status == JobStatus.IN_PROGRESS
        assert len(started.stage_logs) == 1
        log = started.stage_logs[0]
        assert log.stage == "CUTTING"
        assert log.is_open
        assert log.log_no == 1
        assert log.started_by == actor.actor_id

    def test_second_start_with_open_log_rejected(self, engine, actor, make_job):
        job = make_job()
        engine.start_stage(actor, job.id)

        with pytest.raises(StageLogAlreadyOpenError):
            engine.start_stage(actor, job.id)

        reloaded = engine.get_job(TENANT_ID, job.id)
        assert [log.is_open for log in reloaded.stage_logs] == [True]

    def test_stale_version_rejected(self, engine, actor, make_job):
        job = make_job()
        engine.assign_job(actor, job.id, uuid4())

        with pytest.raises(OptimisticLockError):
            engine.start_stage(actor, job.id, expected_version=job.version)

    def test_restart_before_inspection_rejected(self, engine, actor, job_at_assembly):
        engine.start_stage(actor, job_at_assembly.id)
        result = engine.complete_stage(actor, job_at_assembly.id)
        assert result.gate.decision == GateDecision.AWAITING_INSPECTION

        with pytest.raises(InvalidTransitionError) as exc_info:
            engine.start_stage(actor, job_at_assembly.id)
        assert "awaiting inspection" in str(exc_info.value)

    def test_job_of_other_tenant_is_not_found(self, engine, other_actor, make_job):
        job = make_job()
        with pytest.raises(NotFoundError):
            engine.start_stage(other_actor, job.id)


class TestLogHours:
    def test_hours_accumulate_on_log_and_job(self, engine, actor, make_job):
        job = make_job()
        engine.start_stage(actor, job.id)

        engine.log_hours(actor, job.id, hours=Decimal("1.5"), output_qty=Decimal("2"))
        result = engine.log_hours(actor, job.id, hours=Decimal("2"), notes="second shift")

        assert result.stage == "CUTTING"
        assert result.stage_hours_logged == Decimal("3.5")
        assert result.updated_actual_hours == Decimal("3.5")
        assert result.updated_actual_qty == Decimal("2")
        assert result.entry.hours == Decimal("2")
        assert len(engine.job_labour(TENANT_ID, job.id)) == 2

    def test_labour_entries_listed_oldest_first(self, engine, actor, make_job):
        job = make_job()
        engine.start_stage(actor, job.id)
        engine.log_hours(actor, job.id, hours=Decimal("1"))
        engine.clock.advance(60)
        engine.log_hours(actor, job.id, hours=Decimal("3"))

        entries = engine.job_labour(TENANT_ID, job.id)

        assert [e.hours for e in entries] == [Decimal("1"), Decimal("3")]
        assert engine.list_jobs(TENANT_ID).total == 1

    def test_no_open_log_is_precondition_failure(self, engine, actor, make_job):
        job = make_job()
        with pytest.raises(NoOpenStageLogError):
            engine.log_hours(actor, job.id, hours=Decimal("1"))

    @pytest.mark.parametrize("hours", [Decimal("0"), Decimal("-2")])
    def test_non_positive_hours_rejected(self, engine, actor, make_job, hours):
        job = make_job()
        engine.start_stage(actor, job.id)
        with pytest.raises(ValidationError):
            engine.log_hours(actor, job.id, hours=hours)

    def test_negative_output_rejected(self, engine, actor, make_job):
        job = make_job()
        engine.start_stage(actor, job.id)
        with pytest.raises(ValidationError):
            engine.log_hours(actor, job.id, hours=Decimal("1"), output_qty=Decimal("-1"))

    def test_hours_booked_to_another_user(self, engine, actor, make_job):
        operator = uuid4()
        job = make_job()
        engine.start_stage(actor, job.id)
        result = engine.log_hours(actor, job.id, hours=Decimal("1"), user_id=operator)
        assert result.entry.user_id == operator


class TestCompleteStage:
    def test_non_inspected_stage_advances(self, engine, actor, make_job):
        """CUTTING is not inspected: completing it moves the job to ASSEMBLY."""
        job = make_job()
        engine.start_stage(actor, job.id)
        engine.log_hours(actor, job.id, hours=Decimal("2"), output_qty=Decimal("5"))

        result = engine.complete_stage(actor, job.id)

        assert result.gate.decision == GateDecision.ADVANCED
        assert result.gate.next_stage == "ASSEMBLY"
        assert result.job.stage == "ASSEMBLY"
        assert result.job.status == JobStatus.IN_PROGRESS
        assert not result.completed_log.is_open
        assert result.completed_log.hours_logged == Decimal("2")

    def test_inspected_stage_waits_for_inspection(self, engine, actor, job_at_assembly):
        engine.start_stage(actor, job_at_assembly.id)
        result = engine.complete_stage(actor, job_at_assembly.id)

        assert result.gate.decision == GateDecision.AWAITING_INSPECTION
        assert result.job.stage == "ASSEMBLY"
        assert result.job.status == JobStatus.IN_PROGRESS

    def test_complete_without_open_log_rejected(self, engine, actor, job_at_assembly):
        with pytest.raises(InvalidTransitionError):
            engine.complete_stage(actor, job_at_assembly.id)

    def test_complete_not_started_job_rejected(self, engine, actor, make_job):
        job = make_job()
        with pytest.raises(InvalidTransitionError):
            engine.complete_stage(actor, job.id)

    def test_pass_before_completion_advances_on_completion(
        self, engine, actor, inspector, job_at_assembly
    ):
        engine.start_stage(actor, job_at_assembly.id)
        inspection = engine.record_inspection(
            inspector, production_job_id=job_at_assembly.id, qc_status=QCStatus.PASS
        )
        assert inspection.gate.decision == GateDecision.NO_CHANGE

        result = engine.complete_stage(actor, job_at_assembly.id)
        assert result.gate.decision == GateDecision.ADVANCED
        assert result.job.stage == "QC"


class TestRoundTrip:
    def test_all_stages_with_pass_completes_job(self, engine, actor, inspector, make_job):
        job = make_job(planned_qty=Decimal("10"))

        for stage in STAGES:
            engine.start_stage(actor, job.id)
            engine.log_hours(actor, job.id, hours=Decimal("1"), output_qty=Decimal("10"))
            result = engine.complete_stage(actor, job.id)
            if stage != "CUTTING":
                assert result.gate.decision == GateDecision.AWAITING_INSPECTION
                engine.record_inspection(
                    inspector, production_job_id=job.id, qc_status=QCStatus.PASS
                )

        final = engine.get_job(TENANT_ID, job.id)
        assert final.status == JobStatus.COMPLETED
        assert final.stage == STAGES[-1]
        assert final.actual_hours == Decimal("3")
        assert [log.stage for log in final.stage_logs] == list(STAGES)

    def test_completed_job_cannot_restart(self, engine, actor, inspector, make_job):
        job = make_job(stage="QC")
        engine.start_stage(actor, job.id)
        engine.complete_stage(actor, job.id)
        engine.record_inspection(inspector, production_job_id=job.id, qc_status=QCStatus.NA)
        assert engine.get_job(TENANT_ID, job.id).status == JobStatus.COMPLETED

        with pytest.raises(InvalidTransitionError):
            engine.start_stage(actor, job.id)
        with pytest.raises(InvalidTransitionError):
            engine.cancel_job(actor, job.id)


class TestAssignAndCancel:
    def test_assign_and_unassign(self, engine, actor, make_job):
        job = make_job()
        operator = uuid4()

        assigned = engine.assign_job(actor, job.id, operator)
        assert assigned.assigned_to == operator
        assert assigned.version == job.version + 1

        unassigned = engine.assign_job(actor, job.id, None)
        assert unassigned.assigned_to is None

    def test_cancel_closes_open_log(self, engine, actor, make_job):
        job = make_job()
        engine.start_stage(actor, job.id)

        cancelled = engine.cancel_job(actor, job.id, reason="client withdrew")

        assert cancelled.status == JobStatus.CANCELLED
        assert cancelled.cancel_reason == "client withdrew"
        assert all(not log.is_open for log in cancelled.stage_logs)

    def test_cancelled_job_is_terminal(self, engine, actor, make_job):
        job = make_job()
        engine.cancel_job(actor, job.id)

        with pytest.raises(InvalidTransitionError):
            engine.start_stage(actor, job.id)
        with pytest.raises(InvalidTransitionError):
            engine.assign_job(actor, job.id, uuid4())
        with pytest.raises(InvalidTransitionError):
            engine.cancel_job(actor, job.id)

    def test_cancelled_job_cannot_be_inspected(self, engine, actor, inspector, make_job):
        job = make_job()
        engine.cancel_job(actor, job.id)
        with pytest.raises(InvalidTransitionError):
            engine.record_inspection(
                inspector,
                production_job_id=job.id,
                qc_status=QCStatus.FAIL,
                defects=FAIL_DEFECTS,
            )


class TestStatusClosure:
    def test_every_observed_status_is_in_the_closed_set(self, engine, actor, make_job):
        jobs = [make_job() for _ in range(3)]
        engine.start_stage(actor, jobs[1].id)
        engine.cancel_job(actor, jobs[2].id)

        page = engine.list_jobs(TENANT_ID)
        assert page.total == 3
        assert {j.status for j in page.items} <= set(JobStatus)

    def test_list_filters_by_status(self, engine, actor, make_job):
        started = make_job()
        make_job()
        engine.start_stage(actor, started.id)

        page = engine.list_jobs(TENANT_ID, status=JobStatus.IN_PROGRESS)
        assert [j.id for j in page.items] == [started.id]

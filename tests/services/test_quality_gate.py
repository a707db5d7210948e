"""
Quality gate tests.

The gate decides what a finished stage does next from the latest QC record
of that stage's latest execution.  These tests walk the decision table and
the FAIL > REWORK path with an automatically spawned rework job.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from production_kernel.domain.statuses import (
    GateDecision,
    JobStatus,
    QCStatus,
    ReworkStatus,
    SourceKind,
)
from production_kernel.exceptions import (
    InvalidSourceError,
    InvalidTransitionError,
    MissingDefectsError,
    NotFoundError,
    UnknownStageError,
    UnresolvedReworkError,
    ValidationError,
)
from tests.conftest import FAIL_DEFECTS, INSPECTOR_ID, TENANT_ID


@pytest.fixture
def awaiting_assembly(engine, actor, job_at_assembly):
    """Job whose ASSEMBLY stage is closed and waits for the inspector."""
    engine.start_stage(actor, job_at_assembly.id)
    engine.complete_stage(actor, job_at_assembly.id)
    return engine.get_job(TENANT_ID, job_at_assembly.id)


class TestGateDecisions:
    def test_pass_advances_to_next_stage(self, engine, inspector, awaiting_assembly):
        result = engine.record_inspection(
            inspector, production_job_id=awaiting_assembly.id, qc_status=QCStatus.PASS
        )

        assert result.gate.decision == GateDecision.ADVANCED
        assert result.gate.next_stage == "QC"
        assert result.gate.qc_record_id == result.qc_record.id
        job = engine.get_job(TENANT_ID, awaiting_assembly.id)
        assert job.stage == "QC"
        assert job.status == JobStatus.IN_PROGRESS

    def test_na_counts_as_pass(self, engine, inspector, awaiting_assembly):
        result = engine.record_inspection(
            inspector, production_job_id=awaiting_assembly.id, qc_status=QCStatus.NA
        )
        assert result.gate.decision == GateDecision.ADVANCED

    def test_closed_stage_without_record_awaits_inspection(
        self, engine, actor, awaiting_assembly
    ):
        gate = engine.evaluate_stage_completion(actor, awaiting_assembly.id)
        assert gate.decision == GateDecision.AWAITING_INSPECTION
        assert engine.get_job(TENANT_ID, awaiting_assembly.id).stage == "ASSEMBLY"

    def test_evaluation_is_repeatable(self, engine, actor, awaiting_assembly):
        first = engine.evaluate_stage_completion(actor, awaiting_assembly.id)
        second = engine.evaluate_stage_completion(actor, awaiting_assembly.id)
        assert first.decision == second.decision == GateDecision.AWAITING_INSPECTION

    def test_stage_other_than_current_is_no_change(self, engine, actor, awaiting_assembly):
        gate = engine.evaluate_stage_completion(actor, awaiting_assembly.id, stage="CUTTING")
        assert gate.decision == GateDecision.NO_CHANGE

    def test_unknown_stage_rejected(self, engine, actor, awaiting_assembly):
        with pytest.raises(UnknownStageError):
            engine.evaluate_stage_completion(actor, awaiting_assembly.id, stage="PAINTING")

    def test_fail_while_stage_running_closes_log(self, engine, actor, inspector, job_at_assembly):
        engine.start_stage(actor, job_at_assembly.id)

        result = engine.record_inspection(
            inspector,
            production_job_id=job_at_assembly.id,
            qc_status=QCStatus.FAIL,
            defects=FAIL_DEFECTS,
        )

        assert result.gate.decision == GateDecision.REWORK
        job = engine.get_job(TENANT_ID, job_at_assembly.id)
        assert job.status == JobStatus.REWORK
        assert all(not log.is_open for log in job.stage_logs)
        assert job.stage_logs[-1].qc_status == QCStatus.FAIL

    def test_fail_after_completion_reopens_as_rework(self, engine, actor, inspector, make_job):
        job = make_job(stage="QC")
        engine.start_stage(actor, job.id)
        engine.complete_stage(actor, job.id)
        engine.record_inspection(inspector, production_job_id=job.id, qc_status=QCStatus.PASS)
        assert engine.get_job(TENANT_ID, job.id).status == JobStatus.COMPLETED

        result = engine.record_inspection(
            inspector, production_job_id=job.id, qc_status=QCStatus.FAIL, defects=FAIL_DEFECTS
        )

        assert result.gate.decision == GateDecision.REWORK
        assert engine.get_job(TENANT_ID, job.id).status == JobStatus.REWORK

    def test_inspecting_an_earlier_stage_does_not_move_job(
        self, engine, inspector, awaiting_assembly
    ):
        result = engine.record_inspection(
            inspector,
            production_job_id=awaiting_assembly.id,
            stage="CUTTING",
            qc_status=QCStatus.PASS,
        )
        assert result.qc_record.stage == "CUTTING"
        assert result.gate.decision == GateDecision.NO_CHANGE
        assert engine.get_job(TENANT_ID, awaiting_assembly.id).stage == "ASSEMBLY"


class TestFailToRework:
    def test_fail_with_rework_spawns_exactly_one_open_rework(
        self, engine, inspector, awaiting_assembly
    ):
        result = engine.record_inspection(
            inspector,
            production_job_id=awaiting_assembly.id,
            qc_status=QCStatus.FAIL,
            defects=FAIL_DEFECTS,
            create_rework=True,
            rework_expected_hours=Decimal("3"),
            remarks="Hinge side cracked",
        )

        assert result.gate.decision == GateDecision.REWORK
        assert result.rework_job_id is not None

        job = engine.get_job(TENANT_ID, awaiting_assembly.id)
        assert job.status == JobStatus.REWORK
        assert job.stage == "ASSEMBLY"

        reworks = engine.reworks_for_qc_record(TENANT_ID, result.qc_record.id)
        assert len(reworks) == 1
        rework = reworks[0]
        assert rework.id == result.rework_job_id
        assert rework.status == ReworkStatus.OPEN
        assert rework.source_kind == SourceKind.PRODUCTION_JOB
        assert rework.production_job_id == awaiting_assembly.id
        assert rework.expected_hours == Decimal("3")
        assert rework.notes == "Hinge side cracked"

    def test_fail_record_keeps_defects(self, engine, inspector, awaiting_assembly):
        result = engine.record_inspection(
            inspector,
            production_job_id=awaiting_assembly.id,
            qc_status=QCStatus.FAIL,
            defects=[
                {"desc": "crack", "severity": "HIGH", "photo_ref": "s3://qc/1.jpg"},
                {"desc": "scratch", "severity": "LOW"},
            ],
        )
        record = engine.get_qc_record(TENANT_ID, result.qc_record.id)
        assert record.inspector_id == INSPECTOR_ID
        assert [d["desc"] for d in record.defects] == ["crack", "scratch"]
        assert record.defects[0]["photo_ref"] == "s3://qc/1.jpg"

    def test_rerun_stage_is_judged_on_its_own_record(
        self, engine, actor, inspector, awaiting_assembly
    ):
        """An old FAIL does not block the stage once it has been executed again."""
        engine.record_inspection(
            inspector,
            production_job_id=awaiting_assembly.id,
            qc_status=QCStatus.FAIL,
            defects=FAIL_DEFECTS,
        )
        engine.start_stage(actor, awaiting_assembly.id)
        completion = engine.complete_stage(actor, awaiting_assembly.id)
        assert completion.gate.decision == GateDecision.AWAITING_INSPECTION

        result = engine.record_inspection(
            inspector, production_job_id=awaiting_assembly.id, qc_status=QCStatus.PASS
        )
        assert result.gate.decision == GateDecision.ADVANCED

        records = engine.list_qc_records(TENANT_ID, production_job_id=awaiting_assembly.id)
        assert records.total == 2
        assert records.items[0].qc_status == QCStatus.PASS


class TestInspectionValidation:
    def test_fail_without_defects_rejected(self, engine, inspector, awaiting_assembly):
        with pytest.raises(MissingDefectsError):
            engine.record_inspection(
                inspector, production_job_id=awaiting_assembly.id, qc_status=QCStatus.FAIL
            )
        job = engine.get_job(TENANT_ID, awaiting_assembly.id)
        assert job.status == JobStatus.IN_PROGRESS
        assert engine.list_qc_records(TENANT_ID).total == 0

    def test_rework_requested_on_pass_rejected(self, engine, inspector, awaiting_assembly):
        with pytest.raises(ValidationError):
            engine.record_inspection(
                inspector,
                production_job_id=awaiting_assembly.id,
                qc_status=QCStatus.PASS,
                create_rework=True,
            )

    def test_unknown_severity_rejected(self, engine, inspector, awaiting_assembly):
        with pytest.raises(ValidationError):
            engine.record_inspection(
                inspector,
                production_job_id=awaiting_assembly.id,
                qc_status=QCStatus.FAIL,
                defects=[{"desc": "crack", "severity": "CRITICAL"}],
            )

    def test_no_source_rejected(self, engine, inspector):
        with pytest.raises(InvalidSourceError):
            engine.record_inspection(inspector, qc_status=QCStatus.PASS)

    def test_two_sources_rejected(self, engine, inspector, seed, awaiting_assembly):
        with pytest.raises(InvalidSourceError):
            engine.record_inspection(
                inspector,
                production_job_id=awaiting_assembly.id,
                delivery_note_id=seed.delivery_note_id,
                qc_status=QCStatus.PASS,
            )

    def test_unknown_job_is_not_found(self, engine, inspector, seed):
        with pytest.raises(NotFoundError):
            engine.record_inspection(inspector, production_job_id=uuid4(), qc_status=QCStatus.PASS)


class TestDeliveryNoteInspection:
    def test_delivery_note_fail_spawns_note_rework(self, engine, inspector, seed):
        result = engine.record_inspection(
            inspector,
            delivery_note_id=seed.delivery_note_id,
            qc_status=QCStatus.FAIL,
            defects=FAIL_DEFECTS,
            create_rework=True,
        )

        assert result.gate is None
        assert result.qc_record.source_kind == SourceKind.DELIVERY_NOTE
        assert result.qc_record.stage is None
        rework = engine.get_rework(TENANT_ID, result.rework_job_id)
        assert rework.source_kind == SourceKind.DELIVERY_NOTE
        assert rework.delivery_note_id == seed.delivery_note_id
        assert rework.production_job_id is None

    def test_delivery_note_inspection_takes_no_stage(self, engine, inspector, seed):
        with pytest.raises(ValidationError):
            engine.record_inspection(
                inspector,
                delivery_note_id=seed.delivery_note_id,
                stage="QC",
                qc_status=QCStatus.PASS,
            )

    def test_unknown_delivery_note_is_not_found(self, engine, inspector, seed):
        with pytest.raises(NotFoundError):
            engine.record_inspection(
                inspector, delivery_note_id=uuid4(), qc_status=QCStatus.PASS
            )


class TestIdempotentInspection:
    def test_replayed_key_returns_first_result(self, engine, inspector, awaiting_assembly):
        kwargs = dict(
            production_job_id=awaiting_assembly.id,
            qc_status=QCStatus.FAIL,
            defects=FAIL_DEFECTS,
            create_rework=True,
            idempotency_key="tablet-7:insp-42",
        )
        first = engine.record_inspection(inspector, **kwargs)
        second = engine.record_inspection(inspector, **kwargs)

        assert not first.replayed
        assert second.replayed
        assert second.qc_record.id == first.qc_record.id
        assert second.rework_job_id == first.rework_job_id
        assert engine.list_qc_records(TENANT_ID).total == 1
        assert engine.list_reworks(TENANT_ID).total == 1


class TestFailOutsideCurrentStage:
    def test_fail_on_earlier_stage_holds_job_in_rework(
        self, engine, actor, inspector, job_at_assembly
    ):
        engine.start_stage(actor, job_at_assembly.id)

        result = engine.record_inspection(
            inspector,
            production_job_id=job_at_assembly.id,
            stage="CUTTING",
            qc_status=QCStatus.FAIL,
            defects=FAIL_DEFECTS,
            create_rework=True,
        )

        assert result.gate.decision == GateDecision.REWORK
        assert result.gate.stage == "CUTTING"
        job = engine.get_job(TENANT_ID, job_at_assembly.id)
        assert job.status == JobStatus.REWORK
        assert job.stage == "ASSEMBLY"
        assert all(not log.is_open for log in job.stage_logs)
        with pytest.raises(UnresolvedReworkError):
            engine.start_stage(actor, job_at_assembly.id)

    def test_fail_on_earlier_stage_of_waiting_job(self, engine, inspector, awaiting_assembly):
        result = engine.record_inspection(
            inspector,
            production_job_id=awaiting_assembly.id,
            stage="CUTTING",
            qc_status=QCStatus.FAIL,
            defects=FAIL_DEFECTS,
        )
        assert result.gate.decision == GateDecision.REWORK
        assert engine.get_job(TENANT_ID, awaiting_assembly.id).status == JobStatus.REWORK

    def test_fail_on_unstarted_job_rejected(self, engine, inspector, make_job):
        job = make_job()

        with pytest.raises(InvalidTransitionError) as exc_info:
            engine.record_inspection(
                inspector,
                production_job_id=job.id,
                qc_status=QCStatus.FAIL,
                defects=FAIL_DEFECTS,
                create_rework=True,
            )

        assert exc_info.value.from_state == JobStatus.NOT_STARTED.value
        assert exc_info.value.action == "fail_inspection"
        assert engine.get_job(TENANT_ID, job.id).status == JobStatus.NOT_STARTED
        assert engine.list_qc_records(TENANT_ID).total == 0
        assert engine.list_reworks(TENANT_ID).total == 0

    def test_pass_on_unstarted_job_is_recorded(self, engine, inspector, make_job):
        job = make_job()
        result = engine.record_inspection(
            inspector, production_job_id=job.id, qc_status=QCStatus.PASS
        )
        assert result.gate.decision == GateDecision.NO_CHANGE
        assert engine.get_job(TENANT_ID, job.id).status == JobStatus.NOT_STARTED

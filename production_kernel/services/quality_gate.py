"""
QualityGate -- inspection records and the stage-completion decision.

Responsibility:
    Persists QC records for production jobs and delivery notes, and decides
    what a completed stage does next: advance, complete the job, send it to
    rework, or wait for an inspector.

Architecture position:
    Kernel > Services -- imperative shell.  Called by ProductionEngine for
    CompleteStage (after JobService.close_stage) and RecordInspection.
    Delegates job moves to JobService and rework creation to
    ReworkOrchestrator, all within the caller's transaction.

Invariants enforced:
    - A QC record has exactly one subject (production job or delivery note).
    - A FAIL record carries at least one defect.
    - The decision for (job, stage) is a function of the most recent QC
      record (by seq) tied to the latest execution of that stage, so a FAIL
      from before a rework does not block the stage once it is re-run.
    - FAIL with create_rework spawns the rework job in the same flush
      sequence: both rows commit or neither does.
    - A FAIL on any stage of a job sends the job to REWORK; a job that has
      not started cannot fail an inspection.
    - A replayed idempotency key returns the first result and writes nothing.

Failure modes:
    - InvalidSourceError, MissingDefectsError, ValidationError on bad input.
    - UnknownStageError when the stage is not in the tenant catalog.
    - NotFoundError for a job or delivery note outside the tenant.
    - InvalidTransitionError when inspecting a cancelled job, or failing one
      that has not started.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.sources import DeliveryNoteSource, ProductionSource, Source
from production_kernel.domain.stage_catalog import StageCatalog
from production_kernel.domain.statuses import GateDecision, JobStatus, QCStatus
from production_kernel.domain.values import Defect
from production_kernel.domain.workflow import JOB_CARD_WORKFLOW, require_transition
from production_kernel.exceptions import (
    InvalidSourceError,
    InvalidTransitionError,
    MissingDefectsError,
    NotFoundError,
    ValidationError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.audit_event import AuditAction
from production_kernel.models.job_card import JobCard
from production_kernel.models.quality import QCRecord, ReworkJob
from production_kernel.models.reference import DeliveryNote
from production_kernel.services.auditor_service import AuditorService
from production_kernel.services.base import BaseService
from production_kernel.services.job_service import JobService
from production_kernel.services.rework_service import ReworkOrchestrator
from production_kernel.services.sequence_service import SequenceService
from production_kernel.services.stage_catalog_service import StageCatalogService

logger = get_logger("services.quality_gate")


@dataclass(frozen=True)
class GateOutcome:
    """What ``evaluate_stage_completion`` did (service-internal)."""

    decision: GateDecision
    job_id: UUID
    stage: str
    next_stage: str | None = None
    qc_record_id: UUID | None = None


@dataclass(frozen=True)
class InspectionOutcome:
    """Rows written, or found on replay, by ``record_inspection``."""

    record: QCRecord
    gate: GateOutcome | None
    rework: ReworkJob | None
    replayed: bool = False


class QualityGate(BaseService[QCRecord]):
    """
    Inspection recording and stage gating.

    Contract:
        Flush-only.  The caller holds the per-job (or per-delivery-note)
        engine lock.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        catalogs: StageCatalogService,
        jobs: JobService,
        rework: ReworkOrchestrator,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._auditor = auditor
        self._catalogs = catalogs
        self._jobs = jobs
        self._rework = rework
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def latest_record_for(self, job: JobCard, stage: str) -> QCRecord | None:
        """Most recent QC record tied to the latest execution of ``stage``."""
        log = job.latest_log(stage)
        stmt = select(QCRecord).where(
            QCRecord.production_job_id == job.id,
            QCRecord.stage == stage,
        )
        if log is None:
            stmt = stmt.where(QCRecord.stage_log_id.is_(None))
        else:
            stmt = stmt.where(QCRecord.stage_log_id == log.id)
        return self.session.execute(
            stmt.order_by(QCRecord.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def evaluate_stage_completion(
        self,
        *,
        job: JobCard,
        stage: str,
        actor_id: UUID,
        catalog: StageCatalog | None = None,
    ) -> GateOutcome:
        """
        Decide and apply the consequence of a stage's inspection state.

        ``job`` must already be locked by the caller.

        Decision table:
            job not at ``stage``                  -> NO_CHANGE
            latest record FAIL                    -> REWORK (stage unchanged)
            stage log missing or still open       -> NO_CHANGE
            job not IN_PROGRESS                   -> NO_CHANGE
            stage not inspected, or PASS / NA     -> ADVANCED or COMPLETED
            inspected stage without a record      -> AWAITING_INSPECTION
        """
        catalog = catalog or self._catalogs.get_catalog(job.tenant_id)
        catalog.require(stage)

        if job.stage != stage:
            return self._decided(job, stage, GateDecision.NO_CHANGE)

        record = self.latest_record_for(job, stage)
        record_id = record.id if record is not None else None

        if record is not None and record.is_fail:
            if job.status in (JobStatus.IN_PROGRESS, JobStatus.COMPLETED, JobStatus.REWORK):
                if job.status != JobStatus.REWORK:
                    self._jobs.mark_rework(job, actor_id, record.id)
                return self._decided(job, stage, GateDecision.REWORK, qc_record_id=record_id)
            return self._decided(job, stage, GateDecision.NO_CHANGE, qc_record_id=record_id)

        log = job.latest_log(stage)
        if log is None or log.is_open or job.status != JobStatus.IN_PROGRESS:
            return self._decided(job, stage, GateDecision.NO_CHANGE, qc_record_id=record_id)

        if catalog.requires_inspection(stage) and record is None:
            return self._decided(job, stage, GateDecision.AWAITING_INSPECTION)

        next_stage = self._jobs.advance_after_pass(job, catalog, actor_id)
        if next_stage is None:
            return self._decided(job, stage, GateDecision.COMPLETED, qc_record_id=record_id)
        return self._decided(
            job, stage, GateDecision.ADVANCED, next_stage=next_stage, qc_record_id=record_id
        )

    def _send_to_rework(
        self, job: JobCard, stage: str, record: QCRecord, actor_id: UUID
    ) -> GateOutcome:
        """A FAIL on any stage of a job holds the whole job in REWORK."""
        if job.status != JobStatus.REWORK:
            self._jobs.mark_rework(job, actor_id, record.id)
        return self._decided(job, stage, GateDecision.REWORK, qc_record_id=record.id)

    def _decided(
        self,
        job: JobCard,
        stage: str,
        decision: GateDecision,
        next_stage: str | None = None,
        qc_record_id: UUID | None = None,
    ) -> GateOutcome:
        logger.info(
            "gate_decision",
            extra={
                "job_id": str(job.id),
                "stage": stage,
                "decision": decision.value,
                "next_stage": next_stage,
            },
        )
        return GateOutcome(
            decision=decision,
            job_id=job.id,
            stage=stage,
            next_stage=next_stage,
            qc_record_id=qc_record_id,
        )

    # ------------------------------------------------------------------
    # Inspections
    # ------------------------------------------------------------------

    def _replay(self, tenant_id: UUID, idempotency_key: str) -> InspectionOutcome | None:
        record = self.session.execute(
            select(QCRecord).where(
                QCRecord.tenant_id == tenant_id,
                QCRecord.idempotency_key == idempotency_key,
            )
        ).scalar_one_or_none()
        if record is None:
            return None
        rework = self.session.execute(
            select(ReworkJob).where(ReworkJob.source_qc_record_id == record.id)
        ).scalar_one_or_none()
        logger.info(
            "inspection_replayed",
            extra={"qc_record_id": str(record.id), "idempotency_key": idempotency_key},
        )
        return InspectionOutcome(record=record, gate=None, rework=rework, replayed=True)

    def record_inspection(
        self,
        *,
        tenant_id: UUID,
        source: Source,
        inspector_id: UUID,
        qc_status: QCStatus,
        stage: str | None = None,
        defects: Sequence[Defect] = (),
        remarks: str | None = None,
        create_rework: bool = False,
        rework_expected_hours: Decimal | None = None,
        rework_assigned_to: UUID | None = None,
        idempotency_key: str | None = None,
    ) -> InspectionOutcome:
        """
        Persist one inspection and apply its consequences.

        Preconditions:
            - ``source`` is a ProductionSource or a DeliveryNoteSource.
            - FAIL carries at least one defect; create_rework only with FAIL.

        Postconditions:
            - One QCRecord row; for job subjects the latest log of the stage
              carries the verdict and the gate has run.
            - With FAIL and create_rework, one OPEN ReworkJob referencing the
              record.
        """
        if not isinstance(source, (ProductionSource, DeliveryNoteSource)):
            raise InvalidSourceError("one of production job or delivery note is required")
        qc_status = QCStatus(qc_status)
        defects = tuple(defects)
        if qc_status == QCStatus.FAIL and not defects:
            raise MissingDefectsError()
        if create_rework and qc_status != QCStatus.FAIL:
            raise ValidationError(
                "Rework can only be requested for a FAIL inspection", field="create_rework"
            )
        if rework_expected_hours is not None and rework_expected_hours < 0:
            raise ValidationError(
                "Rework expected hours cannot be negative", field="rework_expected_hours"
            )

        if idempotency_key:
            replay = self._replay(tenant_id, idempotency_key)
            if replay is not None:
                return replay

        job: JobCard | None = None
        catalog: StageCatalog | None = None
        stage_log_id = None
        if isinstance(source, ProductionSource):
            job = self._jobs.get_job(tenant_id, source.job_id, for_update=True)
            if job.is_terminal:
                raise InvalidTransitionError(
                    "JobCard",
                    str(job.id),
                    JobStatus(job.status).value,
                    action="record_inspection",
                    reason="cancelled jobs cannot be inspected",
                )
            if qc_status == QCStatus.FAIL:
                # rejected before anything is written
                require_transition(
                    JOB_CARD_WORKFLOW,
                    entity_type="JobCard",
                    entity_id=job.id,
                    current=job.status,
                    action="fail_inspection",
                )
            catalog = self._catalogs.get_catalog(tenant_id)
            stage = catalog.require(stage) if stage else job.stage
            latest = job.latest_log(stage)
            stage_log_id = latest.id if latest is not None else None
        else:
            if stage:
                raise ValidationError(
                    "Delivery note inspections do not take a stage", field="stage"
                )
            note = self.session.execute(
                select(DeliveryNote).where(
                    DeliveryNote.id == source.delivery_note_id,
                    DeliveryNote.tenant_id == tenant_id,
                )
            ).scalar_one_or_none()
            if note is None:
                raise NotFoundError("DeliveryNote", str(source.delivery_note_id))
            stage = None

        record = QCRecord(
            tenant_id=tenant_id,
            production_job_id=job.id if job is not None else None,
            delivery_note_id=source.delivery_note_id
            if isinstance(source, DeliveryNoteSource)
            else None,
            stage=stage,
            stage_log_id=stage_log_id,
            inspector_id=inspector_id,
            qc_status=qc_status,
            defects=[d.to_dict() for d in defects],
            remarks=remarks,
            create_rework=create_rework,
            idempotency_key=idempotency_key,
            seq=self._sequences.next_value(SequenceService.qc_sequence(tenant_id)),
            inspected_at=self._clock.now(),
        )
        self.session.add(record)
        self.session.flush()

        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="QCRecord",
            entity_id=record.id,
            action=AuditAction.INSPECTION_RECORDED,
            actor_id=inspector_id,
            payload={
                "source_kind": source.kind,
                "production_job_id": record.production_job_id,
                "delivery_note_id": record.delivery_note_id,
                "stage": stage,
                "qc_status": qc_status,
                "defect_count": len(defects),
                "create_rework": create_rework,
            },
        )
        logger.info(
            "inspection_recorded",
            extra={
                "qc_record_id": str(record.id),
                "qc_status": qc_status.value,
                "stage": stage,
                "source_kind": source.kind.value,
            },
        )

        gate = None
        if job is not None:
            self._jobs.stamp_inspection(job, stage, qc_status, inspector_id)
            if qc_status == QCStatus.FAIL:
                gate = self._send_to_rework(job, stage, record, inspector_id)
            else:
                gate = self.evaluate_stage_completion(
                    job=job, stage=stage, actor_id=inspector_id, catalog=catalog
                )

        rework = None
        if create_rework:
            rework = self._rework.spawn(
                tenant_id=tenant_id,
                source=source,
                actor_id=inspector_id,
                expected_hours=rework_expected_hours,
                assigned_to=rework_assigned_to,
                notes=remarks,
                source_qc_record_id=record.id,
            )

        return InspectionOutcome(record=record, gate=gate, rework=rework)

"""
JobService -- the job card state machine.

Responsibility:
    Creates job cards and moves them through the tenant's stage catalog:
    starting and closing stage executions, booking labour, assignment,
    cancellation, and the advance / complete / rework moves the quality
    gate decides on.

Architecture position:
    Kernel > Services -- imperative shell.  Called by ProductionEngine (which
    holds the per-job lock and owns the transaction) and by QualityGate and
    ReworkOrchestrator inside the same transaction.

Invariants enforced:
    - Every status change goes through ``JOB_CARD_WORKFLOW``; a move that is
      not in the table raises InvalidTransitionError.
    - At most one open ProductionStageLog per (job, stage).
    - ``stage`` always belongs to the tenant catalog; "next stage" is the
      catalog successor, never a hard-coded list.
    - A job in REWORK resumes only when every rework job sourced from it is
      COMPLETED or CANCELLED.
    - job_card_number comes from a locked sequence counter, never max + 1.

Failure modes:
    - ValidationError family for bad input or catalog problems.
    - NotFoundError for a job, project or sub-group outside the tenant.
    - InvalidTransitionError / StageLogAlreadyOpenError for illegal moves.
    - NoOpenStageLogError / UnresolvedReworkError for missing preconditions.
    - OptimisticLockError when ``expected_version`` does not match.

Audit relevance:
    Every mutation writes one AuditEvent against the job card.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.stage_catalog import StageCatalog
from production_kernel.domain.statuses import JobStatus, QCStatus
from production_kernel.domain.workflow import JOB_CARD_WORKFLOW, require_transition
from production_kernel.exceptions import (
    InvalidTransitionError,
    NoOpenStageLogError,
    NotFoundError,
    OptimisticLockError,
    StageLogAlreadyOpenError,
    UnresolvedReworkError,
    ValidationError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.audit_event import AuditAction
from production_kernel.models.job_card import JobCard, LabourLogEntry, ProductionStageLog
from production_kernel.models.quality import ReworkJob
from production_kernel.models.reference import Project, SubGroup
from production_kernel.services.auditor_service import AuditorService
from production_kernel.services.base import BaseService
from production_kernel.services.sequence_service import SequenceService
from production_kernel.services.stage_catalog_service import StageCatalogService

logger = get_logger("services.job")

_ZERO = Decimal("0")

_ENTITY = "JobCard"


class JobService(BaseService[JobCard]):
    """
    Job card lifecycle.

    Contract:
        Flush-only.  Methods taking ``job_id`` lock the row with
        SELECT ... FOR UPDATE and scope it to ``tenant_id``; a job of another
        tenant is indistinguishable from a missing one.

    Non-goals:
        - Does NOT decide whether a stage passed; QualityGate does, then
          calls ``advance_after_pass`` or ``mark_rework``.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        catalogs: StageCatalogService,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._auditor = auditor
        self._catalogs = catalogs
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def get_job(self, tenant_id: UUID, job_id: UUID, for_update: bool = False) -> JobCard:
        stmt = select(JobCard).where(JobCard.id == job_id, JobCard.tenant_id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        job = self.session.execute(stmt).scalar_one_or_none()
        if job is None:
            raise NotFoundError(_ENTITY, str(job_id))
        return job

    def _job_for_update(
        self, tenant_id: UUID, job_id: UUID, expected_version: int | None
    ) -> JobCard:
        job = self.get_job(tenant_id, job_id, for_update=True)
        if expected_version is not None and job.version != expected_version:
            logger.warning(
                "job_version_mismatch",
                extra={
                    "job_id": str(job_id),
                    "expected_version": expected_version,
                    "actual_version": job.version,
                },
            )
            raise OptimisticLockError(_ENTITY, str(job_id), expected_version, job.version)
        return job

    def open_reworks(self, job_id: UUID) -> list[ReworkJob]:
        """Rework jobs sourced from ``job_id`` that are still OPEN or IN_PROGRESS."""
        rows = self.session.execute(
            select(ReworkJob)
            .where(ReworkJob.production_job_id == job_id)
            .order_by(ReworkJob.created_at)
        ).scalars().all()
        return [r for r in rows if r.is_open]

    def _audit(self, job: JobCard, action: AuditAction, actor_id: UUID, payload: dict) -> None:
        self._auditor.record(
            tenant_id=job.tenant_id,
            entity_type=_ENTITY,
            entity_id=job.id,
            action=action,
            actor_id=actor_id,
            payload=payload,
        )

    def _open_log(self, job: JobCard, actor_id: UUID, notes: str | None) -> ProductionStageLog:
        job.last_log_no = (job.last_log_no or 0) + 1
        log = ProductionStageLog(
            tenant_id=job.tenant_id,
            job_card=job,
            log_no=job.last_log_no,
            stage=job.stage,
            started_at=self._clock.now(),
            started_by=actor_id,
            hours_logged=_ZERO,
            output_qty=_ZERO,
            notes=notes,
        )
        self.session.add(log)
        return log

    def _close_log(self, log: ProductionStageLog, actor_id: UUID) -> None:
        log.completed_at = self._clock.now()
        log.completed_by = actor_id

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_job(
        self,
        *,
        tenant_id: UUID,
        project_id: UUID,
        sub_group_id: UUID,
        planned_qty: Decimal,
        actor_id: UUID,
        planned_hours: Decimal | None = None,
        assigned_to: UUID | None = None,
        stage: str | None = None,
    ) -> JobCard:
        """
        Create a NOT_STARTED job card at ``stage`` (default: first catalog stage).

        Raises:
            ValidationError: planned_qty <= 0, negative planned_hours, or a
                sub-group outside the project.
            StageCatalogNotConfiguredError / UnknownStageError: catalog problems.
            NotFoundError: project or sub-group not in the tenant.
        """
        if planned_qty is None or planned_qty <= 0:
            raise ValidationError("Planned quantity must be greater than zero", field="planned_qty")
        if planned_hours is not None and planned_hours < 0:
            raise ValidationError("Planned hours cannot be negative", field="planned_hours")

        catalog = self._catalogs.get_catalog(tenant_id)
        first_stage = catalog.require(stage) if stage else catalog.first

        project = self.session.execute(
            select(Project).where(Project.id == project_id, Project.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if project is None:
            raise NotFoundError("Project", str(project_id))
        sub_group = self.session.execute(
            select(SubGroup).where(SubGroup.id == sub_group_id, SubGroup.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if sub_group is None:
            raise NotFoundError("SubGroup", str(sub_group_id))
        if sub_group.project_id != project.id:
            raise ValidationError(
                f"Sub-group {sub_group_id} does not belong to project {project_id}",
                field="sub_group_id",
            )

        now = self._clock.now()
        number = self._sequences.next_value(SequenceService.job_card_sequence(tenant_id, now))
        job = JobCard(
            tenant_id=tenant_id,
            project_id=project.id,
            sub_group_id=sub_group.id,
            job_card_number=f"{catalog.tenant_code}-JC-{now:%Y%m%d}-{number:04d}",
            stage=first_stage,
            stage_index=catalog.index_of(first_stage),
            status=JobStatus.NOT_STARTED,
            planned_qty=planned_qty,
            actual_qty=_ZERO,
            planned_hours=planned_hours,
            actual_hours=_ZERO,
            assigned_to=assigned_to,
            last_log_no=0,
            created_by_id=actor_id,
        )
        self.session.add(job)
        self.session.flush()

        self._audit(
            job,
            AuditAction.JOB_CREATED,
            actor_id,
            {
                "job_card_number": job.job_card_number,
                "stage": job.stage,
                "planned_qty": planned_qty,
                "planned_hours": planned_hours,
                "assigned_to": assigned_to,
            },
        )
        logger.info(
            "job_created",
            extra={
                "job_id": str(job.id),
                "job_card_number": job.job_card_number,
                "stage": job.stage,
            },
        )
        return job

    def start_stage(
        self,
        *,
        tenant_id: UUID,
        job_id: UUID,
        actor_id: UUID,
        expected_version: int | None = None,
        notes: str | None = None,
        catalog: StageCatalog | None = None,
    ) -> tuple[JobCard, ProductionStageLog]:
        """
        Open a stage log for the job's current stage.

        Legal from NOT_STARTED; from IN_PROGRESS once the previous stage
        advanced; from REWORK once every rework job sourced from the job is
        closed.
        """
        job = self._job_for_update(tenant_id, job_id, expected_version)
        catalog = catalog or self._catalogs.get_catalog(tenant_id)
        catalog.require(job.stage)
        from_status = JobStatus(job.status)

        transition = require_transition(
            JOB_CARD_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=job.id,
            current=from_status,
            action="start_stage",
        )

        if job.open_log() is not None:
            raise StageLogAlreadyOpenError(str(job.id), job.stage, from_status.value)

        if from_status == JobStatus.REWORK:
            pending = self.open_reworks(job.id)
            if pending:
                raise UnresolvedReworkError(str(job.id), [str(r.id) for r in pending])
        elif from_status == JobStatus.IN_PROGRESS:
            latest = job.latest_log()
            if (
                latest is not None
                and latest.qc_status is None
                and catalog.requires_inspection(job.stage)
            ):
                raise InvalidTransitionError(
                    _ENTITY,
                    str(job.id),
                    from_status.value,
                    action="start_stage",
                    reason=f"stage {job.stage} is awaiting inspection",
                )

        log = self._open_log(job, actor_id, notes)
        job.status = JobStatus(transition.to_state)
        job.updated_by_id = actor_id
        self.session.flush()

        self._audit(
            job,
            AuditAction.JOB_STAGE_STARTED,
            actor_id,
            {
                "stage": job.stage,
                "log_no": log.log_no,
                "from_status": from_status,
                "to_status": job.status,
            },
        )
        logger.info(
            "job_stage_started",
            extra={
                "job_id": str(job.id),
                "stage": job.stage,
                "log_no": log.log_no,
                "from_status": from_status.value,
            },
        )
        return job, log

    def log_hours(
        self,
        *,
        tenant_id: UUID,
        job_id: UUID,
        user_id: UUID,
        hours: Decimal,
        output_qty: Decimal | None = None,
        notes: str | None = None,
        work_date: date | None = None,
        expected_version: int | None = None,
    ) -> tuple[JobCard, ProductionStageLog, LabourLogEntry]:
        """Book labour against the open log of the current stage."""
        if hours is None or hours <= 0:
            raise ValidationError("Hours must be greater than zero", field="hours")
        output = output_qty if output_qty is not None else _ZERO
        if output < 0:
            raise ValidationError("Output quantity cannot be negative", field="output_qty")

        job = self._job_for_update(tenant_id, job_id, expected_version)
        log = job.open_log()
        if job.status != JobStatus.IN_PROGRESS or log is None:
            raise NoOpenStageLogError(str(job.id), job.stage)
        require_transition(
            JOB_CARD_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=job.id,
            current=job.status,
            action="log_hours",
        )

        now = self._clock.now()
        entry = LabourLogEntry(
            tenant_id=tenant_id,
            job_card_id=job.id,
            stage_log=log,
            user_id=user_id,
            hours=hours,
            output_qty=output,
            work_date=work_date or now.date(),
            logged_at=now,
            notes=notes,
        )
        self.session.add(entry)
        log.hours_logged = log.hours_logged + hours
        log.output_qty = log.output_qty + output
        log.append_note(notes)
        job.actual_hours = job.actual_hours + hours
        job.actual_qty = job.actual_qty + output
        job.updated_by_id = user_id
        self.session.flush()

        self._audit(
            job,
            AuditAction.JOB_HOURS_LOGGED,
            user_id,
            {
                "stage": job.stage,
                "log_no": log.log_no,
                "hours": hours,
                "output_qty": output,
                "work_date": entry.work_date,
            },
        )
        logger.info(
            "job_hours_logged",
            extra={
                "job_id": str(job.id),
                "stage": job.stage,
                "hours": str(hours),
                "output_qty": str(output),
            },
        )
        return job, log, entry

    def close_stage(
        self,
        *,
        tenant_id: UUID,
        job_id: UUID,
        actor_id: UUID,
        expected_version: int | None = None,
        notes: str | None = None,
    ) -> tuple[JobCard, ProductionStageLog]:
        """Close the open log of the current stage.  The gate runs afterwards."""
        job = self._job_for_update(tenant_id, job_id, expected_version)
        require_transition(
            JOB_CARD_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=job.id,
            current=job.status,
            action="complete_stage",
        )
        log = job.open_log()
        if log is None:
            raise InvalidTransitionError(
                _ENTITY,
                str(job.id),
                JobStatus(job.status).value,
                action="complete_stage",
                reason=f"stage {job.stage} has no open log",
            )

        self._close_log(log, actor_id)
        log.append_note(notes)
        job.updated_by_id = actor_id
        self.session.flush()

        self._audit(
            job,
            AuditAction.JOB_STAGE_COMPLETED,
            actor_id,
            {
                "stage": job.stage,
                "log_no": log.log_no,
                "hours_logged": log.hours_logged,
                "output_qty": log.output_qty,
            },
        )
        logger.info(
            "job_stage_closed",
            extra={"job_id": str(job.id), "stage": job.stage, "log_no": log.log_no},
        )
        return job, log

    def advance_after_pass(
        self, job: JobCard, catalog: StageCatalog, actor_id: UUID
    ) -> str | None:
        """
        Move a passed job to the catalog successor, or complete it.

        Returns the new stage, or None when the job was completed.
        """
        stage = job.stage
        successor = catalog.successor(stage)
        if successor is None:
            require_transition(
                JOB_CARD_WORKFLOW,
                entity_type=_ENTITY,
                entity_id=job.id,
                current=job.status,
                action="complete_job",
            )
            job.status = JobStatus.COMPLETED
            job.updated_by_id = actor_id
            self.session.flush()
            self._audit(job, AuditAction.JOB_COMPLETED, actor_id, {"stage": stage})
            logger.info("job_completed", extra={"job_id": str(job.id), "stage": stage})
            return None

        require_transition(
            JOB_CARD_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=job.id,
            current=job.status,
            action="advance_stage",
        )
        job.stage = successor
        job.stage_index = catalog.index_of(successor)
        job.updated_by_id = actor_id
        self.session.flush()
        self._audit(
            job,
            AuditAction.JOB_STAGE_ADVANCED,
            actor_id,
            {"from_stage": stage, "to_stage": successor},
        )
        logger.info(
            "job_stage_advanced",
            extra={"job_id": str(job.id), "from_stage": stage, "to_stage": successor},
        )
        return successor

    def mark_rework(self, job: JobCard, actor_id: UUID, qc_record_id: UUID | None) -> None:
        """Send a job to REWORK after a failed inspection.  Stage is unchanged."""
        from_status = JobStatus(job.status)
        require_transition(
            JOB_CARD_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=job.id,
            current=from_status,
            action="fail_inspection",
        )
        for log in job.stage_logs:
            if log.completed_at is None:
                self._close_log(log, actor_id)
        job.status = JobStatus.REWORK
        job.updated_by_id = actor_id
        self.session.flush()
        self._audit(
            job,
            AuditAction.JOB_SENT_TO_REWORK,
            actor_id,
            {"stage": job.stage, "from_status": from_status, "qc_record_id": qc_record_id},
        )
        logger.info(
            "job_sent_to_rework",
            extra={
                "job_id": str(job.id),
                "stage": job.stage,
                "from_status": from_status.value,
            },
        )

    def stamp_inspection(
        self, job: JobCard, stage: str, qc_status: QCStatus, actor_id: UUID
    ) -> ProductionStageLog | None:
        """
        Record an inspection verdict on the latest log of ``stage``.

        A FAIL also closes that log if it is still open.
        """
        log = job.latest_log(stage)
        if log is None:
            return None
        log.qc_status = qc_status
        if qc_status == QCStatus.FAIL and log.completed_at is None:
            self._close_log(log, actor_id)
        self.session.flush()
        return log

    def assign_job(
        self,
        *,
        tenant_id: UUID,
        job_id: UUID,
        assigned_to: UUID | None,
        actor_id: UUID,
        expected_version: int | None = None,
    ) -> JobCard:
        job = self._job_for_update(tenant_id, job_id, expected_version)
        require_transition(
            JOB_CARD_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=job.id,
            current=job.status,
            action="assign",
        )
        previous = job.assigned_to
        job.assigned_to = assigned_to
        job.updated_by_id = actor_id
        self.session.flush()
        self._audit(
            job,
            AuditAction.JOB_ASSIGNED,
            actor_id,
            {"from_assignee": previous, "to_assignee": assigned_to},
        )
        logger.info(
            "job_assigned",
            extra={"job_id": str(job.id), "assigned_to": str(assigned_to) if assigned_to else None},
        )
        return job

    def cancel_job(
        self,
        *,
        tenant_id: UUID,
        job_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> JobCard:
        """Cancel a job.  Any open stage log is closed.  Terminal."""
        job = self._job_for_update(tenant_id, job_id, expected_version)
        from_status = JobStatus(job.status)
        require_transition(
            JOB_CARD_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=job.id,
            current=from_status,
            action="cancel",
        )
        for log in job.stage_logs:
            if log.completed_at is None:
                self._close_log(log, actor_id)
                log.append_note(f"Closed on cancellation: {reason}" if reason else "Closed on cancellation")
        job.status = JobStatus.CANCELLED
        job.cancel_reason = reason
        job.updated_by_id = actor_id
        self.session.flush()
        self._audit(
            job,
            AuditAction.JOB_CANCELLED,
            actor_id,
            {"from_status": from_status, "reason": reason, "stage": job.stage},
        )
        logger.info(
            "job_cancelled",
            extra={"job_id": str(job.id), "from_status": from_status.value},
        )
        return job

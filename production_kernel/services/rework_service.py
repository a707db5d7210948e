"""
ReworkOrchestrator -- rework job creation and lifecycle.

Responsibility:
    Spawns rework jobs from failed inspections and returned deliveries,
    moves them through OPEN -> IN_PROGRESS -> COMPLETED (or CANCELLED), and
    keeps their working details (assignee, hours, notes) current.

Architecture position:
    Kernel > Services -- imperative shell.  Called by QualityGate and
    ReturnInspector inside their transactions, and by ProductionEngine for
    direct Spawn / TransitionStatus / UpdateDetails requests.

Invariants enforced:
    - Exactly one source: a production job or a delivery note.
    - Every rework answers a FAIL QC record or an inspected return; a
      job-sourced rework leaves its job in REWORK.
    - A QC record causes at most one rework job: checked under the engine's
      per-QC-record lock and backed by a unique constraint, both reported
      as DuplicateReworkError.
    - Status moves follow ``REWORK_JOB_WORKFLOW``.
    - actual_hours never decreases.
    - Completing a job-sourced rework resumes the job only when the
      tenant's workflow sets auto_resume_after_rework and no other rework
      for the job is still open.

Failure modes:
    - InvalidSourceError / ValidationError for a bad source or input.
    - NotFoundError for an unknown rework job, source or QC record.
    - DuplicateReworkError when the QC record already spawned rework.
    - InvalidTransitionError for illegal status moves.
    - OptimisticLockError when ``expected_version`` does not match.
"""

from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.sources import (
    DeliveryNoteSource,
    ProductionSource,
    Source,
    source_columns,
)
from production_kernel.domain.statuses import JobStatus, ReworkStatus
from production_kernel.domain.values import to_decimal
from production_kernel.domain.workflow import REWORK_JOB_WORKFLOW, require_target
from production_kernel.exceptions import (
    DuplicateReworkError,
    InvalidSourceError,
    InvalidTransitionError,
    NotFoundError,
    OptimisticLockError,
    ValidationError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.audit_event import AuditAction
from production_kernel.models.job_card import JobCard
from production_kernel.models.quality import QCRecord, ReworkJob
from production_kernel.models.reference import DeliveryNote
from production_kernel.models.returns import ReturnRecord
from production_kernel.services.auditor_service import AuditorService
from production_kernel.services.base import BaseService
from production_kernel.services.job_service import JobService
from production_kernel.services.stage_catalog_service import StageCatalogService

logger = get_logger("services.rework")

_ENTITY = "ReworkJob"


def normalize_material_needed(lines: Sequence[Mapping[str, Any]] | None) -> list[dict]:
    """Validate planned material lines and convert them to JSON-safe dicts."""
    result = []
    for raw in lines or ():
        qty = to_decimal(raw.get("qty", 0), "material_needed")
        if qty <= 0:
            raise ValidationError("Material quantity must be greater than zero", field="material_needed")
        item_id = raw.get("item_id")
        description = raw.get("description")
        if not item_id and not description:
            raise ValidationError(
                "Material line needs an item or a description", field="material_needed"
            )
        result.append(
            {
                "item_id": str(item_id) if item_id else None,
                "description": description,
                "qty": str(qty),
            }
        )
    return result


class ReworkOrchestrator(BaseService[ReworkJob]):
    """
    Rework job lifecycle.

    Contract:
        Flush-only.  ``spawn`` is safe to call inside another service's
        flush sequence; a failure leaves no rework row behind.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        catalogs: StageCatalogService,
        jobs: JobService,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._auditor = auditor
        self._catalogs = catalogs
        self._jobs = jobs
        self._clock = clock or SystemClock()

    def get_rework(self, tenant_id: UUID, rework_id: UUID, for_update: bool = False) -> ReworkJob:
        stmt = select(ReworkJob).where(
            ReworkJob.id == rework_id, ReworkJob.tenant_id == tenant_id
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        rework = self.session.execute(stmt).scalar_one_or_none()
        if rework is None:
            raise NotFoundError(_ENTITY, str(rework_id))
        return rework

    def _for_update(
        self, tenant_id: UUID, rework_id: UUID, expected_version: int | None
    ) -> ReworkJob:
        rework = self.get_rework(tenant_id, rework_id, for_update=True)
        if expected_version is not None and rework.version != expected_version:
            raise OptimisticLockError(_ENTITY, str(rework_id), expected_version, rework.version)
        return rework

    def _existing_for_qc(self, qc_record_id: UUID) -> ReworkJob | None:
        return self.session.execute(
            select(ReworkJob).where(ReworkJob.source_qc_record_id == qc_record_id)
        ).scalar_one_or_none()

    def _check_source(self, tenant_id: UUID, source: Source) -> None:
        if isinstance(source, ProductionSource):
            found = self.session.execute(
                select(JobCard.id).where(
                    JobCard.id == source.job_id, JobCard.tenant_id == tenant_id
                )
            ).scalar_one_or_none()
            if found is None:
                raise NotFoundError("JobCard", str(source.job_id))
        elif isinstance(source, DeliveryNoteSource):
            found = self.session.execute(
                select(DeliveryNote.id).where(
                    DeliveryNote.id == source.delivery_note_id,
                    DeliveryNote.tenant_id == tenant_id,
                )
            ).scalar_one_or_none()
            if found is None:
                raise NotFoundError("DeliveryNote", str(source.delivery_note_id))
        else:
            raise InvalidSourceError("one of production job or delivery note is required")

    def spawn(
        self,
        *,
        tenant_id: UUID,
        source: Source,
        actor_id: UUID,
        expected_hours: Decimal | None = None,
        assigned_to: UUID | None = None,
        notes: str | None = None,
        material_needed: Sequence[Mapping[str, Any]] | None = None,
        source_qc_record_id: UUID | None = None,
        source_return_id: UUID | None = None,
    ) -> ReworkJob:
        """
        Create an OPEN rework job.

        Every rework answers a FAIL: either ``source_qc_record_id`` (a FAIL
        record of the same subject) or ``source_return_id`` is required.
        A job-sourced rework leaves the job in REWORK.

        Raises:
            DuplicateReworkError: ``source_qc_record_id`` already spawned one.
            InvalidSourceError: the QC record or return judged another subject.
            ValidationError: no QC record or return behind the rework.
        """
        self._check_source(tenant_id, source)
        if source_qc_record_id is None and source_return_id is None:
            raise ValidationError(
                "Rework must be spawned from a FAIL inspection or an inspected return",
                field="source_qc_record_id",
            )
        if expected_hours is not None and expected_hours < 0:
            raise ValidationError("Expected hours cannot be negative", field="expected_hours")
        materials = normalize_material_needed(material_needed)

        if source_qc_record_id is not None:
            qc = self.session.execute(
                select(QCRecord).where(
                    QCRecord.id == source_qc_record_id, QCRecord.tenant_id == tenant_id
                )
            ).scalar_one_or_none()
            if qc is None:
                raise NotFoundError("QCRecord", str(source_qc_record_id))
            if not qc.is_fail:
                raise ValidationError(
                    "Rework can only be spawned from a FAIL inspection",
                    field="source_qc_record_id",
                )
            if qc.source != source:
                raise InvalidSourceError("rework source must match the inspected subject")
            existing = self._existing_for_qc(source_qc_record_id)
            if existing is not None:
                logger.warning(
                    "duplicate_rework_rejected",
                    extra={
                        "qc_record_id": str(source_qc_record_id),
                        "existing_rework_id": str(existing.id),
                    },
                )
                raise DuplicateReworkError(str(source_qc_record_id), str(existing.id))

        if source_return_id is not None:
            record = self.session.execute(
                select(ReturnRecord).where(
                    ReturnRecord.id == source_return_id, ReturnRecord.tenant_id == tenant_id
                )
            ).scalar_one_or_none()
            if record is None:
                raise NotFoundError("ReturnRecord", str(source_return_id))
            if source != DeliveryNoteSource(record.delivery_note_id):
                raise InvalidSourceError("return rework must be sourced from its delivery note")

        rework = ReworkJob(
            tenant_id=tenant_id,
            **source_columns(source),
            source_qc_record_id=source_qc_record_id,
            source_return_id=source_return_id,
            status=ReworkStatus.OPEN,
            expected_hours=expected_hours,
            actual_hours=Decimal("0"),
            assigned_to=assigned_to,
            notes=notes,
            material_needed=materials,
            created_by_id=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(rework)
                self.session.flush()
        except IntegrityError:
            if source_qc_record_id is not None:
                existing = self._existing_for_qc(source_qc_record_id)
                if existing is not None:
                    raise DuplicateReworkError(str(source_qc_record_id), str(existing.id))
            raise

        if isinstance(source, ProductionSource):
            job = self._jobs.get_job(tenant_id, source.job_id, for_update=True)
            if job.status != JobStatus.REWORK:
                self._jobs.mark_rework(job, actor_id, source_qc_record_id)

        self._auditor.record(
            tenant_id=tenant_id,
            entity_type=_ENTITY,
            entity_id=rework.id,
            action=AuditAction.REWORK_SPAWNED,
            actor_id=actor_id,
            payload={
                "source_kind": source.kind,
                **source_columns(source),
                "source_qc_record_id": source_qc_record_id,
                "source_return_id": source_return_id,
                "expected_hours": expected_hours,
                "assigned_to": assigned_to,
            },
        )
        logger.info(
            "rework_spawned",
            extra={
                "rework_id": str(rework.id),
                "source_kind": source.kind.value,
                "qc_record_id": str(source_qc_record_id) if source_qc_record_id else None,
            },
        )
        return rework

    def transition_status(
        self,
        *,
        tenant_id: UUID,
        rework_id: UUID,
        new_status: ReworkStatus,
        actor_id: UUID,
        expected_version: int | None = None,
    ) -> tuple[ReworkJob, JobCard | None]:
        """
        Move a rework job along its lifecycle.

        Returns the rework job and, when completion resumed its source job,
        that job.
        """
        new_status = ReworkStatus(new_status)
        rework = self._for_update(tenant_id, rework_id, expected_version)
        from_status = ReworkStatus(rework.status)
        require_target(
            REWORK_JOB_WORKFLOW,
            entity_type=_ENTITY,
            entity_id=rework.id,
            current=from_status,
            target=new_status,
        )
        rework.status = new_status
        if new_status == ReworkStatus.COMPLETED:
            rework.completed_at = self._clock.now()
        rework.updated_by_id = actor_id
        self.session.flush()

        self._auditor.record(
            tenant_id=tenant_id,
            entity_type=_ENTITY,
            entity_id=rework.id,
            action=AuditAction.REWORK_STATUS_CHANGED,
            actor_id=actor_id,
            payload={"from_status": from_status, "to_status": new_status},
        )
        logger.info(
            "rework_status_changed",
            extra={
                "rework_id": str(rework.id),
                "from_status": from_status.value,
                "to_status": new_status.value,
            },
        )

        resumed = None
        if new_status == ReworkStatus.COMPLETED and rework.production_job_id is not None:
            resumed = self._maybe_resume(tenant_id, rework.production_job_id, actor_id)
        return rework, resumed

    def _maybe_resume(self, tenant_id: UUID, job_id: UUID, actor_id: UUID) -> JobCard | None:
        catalog = self._catalogs.get_catalog(tenant_id)
        if not catalog.auto_resume_after_rework:
            return None
        job = self._jobs.get_job(tenant_id, job_id, for_update=True)
        if job.status != JobStatus.REWORK or self._jobs.open_reworks(job.id):
            return None
        job, _ = self._jobs.start_stage(
            tenant_id=tenant_id,
            job_id=job.id,
            actor_id=actor_id,
            notes="Resumed after rework",
            catalog=catalog,
        )
        logger.info("job_auto_resumed", extra={"job_id": str(job.id), "stage": job.stage})
        return job

    def update_details(
        self,
        *,
        tenant_id: UUID,
        rework_id: UUID,
        actor_id: UUID,
        assigned_to: UUID | None = None,
        actual_hours: Decimal | None = None,
        expected_hours: Decimal | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> ReworkJob:
        """Update working details of an open rework job.  None leaves a field as is."""
        rework = self._for_update(tenant_id, rework_id, expected_version)
        if not rework.is_open:
            raise InvalidTransitionError(
                _ENTITY,
                str(rework.id),
                ReworkStatus(rework.status).value,
                action="update_details",
                reason="closed rework jobs cannot be edited",
            )
        changes: dict[str, Any] = {}
        if actual_hours is not None:
            if actual_hours < rework.actual_hours:
                raise ValidationError(
                    f"Actual hours cannot decrease (currently {rework.actual_hours})",
                    field="actual_hours",
                )
            rework.actual_hours = actual_hours
            changes["actual_hours"] = actual_hours
        if expected_hours is not None:
            if expected_hours < 0:
                raise ValidationError("Expected hours cannot be negative", field="expected_hours")
            rework.expected_hours = expected_hours
            changes["expected_hours"] = expected_hours
        if assigned_to is not None:
            rework.assigned_to = assigned_to
            changes["assigned_to"] = assigned_to
        if notes is not None:
            rework.notes = notes
            changes["notes"] = notes
        if not changes:
            raise ValidationError("No changes supplied")

        rework.updated_by_id = actor_id
        self.session.flush()
        self._auditor.record(
            tenant_id=tenant_id,
            entity_type=_ENTITY,
            entity_id=rework.id,
            action=AuditAction.REWORK_UPDATED,
            actor_id=actor_id,
            payload=changes,
        )
        logger.info(
            "rework_updated",
            extra={"rework_id": str(rework.id), "fields": sorted(changes)},
        )
        return rework

"""
Module: production_kernel.selectors.quality_selector
Responsibility: Read-only queries over QC records and rework jobs.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select

from production_kernel.domain.dtos import QCRecordInfo, ReworkJobInfo
from production_kernel.domain.statuses import QCStatus, ReworkStatus
from production_kernel.models.quality import QCRecord, ReworkJob
from production_kernel.selectors.base import BaseSelector, Page


class QualitySelector(BaseSelector[QCRecord]):
    def get_record(self, tenant_id: UUID, qc_record_id: UUID) -> QCRecordInfo | None:
        record = self.session.execute(
            select(QCRecord).where(QCRecord.id == qc_record_id, QCRecord.tenant_id == tenant_id)
        ).scalar_one_or_none()
        return QCRecordInfo.from_model(record) if record is not None else None

    def list_records(
        self,
        tenant_id: UUID,
        *,
        production_job_id: UUID | None = None,
        delivery_note_id: UUID | None = None,
        stage: str | None = None,
        qc_status: QCStatus | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[QCRecordInfo]:
        stmt = select(QCRecord).where(QCRecord.tenant_id == tenant_id)
        if production_job_id is not None:
            stmt = stmt.where(QCRecord.production_job_id == production_job_id)
        if delivery_note_id is not None:
            stmt = stmt.where(QCRecord.delivery_note_id == delivery_note_id)
        if stage is not None:
            stmt = stmt.where(QCRecord.stage == stage)
        if qc_status is not None:
            stmt = stmt.where(QCRecord.qc_status == QCStatus(qc_status))
        stmt = stmt.order_by(QCRecord.seq.desc())
        rows, total, limit, offset = self.paginate(stmt, limit, offset)
        return Page(
            items=tuple(QCRecordInfo.from_model(r) for r in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

    def get_rework(self, tenant_id: UUID, rework_id: UUID) -> ReworkJobInfo | None:
        rework = self.session.execute(
            select(ReworkJob).where(ReworkJob.id == rework_id, ReworkJob.tenant_id == tenant_id)
        ).scalar_one_or_none()
        return ReworkJobInfo.from_model(rework) if rework is not None else None

    def reworks_for_qc_record(self, tenant_id: UUID, qc_record_id: UUID) -> list[ReworkJobInfo]:
        rows = self.session.execute(
            select(ReworkJob).where(
                ReworkJob.tenant_id == tenant_id,
                ReworkJob.source_qc_record_id == qc_record_id,
            )
        ).scalars().all()
        return [ReworkJobInfo.from_model(r) for r in rows]

    def list_reworks(
        self,
        tenant_id: UUID,
        *,
        status: ReworkStatus | None = None,
        production_job_id: UUID | None = None,
        delivery_note_id: UUID | None = None,
        assigned_to: UUID | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[ReworkJobInfo]:
        stmt = select(ReworkJob).where(ReworkJob.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(ReworkJob.status == ReworkStatus(status))
        if production_job_id is not None:
            stmt = stmt.where(ReworkJob.production_job_id == production_job_id)
        if delivery_note_id is not None:
            stmt = stmt.where(ReworkJob.delivery_note_id == delivery_note_id)
        if assigned_to is not None:
            stmt = stmt.where(ReworkJob.assigned_to == assigned_to)
        stmt = stmt.order_by(ReworkJob.created_at.desc(), ReworkJob.id)
        rows, total, limit, offset = self.paginate(stmt, limit, offset)
        return Page(
            items=tuple(ReworkJobInfo.from_model(r) for r in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

"""
Module: production_kernel.selectors.job_selector
Responsibility: Read-only job card queries for detail views and filtered
    lists (status, stage, project, assignee).
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from production_kernel.domain.dtos import JobCardInfo, LabourEntryInfo
from production_kernel.domain.statuses import JobStatus
from production_kernel.models.job_card import JobCard, LabourLogEntry
from production_kernel.selectors.base import BaseSelector, Page


class JobSelector(BaseSelector[JobCard]):
    def get(self, tenant_id: UUID, job_id: UUID) -> JobCardInfo | None:
        job = self.session.execute(
            select(JobCard).where(JobCard.id == job_id, JobCard.tenant_id == tenant_id)
        ).scalar_one_or_none()
        return JobCardInfo.from_model(job) if job is not None else None

    def get_by_number(self, tenant_id: UUID, job_card_number: str) -> JobCardInfo | None:
        job = self.session.execute(
            select(JobCard).where(
                JobCard.tenant_id == tenant_id,
                JobCard.job_card_number == job_card_number,
            )
        ).scalar_one_or_none()
        return JobCardInfo.from_model(job) if job is not None else None

    def list(
        self,
        tenant_id: UUID,
        *,
        status: JobStatus | None = None,
        stage: str | None = None,
        project_id: UUID | None = None,
        assigned_to: UUID | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[JobCardInfo]:
        stmt = select(JobCard).where(JobCard.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(JobCard.status == JobStatus(status))
        if stage is not None:
            stmt = stmt.where(JobCard.stage == stage)
        if project_id is not None:
            stmt = stmt.where(JobCard.project_id == project_id)
        if assigned_to is not None:
            stmt = stmt.where(JobCard.assigned_to == assigned_to)
        stmt = stmt.order_by(JobCard.job_card_number)
        rows, total, limit, offset = self.paginate(stmt, limit, offset)
        return Page(
            items=tuple(JobCardInfo.from_model(j, include_logs=False) for j in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

    def labour_entries(self, tenant_id: UUID, job_id: UUID) -> list[LabourEntryInfo]:
        rows = self.session.execute(
            select(LabourLogEntry)
            .where(LabourLogEntry.tenant_id == tenant_id, LabourLogEntry.job_card_id == job_id)
            .order_by(LabourLogEntry.logged_at)
        ).scalars().all()
        return [LabourEntryInfo.from_model(e) for e in rows]

"""
Module: production_kernel.selectors.return_selector
Responsibility: Read-only queries over client returns.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from production_kernel.domain.dtos import ReturnRecordInfo
from production_kernel.domain.statuses import ReturnStatus
from production_kernel.models.returns import ReturnRecord
from production_kernel.selectors.base import BaseSelector, Page


class ReturnSelector(BaseSelector[ReturnRecord]):
    def get(self, tenant_id: UUID, return_id: UUID) -> ReturnRecordInfo | None:
        record = self.session.execute(
            select(ReturnRecord).where(
                ReturnRecord.id == return_id, ReturnRecord.tenant_id == tenant_id
            )
        ).scalar_one_or_none()
        return ReturnRecordInfo.from_model(record) if record is not None else None

    def list(
        self,
        tenant_id: UUID,
        *,
        status: ReturnStatus | None = None,
        delivery_note_id: UUID | None = None,
        client_id: UUID | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[ReturnRecordInfo]:
        stmt = select(ReturnRecord).where(ReturnRecord.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(ReturnRecord.status == ReturnStatus(status))
        if delivery_note_id is not None:
            stmt = stmt.where(ReturnRecord.delivery_note_id == delivery_note_id)
        if client_id is not None:
            stmt = stmt.where(ReturnRecord.client_id == client_id)
        stmt = stmt.order_by(ReturnRecord.return_number.desc())
        rows, total, limit, offset = self.paginate(stmt, limit, offset)
        return Page(
            items=tuple(ReturnRecordInfo.from_model(r) for r in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

"""
Tagged unions for "where did this come from" and "where does material go".

An inspection or a rework job originates from exactly one of a production
job or a delivery note.  The union makes the other case unrepresentable in
the domain; the schema mirrors it with two nullable columns and a CHECK
constraint.  Material issues target exactly one of a job, a rework job or
a subcontract work order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union
from uuid import UUID

from production_kernel.domain.statuses import ReferenceType, SourceKind
from production_kernel.exceptions import InvalidSourceError


@dataclass(frozen=True)
class ProductionSource:
    job_id: UUID

    kind = SourceKind.PRODUCTION_JOB


@dataclass(frozen=True)
class DeliveryNoteSource:
    delivery_note_id: UUID

    kind = SourceKind.DELIVERY_NOTE


Source = Union[ProductionSource, DeliveryNoteSource]


def source_from_ids(
    production_job_id: UUID | None,
    delivery_note_id: UUID | None,
) -> Source:
    """Build the union from two optional ids.

    Raises:
        InvalidSourceError: Both or neither id supplied.
    """
    if production_job_id is not None and delivery_note_id is not None:
        raise InvalidSourceError("production job and delivery note are mutually exclusive")
    if production_job_id is not None:
        return ProductionSource(production_job_id)
    if delivery_note_id is not None:
        return DeliveryNoteSource(delivery_note_id)
    raise InvalidSourceError("one of production job or delivery note is required")


def source_columns(source: Source) -> dict[str, UUID | None]:
    """Flatten a source into the two persisted columns."""
    if isinstance(source, ProductionSource):
        return {"production_job_id": source.job_id, "delivery_note_id": None}
    return {"production_job_id": None, "delivery_note_id": source.delivery_note_id}


@dataclass(frozen=True)
class JobTarget:
    job_id: UUID

    reference_type = ReferenceType.JOB_ISSUE

    @property
    def reference_id(self) -> UUID:
        return self.job_id


@dataclass(frozen=True)
class ReworkTarget:
    rework_job_id: UUID

    reference_type = ReferenceType.REWORK_ISSUE

    @property
    def reference_id(self) -> UUID:
        return self.rework_job_id


@dataclass(frozen=True)
class SubcontractTarget:
    work_order_id: UUID

    reference_type = ReferenceType.SUBCONTRACT_ISSUE

    @property
    def reference_id(self) -> UUID:
        return self.work_order_id


MaterialTarget = Union[JobTarget, ReworkTarget, SubcontractTarget]


def target_from_ids(
    production_job_id: UUID | None = None,
    rework_job_id: UUID | None = None,
    subcontract_wo_id: UUID | None = None,
) -> MaterialTarget:
    """Build a material target from three optional ids; exactly one must be set."""
    given = [
        target
        for target in (
            JobTarget(production_job_id) if production_job_id is not None else None,
            ReworkTarget(rework_job_id) if rework_job_id is not None else None,
            SubcontractTarget(subcontract_wo_id) if subcontract_wo_id is not None else None,
        )
        if target is not None
    ]
    if len(given) != 1:
        raise InvalidSourceError(
            "exactly one of production job, rework job or subcontract work order is required"
        )
    return given[0]

"""
StageCatalog -- per-tenant ordered list of production stages.

Responsibility:
    Answers the three questions the job state machine and the quality gate
    ask of a tenant's configuration: which stage comes first, which stage
    follows a given one, and whether a stage is inspected.

Architecture position:
    Kernel > Domain -- pure value object.  Built by StageCatalogService
    from the tenant_workflows table.

Invariants enforced:
    - Stage names are unique within a catalog and the catalog is non-empty.
    - The catalog is an order, not a graph: the successor of stage i is
      stage i + 1 and the last stage has none.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from production_kernel.exceptions import (
    StageCatalogNotConfiguredError,
    UnknownStageError,
    ValidationError,
)


@dataclass(frozen=True)
class StageCatalog:
    tenant_id: UUID
    tenant_code: str
    stages: tuple[str, ...]
    non_inspected_stages: frozenset[str] = field(default_factory=frozenset)
    auto_resume_after_rework: bool = False

    def __post_init__(self) -> None:
        if not self.stages:
            raise StageCatalogNotConfiguredError(str(self.tenant_id))
        if len(set(self.stages)) != len(self.stages):
            raise ValidationError(
                f"Duplicate stage names in catalog for tenant {self.tenant_id}", field="stages"
            )
        unknown = set(self.non_inspected_stages) - set(self.stages)
        if unknown:
            raise ValidationError(
                f"Non-inspected stages not in catalog: {sorted(unknown)}",
                field="non_inspected_stages",
            )

    @property
    def first(self) -> str:
        return self.stages[0]

    @property
    def last(self) -> str:
        return self.stages[-1]

    def __contains__(self, stage: object) -> bool:
        return stage in self.stages

    def require(self, stage: str) -> str:
        """Return ``stage`` if it belongs to the catalog, else raise UnknownStageError."""
        if stage not in self.stages:
            raise UnknownStageError(stage, str(self.tenant_id))
        return stage

    def index_of(self, stage: str) -> int:
        return self.stages.index(self.require(stage))

    def successor(self, stage: str) -> str | None:
        """The next stage, or None when ``stage`` is the last one."""
        idx = self.index_of(stage)
        if idx + 1 < len(self.stages):
            return self.stages[idx + 1]
        return None

    def is_last(self, stage: str) -> bool:
        return self.index_of(stage) == len(self.stages) - 1

    def requires_inspection(self, stage: str) -> bool:
        self.require(stage)
        return stage not in self.non_inspected_stages

"""
StageCatalogService -- tenant stage catalog lookup and configuration sync.

Responsibility:
    Builds the immutable StageCatalog for a tenant from the
    tenant_workflows table, and writes workflow definitions loaded from
    configuration into that table.

Architecture position:
    Kernel > Services.  Read by JobService and QualityGate; written by
    the configuration bootstrap (production_config) and tests.

Failure modes:
    - StageCatalogNotConfiguredError when a tenant has no workflow row or
      the row lists no stages.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from production_kernel.domain.stage_catalog import StageCatalog
from production_kernel.exceptions import StageCatalogNotConfiguredError, ValidationError
from production_kernel.logging_config import get_logger
from production_kernel.models.audit_event import AuditAction
from production_kernel.models.reference import TenantWorkflow
from production_kernel.services.auditor_service import AuditorService

logger = get_logger("services.stage_catalog")

SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")


class StageCatalogService:
    """Tenant stage catalog lookup.  Flush-only."""

    def __init__(self, session: Session, auditor: AuditorService | None = None):
        self._session = session
        self._auditor = auditor

    def _workflow_row(self, tenant_id: UUID) -> TenantWorkflow | None:
        return self._session.execute(
            select(TenantWorkflow).where(TenantWorkflow.tenant_id == tenant_id)
        ).scalar_one_or_none()

    def get_catalog(self, tenant_id: UUID) -> StageCatalog:
        row = self._workflow_row(tenant_id)
        if row is None or not row.stages:
            raise StageCatalogNotConfiguredError(str(tenant_id))
        return StageCatalog(
            tenant_id=tenant_id,
            tenant_code=row.tenant_code,
            stages=tuple(row.stages),
            non_inspected_stages=frozenset(row.non_inspected_stages or ()),
            auto_resume_after_rework=row.auto_resume_after_rework,
        )

    def apply_workflow(
        self,
        *,
        tenant_id: UUID,
        tenant_code: str,
        stages: Sequence[str],
        non_inspected_stages: Sequence[str] = (),
        auto_resume_after_rework: bool = False,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> StageCatalog:
        """Create or replace a tenant's workflow definition.

        Existing job cards keep their current stage name; a stage removed
        from the catalog makes those jobs fail validation on their next
        transition, which is the operator's cue to migrate them.
        """
        if not tenant_code or not tenant_code.strip():
            raise ValidationError("tenant_code is required", field="tenant_code")
        catalog = StageCatalog(
            tenant_id=tenant_id,
            tenant_code=tenant_code.strip().upper(),
            stages=tuple(stages),
            non_inspected_stages=frozenset(non_inspected_stages),
            auto_resume_after_rework=auto_resume_after_rework,
        )

        row = self._workflow_row(tenant_id)
        if row is None:
            row = TenantWorkflow(tenant_id=tenant_id, created_by_id=actor_id)
            self._session.add(row)
        else:
            row.updated_by_id = actor_id
        row.tenant_code = catalog.tenant_code
        row.stages = list(catalog.stages)
        row.non_inspected_stages = sorted(catalog.non_inspected_stages)
        row.auto_resume_after_rework = catalog.auto_resume_after_rework
        self._session.flush()

        if self._auditor is not None:
            self._auditor.record(
                tenant_id=tenant_id,
                entity_type="TenantWorkflow",
                entity_id=row.id,
                action=AuditAction.WORKFLOW_CONFIGURED,
                actor_id=actor_id,
                payload={
                    "stages": list(catalog.stages),
                    "non_inspected_stages": sorted(catalog.non_inspected_stages),
                    "auto_resume_after_rework": catalog.auto_resume_after_rework,
                },
            )

        logger.info(
            "workflow_applied",
            extra={
                "tenant_id": str(tenant_id),
                "tenant_code": catalog.tenant_code,
                "stage_count": len(catalog.stages),
            },
        )
        return catalog

"""Domain models for the production kernel."""

from production_kernel.models.audit_event import AuditAction, AuditEvent
from production_kernel.models.inventory import (
    InventoryItem,
    MaterialIssue,
    StockTransaction,
    WastageRecord,
)
from production_kernel.models.job_card import JobCard, LabourLogEntry, ProductionStageLog
from production_kernel.models.quality import QCRecord, ReworkJob
from production_kernel.models.reference import (
    DeliveryNote,
    DeliveryNoteLine,
    Project,
    SubGroup,
    TenantWorkflow,
)
from production_kernel.models.returns import ReturnRecord

__all__ = [
    "AuditAction",
    "AuditEvent",
    "DeliveryNote",
    "DeliveryNoteLine",
    "InventoryItem",
    "JobCard",
    "LabourLogEntry",
    "MaterialIssue",
    "ProductionStageLog",
    "Project",
    "QCRecord",
    "ReturnRecord",
    "ReworkJob",
    "StockTransaction",
    "SubGroup",
    "TenantWorkflow",
    "WastageRecord",
    "import_all_models",
]


def import_all_models() -> None:
    """Ensure every mapped table, including service-owned ones, is in Base.metadata."""
    import production_kernel.services.sequence_service  # noqa: F401

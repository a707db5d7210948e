"""Kernel services: flush-only domain services and the ProductionEngine facade."""

from production_kernel.services.auditor_service import AuditorService
from production_kernel.services.job_service import JobService
from production_kernel.services.keyed_lock import KeyedLockRegistry
from production_kernel.services.ledger_service import LedgerService
from production_kernel.services.production_engine import ProductionEngine
from production_kernel.services.quality_gate import QualityGate
from production_kernel.services.return_service import ReturnInspector
from production_kernel.services.rework_service import ReworkOrchestrator
from production_kernel.services.sequence_service import SequenceService
from production_kernel.services.stage_catalog_service import StageCatalogService

__all__ = [
    "AuditorService",
    "JobService",
    "KeyedLockRegistry",
    "LedgerService",
    "ProductionEngine",
    "QualityGate",
    "ReturnInspector",
    "ReworkOrchestrator",
    "SequenceService",
    "StageCatalogService",
]

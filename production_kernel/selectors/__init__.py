"""Read-only query selectors."""

from production_kernel.selectors.base import BaseSelector, Page
from production_kernel.selectors.job_selector import JobSelector
from production_kernel.selectors.ledger_selector import LedgerSelector
from production_kernel.selectors.quality_selector import QualitySelector
from production_kernel.selectors.return_selector import ReturnSelector

__all__ = [
    "BaseSelector",
    "JobSelector",
    "LedgerSelector",
    "Page",
    "QualitySelector",
    "ReturnSelector",
]

"""
Engine configuration schema.

The human-authored YAML file is parsed into these frozen dataclasses by
``production_config.loader``.  Nothing here touches the database; the
bootstrap in ``production_config`` turns tenant definitions into
``tenant_workflows`` rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class EngineSettings:
    """Process-wide engine settings."""

    database_url: str = "sqlite:///./production.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    busy_timeout_seconds: float = 30.0
    lock_timeout_seconds: float = 10.0
    log_level: str = "INFO"


@dataclass(frozen=True)
class TenantWorkflowDef:
    """One tenant's production workflow: the ordered stage catalog."""

    tenant_id: UUID
    tenant_code: str
    stages: tuple[str, ...]
    non_inspected_stages: tuple[str, ...] = ()
    auto_resume_after_rework: bool = False


@dataclass(frozen=True)
class EngineConfig:
    """A parsed configuration file."""

    settings: EngineSettings
    tenants: tuple[TenantWorkflowDef, ...] = field(default_factory=tuple)
    checksum: str = ""
    source_path: str | None = None

    def tenant(self, tenant_id: UUID) -> TenantWorkflowDef | None:
        for t in self.tenants:
            if t.tenant_id == tenant_id:
                return t
        return None

"""
production_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  It reads the YAML file named by
    ``PRODUCTION_ENGINE_CONFIG`` (or the packaged default), applies the
    ``PRODUCTION_ENGINE_DATABASE_URL`` override, and returns a frozen
    ``EngineConfig``.  ``bootstrap_engine()`` turns a config into a ready
    ProductionEngine: database initialized, tables created, tenant
    workflows synced into ``tenant_workflows``.

Architecture position:
    Configuration -- sits above ``production_kernel`` and below
    ``production_api``.  The kernel never imports from this package.

Failure modes:
    - ``FileNotFoundError`` -- the configured file does not exist.
    - ``ValueError`` -- schema or structural validation failures.

Audit relevance:
    Every ``get_active_config()`` call logs ``production_config_loaded``
    with the file checksum, tying engine behavior to a config version.
"""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path

from production_config.loader import load_engine_config
from production_config.schema import EngineConfig, EngineSettings, TenantWorkflowDef
from production_kernel.domain.clock import Clock
from production_kernel.logging_config import configure_logging, get_logger

__all__ = [
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "EngineConfig",
    "EngineSettings",
    "TenantWorkflowDef",
    "apply_tenant_workflows",
    "bootstrap_engine",
    "get_active_config",
]

CONFIG_ENV_VAR = "PRODUCTION_ENGINE_CONFIG"
DATABASE_URL_ENV_VAR = "PRODUCTION_ENGINE_DATABASE_URL"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "engine.yaml"

logger = get_logger("config")


def get_active_config(config_path: Path | str | None = None) -> EngineConfig:
    """The public configuration entrypoint.

    Resolution order for the file: explicit ``config_path``, then
    ``PRODUCTION_ENGINE_CONFIG``, then the packaged default.
    ``PRODUCTION_ENGINE_DATABASE_URL`` overrides ``engine.database_url``.
    """
    path = Path(config_path or os.environ.get(CONFIG_ENV_VAR) or _DEFAULT_CONFIG_PATH)
    config = load_engine_config(path)

    url_override = os.environ.get(DATABASE_URL_ENV_VAR)
    if url_override:
        config = dataclasses.replace(
            config,
            settings=dataclasses.replace(config.settings, database_url=url_override),
        )

    logger.info(
        "production_config_loaded",
        extra={
            "config_path": str(path),
            "checksum": config.checksum,
            "tenant_count": len(config.tenants),
            "dialect": config.settings.database_url.split(":", 1)[0],
        },
    )
    return config


def apply_tenant_workflows(config: EngineConfig, session_factory=None) -> int:
    """Create or replace the ``tenant_workflows`` row of every configured tenant."""
    from production_kernel.db.engine import session_scope
    from production_kernel.services.auditor_service import AuditorService
    from production_kernel.services.stage_catalog_service import StageCatalogService

    with session_scope(session_factory) as session:
        catalogs = StageCatalogService(session, AuditorService(session))
        for tenant in config.tenants:
            catalogs.apply_workflow(
                tenant_id=tenant.tenant_id,
                tenant_code=tenant.tenant_code,
                stages=tenant.stages,
                non_inspected_stages=tenant.non_inspected_stages,
                auto_resume_after_rework=tenant.auto_resume_after_rework,
            )
    return len(config.tenants)


def bootstrap_engine(config: EngineConfig | None = None, *, clock: Clock | None = None):
    """Initialize the database from ``config`` and return a ProductionEngine."""
    from production_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
    from production_kernel.services.production_engine import ProductionEngine

    config = config or get_active_config()
    settings = config.settings
    configure_logging(level=settings.log_level)
    init_engine_from_url(
        settings.database_url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        busy_timeout_seconds=settings.busy_timeout_seconds,
    )
    create_tables()
    factory = get_session_factory()
    apply_tenant_workflows(config, factory)
    return ProductionEngine(
        factory,
        clock=clock,
        lock_timeout_seconds=settings.lock_timeout_seconds,
    )

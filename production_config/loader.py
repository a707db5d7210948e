"""
Configuration loader (``production_config.loader``).

Responsibility
--------------
Loads the engine YAML file and parses it into the frozen dataclasses of
``production_config.schema``.  Runtime callers use
``production_config.get_active_config()`` instead of calling this module.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with a message naming the offending
  key; required fields never get silent defaults.
* Stage names are unique per tenant, non-inspected stages are a subset of
  the stages, and tenant ids and codes are unique across the file.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from production_config.schema import EngineConfig, EngineSettings, TenantWorkflowDef


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_settings(data: dict[str, Any] | None) -> EngineSettings:
    data = data or {}
    defaults = EngineSettings()
    try:
        return EngineSettings(
            database_url=str(data.get("database_url", defaults.database_url)),
            echo=bool(data.get("echo", defaults.echo)),
            pool_size=int(data.get("pool_size", defaults.pool_size)),
            max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
            pool_timeout=int(data.get("pool_timeout", defaults.pool_timeout)),
            busy_timeout_seconds=float(
                data.get("busy_timeout_seconds", defaults.busy_timeout_seconds)
            ),
            lock_timeout_seconds=float(
                data.get("lock_timeout_seconds", defaults.lock_timeout_seconds)
            ),
            log_level=str(data.get("log_level", defaults.log_level)).upper(),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"engine settings: {exc}") from exc


def parse_tenant(data: dict[str, Any]) -> TenantWorkflowDef:
    """
    Parse one tenant workflow.

    Raises:
        ValueError: missing tenant_id / tenant_code / stages, duplicate
            stages, or non-inspected stages outside the stage list.
    """
    for key in ("tenant_id", "tenant_code", "stages"):
        if not data.get(key):
            raise ValueError(f"tenant workflow is missing required key '{key}'")
    try:
        tenant_id = UUID(str(data["tenant_id"]))
    except ValueError as exc:
        raise ValueError(f"tenant_id {data['tenant_id']!r} is not a UUID") from exc

    stages = tuple(str(s).strip() for s in data["stages"])
    if any(not s for s in stages):
        raise ValueError(f"tenant {data['tenant_code']}: blank stage name")
    if len(set(stages)) != len(stages):
        raise ValueError(f"tenant {data['tenant_code']}: duplicate stage names")
    non_inspected = tuple(str(s).strip() for s in data.get("non_inspected_stages", ()) or ())
    unknown = sorted(set(non_inspected) - set(stages))
    if unknown:
        raise ValueError(
            f"tenant {data['tenant_code']}: non_inspected_stages not in stages: {unknown}"
        )

    return TenantWorkflowDef(
        tenant_id=tenant_id,
        tenant_code=str(data["tenant_code"]).strip().upper(),
        stages=stages,
        non_inspected_stages=non_inspected,
        auto_resume_after_rework=bool(data.get("auto_resume_after_rework", False)),
    )


def parse_config(data: dict[str, Any], source_path: str | None = None) -> EngineConfig:
    tenants = tuple(parse_tenant(t) for t in data.get("tenants", ()) or ())
    ids = [t.tenant_id for t in tenants]
    if len(set(ids)) != len(ids):
        raise ValueError("duplicate tenant_id in tenants")
    codes = [t.tenant_code for t in tenants]
    if len(set(codes)) != len(codes):
        raise ValueError("duplicate tenant_code in tenants")
    return EngineConfig(
        settings=parse_settings(data.get("engine")),
        tenants=tenants,
        checksum=compute_checksum(data),
        source_path=source_path,
    )


def load_engine_config(path: Path) -> EngineConfig:
    return parse_config(load_yaml_file(path), source_path=str(path))

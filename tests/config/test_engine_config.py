"""
Engine configuration tests: YAML parsing, environment overrides, and the
bootstrap that syncs tenant workflows into the database.
"""

from textwrap import dedent
from uuid import UUID

import pytest
import yaml

from production_config import (
    CONFIG_ENV_VAR,
    DATABASE_URL_ENV_VAR,
    bootstrap_engine,
    get_active_config,
)
from production_config.loader import compute_checksum, parse_config
from production_kernel.db.engine import reset_engine
from production_kernel.domain.values import ActorContext

TENANT = "00000000-0000-0000-0000-00000000c003"


def _write(tmp_path, body: str):
    path = tmp_path / "engine.yaml"
    path.write_text(dedent(body))
    return path


@pytest.fixture
def config_file(tmp_path):
    return _write(
        tmp_path,
        f"""
        engine:
          database_url: sqlite:///{tmp_path / 'configured.db'}
          lock_timeout_seconds: 5
          log_level: debug
        tenants:
          - tenant_id: "{TENANT}"
            tenant_code: acme
            stages: [SAW, SAND, PAINT, PACK]
            non_inspected_stages: [SAW, PACK]
            auto_resume_after_rework: true
        """,
    )


class TestParsing:
    def test_file_parses_into_frozen_config(self, config_file):
        config = get_active_config(config_file)

        assert config.settings.lock_timeout_seconds == 5.0
        assert config.settings.log_level == "DEBUG"
        tenant = config.tenant(UUID(TENANT))
        assert tenant.tenant_code == "ACME"
        assert tenant.stages == ("SAW", "SAND", "PAINT", "PACK")
        assert tenant.non_inspected_stages == ("SAW", "PACK")
        assert tenant.auto_resume_after_rework is True
        assert len(config.checksum) == 64

    def test_packaged_default_loads(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.delenv(DATABASE_URL_ENV_VAR, raising=False)
        config = get_active_config()
        assert config.tenants[0].stages == ("CUTTING", "ASSEMBLY", "QC")

    def test_env_selects_file_and_overrides_url(self, monkeypatch, config_file):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(config_file))
        monkeypatch.setenv(DATABASE_URL_ENV_VAR, "postgresql://prod@db/production")

        config = get_active_config()

        assert config.tenants[0].tenant_code == "ACME"
        assert config.settings.database_url == "postgresql://prod@db/production"

    def test_checksum_is_deterministic(self):
        data = {"tenants": [], "engine": {"echo": False}}
        assert compute_checksum(data) == compute_checksum(dict(reversed(list(data.items()))))

    @pytest.mark.parametrize(
        "tenant, message",
        [
            ({"tenant_code": "X", "stages": ["A"]}, "tenant_id"),
            ({"tenant_id": TENANT, "tenant_code": "X", "stages": []}, "stages"),
            ({"tenant_id": "not-a-uuid", "tenant_code": "X", "stages": ["A"]}, "UUID"),
            ({"tenant_id": TENANT, "tenant_code": "X", "stages": ["A", "A"]}, "duplicate"),
            (
                {
                    "tenant_id": TENANT,
                    "tenant_code": "X",
                    "stages": ["A"],
                    "non_inspected_stages": ["B"],
                },
                "non_inspected_stages",
            ),
        ],
    )
    def test_invalid_tenant_rejected(self, tenant, message):
        with pytest.raises(ValueError, match=message):
            parse_config({"tenants": [tenant]})

    def test_duplicate_tenants_rejected(self):
        tenant = {"tenant_id": TENANT, "tenant_code": "X", "stages": ["A"]}
        with pytest.raises(ValueError, match="duplicate tenant_id"):
            parse_config({"tenants": [tenant, tenant]})

    def test_bad_setting_type_rejected(self):
        with pytest.raises(ValueError, match="engine settings"):
            parse_config({"engine": {"pool_size": "many"}})

    def test_non_mapping_file_rejected(self, tmp_path):
        path = _write(tmp_path, "- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            get_active_config(path)

    def test_malformed_yaml_propagates(self, tmp_path):
        path = _write(tmp_path, "engine: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            get_active_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestBootstrap:
    @pytest.fixture
    def bootstrapped(self, config_file, monkeypatch):
        monkeypatch.delenv(DATABASE_URL_ENV_VAR, raising=False)
        engine = bootstrap_engine(get_active_config(config_file))
        yield engine
        reset_engine()

    def test_tenant_workflows_are_synced(self, bootstrapped):
        catalog = bootstrapped.get_catalog(UUID(TENANT))

        assert catalog.tenant_code == "ACME"
        assert catalog.stages == ("SAW", "SAND", "PAINT", "PACK")
        assert not catalog.requires_inspection("SAW")
        assert catalog.requires_inspection("PAINT")
        assert catalog.auto_resume_after_rework

    def test_bootstrap_is_repeatable(self, bootstrapped, config_file):
        again = bootstrap_engine(get_active_config(config_file))
        assert again.get_catalog(UUID(TENANT)).stages == ("SAW", "SAND", "PAINT", "PACK")

    def test_engine_is_usable(self, bootstrapped):
        actor = ActorContext(tenant_id=UUID(TENANT), actor_id=UUID(int=7))
        item = bootstrapped.create_item(actor, item_code="MDF-12", name="MDF 12mm")
        assert bootstrapped.get_item(UUID(TENANT), item.id).item_code == "MDF-12"

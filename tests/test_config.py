"""Tests for YAML configuration loading and environment overrides."""

from datetime import timedelta

import pytest
import yaml

from fulfillment_kernel.config import (
    AuditConfig,
    FulfillmentConfig,
    IdempotencyConfig,
    LedgerConfig,
    apply_env_overrides,
    load_config,
    parse_config,
)


class TestDefaults:
    def test_defaults_without_file(self):
        config = load_config(environ={})

        assert config == FulfillmentConfig()
        assert config.idempotency.ttl == timedelta(hours=24)
        assert config.idempotency.duplicate_retry_attempts == 3
        assert config.ledger.max_cas_retries == 5
        assert config.audit.default_page_size == 20
        assert config.audit.max_page_size == 50
        assert config.log_level == "INFO"


class TestYamlLoading:
    def test_load_from_path(self, tmp_path):
        path = tmp_path / "fulfillment.yaml"
        path.write_text(yaml.safe_dump({
            "database": {"url": "postgresql://shop@localhost/shop", "pool_size": 5},
            "idempotency": {"ttl_hours": 2},
            "ledger": {"max_cas_retries": 9},
            "log_level": "debug",
        }))

        config = load_config(path, environ={})

        assert config.database.url == "postgresql://shop@localhost/shop"
        assert config.database.pool_size == 5
        assert config.idempotency.ttl == timedelta(hours=2)
        assert config.ledger.max_cas_retries == 9
        assert config.log_level == "DEBUG"
        assert config.audit == AuditConfig()

    def test_path_from_environment(self, tmp_path):
        path = tmp_path / "env.yaml"
        path.write_text("ledger:\n  max_cas_retries: 2\n")

        config = load_config(environ={"FULFILLMENT_CONFIG": str(path)})

        assert config.ledger.max_cas_retries == 2

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path, environ={}) == FulfillmentConfig()

    def test_missing_explicit_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", environ={})

    def test_non_mapping_document_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_config(path, environ={})

    def test_unknown_section_rejected(self):
        with pytest.raises(ValueError, match="Unknown configuration sections"):
            parse_config({"shipping": {}})

    def test_unknown_key_rejected(self):
        with pytest.raises(TypeError):
            parse_config({"ledger": {"retries": 3}})


class TestEnvironmentOverrides:
    def test_overrides_applied(self):
        config = apply_env_overrides(
            FulfillmentConfig(),
            {
                "FULFILLMENT_DATABASE_URL": "sqlite:///other.db",
                "FULFILLMENT_IDEMPOTENCY_TTL_HOURS": "0.5",
                "FULFILLMENT_LOG_LEVEL": "warning",
            },
        )

        assert config.database.url == "sqlite:///other.db"
        assert config.idempotency.ttl == timedelta(minutes=30)
        assert config.log_level == "WARNING"

    def test_env_beats_file(self, tmp_path):
        path = tmp_path / "fulfillment.yaml"
        path.write_text("database:\n  url: sqlite:///file.db\n")

        config = load_config(path, environ={"FULFILLMENT_DATABASE_URL": "sqlite:///env.db"})

        assert config.database.url == "sqlite:///env.db"


class TestValidation:
    @pytest.mark.parametrize(
        "factory",
        [
            lambda: IdempotencyConfig(ttl_hours=0),
            lambda: IdempotencyConfig(duplicate_retry_attempts=-1),
            lambda: IdempotencyConfig(duplicate_retry_delay_seconds=-0.1),
            lambda: LedgerConfig(max_cas_retries=0),
            lambda: AuditConfig(max_page_size=0),
            lambda: AuditConfig(default_page_size=60, max_page_size=50),
        ],
    )
    def test_out_of_range_values_rejected(self, factory):
        with pytest.raises(ValueError):
            factory()

    def test_negative_ttl_from_environment_rejected(self):
        with pytest.raises(ValueError):
            apply_env_overrides(FulfillmentConfig(), {"FULFILLMENT_IDEMPOTENCY_TTL_HOURS": "-1"})

"""
Tests for configuration loading, overlaying and validation.
"""

import pytest
import yaml

from config import (
    DatabaseConfig, PQSFuzzConfig,
    build_config, create_default_config, load_config, validate_config,
)
from core.errors import ConfigError


class TestLoadConfig:
    """Tests for load_config."""

    def test_loads_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("database:\n  dsn: host=db\nrandom_seed: 42\n")

        assert load_config(str(path)) == {"database": {"dsn": "host=db"}, "random_seed": 42}

    def test_empty_file_is_empty_mapping(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("database: [unclosed\n")
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_config(str(path))

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(str(path))


class TestBuildConfig:
    """Tests for build_config."""

    def test_defaults(self):
        config = build_config({})
        assert config.database.port == 5433
        assert config.database.schema_name == "pqsfuzz"
        assert config.pivot.max_depth == 6
        assert config.pivot.online_ddl is True
        assert config.fuzzing.max_iterations is None
        assert config.random_seed is not None

    def test_overlay(self):
        config = build_config({
            "pivot": {"use_prepared_statements": True, "max_depth": 3},
            "fuzzing": {"continue_on_infrastructure_fault": True},
            "random_seed": 99,
            "debug": True,
        })
        assert config.pivot.use_prepared_statements is True
        assert config.pivot.max_depth == 3
        assert config.fuzzing.continue_on_infrastructure_fault is True
        assert config.random_seed == 99
        assert config.debug is True

    def test_unknown_keys_are_ignored(self, caplog):
        config = build_config({"pivot": {"oracle": "tlp"}, "extra": 1})
        assert config.pivot.max_depth == 6
        assert "pivot.oracle" in caplog.text
        assert "'extra'" in caplog.text

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigError, match="database"):
            build_config({"database": "host=db"})


class TestValidation:
    """Tests for the per-section validators."""

    def test_default_config_is_valid(self):
        assert PQSFuzzConfig().validate() == []
        assert validate_config(PQSFuzzConfig())

    def test_collects_errors_from_every_section(self):
        config = build_config({
            "database": {"port": 0},
            "pivot": {"max_depth": 0},
            "fuzzing": {"max_iterations": 0},
            "logging": {"log_level": "LOUD"},
        })
        errors = config.validate()
        assert "Invalid database port" in errors
        assert "Max expression depth must be positive" in errors
        assert "Max iterations must be positive" in errors
        assert any(e.startswith("Log level must be one of") for e in errors)
        assert not validate_config(config)

    def test_dsn_skips_part_checks(self):
        assert DatabaseConfig(dsn="host=db", host="", port=0).validate() == []


class TestDsn:

    def test_explicit_dsn_wins(self):
        assert DatabaseConfig(dsn="host=db port=5432").to_dsn() == "host=db port=5432"

    def test_built_from_parts(self):
        dsn = DatabaseConfig(host="yb", port=5433, dbname="yugabyte", user="yugabyte", password="s3cret").to_dsn()
        for part in ("host=yb", "port=5433", "dbname=yugabyte", "user=yugabyte", "password=s3cret"):
            assert part in dsn


class TestDefaultConfigFile:

    def test_written_file_loads_back(self, tmp_path):
        path = tmp_path / "config.yaml"

        create_default_config(str(path))

        data = yaml.safe_load(path.read_text())
        assert data["random_seed"] is None
        config = build_config(load_config(str(path)))
        assert config.validate() == []
        assert config.database.schema_name == "pqsfuzz"

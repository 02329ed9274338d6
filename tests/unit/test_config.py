"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from flowweave.config import EngineConfig, load_config


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
engine:
  max_parallelism: 8
  default_timeout_ms: 5000
  on_error: continue
  retry:
    retry_count: 2
    retry_delay_ms: 10
database_url: sqlite:///tmp/flowweave.db
"""
    )
    monkeypatch.setenv("FLOWWEAVE_CONFIG", str(config_path))

    config = load_config()
    assert config.engine.max_parallelism == 8
    assert config.engine.default_timeout_ms == 5000
    assert config.engine.on_error == "continue"
    assert config.engine.retry.retry_count == 2
    assert config.engine.retry.retry_delay_ms == 10
    assert config.database_url == "sqlite:///tmp/flowweave.db"


def test_defaults_without_file(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))

    assert config.engine.max_parallelism == 4
    assert config.engine.default_timeout_ms == 30000
    assert config.engine.on_error == "stop"
    assert config.database_url is None


def test_database_url_env_override(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("FLOWWEAVE_DATABASE_URL", "sqlite:///from-env.db")

    config = load_config(str(config_path))
    assert config.database_url == "sqlite:///from-env.db"


def test_invalid_engine_settings():
    with pytest.raises(ValidationError):
        EngineConfig(max_parallelism=0)
    with pytest.raises(ValidationError):
        EngineConfig(on_error="ignore")


def test_generic_database_url_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/flows")

    config = load_config(str(tmp_path / "absent.yaml"))
    assert config.database_url == "postgresql://db/flows"

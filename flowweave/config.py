from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

ErrorMode = Literal["stop", "continue", "retry"]

CONFIG_ENV = "FLOWWEAVE_CONFIG"
DATABASE_URL_ENV = ("FLOWWEAVE_DATABASE_URL", "DATABASE_URL")


class RetryConfig(BaseModel):
    """Default retry policy applied to nodes without their own settings."""

    retry_count: int = Field(default=0, ge=0)
    retry_delay_ms: float = Field(default=1000, ge=0)
    backoff: float = Field(default=1.0, ge=1.0)
    jitter_ms: float = Field(default=0, ge=0)


class EngineConfig(BaseModel):
    """Scheduler settings."""

    max_parallelism: int = Field(default=4, ge=1)
    default_timeout_ms: Optional[float] = 30000
    on_error: ErrorMode = "stop"
    retry_mode_attempts: int = Field(default=3, ge=0)
    retry: RetryConfig = RetryConfig()


class FlowweaveConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> FlowweaveConfig:
    """Build the configuration.

    Settings come from the YAML file at ``path``, else the one named by
    ``FLOWWEAVE_CONFIG``, else ``config.yaml`` in the working directory; a
    missing file yields the defaults. ``FLOWWEAVE_DATABASE_URL`` (or
    ``DATABASE_URL``) replaces ``database_url``.
    """
    config = FlowweaveConfig.model_validate(
        _read_yaml(path or os.getenv(CONFIG_ENV, "config.yaml"))
    )
    for name in DATABASE_URL_ENV:
        if os.getenv(name):
            return config.model_copy(update={"database_url": os.environ[name]})
    return config


def _read_yaml(config_path: str) -> dict:
    if not os.path.exists(config_path):
        return {}
    with open(config_path) as f:
        return yaml.safe_load(f) or {}

import pytest

from flowweave.config import EngineConfig, FlowweaveConfig, RetryConfig
from flowweave.nodes import register_builtin_nodes
from flowweave.registry import NodeRegistry


@pytest.fixture
def registry() -> NodeRegistry:
    """Fresh registry with the built-in node types."""
    return register_builtin_nodes(NodeRegistry())


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        max_parallelism=4,
        default_timeout_ms=2000,
        retry=RetryConfig(retry_delay_ms=0),
    )


@pytest.fixture
def config(engine_config) -> FlowweaveConfig:
    return FlowweaveConfig(engine=engine_config)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep tests independent of a config.yaml or database URL on the host."""
    monkeypatch.setenv("FLOWWEAVE_CONFIG", str(tmp_path / "missing-config.yaml"))
    monkeypatch.delenv("FLOWWEAVE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

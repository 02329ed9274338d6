"""Persistence layer for execution records."""

from __future__ import annotations

from typing import Optional

from ..config import FlowweaveConfig, load_config
from .inmemory import InMemoryExecutionRepository
from .models import ExecutionStats
from .repository import ExecutionRepository
from .sqlite import SQLiteExecutionRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresExecutionRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresExecutionRepository = None  # type: ignore

_repository_instance: ExecutionRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[FlowweaveConfig] = None
) -> ExecutionRepository:
    """Return the execution repository for ``database_url``.

    Without an explicit URL the one from ``config`` is used (default:
    :func:`~flowweave.config.load_config`, which applies the
    ``FLOWWEAVE_DATABASE_URL``/``DATABASE_URL`` overrides). No URL at all
    selects an in-memory repository. The result becomes the process-wide
    default returned by later argument-less calls.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    if database_url is None:
        database_url = (config or load_config()).database_url
    _repository_instance = _open_repository(database_url)
    return _repository_instance


def _open_repository(database_url: Optional[str]) -> ExecutionRepository:
    if not database_url:
        return InMemoryExecutionRepository()

    scheme, _, location = database_url.partition("://")
    if scheme == "sqlite":
        return SQLiteExecutionRepository(location)
    if scheme in ("postgres", "postgresql"):
        if PostgresExecutionRepository is None:
            raise RuntimeError("Postgres support requires the asyncpg package")
        return PostgresExecutionRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "ExecutionRepository",
    "ExecutionStats",
    "InMemoryExecutionRepository",
    "PostgresExecutionRepository",
    "SQLiteExecutionRepository",
    "get_repository",
]

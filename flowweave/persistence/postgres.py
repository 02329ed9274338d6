"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from ..models import ExecutionRecord, ExecutionStatus
from .models import ExecutionStats
from .repository import ExecutionRepository

_COLUMNS = (
    "execution_id",
    "workflow_id",
    "user_id",
    "status",
    "trigger_type",
    "input_data",
    "output_data",
    "error_message",
    "logs",
    "node_states",
    "started_at",
    "finished_at",
    "duration",
)
_JSON_COLUMNS = {"input_data", "output_data", "logs", "node_states"}


class PostgresExecutionRepository(ExecutionRepository):
    """Persist execution records using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT,
                user_id TEXT,
                status TEXT NOT NULL,
                trigger_type TEXT,
                input_data JSONB,
                output_data JSONB,
                error_message TEXT,
                logs JSONB,
                node_states JSONB,
                started_at TIMESTAMPTZ,
                finished_at TIMESTAMPTZ,
                duration DOUBLE PRECISION
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_executions_workflow ON executions (workflow_id)"
        )

    @staticmethod
    def _to_params(record: ExecutionRecord) -> list[Any]:
        data = record.model_dump(mode="json")
        params = []
        for col in _COLUMNS:
            if col in ("started_at", "finished_at"):
                params.append(getattr(record, col))
            elif col in _JSON_COLUMNS:
                params.append(json.dumps(data[col]) if data[col] is not None else None)
            else:
                params.append(data[col])
        return params

    @staticmethod
    def _to_record(row: asyncpg.Record, with_logs: bool = True) -> ExecutionRecord:
        data = {col: row[col] for col in _COLUMNS}
        for col in _JSON_COLUMNS:
            if isinstance(data[col], str):
                data[col] = json.loads(data[col])
        data["logs"] = (data["logs"] or []) if with_logs else []
        data["node_states"] = data["node_states"] or {}
        return ExecutionRecord.model_validate(data)

    # ------------------------------------------------------------------
    async def create_execution(self, record: ExecutionRecord) -> None:
        placeholders = ", ".join(f"${i}" for i in range(1, len(_COLUMNS) + 1))
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO executions ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                *self._to_params(record),
            )
        finally:
            await conn.close()

    async def complete_execution(self, record: ExecutionRecord) -> None:
        placeholders = ", ".join(f"${i}" for i in range(1, len(_COLUMNS) + 1))
        updates = ", ".join(f"{col} = EXCLUDED.{col}" for col in _COLUMNS[1:])
        conn = await self._connect()
        try:
            await conn.execute(
                f"""
                INSERT INTO executions ({', '.join(_COLUMNS)}) VALUES ({placeholders})
                ON CONFLICT (execution_id) DO UPDATE SET {updates}
                """,
                *self._to_params(record),
            )
        finally:
            await conn.close()

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {', '.join(_COLUMNS)} FROM executions WHERE execution_id = $1",
                execution_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return self._to_record(row)

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> list[ExecutionRecord]:
        clauses, params = [], []
        if workflow_id is not None:
            params.append(workflow_id)
            clauses.append(f"workflow_id = ${len(params)}")
        if status is not None:
            params.append(ExecutionStatus(status).value)
            clauses.append(f"status = ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {', '.join(_COLUMNS)} FROM executions {where} "
                "ORDER BY started_at DESC NULLS LAST",
                *params,
            )
        finally:
            await conn.close()
        return [self._to_record(r, with_logs=False) for r in rows]

    async def get_stats(self, workflow_id: Optional[str] = None) -> ExecutionStats:
        conn = await self._connect()
        try:
            if workflow_id is None:
                rows = await conn.fetch("SELECT status FROM executions")
            else:
                rows = await conn.fetch(
                    "SELECT status FROM executions WHERE workflow_id = $1", workflow_id
                )
        finally:
            await conn.close()
        return ExecutionStats.from_statuses(r["status"] for r in rows)

"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, Optional

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


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist execution records using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT,
                user_id TEXT,
                status TEXT NOT NULL,
                trigger_type TEXT,
                input_data TEXT,
                output_data TEXT,
                error_message TEXT,
                logs TEXT,
                node_states TEXT,
                started_at TEXT,
                finished_at TEXT,
                duration REAL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_executions_workflow ON executions (workflow_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _to_params(record: ExecutionRecord) -> list[Any]:
        data = record.model_dump(mode="json")
        return [
            json.dumps(data[col]) if col in _JSON_COLUMNS and data[col] is not None else data[col]
            for col in _COLUMNS
        ]

    @staticmethod
    def _to_record(row: sqlite3.Row, with_logs: bool = True) -> ExecutionRecord:
        data = {col: row[col] for col in _COLUMNS}
        for col in _JSON_COLUMNS:
            data[col] = json.loads(data[col]) if data[col] else None
        data["logs"] = (data["logs"] or []) if with_logs else []
        data["node_states"] = data["node_states"] or {}
        return ExecutionRecord.model_validate(data)

    # ------------------------------------------------------------------
    # Repository API
    async def create_execution(self, record: ExecutionRecord) -> None:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO executions ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            *self._to_params(record),
        )

    async def complete_execution(self, record: ExecutionRecord) -> None:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        updates = ", ".join(f"{col} = excluded.{col}" for col in _COLUMNS[1:])
        await asyncio.to_thread(
            self._execute,
            f"""
            INSERT INTO executions ({', '.join(_COLUMNS)}) VALUES ({placeholders})
            ON CONFLICT(execution_id) DO UPDATE SET {updates}
            """,
            *self._to_params(record),
        )

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {', '.join(_COLUMNS)} FROM executions WHERE execution_id = ?",
            execution_id,
        )
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
            clauses.append("workflow_id = ?")
            params.append(workflow_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(ExecutionStatus(status).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {', '.join(_COLUMNS)} FROM executions {where} ORDER BY started_at DESC",
            *params,
        )
        return [self._to_record(r, with_logs=False) for r in rows]

    async def get_stats(self, workflow_id: Optional[str] = None) -> ExecutionStats:
        if workflow_id is None:
            rows = await asyncio.to_thread(self._fetchall, "SELECT status FROM executions")
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT status FROM executions WHERE workflow_id = ?",
                workflow_id,
            )
        return ExecutionStats.from_statuses(r["status"] for r in rows)

"""SQLite implementation of the execution ledger and flow store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from ..graph import FlowDefinition, StoredFlow
from .models import (
    ExecutionStatus,
    FlowExecution,
    NodeExecution,
    NodeStatus,
    TERMINAL_STATUSES,
    UserInput,
    allowed_sources,
    utcnow,
)
from .repository import ExecutionLedger, FlowRepository

_EXECUTION_COLUMNS = (
    "id, flow_id, subscriber_id, channel, account_id, conversation_id, event_id, "
    "status, started_at, updated_at, completed_at, error_message"
)
_NODE_COLUMNS = (
    "id, flow_execution_id, node_id, node_type, status, created_at, "
    "execution_time_ms, error_message"
)


def _ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteLedger(ExecutionLedger, FlowRepository):
    """Persist executions and flows using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._mutex = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS flows (
                flow_id TEXT PRIMARY KEY,
                channel TEXT NOT NULL,
                account_id TEXT,
                definition TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS flow_executions (
                id TEXT PRIMARY KEY,
                flow_id TEXT NOT NULL,
                subscriber_id TEXT NOT NULL,
                channel TEXT NOT NULL,
                account_id TEXT,
                conversation_id TEXT,
                event_id TEXT UNIQUE,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT,
                error_message TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS node_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                flow_execution_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                node_type TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                execution_time_ms INTEGER,
                error_message TEXT
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_node_executions_execution "
            "ON node_executions (flow_execution_id, id)"
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS flow_user_inputs (
                flow_execution_id TEXT NOT NULL,
                variable_name TEXT NOT NULL,
                input_node_id TEXT NOT NULL,
                value TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (flow_execution_id, variable_name)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> sqlite3.Cursor:
        with self._mutex:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._mutex:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._mutex:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _to_flow(row: sqlite3.Row) -> StoredFlow:
        return StoredFlow(
            flow_id=row["flow_id"],
            channel=row["channel"],
            account_id=row["account_id"],
            definition=FlowDefinition.model_validate(json.loads(row["definition"])),
            updated_at=_ts(row["updated_at"]),
        )

    @staticmethod
    def _to_execution(row: sqlite3.Row) -> FlowExecution:
        return FlowExecution(
            id=row["id"],
            flow_id=row["flow_id"],
            subscriber_id=row["subscriber_id"],
            channel=row["channel"],
            account_id=row["account_id"],
            conversation_id=row["conversation_id"],
            event_id=row["event_id"],
            status=row["status"],
            started_at=_ts(row["started_at"]),
            updated_at=_ts(row["updated_at"]),
            completed_at=_ts(row["completed_at"]),
            error_message=row["error_message"],
        )

    @staticmethod
    def _to_node_execution(row: sqlite3.Row) -> NodeExecution:
        return NodeExecution(
            id=row["id"],
            flow_execution_id=row["flow_execution_id"],
            node_id=row["node_id"],
            node_type=row["node_type"],
            status=row["status"],
            created_at=_ts(row["created_at"]),
            execution_time_ms=row["execution_time_ms"],
            error_message=row["error_message"],
        )

    @staticmethod
    def _to_user_input(row: sqlite3.Row) -> UserInput:
        return UserInput(
            flow_execution_id=row["flow_execution_id"],
            input_node_id=row["input_node_id"],
            variable_name=row["variable_name"],
            value=row["value"],
            created_at=_ts(row["created_at"]),
        )

    # ------------------------------------------------------------------
    # Flow store
    async def save_flow(self, flow: StoredFlow) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO flows (flow_id, channel, account_id, definition, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (flow_id) DO UPDATE SET
                channel = excluded.channel,
                account_id = excluded.account_id,
                definition = excluded.definition,
                updated_at = excluded.updated_at
            """,
            flow.flow_id,
            flow.channel,
            flow.account_id,
            flow.definition.model_dump_json(by_alias=True),
            flow.updated_at.isoformat(),
        )

    async def get_flow(self, flow_id: str) -> StoredFlow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT flow_id, channel, account_id, definition, updated_at FROM flows WHERE flow_id = ?",
            flow_id,
        )
        return self._to_flow(row) if row else None

    async def list_flows(self) -> list[StoredFlow]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT flow_id, channel, account_id, definition, updated_at FROM flows ORDER BY flow_id",
        )
        return [self._to_flow(row) for row in rows]

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(
        self,
        flow_id: str,
        subscriber_id: str,
        channel: str,
        account_id: str | None = None,
        conversation_id: str | None = None,
        event_id: str | None = None,
    ) -> FlowExecution:
        execution = FlowExecution(
            id=str(uuid.uuid4()),
            flow_id=flow_id,
            subscriber_id=subscriber_id,
            channel=channel,
            account_id=account_id,
            conversation_id=conversation_id,
            event_id=event_id,
            status=ExecutionStatus.RUNNING.value,
        )
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO flow_executions ({_EXECUTION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            execution.id,
            execution.flow_id,
            execution.subscriber_id,
            execution.channel,
            execution.account_id,
            execution.conversation_id,
            execution.event_id,
            execution.status,
            execution.started_at.isoformat(),
            execution.updated_at.isoformat(),
            None,
            None,
        )
        return execution

    async def get_execution(self, execution_id: str) -> FlowExecution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions WHERE id = ?",
            execution_id,
        )
        return self._to_execution(row) if row else None

    async def find_execution_by_event(self, event_id: str) -> FlowExecution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions WHERE event_id = ?",
            event_id,
        )
        return self._to_execution(row) if row else None

    async def list_executions(self, status: str | None = None) -> list[FlowExecution]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions ORDER BY started_at",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions WHERE status = ? ORDER BY started_at",
                status,
            )
        return [self._to_execution(row) for row in rows]

    async def list_stale_waiting(self, older_than: datetime) -> list[FlowExecution]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions WHERE status = ? AND updated_at < ?",
            ExecutionStatus.WAITING.value,
            older_than.isoformat(),
        )
        return [self._to_execution(row) for row in rows]

    async def transition_execution(
        self, execution_id: str, status: str, error_message: str | None = None
    ) -> bool:
        target = ExecutionStatus(status).value
        sources = sorted(allowed_sources(target))
        now = utcnow().isoformat()
        terminal = target in TERMINAL_STATUSES
        placeholders = ", ".join("?" for _ in sources)
        cur = await asyncio.to_thread(
            self._execute,
            f"""
            UPDATE flow_executions
            SET status = ?, updated_at = ?, completed_at = ?, error_message = ?
            WHERE id = ? AND status IN ({placeholders})
            """,
            target,
            now,
            now if terminal else None,
            error_message if terminal else None,
            execution_id,
            *sources,
        )
        return cur.rowcount == 1

    # ------------------------------------------------------------------
    # Node executions
    async def start_node_execution(
        self, execution_id: str, node_id: str, node_type: str
    ) -> NodeExecution:
        created_at = utcnow()
        cur = await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO node_executions (flow_execution_id, node_id, node_type, status, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            execution_id,
            node_id,
            node_type,
            NodeStatus.RUNNING.value,
            created_at.isoformat(),
        )
        return NodeExecution(
            id=cur.lastrowid,
            flow_execution_id=execution_id,
            node_id=node_id,
            node_type=node_type,
            status=NodeStatus.RUNNING.value,
            created_at=created_at,
        )

    async def finish_node_execution(
        self,
        node_execution_id: int,
        status: str,
        execution_time_ms: int,
        error_message: str | None = None,
    ) -> bool:
        cur = await asyncio.to_thread(
            self._execute,
            """
            UPDATE node_executions
            SET status = ?, execution_time_ms = ?, error_message = ?
            WHERE id = ? AND status = ?
            """,
            NodeStatus(status).value,
            execution_time_ms,
            error_message,
            node_execution_id,
            NodeStatus.RUNNING.value,
        )
        return cur.rowcount == 1

    async def get_node_executions(self, execution_id: str) -> list[NodeExecution]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_NODE_COLUMNS} FROM node_executions WHERE flow_execution_id = ? ORDER BY id",
            execution_id,
        )
        return [self._to_node_execution(row) for row in rows]

    async def last_node_execution(self, execution_id: str) -> NodeExecution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_NODE_COLUMNS} FROM node_executions WHERE flow_execution_id = ? ORDER BY id DESC LIMIT 1",
            execution_id,
        )
        return self._to_node_execution(row) if row else None

    # ------------------------------------------------------------------
    # Captured input
    async def record_user_input(
        self, execution_id: str, input_node_id: str, variable_name: str, value: str
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO flow_user_inputs (flow_execution_id, variable_name, input_node_id, value, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (flow_execution_id, variable_name) DO UPDATE SET
                input_node_id = excluded.input_node_id,
                value = excluded.value,
                created_at = excluded.created_at
            """,
            execution_id,
            variable_name,
            input_node_id,
            value,
            utcnow().isoformat(),
        )

    async def get_user_input(
        self, execution_id: str, variable_name: str
    ) -> UserInput | None:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT flow_execution_id, input_node_id, variable_name, value, created_at
            FROM flow_user_inputs WHERE flow_execution_id = ? AND variable_name = ?
            """,
            execution_id,
            variable_name,
        )
        return self._to_user_input(row) if row else None

    async def get_user_inputs(self, execution_id: str) -> list[UserInput]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT flow_execution_id, input_node_id, variable_name, value, created_at
            FROM flow_user_inputs WHERE flow_execution_id = ? ORDER BY created_at
            """,
            execution_id,
        )
        return [self._to_user_input(row) for row in rows]

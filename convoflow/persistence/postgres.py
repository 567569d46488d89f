"""PostgreSQL implementation of the execution ledger and flow store."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any

import asyncpg

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


def _json(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


def _updated_one(status: str) -> bool:
    # asyncpg returns the command tag, e.g. "UPDATE 1"
    return status.split()[-1] == "1"


class PostgresLedger(ExecutionLedger, FlowRepository):
    """Persist executions and flows using PostgreSQL."""

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
            CREATE TABLE IF NOT EXISTS flows (
                flow_id TEXT PRIMARY KEY,
                channel TEXT NOT NULL,
                account_id TEXT,
                definition JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
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
                started_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                error_message TEXT
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS node_executions (
                id BIGSERIAL PRIMARY KEY,
                flow_execution_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                node_type TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                execution_time_ms INTEGER,
                error_message TEXT
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_node_executions_execution "
            "ON node_executions (flow_execution_id, id)"
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS flow_user_inputs (
                flow_execution_id TEXT NOT NULL,
                variable_name TEXT NOT NULL,
                input_node_id TEXT NOT NULL,
                value TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (flow_execution_id, variable_name)
            )
            """
        )

    @staticmethod
    def _to_flow(row: asyncpg.Record) -> StoredFlow:
        return StoredFlow(
            flow_id=row["flow_id"],
            channel=row["channel"],
            account_id=row["account_id"],
            definition=FlowDefinition.model_validate(_json(row["definition"])),
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _to_execution(row: asyncpg.Record) -> FlowExecution:
        return FlowExecution(**dict(row))

    @staticmethod
    def _to_node_execution(row: asyncpg.Record) -> NodeExecution:
        return NodeExecution(**dict(row))

    # ------------------------------------------------------------------
    # Flow store
    async def save_flow(self, flow: StoredFlow) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO flows (flow_id, channel, account_id, definition, updated_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (flow_id) DO UPDATE SET
                    channel = EXCLUDED.channel,
                    account_id = EXCLUDED.account_id,
                    definition = EXCLUDED.definition,
                    updated_at = EXCLUDED.updated_at
                """,
                flow.flow_id,
                flow.channel,
                flow.account_id,
                flow.definition.model_dump_json(by_alias=True),
                flow.updated_at,
            )
        finally:
            await conn.close()

    async def get_flow(self, flow_id: str) -> StoredFlow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT flow_id, channel, account_id, definition, updated_at FROM flows WHERE flow_id = $1",
                flow_id,
            )
        finally:
            await conn.close()
        return self._to_flow(row) if row else None

    async def list_flows(self) -> list[StoredFlow]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT flow_id, channel, account_id, definition, updated_at FROM flows ORDER BY flow_id"
            )
        finally:
            await conn.close()
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
        conn = await self._connect()
        try:
            await conn.execute(
                f"""
                INSERT INTO flow_executions ({_EXECUTION_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, NULL, NULL)
                """,
                execution.id,
                execution.flow_id,
                execution.subscriber_id,
                execution.channel,
                execution.account_id,
                execution.conversation_id,
                execution.event_id,
                execution.status,
                execution.started_at,
                execution.updated_at,
            )
        finally:
            await conn.close()
        return execution

    async def get_execution(self, execution_id: str) -> FlowExecution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions WHERE id = $1",
                execution_id,
            )
        finally:
            await conn.close()
        return self._to_execution(row) if row else None

    async def find_execution_by_event(self, event_id: str) -> FlowExecution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions WHERE event_id = $1",
                event_id,
            )
        finally:
            await conn.close()
        return self._to_execution(row) if row else None

    async def list_executions(self, status: str | None = None) -> list[FlowExecution]:
        conn = await self._connect()
        try:
            if status is None:
                rows = await conn.fetch(
                    f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions ORDER BY started_at"
                )
            else:
                rows = await conn.fetch(
                    f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions WHERE status = $1 ORDER BY started_at",
                    status,
                )
        finally:
            await conn.close()
        return [self._to_execution(row) for row in rows]

    async def list_stale_waiting(self, older_than: datetime) -> list[FlowExecution]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_EXECUTION_COLUMNS} FROM flow_executions WHERE status = $1 AND updated_at < $2",
                ExecutionStatus.WAITING.value,
                older_than,
            )
        finally:
            await conn.close()
        return [self._to_execution(row) for row in rows]

    async def transition_execution(
        self, execution_id: str, status: str, error_message: str | None = None
    ) -> bool:
        target = ExecutionStatus(status).value
        terminal = target in TERMINAL_STATUSES
        now = utcnow()
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE flow_executions
                SET status = $1, updated_at = $2, completed_at = $3, error_message = $4
                WHERE id = $5 AND status = ANY($6::text[])
                """,
                target,
                now,
                now if terminal else None,
                error_message if terminal else None,
                execution_id,
                sorted(allowed_sources(target)),
            )
        finally:
            await conn.close()
        return _updated_one(result)

    # ------------------------------------------------------------------
    # Node executions
    async def start_node_execution(
        self, execution_id: str, node_id: str, node_type: str
    ) -> NodeExecution:
        created_at = utcnow()
        conn = await self._connect()
        try:
            row_id = await conn.fetchval(
                """
                INSERT INTO node_executions (flow_execution_id, node_id, node_type, status, created_at)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id
                """,
                execution_id,
                node_id,
                node_type,
                NodeStatus.RUNNING.value,
                created_at,
            )
        finally:
            await conn.close()
        return NodeExecution(
            id=row_id,
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
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE node_executions
                SET status = $1, execution_time_ms = $2, error_message = $3
                WHERE id = $4 AND status = $5
                """,
                NodeStatus(status).value,
                execution_time_ms,
                error_message,
                node_execution_id,
                NodeStatus.RUNNING.value,
            )
        finally:
            await conn.close()
        return _updated_one(result)

    async def get_node_executions(self, execution_id: str) -> list[NodeExecution]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_NODE_COLUMNS} FROM node_executions WHERE flow_execution_id = $1 ORDER BY id",
                execution_id,
            )
        finally:
            await conn.close()
        return [self._to_node_execution(row) for row in rows]

    async def last_node_execution(self, execution_id: str) -> NodeExecution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_NODE_COLUMNS} FROM node_executions WHERE flow_execution_id = $1 ORDER BY id DESC LIMIT 1",
                execution_id,
            )
        finally:
            await conn.close()
        return self._to_node_execution(row) if row else None

    # ------------------------------------------------------------------
    # Captured input
    async def record_user_input(
        self, execution_id: str, input_node_id: str, variable_name: str, value: str
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO flow_user_inputs (flow_execution_id, variable_name, input_node_id, value, created_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (flow_execution_id, variable_name) DO UPDATE SET
                    input_node_id = EXCLUDED.input_node_id,
                    value = EXCLUDED.value,
                    created_at = EXCLUDED.created_at
                """,
                execution_id,
                variable_name,
                input_node_id,
                value,
                utcnow(),
            )
        finally:
            await conn.close()

    async def get_user_input(
        self, execution_id: str, variable_name: str
    ) -> UserInput | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                """
                SELECT flow_execution_id, input_node_id, variable_name, value, created_at
                FROM flow_user_inputs WHERE flow_execution_id = $1 AND variable_name = $2
                """,
                execution_id,
                variable_name,
            )
        finally:
            await conn.close()
        return UserInput(**dict(row)) if row else None

    async def get_user_inputs(self, execution_id: str) -> list[UserInput]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT flow_execution_id, input_node_id, variable_name, value, created_at
                FROM flow_user_inputs WHERE flow_execution_id = $1 ORDER BY created_at
                """,
                execution_id,
            )
        finally:
            await conn.close()
        return [UserInput(**dict(row)) for row in rows]

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..graph import FlowDefinition, StoredFlow
from ..persistence.models import (
    ExecutionStatus,
    FlowExecution,
    NodeExecution,
    NodeStatus,
    TERMINAL_STATUSES,
    UserInput,
    allowed_sources,
    utcnow,
)
from ..persistence.repository import ExecutionLedger, FlowRepository
from .models import FlowExecutionRow, FlowRow, NodeExecutionRow, UserInputRow


class SQLModelLedger(ExecutionLedger, FlowRepository):
    """Async SQLAlchemy-backed ledger for any database with an async driver."""

    def __init__(self, database_url: str) -> None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            await self.init_db()
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    # ------------------------------------------------------------------
    # Flow store
    async def save_flow(self, flow: StoredFlow) -> None:
        row = FlowRow(
            flow_id=flow.flow_id,
            channel=flow.channel,
            account_id=flow.account_id,
            definition=flow.definition.model_dump(mode="json", by_alias=True),
            updated_at=flow.updated_at,
        )
        async with self.session() as session:
            await session.merge(row)
            await session.commit()

    @staticmethod
    def _to_flow(row: FlowRow) -> StoredFlow:
        return StoredFlow(
            flow_id=row.flow_id,
            channel=row.channel,
            account_id=row.account_id,
            definition=FlowDefinition.model_validate(row.definition),
            updated_at=row.updated_at,
        )

    async def get_flow(self, flow_id: str) -> StoredFlow | None:
        async with self.session() as session:
            row = await session.get(FlowRow, flow_id)
            return self._to_flow(row) if row else None

    async def list_flows(self) -> list[StoredFlow]:
        async with self.session() as session:
            result = await session.execute(select(FlowRow).order_by(FlowRow.flow_id))
            return [self._to_flow(row) for row in result.scalars().all()]

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
        row = FlowExecutionRow(
            id=str(uuid.uuid4()),
            flow_id=flow_id,
            subscriber_id=subscriber_id,
            channel=channel,
            account_id=account_id,
            conversation_id=conversation_id,
            event_id=event_id,
            status=ExecutionStatus.RUNNING.value,
        )
        async with self.session() as session:
            session.add(row)
            await session.commit()
        return FlowExecution.model_validate(row.model_dump())

    async def get_execution(self, execution_id: str) -> FlowExecution | None:
        async with self.session() as session:
            row = await session.get(FlowExecutionRow, execution_id)
            return FlowExecution.model_validate(row.model_dump()) if row else None

    async def find_execution_by_event(self, event_id: str) -> FlowExecution | None:
        async with self.session() as session:
            result = await session.execute(
                select(FlowExecutionRow).where(FlowExecutionRow.event_id == event_id)
            )
            row = result.scalars().first()
            return FlowExecution.model_validate(row.model_dump()) if row else None

    async def list_executions(self, status: str | None = None) -> list[FlowExecution]:
        query = select(FlowExecutionRow).order_by(FlowExecutionRow.started_at)
        if status is not None:
            query = query.where(FlowExecutionRow.status == status)
        async with self.session() as session:
            result = await session.execute(query)
            return [FlowExecution.model_validate(row.model_dump()) for row in result.scalars().all()]

    async def list_stale_waiting(self, older_than: datetime) -> list[FlowExecution]:
        query = select(FlowExecutionRow).where(
            FlowExecutionRow.status == ExecutionStatus.WAITING.value,
            FlowExecutionRow.updated_at < older_than,
        )
        async with self.session() as session:
            result = await session.execute(query)
            return [FlowExecution.model_validate(row.model_dump()) for row in result.scalars().all()]

    async def transition_execution(
        self, execution_id: str, status: str, error_message: str | None = None
    ) -> bool:
        target = ExecutionStatus(status).value
        terminal = target in TERMINAL_STATUSES
        now = utcnow()
        statement = (
            update(FlowExecutionRow)
            .where(
                FlowExecutionRow.id == execution_id,
                FlowExecutionRow.status.in_(sorted(allowed_sources(target))),
            )
            .values(
                status=target,
                updated_at=now,
                completed_at=now if terminal else None,
                error_message=error_message if terminal else None,
            )
        )
        async with self.session() as session:
            result = await session.execute(statement)
            await session.commit()
            return result.rowcount == 1

    # ------------------------------------------------------------------
    # Node executions
    async def start_node_execution(
        self, execution_id: str, node_id: str, node_type: str
    ) -> NodeExecution:
        row = NodeExecutionRow(
            flow_execution_id=execution_id,
            node_id=node_id,
            node_type=node_type,
            status=NodeStatus.RUNNING.value,
        )
        async with self.session() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return NodeExecution.model_validate(row.model_dump())

    async def finish_node_execution(
        self,
        node_execution_id: int,
        status: str,
        execution_time_ms: int,
        error_message: str | None = None,
    ) -> bool:
        statement = (
            update(NodeExecutionRow)
            .where(
                NodeExecutionRow.id == node_execution_id,
                NodeExecutionRow.status == NodeStatus.RUNNING.value,
            )
            .values(
                status=NodeStatus(status).value,
                execution_time_ms=execution_time_ms,
                error_message=error_message,
            )
        )
        async with self.session() as session:
            result = await session.execute(statement)
            await session.commit()
            return result.rowcount == 1

    async def get_node_executions(self, execution_id: str) -> list[NodeExecution]:
        query = (
            select(NodeExecutionRow)
            .where(NodeExecutionRow.flow_execution_id == execution_id)
            .order_by(NodeExecutionRow.id)
        )
        async with self.session() as session:
            result = await session.execute(query)
            return [NodeExecution.model_validate(row.model_dump()) for row in result.scalars().all()]

    async def last_node_execution(self, execution_id: str) -> NodeExecution | None:
        query = (
            select(NodeExecutionRow)
            .where(NodeExecutionRow.flow_execution_id == execution_id)
            .order_by(NodeExecutionRow.id.desc())
            .limit(1)
        )
        async with self.session() as session:
            result = await session.execute(query)
            row = result.scalars().first()
            return NodeExecution.model_validate(row.model_dump()) if row else None

    # ------------------------------------------------------------------
    # Captured input
    async def record_user_input(
        self, execution_id: str, input_node_id: str, variable_name: str, value: str
    ) -> None:
        row = UserInputRow(
            flow_execution_id=execution_id,
            variable_name=variable_name,
            input_node_id=input_node_id,
            value=value,
        )
        async with self.session() as session:
            await session.merge(row)
            await session.commit()

    async def get_user_input(
        self, execution_id: str, variable_name: str
    ) -> UserInput | None:
        async with self.session() as session:
            row = await session.get(UserInputRow, (execution_id, variable_name))
            return UserInput.model_validate(row.model_dump()) if row else None

    async def get_user_inputs(self, execution_id: str) -> list[UserInput]:
        query = (
            select(UserInputRow)
            .where(UserInputRow.flow_execution_id == execution_id)
            .order_by(UserInputRow.created_at)
        )
        async with self.session() as session:
            result = await session.execute(query)
            return [UserInput.model_validate(row.model_dump()) for row in result.scalars().all()]

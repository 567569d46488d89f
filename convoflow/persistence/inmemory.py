"""In-memory implementation of the execution ledger and flow store."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, List, Tuple

from ..graph import StoredFlow
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


class InMemoryLedger(ExecutionLedger, FlowRepository):
    """Store executions and flows in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._flows: Dict[str, StoredFlow] = {}
        self._executions: Dict[str, FlowExecution] = {}
        self._node_executions: List[NodeExecution] = []
        self._inputs: Dict[Tuple[str, str], UserInput] = {}
        self._node_execution_id = 0

    # ------------------------------------------------------------------
    # Flow store
    async def save_flow(self, flow: StoredFlow) -> None:
        self._flows[flow.flow_id] = flow.model_copy(deep=True)

    async def get_flow(self, flow_id: str) -> StoredFlow | None:
        flow = self._flows.get(flow_id)
        return flow.model_copy(deep=True) if flow else None

    async def list_flows(self) -> list[StoredFlow]:
        return [flow.model_copy(deep=True) for flow in self._flows.values()]

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
        if event_id is not None and any(
            existing.event_id == event_id for existing in self._executions.values()
        ):
            raise ValueError(f"Execution for event {event_id} already exists")
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
        self._executions[execution.id] = execution
        return execution.model_copy()

    async def get_execution(self, execution_id: str) -> FlowExecution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy() if execution else None

    async def find_execution_by_event(self, event_id: str) -> FlowExecution | None:
        for execution in self._executions.values():
            if execution.event_id == event_id:
                return execution.model_copy()
        return None

    async def list_executions(self, status: str | None = None) -> list[FlowExecution]:
        return [
            execution.model_copy()
            for execution in self._executions.values()
            if status is None or execution.status == status
        ]

    async def list_stale_waiting(self, older_than: datetime) -> list[FlowExecution]:
        return [
            execution.model_copy()
            for execution in self._executions.values()
            if execution.status == ExecutionStatus.WAITING.value
            and execution.updated_at < older_than
        ]

    async def transition_execution(
        self, execution_id: str, status: str, error_message: str | None = None
    ) -> bool:
        execution = self._executions.get(execution_id)
        if execution is None or execution.status not in allowed_sources(status):
            return False
        now = utcnow()
        execution.status = ExecutionStatus(status).value
        execution.updated_at = now
        if execution.status in TERMINAL_STATUSES:
            execution.completed_at = now
            execution.error_message = error_message
        return True

    # ------------------------------------------------------------------
    # Node executions
    async def start_node_execution(
        self, execution_id: str, node_id: str, node_type: str
    ) -> NodeExecution:
        self._node_execution_id += 1
        record = NodeExecution(
            id=self._node_execution_id,
            flow_execution_id=execution_id,
            node_id=node_id,
            node_type=node_type,
            status=NodeStatus.RUNNING.value,
        )
        self._node_executions.append(record)
        return record.model_copy()

    async def finish_node_execution(
        self,
        node_execution_id: int,
        status: str,
        execution_time_ms: int,
        error_message: str | None = None,
    ) -> bool:
        for record in self._node_executions:
            if record.id != node_execution_id:
                continue
            # rows are final once they leave "running"
            if record.status != NodeStatus.RUNNING.value:
                return False
            record.status = NodeStatus(status).value
            record.execution_time_ms = execution_time_ms
            record.error_message = error_message
            return True
        return False

    async def get_node_executions(self, execution_id: str) -> list[NodeExecution]:
        return [
            record.model_copy()
            for record in self._node_executions
            if record.flow_execution_id == execution_id
        ]

    async def last_node_execution(self, execution_id: str) -> NodeExecution | None:
        for record in reversed(self._node_executions):
            if record.flow_execution_id == execution_id:
                return record.model_copy()
        return None

    # ------------------------------------------------------------------
    # Captured input
    async def record_user_input(
        self, execution_id: str, input_node_id: str, variable_name: str, value: str
    ) -> None:
        self._inputs[(execution_id, variable_name)] = UserInput(
            flow_execution_id=execution_id,
            input_node_id=input_node_id,
            variable_name=variable_name,
            value=value,
        )

    async def get_user_input(
        self, execution_id: str, variable_name: str
    ) -> UserInput | None:
        user_input = self._inputs.get((execution_id, variable_name))
        return user_input.model_copy() if user_input else None

    async def get_user_inputs(self, execution_id: str) -> list[UserInput]:
        return [
            user_input.model_copy()
            for (owner, _), user_input in self._inputs.items()
            if owner == execution_id
        ]

"""Repository abstractions for flow definitions and the execution ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..graph import StoredFlow
from .models import FlowExecution, NodeExecution, UserInput


class FlowRepository(Protocol):
    """Read access to flow definitions (plus writes for loading them)."""

    async def save_flow(self, flow: StoredFlow) -> None:
        """Insert or replace a flow definition."""

    async def get_flow(self, flow_id: str) -> StoredFlow | None:
        """Retrieve a flow definition by id."""

    async def list_flows(self) -> list[StoredFlow]:
        """Return all stored flows."""


class ExecutionLedger(Protocol):
    """Protocol for execution state persistence backends."""

    async def create_execution(
        self,
        flow_id: str,
        subscriber_id: str,
        channel: str,
        account_id: str | None = None,
        conversation_id: str | None = None,
        event_id: str | None = None,
    ) -> FlowExecution:
        """Persist a new execution in ``running`` state."""

    async def get_execution(self, execution_id: str) -> FlowExecution | None:
        """Retrieve an execution by id."""

    async def find_execution_by_event(self, event_id: str) -> FlowExecution | None:
        """Retrieve the execution started by a given inbound event."""

    async def list_executions(self, status: str | None = None) -> list[FlowExecution]:
        """Return executions, optionally filtered by status."""

    async def list_stale_waiting(self, older_than: datetime) -> list[FlowExecution]:
        """Return ``waiting`` executions not touched since ``older_than``."""

    async def transition_execution(
        self, execution_id: str, status: str, error_message: str | None = None
    ) -> bool:
        """Move an execution to ``status`` if its current status allows it."""

    async def start_node_execution(
        self, execution_id: str, node_id: str, node_type: str
    ) -> NodeExecution:
        """Append a ``running`` node visit."""

    async def finish_node_execution(
        self,
        node_execution_id: int,
        status: str,
        execution_time_ms: int,
        error_message: str | None = None,
    ) -> bool:
        """Record the outcome of a node visit that is still ``running``."""

    async def get_node_executions(self, execution_id: str) -> list[NodeExecution]:
        """Return node visits in insertion order."""

    async def last_node_execution(self, execution_id: str) -> NodeExecution | None:
        """Return the most recent node visit."""

    async def record_user_input(
        self, execution_id: str, input_node_id: str, variable_name: str, value: str
    ) -> None:
        """Bind a captured reply to a variable of the execution."""

    async def get_user_input(
        self, execution_id: str, variable_name: str
    ) -> UserInput | None:
        """Look up one captured variable."""

    async def get_user_inputs(self, execution_id: str) -> list[UserInput]:
        """Return all captured variables of the execution."""

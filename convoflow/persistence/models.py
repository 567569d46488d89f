"""Data models for persisted execution state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STATUSES: FrozenSet[str] = frozenset(
    {ExecutionStatus.COMPLETED.value, ExecutionStatus.FAILED.value}
)

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ExecutionStatus.RUNNING.value: frozenset({ExecutionStatus.WAITING.value}),
    ExecutionStatus.WAITING.value: frozenset({ExecutionStatus.RUNNING.value}),
    ExecutionStatus.COMPLETED.value: frozenset(
        {ExecutionStatus.RUNNING.value, ExecutionStatus.WAITING.value}
    ),
    ExecutionStatus.FAILED.value: frozenset(
        {ExecutionStatus.RUNNING.value, ExecutionStatus.WAITING.value}
    ),
}


def allowed_sources(status: str) -> FrozenSet[str]:
    """Statuses from which an execution may move to ``status``."""
    return ALLOWED_TRANSITIONS.get(ExecutionStatus(status).value, frozenset())


class FlowExecution(BaseModel):
    """One run of a flow for one subscriber, across any number of suspensions."""

    id: str
    flow_id: str
    subscriber_id: str
    channel: str
    account_id: Optional[str] = None
    conversation_id: Optional[str] = None
    event_id: Optional[str] = None
    status: str = ExecutionStatus.RUNNING.value
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class NodeExecution(BaseModel):
    """Record of a single node visit."""

    id: int
    flow_execution_id: str
    node_id: str
    node_type: str
    status: str = NodeStatus.RUNNING.value
    created_at: datetime = Field(default_factory=utcnow)
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None


class UserInput(BaseModel):
    """A reply captured by an input node, bound to a variable name."""

    flow_execution_id: str
    input_node_id: str
    variable_name: str
    value: str
    created_at: datetime = Field(default_factory=utcnow)

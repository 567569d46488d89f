from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from ..persistence.models import utcnow


class FlowRow(SQLModel, table=True):
    """Flow definition snapshot as stored by the editor."""

    __tablename__ = "flows"

    flow_id: str = Field(primary_key=True)
    channel: str
    account_id: Optional[str] = None
    definition: dict = Field(sa_column=Column(JSON, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow)


class FlowExecutionRow(SQLModel, table=True):
    """Represents one execution of a flow for a subscriber."""

    __tablename__ = "flow_executions"

    id: str = Field(primary_key=True)
    flow_id: str = Field(index=True)
    subscriber_id: str
    channel: str
    account_id: Optional[str] = None
    conversation_id: Optional[str] = None
    event_id: Optional[str] = Field(default=None, unique=True, index=True)
    status: str = Field(default="running", index=True)
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class NodeExecutionRow(SQLModel, table=True):
    """Tracks a single node visit within an execution."""

    __tablename__ = "node_executions"

    id: Optional[int] = Field(default=None, primary_key=True)
    flow_execution_id: str = Field(index=True)
    node_id: str
    node_type: str
    status: str = Field(default="running")
    created_at: datetime = Field(default_factory=utcnow)
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None


class UserInputRow(SQLModel, table=True):
    """Key-value store for captured replies."""

    __tablename__ = "flow_user_inputs"

    flow_execution_id: str = Field(primary_key=True)
    variable_name: str = Field(primary_key=True)
    input_node_id: str
    value: str
    created_at: datetime = Field(default_factory=utcnow)

"""Request, event and result contracts for the flow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChannelContext(BaseModel):
    """Everything a channel adapter needs to reach one subscriber.

    Passed explicitly into each run instead of being looked up from
    per-channel globals.
    """

    channel: str
    access_token: Optional[str] = None
    account_id: Optional[str] = Field(
        default=None, description="Page id, Instagram account id or phone number id"
    )
    conversation_id: Optional[str] = None


class ExecutionContext(BaseModel):
    """Identity of the execution a run writes its ledger rows under."""

    execution_id: str
    flow_id: str
    subscriber_id: str
    channel: ChannelContext


class Completed(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["completed"] = "completed"


class Failed(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    reason: str


class Suspended(BaseModel):
    """The run stopped at a node that waits for a human reply."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["suspended"] = "suspended"
    node_id: str


Outcome = Union[Completed, Failed, Suspended]


class TriggerRequest(BaseModel):
    """Inbound message, comment or follow that starts a flow."""

    model_config = ConfigDict(populate_by_name=True)

    flow_id: str = Field(alias="flowId")
    subscriber_id: str = Field(alias="subscriberId")
    channel_access_token: Optional[str] = Field(default=None, alias="channelAccessToken")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    event_id: Optional[str] = Field(
        default=None, alias="eventId", description="Provider event id used for deduplication"
    )
    start_from_node_id: Optional[str] = Field(default=None, alias="startFromNodeId")


class ResumeRequest(BaseModel):
    """A subscriber reply continuing a suspended execution."""

    model_config = ConfigDict(populate_by_name=True)

    resume_flow_execution_id: str = Field(alias="resumeFlowExecutionId")
    user_response: str = Field(alias="userResponse")
    channel_access_token: Optional[str] = Field(default=None, alias="channelAccessToken")


class FlowEvent(BaseModel):
    """Envelope carried over the transport between webhook handlers and workers."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: Literal["trigger", "resume"]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    trigger: Optional[TriggerRequest] = None
    resume: Optional[ResumeRequest] = None
    # 1 on first delivery, incremented each time a worker returns the event
    attempt: int = 1

    @model_validator(mode="after")
    def _check_body(self) -> "FlowEvent":
        if self.kind == "trigger" and self.trigger is None:
            raise ValueError("trigger event without trigger body")
        if self.kind == "resume" and self.resume is None:
            raise ValueError("resume event without resume body")
        return self

    def to_json(self) -> str:
        """Serialize event to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "FlowEvent":
        """Deserialize event from JSON."""
        return cls.model_validate_json(data)


class ExecutionResult(BaseModel):
    """What the caller of a trigger or resume invocation gets back."""

    success: bool
    error: Optional[str] = None
    waiting_for_input: bool = False
    input_node_id: Optional[str] = None
    execution_id: Optional[str] = None
    duplicate: bool = False

    @classmethod
    def from_outcome(cls, outcome: Outcome, execution_id: Optional[str]) -> "ExecutionResult":
        if isinstance(outcome, Suspended):
            return cls(
                success=True,
                waiting_for_input=True,
                input_node_id=outcome.node_id,
                execution_id=execution_id,
            )
        if isinstance(outcome, Failed):
            return cls(success=False, error=outcome.reason, execution_id=execution_id)
        return cls(success=True, execution_id=execution_id)

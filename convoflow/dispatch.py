"""Publishes trigger and resume events for workers to pick up."""

from __future__ import annotations

from typing import Optional

from .constants import DEFAULT_EVENT_TOPIC
from .contracts import FlowEvent, ResumeRequest, TriggerRequest
from .transports import BaseTransport


class FlowDispatcher:
    """Service used by webhook handlers to hand work to the engine."""

    def __init__(self, transport: BaseTransport, topic: str = DEFAULT_EVENT_TOPIC) -> None:
        self._transport = transport
        self._topic = topic

    async def publish(self, event: FlowEvent) -> str:
        await self._transport.publish(self._topic, event)
        return event.event_id

    async def trigger(
        self,
        flow_id: str,
        subscriber_id: str,
        channel_access_token: Optional[str] = None,
        conversation_id: Optional[str] = None,
        event_id: Optional[str] = None,
        start_from_node_id: Optional[str] = None,
    ) -> str:
        """Queue a flow start.

        Args:
            flow_id: Flow to run.
            subscriber_id: Recipient on the flow's channel.
            channel_access_token: Token to send with; falls back to configured credentials.
            conversation_id: Provider conversation the trigger came from.
            event_id: Provider event id; repeated deliveries start only one execution.
            start_from_node_id: Begin at this node instead of the start node.

        Returns:
            Identifier of the published event.
        """
        request = TriggerRequest(
            flow_id=flow_id,
            subscriber_id=subscriber_id,
            channel_access_token=channel_access_token,
            conversation_id=conversation_id,
            event_id=event_id,
            start_from_node_id=start_from_node_id,
        )
        return await self.publish(FlowEvent(kind="trigger", trigger=request))

    async def resume(
        self,
        execution_id: str,
        user_response: str,
        channel_access_token: Optional[str] = None,
    ) -> str:
        """Queue a subscriber reply for a waiting execution."""
        request = ResumeRequest(
            resume_flow_execution_id=execution_id,
            user_response=user_response,
            channel_access_token=channel_access_token,
        )
        return await self.publish(FlowEvent(kind="resume", resume=request))

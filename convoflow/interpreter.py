"""Flow interpreter: walks a flow graph one node at a time.

The walk is an explicit loop over a ``current`` node, so flow length never
grows the call stack. A run ends in one of three outcomes:

* ``Completed`` when a node has nowhere left to go,
* ``Failed`` when a node cannot be executed (provider error, dangling edge),
* ``Suspended`` at a ``button`` or ``input`` node, or at a ``text`` node that
  offers attached buttons or quick replies. Nothing about the suspended
  run is kept in memory; the last ``NodeExecution`` row in the ledger is the
  continuation that :mod:`convoflow.resume` picks up later.

Messages already sent before a failure are not undone.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Dict, Optional

from .channels import ChannelAdapter, ChannelError, get_channel
from .conditions import evaluate
from .config import ChannelsConfig, EngineSettings
from .constants import DEFAULT_BUTTON_PROMPT, DEFAULT_TEXT_MESSAGE
from .contracts import (
    ChannelContext,
    Completed,
    ExecutionContext,
    Failed,
    Outcome,
    Suspended,
)
from .graph import FlowDefinition, FlowDefinitionError, Node, NodeType
from .persistence import ExecutionLedger, NodeExecution, NodeStatus
from .templating import has_placeholders, render

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[ChannelContext], ChannelAdapter]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class NodeStep:
    """What executing one node decided about the walk."""

    next_node_id: Optional[str] = None
    suspend: bool = False
    sent_message: bool = False


class FlowInterpreter:
    """Executes flow nodes and records every visit in the ledger."""

    def __init__(
        self,
        ledger: ExecutionLedger,
        channel_factory: Optional[ChannelFactory] = None,
        settings: Optional[EngineSettings] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._channel_factory = channel_factory or partial(get_channel, config=ChannelsConfig())
        self._settings = settings or EngineSettings()
        self._sleep = sleep
        self._handlers: Dict[str, Callable[..., Awaitable[NodeStep]]] = {
            NodeType.START.value: self._run_start,
            NodeType.TEXT.value: self._run_text,
            NodeType.IMAGE.value: self._run_media,
            NodeType.VIDEO.value: self._run_media,
            NodeType.AUDIO.value: self._run_media,
            NodeType.FILE.value: self._run_media,
            NodeType.BUTTON.value: self._run_button,
            NodeType.INPUT.value: self._run_input,
            NodeType.SEQUENCE.value: self._run_sequence,
            NodeType.CONDITION.value: self._run_condition,
        }

    async def run(
        self, node: Node, definition: FlowDefinition, context: ExecutionContext
    ) -> Outcome:
        """Execute from ``node`` until completion, failure or suspension."""
        try:
            channel = self._channel_factory(context.channel)
        except ValueError as exc:
            return Failed(reason=str(exc))

        try:
            return await self._walk(node, definition, context, channel)
        finally:
            await channel.aclose()

    async def _walk(
        self,
        node: Node,
        definition: FlowDefinition,
        context: ExecutionContext,
        channel: ChannelAdapter,
    ) -> Outcome:
        current = node
        steps = 0
        while True:
            steps += 1
            if steps > self._settings.max_steps:
                reason = f"Step limit of {self._settings.max_steps} exceeded at node {current.id}"
                logger.error(f"{reason} for execution {context.execution_id}")
                return Failed(reason=reason)

            record = await self._ledger.start_node_execution(
                context.execution_id, current.id, current.type
            )
            started = time.perf_counter()
            logger.debug(
                f"Executing node {current.id} ({current.type}) for execution {context.execution_id}"
            )

            try:
                step = await self._execute_node(current, definition, context, channel)
                next_node = (
                    definition.require_node(step.next_node_id) if step.next_node_id else None
                )
            except (ChannelError, FlowDefinitionError) as exc:
                logger.error(
                    f"Node {current.id} failed for execution {context.execution_id}: {exc}"
                )
                return await self._fail(record, started, current, exc)
            except Exception as exc:
                logger.exception(
                    f"Unexpected error in node {current.id} for execution {context.execution_id}"
                )
                return await self._fail(record, started, current, exc)

            await self._finish(record, started, NodeStatus.SUCCESS)

            if step.suspend:
                logger.info(
                    f"Execution {context.execution_id} waiting for input at node {current.id}"
                )
                return Suspended(node_id=current.id)
            if next_node is None:
                return Completed()
            if step.sent_message and self._settings.message_gap_seconds > 0:
                await self._sleep(self._settings.message_gap_seconds)
            current = next_node

    async def _finish(
        self,
        record: NodeExecution,
        started: float,
        status: NodeStatus,
        error_message: Optional[str] = None,
    ) -> None:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        await self._ledger.finish_node_execution(
            record.id, status.value, elapsed_ms, error_message
        )

    async def _fail(
        self, record: NodeExecution, started: float, node: Node, exc: Exception
    ) -> Failed:
        await self._finish(record, started, NodeStatus.FAILED, str(exc))
        return Failed(reason=f"Node {node.id} execution failed: {exc}")

    async def _execute_node(
        self,
        node: Node,
        definition: FlowDefinition,
        context: ExecutionContext,
        channel: ChannelAdapter,
    ) -> NodeStep:
        handler = self._handlers.get(node.type)
        if handler is None:
            logger.info(f"Unknown node type: {node.type}, skipping node {node.id}")
            return NodeStep(next_node_id=definition.default_target(node.id))
        return await handler(node, definition, context, channel)

    async def _render(self, text: str, context: ExecutionContext) -> str:
        if not has_placeholders(text):
            return text
        inputs = await self._ledger.get_user_inputs(context.execution_id)
        return render(text, {item.variable_name: item.value for item in inputs})

    # ------------------------------------------------------------------
    # Node handlers
    async def _run_start(self, node, definition, context, channel) -> NodeStep:
        return NodeStep(next_node_id=definition.default_target(node.id))

    async def _run_text(self, node, definition, context, channel) -> NodeStep:
        if not node.text:
            logger.warning(f"Text node {node.id} has no content, sending default message")
        text = await self._render(node.text or DEFAULT_TEXT_MESSAGE, context)

        # attached choices turn the message into a question
        style, choices = definition.text_choices(node.id)
        if style == "buttons":
            await channel.send_buttons(context.subscriber_id, text, choices)
            return NodeStep(suspend=True, sent_message=True)
        if style == "quick_replies":
            await channel.send_quick_replies(context.subscriber_id, text, choices)
            return NodeStep(suspend=True, sent_message=True)

        await channel.send_text(context.subscriber_id, text)
        return NodeStep(next_node_id=definition.default_target(node.id), sent_message=True)

    async def _run_media(self, node, definition, context, channel) -> NodeStep:
        next_node_id = definition.default_target(node.id)
        url = node.media_url
        if not url:
            logger.warning(f"{node.type.capitalize()} node {node.id} has no URL, skipping send")
            return NodeStep(next_node_id=next_node_id)
        await channel.send_media(context.subscriber_id, node.type, url)
        return NodeStep(next_node_id=next_node_id, sent_message=True)

    async def _run_button(self, node, definition, context, channel) -> NodeStep:
        text = await self._render(node.text or DEFAULT_BUTTON_PROMPT, context)
        buttons = node.buttons
        if buttons:
            await channel.send_buttons(context.subscriber_id, text, buttons)
        else:
            logger.warning(f"Button node {node.id} has no buttons, sending text only")
            await channel.send_text(context.subscriber_id, text)
        return NodeStep(suspend=True, sent_message=True)

    async def _run_input(self, node, definition, context, channel) -> NodeStep:
        if node.prompt:
            prompt = await self._render(node.prompt, context)
            await channel.send_text(context.subscriber_id, prompt)
        return NodeStep(suspend=True, sent_message=bool(node.prompt))

    async def _run_sequence(self, node, definition, context, channel) -> NodeStep:
        delay = node.delay_seconds
        if delay > self._settings.max_delay_seconds:
            logger.warning(
                f"Sequence node {node.id} delay of {delay}s capped at "
                f"{self._settings.max_delay_seconds}s"
            )
            delay = self._settings.max_delay_seconds
        if delay > 0:
            logger.debug(f"Waiting {delay}s at sequence node {node.id}")
            await self._sleep(delay)
        return NodeStep(next_node_id=definition.default_target(node.id))

    async def _run_condition(self, node, definition, context, channel) -> NodeStep:
        spec = node.condition
        result = False
        if spec is None or not spec.field or not spec.operator:
            logger.warning(f"Condition node {node.id} is incomplete, defaulting to false")
        else:
            bound = await self._ledger.get_user_input(context.execution_id, spec.field)
            result = evaluate(bound.value if bound else None, spec.operator, spec.value)
            logger.debug(
                f"Condition {node.id}: {spec.field} {spec.operator} {spec.value!r} -> {result}"
            )

        branch = None
        if spec is not None:
            branch = spec.true_node if result else spec.false_node
        if branch is None:
            branch = definition.handle_target(node.id, "true" if result else "false")
        return NodeStep(next_node_id=branch)

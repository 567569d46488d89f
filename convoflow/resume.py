"""Continue a suspended execution from a subscriber reply."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from .contracts import (
    ChannelContext,
    Completed,
    ExecutionContext,
    Failed,
    Outcome,
)
from .graph import ButtonOption, FlowDefinition, Node, NodeType
from .interpreter import FlowInterpreter
from .persistence import ExecutionLedger, ExecutionStatus, FlowExecution, FlowRepository

logger = logging.getLogger(__name__)


@dataclass
class ResumeResult:
    """Outcome of a resume attempt.

    ``claimed`` is true once the execution was moved from ``waiting`` back to
    ``running``; only then does the caller own its final status.
    """

    outcome: Outcome
    execution: Optional[FlowExecution] = None
    claimed: bool = False


def node_choices(node: Node, definition: FlowDefinition) -> List[ButtonOption]:
    """Options a suspended node offered to the subscriber."""
    if node.type == NodeType.TEXT:
        return definition.text_choices(node.id)[1]
    return node.buttons


def select_button_target(
    node: Node, definition: FlowDefinition, user_response: str
) -> Optional[str]:
    """Next node chosen by a reply to a question node, if the reply picks one.

    A reply of ASCII digits is a 1-based index into the options. Anything
    else is matched case-insensitively against option ids and titles, which
    covers postback and quick reply payloads.
    """
    buttons = node_choices(node, definition)
    reply = user_response.strip()
    choice = None
    if re.fullmatch(r"[0-9]+", reply):
        index = int(reply)
        if 1 <= index <= len(buttons):
            choice = buttons[index - 1]
    else:
        lowered = reply.lower()
        for button in buttons:
            if (button.id and button.id.lower() == lowered) or button.title.lower() == lowered:
                choice = button
                break

    if choice is None:
        return None
    if choice.next_node:
        return choice.next_node
    return definition.handle_target(node.id, choice.id) if choice.id else None


class ResumptionCoordinator:
    """Maps a reply onto the node that suspended the execution and runs on.

    The ledger is the only source of the continuation point: the most recent
    node visit of a ``waiting`` execution is the node that asked the question.
    """

    def __init__(
        self,
        ledger: ExecutionLedger,
        flows: FlowRepository,
        interpreter: FlowInterpreter,
    ) -> None:
        self._ledger = ledger
        self._flows = flows
        self._interpreter = interpreter

    async def resume(
        self,
        execution_id: str,
        user_response: str,
        access_token: Optional[str] = None,
    ) -> ResumeResult:
        execution = await self._ledger.get_execution(execution_id)
        if execution is None:
            return ResumeResult(Failed(reason="Flow execution not found"))

        if execution.status != ExecutionStatus.WAITING.value:
            logger.warning(
                f"Ignoring reply for execution {execution_id} in status {execution.status}"
            )
            return ResumeResult(
                Failed(reason=f"Flow execution is not waiting for input (status: {execution.status})"),
                execution,
            )

        last = await self._ledger.last_node_execution(execution_id)
        if last is None:
            return ResumeResult(Failed(reason="No node execution to resume from"), execution)

        stored = await self._flows.get_flow(execution.flow_id)
        if stored is None:
            return ResumeResult(Failed(reason="Flow not found"), execution)
        definition = stored.definition

        node = definition.get_node(last.node_id)
        if node is None:
            return ResumeResult(
                Failed(reason=f"Node {last.node_id} not found in flow"), execution
            )

        if not await self._ledger.transition_execution(
            execution_id, ExecutionStatus.RUNNING.value
        ):
            return ResumeResult(Failed(reason="Flow execution already resumed"), execution)

        logger.info(f"Resuming execution {execution_id} from node {node.id} ({node.type})")
        try:
            outcome = await self._continue(
                execution, node, definition, user_response, access_token
            )
        except Exception as exc:
            logger.exception(f"Resuming execution {execution_id} failed")
            outcome = Failed(reason=str(exc))
        return ResumeResult(outcome, execution, claimed=True)

    async def _continue(
        self,
        execution: FlowExecution,
        node: Node,
        definition: FlowDefinition,
        user_response: str,
        access_token: Optional[str],
    ) -> Outcome:
        next_node_id = None
        if node.type == NodeType.INPUT and node.variable_name:
            await self._ledger.record_user_input(
                execution.id, node.id, node.variable_name, user_response
            )
        elif node.type in (NodeType.BUTTON, NodeType.TEXT):
            next_node_id = select_button_target(node, definition, user_response)
            if next_node_id is None:
                logger.info(
                    f"Reply {user_response!r} matches no option on node {node.id}, "
                    "following default edge"
                )

        next_node_id = next_node_id or definition.default_target(node.id)
        if next_node_id is None:
            return Completed()

        next_node = definition.get_node(next_node_id)
        if next_node is None:
            return Failed(reason=f"Node {next_node_id} not found in flow")

        context = ExecutionContext(
            execution_id=execution.id,
            flow_id=execution.flow_id,
            subscriber_id=execution.subscriber_id,
            channel=ChannelContext(
                channel=execution.channel,
                access_token=access_token,
                account_id=execution.account_id,
                conversation_id=execution.conversation_id,
            ),
        )
        return await self._interpreter.run(next_node, definition, context)

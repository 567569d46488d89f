"""Flow execution engine: the entry point for triggers and replies."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from functools import partial
from typing import List, Optional

from .channels import get_channel
from .config import ChannelsConfig, ConvoflowConfig, EngineSettings, load_config
from .contracts import (
    ChannelContext,
    Completed,
    ExecutionContext,
    ExecutionResult,
    Failed,
    FlowEvent,
    Outcome,
    ResumeRequest,
    Suspended,
    TriggerRequest,
)
from .graph import FlowDefinition, FlowDefinitionError, Node
from .interpreter import ChannelFactory, FlowInterpreter, Sleep
from .persistence import (
    ExecutionLedger,
    ExecutionStatus,
    FlowExecution,
    FlowRepository,
    get_ledger,
)
from .persistence.models import utcnow
from .resume import ResumptionCoordinator

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Timed out waiting for user response"


class FlowEngine:
    """Runs flows against a ledger, a flow store and outbound channels.

    ``trigger``, ``resume`` and ``handle_event`` never raise: unexpected
    errors are logged with their traceback and reported as a failed
    :class:`ExecutionResult`.
    """

    def __init__(
        self,
        ledger: ExecutionLedger,
        flows: Optional[FlowRepository] = None,
        channel_factory: Optional[ChannelFactory] = None,
        settings: Optional[EngineSettings] = None,
        channels: Optional[ChannelsConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.ledger = ledger
        self.flows: FlowRepository = flows or ledger  # type: ignore[assignment]
        self.settings = settings or EngineSettings()
        self.channels = channels or ChannelsConfig()
        factory = channel_factory or partial(get_channel, config=self.channels)
        self.interpreter = FlowInterpreter(ledger, factory, self.settings, sleep=sleep)
        self.coordinator = ResumptionCoordinator(ledger, self.flows, self.interpreter)

    @classmethod
    def from_config(
        cls,
        config: Optional[ConvoflowConfig] = None,
        ledger: Optional[ExecutionLedger] = None,
    ) -> "FlowEngine":
        config = config or load_config()
        ledger = ledger or get_ledger(config=config)
        return cls(ledger, settings=config.engine, channels=config.channels)

    # ------------------------------------------------------------------
    # Trigger
    async def trigger(self, request: TriggerRequest) -> ExecutionResult:
        """Start ``request.flow_id`` for a subscriber."""
        try:
            return await self._trigger(request)
        except Exception as exc:
            logger.exception(f"Triggering flow {request.flow_id} failed")
            return ExecutionResult(success=False, error=str(exc))

    async def _trigger(self, request: TriggerRequest) -> ExecutionResult:
        if request.event_id:
            existing = await self.ledger.find_execution_by_event(request.event_id)
            if existing is not None:
                return await self._duplicate_result(existing)

        stored = await self.flows.get_flow(request.flow_id)
        if stored is None:
            logger.warning(f"Flow {request.flow_id} not found")
            return ExecutionResult(success=False, error="Flow not found")

        try:
            execution = await self.ledger.create_execution(
                flow_id=stored.flow_id,
                subscriber_id=request.subscriber_id,
                channel=stored.channel,
                account_id=stored.account_id,
                conversation_id=request.conversation_id,
                event_id=request.event_id,
            )
        except Exception:
            # a concurrent delivery of the same event may have won the insert
            existing = (
                await self.ledger.find_execution_by_event(request.event_id)
                if request.event_id
                else None
            )
            if existing is None:
                raise
            return await self._duplicate_result(existing)

        logger.info(
            f"Started execution {execution.id} of flow {stored.flow_id} "
            f"for subscriber {request.subscriber_id}"
        )
        context = ExecutionContext(
            execution_id=execution.id,
            flow_id=stored.flow_id,
            subscriber_id=request.subscriber_id,
            channel=ChannelContext(
                channel=stored.channel,
                access_token=request.channel_access_token,
                account_id=stored.account_id,
                conversation_id=request.conversation_id,
            ),
        )

        definition = stored.definition
        try:
            if request.start_from_node_id:
                start = definition.require_node(request.start_from_node_id)
            else:
                start = definition.find_start()
        except FlowDefinitionError as exc:
            outcome: Outcome = Failed(reason=str(exc))
        else:
            outcome = await self._run(start, definition, context)

        await self._finalize(execution.id, outcome)
        return ExecutionResult.from_outcome(outcome, execution.id)

    async def _run(
        self, node: Node, definition: FlowDefinition, context: ExecutionContext
    ) -> Outcome:
        try:
            return await self.interpreter.run(node, definition, context)
        except Exception as exc:
            logger.exception(f"Execution {context.execution_id} aborted")
            return Failed(reason=str(exc))

    async def _duplicate_result(self, execution: FlowExecution) -> ExecutionResult:
        logger.info(
            f"Duplicate trigger event {execution.event_id}, "
            f"returning execution {execution.id}"
        )
        waiting = execution.status == ExecutionStatus.WAITING.value
        input_node_id = None
        if waiting:
            last = await self.ledger.last_node_execution(execution.id)
            input_node_id = last.node_id if last else None
        return ExecutionResult(
            success=execution.status != ExecutionStatus.FAILED.value,
            error=execution.error_message,
            waiting_for_input=waiting,
            input_node_id=input_node_id,
            execution_id=execution.id,
            duplicate=True,
        )

    # ------------------------------------------------------------------
    # Resume
    async def resume(self, request: ResumeRequest) -> ExecutionResult:
        """Continue a waiting execution with the subscriber's reply."""
        execution_id = request.resume_flow_execution_id
        try:
            result = await self.coordinator.resume(
                execution_id, request.user_response, request.channel_access_token
            )
            if result.claimed:
                await self._finalize(execution_id, result.outcome)
        except Exception as exc:
            logger.exception(f"Resuming execution {execution_id} failed")
            return ExecutionResult(success=False, error=str(exc), execution_id=execution_id)

        return ExecutionResult.from_outcome(
            result.outcome, execution_id if result.execution else None
        )

    # ------------------------------------------------------------------
    async def handle_event(self, event: FlowEvent) -> ExecutionResult:
        """Process one event delivered by a transport."""
        if event.kind == "trigger":
            request = event.trigger
            if request.event_id is None:
                # redelivery of the same envelope must not start a second run
                request = request.model_copy(update={"event_id": event.event_id})
            return await self.trigger(request)
        return await self.resume(event.resume)

    async def expire_waiting(self, max_age: Optional[timedelta] = None) -> List[str]:
        """Fail ``waiting`` executions nobody replied to within ``max_age``."""
        if max_age is None:
            max_age = timedelta(hours=self.settings.waiting_ttl_hours)
        cutoff = utcnow() - max_age
        expired = []
        for execution in await self.ledger.list_stale_waiting(cutoff):
            if await self.ledger.transition_execution(
                execution.id, ExecutionStatus.FAILED.value, TIMEOUT_MESSAGE
            ):
                expired.append(execution.id)
        if expired:
            logger.info(f"Expired {len(expired)} waiting executions")
        return expired

    async def _finalize(self, execution_id: str, outcome: Outcome) -> None:
        if isinstance(outcome, Suspended):
            status, error = ExecutionStatus.WAITING.value, None
        elif isinstance(outcome, Completed):
            status, error = ExecutionStatus.COMPLETED.value, None
        else:
            status, error = ExecutionStatus.FAILED.value, outcome.reason

        if await self.ledger.transition_execution(execution_id, status, error):
            logger.info(f"Execution {execution_id} is now {status}")
        else:
            logger.warning(f"Execution {execution_id} could not move to {status}")

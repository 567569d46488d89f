"""Worker that consumes flow events from a transport."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Deque, Optional, Set

from .constants import DEFAULT_EVENT_TOPIC, DEFAULT_RESULT_HISTORY, DEFAULT_WORKER_CONCURRENCY
from .contracts import ExecutionResult
from .engine import FlowEngine
from .transports import BaseTransport, Delivery

logger = logging.getLogger(__name__)


class FlowWorker:
    """Runs every received event as its own task.

    A sequence delay or a slow provider only holds up the execution it
    belongs to. At most ``max_concurrency`` events are in flight; the worker
    stops reading from the transport while all slots are taken. Each event is
    acked when its task finishes and nacked if the task raised.

    ``recent_results`` and ``errors`` keep the last ``history`` entries for
    inspection.
    """

    def __init__(
        self,
        transport: BaseTransport,
        engine: FlowEngine,
        topic: str = DEFAULT_EVENT_TOPIC,
        max_concurrency: int = DEFAULT_WORKER_CONCURRENCY,
        history: int = DEFAULT_RESULT_HISTORY,
    ) -> None:
        self._transport = transport
        self._engine = engine
        self._topic = topic
        self._slots = asyncio.Semaphore(max_concurrency)
        self._in_flight: Set[asyncio.Task] = set()
        self.recent_results: Deque[ExecutionResult] = deque(maxlen=history)
        self.errors: Deque[BaseException] = deque(maxlen=history)

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Consume events until ``lifespan`` elapses, then wait for runs in flight."""
        logger.info(f"Worker listening on topic {self._topic}")
        try:
            async for delivery in self._transport.subscribe(self._topic, lifespan=lifespan):
                await self._slots.acquire()
                task = asyncio.create_task(self._process(delivery))
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
        finally:
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info(f"Worker on topic {self._topic} stopped")

    async def _process(self, delivery: Delivery) -> None:
        event = delivery.event
        try:
            result = await self._engine.handle_event(event)
        except Exception as exc:
            logger.exception(f"Event {event.event_id} ({event.kind}) raised")
            self.errors.append(exc)
            await self._transport.nack(delivery)
        else:
            self.recent_results.append(result)
            if result.success:
                logger.info(
                    f"Event {event.event_id} ({event.kind}) handled: execution {result.execution_id}"
                )
            else:
                logger.warning(f"Event {event.event_id} ({event.kind}) failed: {result.error}")
            await self._transport.ack(delivery)
        finally:
            self._slots.release()

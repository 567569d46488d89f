"""Queue interface that carries flow events from webhook handlers to workers."""

from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from pydantic import ValidationError

from ..constants import DEAD_LETTER_SUFFIX, DEFAULT_MAX_DELIVERY_ATTEMPTS
from ..contracts import FlowEvent

logger = logging.getLogger(__name__)


def dead_letter_topic(topic: str) -> str:
    """Topic where events that keep failing on ``topic`` are parked."""
    return f"{topic}{DEAD_LETTER_SUFFIX}"


@dataclass
class Delivery:
    """One flow event handed to a worker, with the topic it came from."""

    topic: str
    event: FlowEvent


class BaseTransport(metaclass=abc.ABCMeta):
    """FIFO event queue per topic with at-least-once delivery.

    Events are removed from the queue when received. A worker settles each
    delivery once its run is over: ``ack`` drops it, ``nack`` puts it back
    with ``attempt`` incremented. An event that has used up ``max_attempts``,
    or whose payload does not parse, is moved to the topic's dead-letter
    queue instead of being lost.

    Backends only implement raw payload storage in ``_push`` and ``_pop``.
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_DELIVERY_ATTEMPTS) -> None:
        self.max_attempts = max_attempts

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def _push(self, topic: str, payload: str) -> None:
        """Append a serialized event to the tail of ``topic``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def _pop(self, topic: str) -> Optional[str]:
        """Take the oldest payload of ``topic``, waiting briefly; None if empty."""
        raise NotImplementedError

    async def publish(self, topic: str, event: FlowEvent) -> None:
        await self._push(topic, event.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Delivery]:
        """Yield deliveries from ``topic`` in publish order.

        Args:
            topic: The topic to consume.
            lifespan: Seconds to keep consuming. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None

        while deadline is None or loop.time() < deadline:
            payload = await self._pop(topic)
            if payload is None:
                continue
            try:
                event = FlowEvent.from_json(payload)
            except ValidationError as exc:
                logger.error(f"Malformed event on {topic} moved to dead letters: {exc}")
                await self._push(dead_letter_topic(topic), payload)
                continue
            yield Delivery(topic=topic, event=event)

    async def ack(self, delivery: Delivery) -> None:
        """Settle a processed event (already off the queue, so a no-op by default)."""
        pass

    async def nack(self, delivery: Delivery, requeue: bool = True) -> None:
        """Return an event whose processing raised.

        The event goes back on its topic until it has been delivered
        ``max_attempts`` times, then onto the dead-letter topic.
        """
        event = delivery.event
        if requeue and event.attempt < self.max_attempts:
            logger.warning(
                f"Requeueing event {event.event_id} on {delivery.topic} "
                f"(attempt {event.attempt + 1} of {self.max_attempts})"
            )
            retry = event.model_copy(update={"attempt": event.attempt + 1})
            await self._push(delivery.topic, retry.to_json())
            return

        target = dead_letter_topic(delivery.topic)
        logger.error(
            f"Event {event.event_id} failed after {event.attempt} attempts, moved to {target}"
        )
        await self._push(target, event.to_json())

"""In-process event queue for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional

from ..constants import DEFAULT_MAX_DELIVERY_ATTEMPTS
from .base import BaseTransport, dead_letter_topic

POLL_INTERVAL = 0.05


class InMemoryTransport(BaseTransport):
    """Keeps serialized events in a deque per topic."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_DELIVERY_ATTEMPTS) -> None:
        super().__init__(max_attempts)
        self._queues: Dict[str, Deque[str]] = defaultdict(deque)

    async def _push(self, topic: str, payload: str) -> None:
        self._queues[topic].append(payload)

    async def _pop(self, topic: str) -> Optional[str]:
        queue = self._queues[topic]
        if queue:
            return queue.popleft()
        await asyncio.sleep(POLL_INTERVAL)
        return None

    def pending(self, topic: str) -> int:
        """Number of events queued on ``topic``."""
        return len(self._queues[topic])

    def dead_letters(self, topic: str) -> List[str]:
        """Payloads parked after failing on ``topic``, oldest first."""
        return list(self._queues[dead_letter_topic(topic)])

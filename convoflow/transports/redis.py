"""Redis list queues for handing flow events to workers in other processes."""

from __future__ import annotations

import logging
from typing import Any, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..constants import DEFAULT_MAX_DELIVERY_ATTEMPTS
from .base import BaseTransport

logger = logging.getLogger(__name__)

QUEUE_PREFIX = "convoflow:"
# seconds BRPOP blocks before the subscriber re-checks its lifespan
POP_TIMEOUT = 1


class RedisTransport(BaseTransport):
    """LPUSH/BRPOP on one list per topic, ``convoflow:<topic>``.

    Dead letters land on ``convoflow:<topic>:dead`` where an operator can
    inspect them with LRANGE.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        max_attempts: int = DEFAULT_MAX_DELIVERY_ATTEMPTS,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisTransport")
        super().__init__(max_attempts)
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    @staticmethod
    def queue_name(topic: str) -> str:
        return f"{QUEUE_PREFIX}{topic}"

    async def connect(self) -> None:
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()
        logger.info(f"Connected to redis at {self.host}:{self.port}/{self.db}")

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    async def _push(self, topic: str, payload: str) -> None:
        client = await self._client()
        await client.lpush(self.queue_name(topic), payload)

    async def _pop(self, topic: str) -> Optional[str]:
        client = await self._client()
        result = await client.brpop(self.queue_name(topic), timeout=POP_TIMEOUT)
        if not result:
            return None
        _, payload = result
        return payload

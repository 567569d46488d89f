"""Event queues between webhook handlers and flow workers."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ConvoflowConfig, TransportConfig, load_config
from .base import BaseTransport, Delivery, dead_letter_topic
from .inmemory import InMemoryTransport


def _redis_transport(settings: TransportConfig) -> BaseTransport:
    from .redis import RedisTransport

    return RedisTransport(
        host=settings.redis.host,
        port=settings.redis.port,
        db=settings.redis.db,
        password=settings.redis.password,
        max_attempts=settings.max_attempts,
    )


def get_transport(
    backend: Optional[str] = None, config: Optional[ConvoflowConfig] = None
) -> BaseTransport:
    """Build the event queue named by ``backend``, ``CONVOFLOW_TRANSPORT`` or the config."""
    settings = (config or load_config()).transport
    name = (backend or os.getenv("CONVOFLOW_TRANSPORT") or settings.backend).lower()

    if name == "inmemory":
        return InMemoryTransport(max_attempts=settings.max_attempts)
    if name == "redis":
        return _redis_transport(settings)
    raise ValueError(f"Unsupported transport backend: {name}")


__all__ = [
    "BaseTransport",
    "Delivery",
    "InMemoryTransport",
    "dead_letter_topic",
    "get_transport",
]

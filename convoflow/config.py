from __future__ import annotations

import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_EVENT_TOPIC,
    DEFAULT_GRAPH_API_BASE_URL,
    DEFAULT_GRAPH_API_VERSION,
    DEFAULT_MAX_DELAY_SECONDS,
    DEFAULT_MAX_DELIVERY_ATTEMPTS,
    DEFAULT_MAX_STEPS,
    DEFAULT_WAITING_TTL_HOURS,
    DEFAULT_WORKER_CONCURRENCY,
)


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    topic: str = DEFAULT_EVENT_TOPIC
    # deliveries of one event before it is parked on "<topic>:dead"
    max_attempts: int = Field(default=DEFAULT_MAX_DELIVERY_ATTEMPTS, ge=1)
    # events a worker runs at the same time
    concurrency: int = Field(default=DEFAULT_WORKER_CONCURRENCY, ge=1)
    redis: RedisConfig = RedisConfig()


class ChannelsConfig(BaseModel):
    """Outbound messaging provider settings.

    ``credentials`` maps ``"<channel>:<account_id>"`` (or just ``"<channel>"``)
    to an access token. It is only consulted when an invocation does not carry
    its own token, e.g. when a reply resumes a suspended execution.
    """

    graph_api_base_url: str = DEFAULT_GRAPH_API_BASE_URL
    graph_api_version: str = DEFAULT_GRAPH_API_VERSION
    timeout: float = 10.0
    credentials: Dict[str, str] = Field(default_factory=dict)

    def token_for(self, channel: str, account_id: Optional[str] = None) -> Optional[str]:
        if account_id:
            token = self.credentials.get(f"{channel}:{account_id}")
            if token:
                return token
        return self.credentials.get(channel)


class EngineSettings(BaseModel):
    """Runtime limits for the flow interpreter."""

    message_gap_seconds: float = 1.0
    max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS
    max_steps: int = DEFAULT_MAX_STEPS
    waiting_ttl_hours: float = DEFAULT_WAITING_TTL_HOURS


class ConvoflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    channels: ChannelsConfig = ChannelsConfig()
    engine: EngineSettings = EngineSettings()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> ConvoflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CONVOFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("CONVOFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ConvoflowConfig(**data)
    else:
        config = ConvoflowConfig()

    env_db_url = os.getenv("CONVOFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config

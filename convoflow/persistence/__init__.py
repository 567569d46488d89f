"""Persistence layer for flow definitions and the execution ledger."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ConvoflowConfig, load_config
from .inmemory import InMemoryLedger
from .models import (
    ExecutionStatus,
    FlowExecution,
    NodeExecution,
    NodeStatus,
    UserInput,
)
from .repository import ExecutionLedger, FlowRepository
from .sqlite import SQLiteLedger

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresLedger
except ImportError:  # pragma: no cover - optional dependency
    PostgresLedger = None  # type: ignore

_ledger_instance: ExecutionLedger | None = None


def get_ledger(
    database_url: Optional[str] = None, config: Optional[ConvoflowConfig] = None
) -> ExecutionLedger:
    """Factory function to obtain the execution ledger.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``CONVOFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. URLs naming an async
    driver (``sqlite+aiosqlite://``, ``postgresql+asyncpg://``) go through
    SQLModel. When no database is configured, an in-memory ledger is returned.
    Every backend also serves as the flow repository.
    """

    global _ledger_instance
    if _ledger_instance is not None and database_url is None and config is None:
        return _ledger_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("CONVOFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _ledger_instance = InMemoryLedger()
        return _ledger_instance

    scheme = database_url.split("://", 1)[0]
    if "+" in scheme:
        from ..db import SQLModelLedger

        _ledger_instance = SQLModelLedger(database_url)
    elif scheme == "sqlite":
        path = database_url.replace("sqlite://", "", 1)
        _ledger_instance = SQLiteLedger(path)
    elif scheme in ("postgres", "postgresql"):
        if PostgresLedger is None:
            raise RuntimeError("Postgres support not available")
        _ledger_instance = PostgresLedger(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _ledger_instance


__all__ = [
    "ExecutionLedger",
    "ExecutionStatus",
    "FlowExecution",
    "FlowRepository",
    "InMemoryLedger",
    "NodeExecution",
    "NodeStatus",
    "PostgresLedger",
    "SQLiteLedger",
    "UserInput",
    "get_ledger",
]

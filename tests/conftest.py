"""Shared fixtures for convoflow tests."""

from typing import Any, Dict, List

import pytest

import convoflow.persistence as persistence
from convoflow.channels import InMemoryChannel
from convoflow.engine import FlowEngine
from convoflow.graph import FlowDefinition, StoredFlow
from convoflow.persistence import InMemoryLedger


class RecordingSleep:
    """Stands in for asyncio.sleep so tests never actually wait."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    monkeypatch.setattr(persistence, "_ledger_instance", None)
    monkeypatch.delenv("CONVOFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("CONVOFLOW_TRANSPORT", raising=False)
    monkeypatch.setenv("CONVOFLOW_CONFIG", str(tmp_path / "missing-config.yaml"))


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def channel() -> InMemoryChannel:
    return InMemoryChannel()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def engine(ledger, channel, sleeper) -> FlowEngine:
    return FlowEngine(ledger, channel_factory=lambda context: channel, sleep=sleeper)


@pytest.fixture
def save_flow(ledger):
    async def _save(
        definition: Dict[str, Any],
        flow_id: str = "welcome",
        channel: str = "messenger",
        account_id: str = "page-1",
    ) -> StoredFlow:
        flow = StoredFlow(
            flow_id=flow_id,
            channel=channel,
            account_id=account_id,
            definition=FlowDefinition.model_validate(definition),
        )
        await ledger.save_flow(flow)
        return flow

    return _save

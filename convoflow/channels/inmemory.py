"""In-memory channel for testing and dry runs."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..graph import ButtonOption
from .base import ChannelAdapter, ChannelError, SendResult


class InMemoryChannel(ChannelAdapter):
    """Records every outbound message instead of sending it.

    ``fail_on`` makes the n-th send (1-based) raise ``failure`` to simulate a
    provider outage part-way through a flow.
    """

    name = "inmemory"

    def __init__(
        self,
        fail_on: Optional[int] = None,
        failure: Optional[ChannelError] = None,
    ) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail_on = fail_on
        self.failure = failure or ChannelError("simulated send failure")
        self._attempts = 0

    def _record(self, message: Dict[str, Any]) -> SendResult:
        self._attempts += 1
        if self.fail_on is not None and self._attempts == self.fail_on:
            raise self.failure
        self.sent.append(message)
        return SendResult(message_id=f"mem-{self._attempts}", raw=message)

    async def send_text(self, recipient_id: str, text: str) -> SendResult:
        return self._record({"recipient_id": recipient_id, "kind": "text", "text": text})

    async def send_media(self, recipient_id: str, media_type: str, url: str) -> SendResult:
        return self._record(
            {"recipient_id": recipient_id, "kind": "media", "media_type": media_type, "url": url}
        )

    async def send_buttons(
        self, recipient_id: str, text: str, buttons: List[ButtonOption]
    ) -> SendResult:
        return self._record(
            {
                "recipient_id": recipient_id,
                "kind": "buttons",
                "text": text,
                "buttons": [button.title for button in buttons],
            }
        )

    async def send_quick_replies(
        self, recipient_id: str, text: str, replies: List[ButtonOption]
    ) -> SendResult:
        return self._record(
            {
                "recipient_id": recipient_id,
                "kind": "quick_replies",
                "text": text,
                "replies": [reply.title for reply in replies],
            }
        )

"""Base interface for outbound messaging channels."""

from __future__ import annotations

import abc
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..graph import ButtonOption


class ChannelError(Exception):
    """Sending through a channel failed."""


class ChannelConfigError(ChannelError):
    """The channel cannot send at all, e.g. no access token was supplied."""


class ChannelNetworkError(ChannelError):
    """The provider could not be reached (connect, read or timeout failure)."""


class ProviderError(ChannelError):
    """The provider answered with a non-2xx status or an error envelope."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class SendResult(BaseModel):
    """Provider acknowledgement of one outbound message."""

    message_id: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


def numbered_choices(text: str, buttons: Sequence[ButtonOption]) -> str:
    """Render buttons as a numbered list the subscriber can answer by index."""
    lines = [text, ""] if text else []
    lines.extend(f"{index}. {button.title}" for index, button in enumerate(buttons, start=1))
    return "\n".join(lines)


class ChannelAdapter(metaclass=abc.ABCMeta):
    """Sends messages to one subscriber through a messaging provider.

    Implementations raise a :class:`ChannelError` subclass on failure so that
    provider rejections and network problems stay distinguishable.
    """

    name: str = "base"

    @abc.abstractmethod
    async def send_text(self, recipient_id: str, text: str) -> SendResult:
        """Send a plain text message."""
        raise NotImplementedError

    @abc.abstractmethod
    async def send_media(self, recipient_id: str, media_type: str, url: str) -> SendResult:
        """Send an attachment (``image``, ``video``, ``audio`` or ``file``) by URL."""
        raise NotImplementedError

    async def send_buttons(
        self, recipient_id: str, text: str, buttons: List[ButtonOption]
    ) -> SendResult:
        """Send a message offering ``buttons``; numbered text unless overridden."""
        return await self.send_text(recipient_id, numbered_choices(text, buttons))

    async def send_quick_replies(
        self, recipient_id: str, text: str, replies: List[ButtonOption]
    ) -> SendResult:
        """Send ``text`` with suggested replies; numbered text unless overridden."""
        return await self.send_text(recipient_id, numbered_choices(text, replies))

    async def aclose(self) -> None:
        """Release provider resources (no-op by default)."""
        pass

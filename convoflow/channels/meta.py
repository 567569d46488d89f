"""Channels backed by the Meta Graph API (Messenger, Instagram, WhatsApp Cloud)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..constants import (
    DEFAULT_GRAPH_API_BASE_URL,
    DEFAULT_GRAPH_API_VERSION,
    MAX_QUICK_REPLIES,
)
from ..graph import ButtonOption
from .base import (
    ChannelAdapter,
    ChannelConfigError,
    ChannelNetworkError,
    ProviderError,
    SendResult,
    numbered_choices,
)

logger = logging.getLogger(__name__)

MAX_TEMPLATE_BUTTONS = 3
WHATSAPP_BUTTON_TITLE_LIMIT = 20
QUICK_REPLY_TITLE_LIMIT = 20


class GraphAPIChannel(ChannelAdapter):
    """Shared HTTP plumbing for Graph API based channels."""

    name = "graph"

    def __init__(
        self,
        access_token: Optional[str],
        account_id: Optional[str] = None,
        base_url: str = DEFAULT_GRAPH_API_BASE_URL,
        api_version: str = DEFAULT_GRAPH_API_VERSION,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.access_token = access_token
        self.account_id = account_id
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self.api_version}/{path.lstrip('/')}"

    def _require_token(self) -> str:
        if not self.access_token:
            raise ChannelConfigError(f"No access token configured for {self.name} channel")
        return self.access_token

    @staticmethod
    def _message_id(body: Dict[str, Any]) -> Optional[str]:
        if body.get("message_id"):
            return body["message_id"]
        messages = body.get("messages")
        if isinstance(messages, list) and messages:
            return messages[0].get("id")
        return None

    async def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> SendResult:
        try:
            response = await self._get_client().post(
                self._url(path), json=payload, params=params, headers=headers
            )
        except httpx.RequestError as exc:
            raise ChannelNetworkError(f"{self.name} request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        error = body.get("error")
        if response.is_error or error:
            details = error if isinstance(error, dict) else {}
            message = (
                details.get("message")
                or (error if isinstance(error, str) else None)
                or f"Failed to send message (HTTP {response.status_code})"
            )
            logger.error(f"{self.name} API error: {message}")
            raise ProviderError(message, status_code=response.status_code, code=details.get("code"))

        result = SendResult(message_id=self._message_id(body), raw=body)
        logger.debug(f"{self.name} message sent: {result.message_id}")
        return result

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class MessengerChannel(GraphAPIChannel):
    """Facebook Page messaging via ``/me/messages``."""

    name = "messenger"

    async def _send(self, recipient_id: str, message: Dict[str, Any]) -> SendResult:
        token = self._require_token()
        return await self._post(
            "me/messages",
            {"recipient": {"id": recipient_id}, "message": message},
            params={"access_token": token},
        )

    async def send_text(self, recipient_id: str, text: str) -> SendResult:
        return await self._send(recipient_id, {"text": text})

    async def send_media(self, recipient_id: str, media_type: str, url: str) -> SendResult:
        return await self._send(
            recipient_id, {"attachment": {"type": media_type, "payload": {"url": url}}}
        )

    async def send_buttons(
        self, recipient_id: str, text: str, buttons: List[ButtonOption]
    ) -> SendResult:
        # the button template holds at most three buttons; longer menus go out
        # as numbered text so every option stays selectable by index
        if not buttons or len(buttons) > MAX_TEMPLATE_BUTTONS:
            return await super().send_buttons(recipient_id, text, buttons)
        template = {
            "template_type": "button",
            "text": text,
            "buttons": [
                {
                    "type": "postback",
                    "title": button.title or "Button",
                    "payload": button.id or button.title,
                }
                for button in buttons
            ],
        }
        return await self._send(
            recipient_id, {"attachment": {"type": "template", "payload": template}}
        )

    async def send_quick_replies(
        self, recipient_id: str, text: str, replies: List[ButtonOption]
    ) -> SendResult:
        if not replies:
            return await self.send_text(recipient_id, text)
        quick_replies = [
            {
                "content_type": "text",
                "title": (reply.title or "Quick Reply")[:QUICK_REPLY_TITLE_LIMIT],
                "payload": reply.id or reply.title,
            }
            for reply in replies[:MAX_QUICK_REPLIES]
        ]
        return await self._send(recipient_id, {"text": text, "quick_replies": quick_replies})


class InstagramChannel(MessengerChannel):
    """Instagram messaging; no button templates, so buttons go out as numbered text."""

    name = "instagram"

    async def send_buttons(
        self, recipient_id: str, text: str, buttons: List[ButtonOption]
    ) -> SendResult:
        return await self.send_text(recipient_id, numbered_choices(text, buttons))


class WhatsAppChannel(GraphAPIChannel):
    """WhatsApp Cloud API; ``account_id`` is the sending phone number id."""

    name = "whatsapp"

    async def _send(self, recipient_id: str, message: Dict[str, Any]) -> SendResult:
        token = self._require_token()
        if not self.account_id:
            raise ChannelConfigError("No phone number id configured for whatsapp channel")
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient_id,
            **message,
        }
        return await self._post(
            f"{self.account_id}/messages",
            payload,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def send_text(self, recipient_id: str, text: str) -> SendResult:
        return await self._send(recipient_id, {"type": "text", "text": {"body": text}})

    async def send_media(self, recipient_id: str, media_type: str, url: str) -> SendResult:
        kind = "document" if media_type == "file" else media_type
        return await self._send(recipient_id, {"type": kind, kind: {"link": url}})

    async def send_buttons(
        self, recipient_id: str, text: str, buttons: List[ButtonOption]
    ) -> SendResult:
        if not buttons or len(buttons) > MAX_TEMPLATE_BUTTONS:
            return await super().send_buttons(recipient_id, text, buttons)
        interactive = {
            "type": "button",
            "body": {"text": text},
            "action": {
                "buttons": [
                    {
                        "type": "reply",
                        "reply": {
                            "id": button.id or str(index),
                            "title": (button.title or "Button")[:WHATSAPP_BUTTON_TITLE_LIMIT],
                        },
                    }
                    for index, button in enumerate(buttons, start=1)
                ]
            },
        }
        return await self._send(recipient_id, {"type": "interactive", "interactive": interactive})

    async def send_quick_replies(
        self, recipient_id: str, text: str, replies: List[ButtonOption]
    ) -> SendResult:
        # no quick replies on WhatsApp; short lists become reply buttons
        return await self.send_buttons(recipient_id, text, replies)

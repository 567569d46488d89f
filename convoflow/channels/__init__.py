"""Channel adapter factory and initialization."""

from __future__ import annotations

from typing import Dict, Optional, Type

import httpx

from ..config import ChannelsConfig
from ..contracts import ChannelContext
from .base import (
    ChannelAdapter,
    ChannelConfigError,
    ChannelError,
    ChannelNetworkError,
    ProviderError,
    SendResult,
)
from .inmemory import InMemoryChannel
from .meta import GraphAPIChannel, InstagramChannel, MessengerChannel, WhatsAppChannel

GRAPH_CHANNELS: Dict[str, Type[GraphAPIChannel]] = {
    "messenger": MessengerChannel,
    "facebook": MessengerChannel,
    "instagram": InstagramChannel,
    "whatsapp": WhatsAppChannel,
}


def get_channel(
    context: ChannelContext,
    config: Optional[ChannelsConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ChannelAdapter:
    """Factory function to build the adapter for ``context.channel``."""

    config = config or ChannelsConfig()
    name = context.channel.lower()

    if name == "inmemory":
        return InMemoryChannel()

    channel_cls = GRAPH_CHANNELS.get(name)
    if channel_cls is None:
        raise ValueError(f"Unsupported channel: {context.channel}")

    return channel_cls(
        access_token=context.access_token or config.token_for(name, context.account_id),
        account_id=context.account_id,
        base_url=config.graph_api_base_url,
        api_version=config.graph_api_version,
        timeout=config.timeout,
        client=client,
    )


__all__ = [
    "ChannelAdapter",
    "ChannelConfigError",
    "ChannelError",
    "ChannelNetworkError",
    "InMemoryChannel",
    "InstagramChannel",
    "MessengerChannel",
    "ProviderError",
    "SendResult",
    "WhatsAppChannel",
    "get_channel",
]

"""Channel adapter tests against a mocked Graph API."""

import json

import httpx
import pytest

from convoflow.channels import (
    ChannelConfigError,
    ChannelError,
    ChannelNetworkError,
    InMemoryChannel,
    InstagramChannel,
    MessengerChannel,
    ProviderError,
    WhatsAppChannel,
    get_channel,
)
from convoflow.config import ChannelsConfig
from convoflow.contracts import ChannelContext
from convoflow.graph import ButtonOption


def _client(requests, response=None):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return response or httpx.Response(200, json={"recipient_id": "u1", "message_id": "mid.1"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _buttons(count):
    return [ButtonOption(id=f"b{i}", title=f"Option {i}") for i in range(1, count + 1)]


@pytest.mark.asyncio
async def test_messenger_send_text():
    requests = []
    channel = MessengerChannel("page-token", client=_client(requests))

    result = await channel.send_text("u1", "Hello")

    assert result.message_id == "mid.1"
    request = requests[0]
    assert request.url.path == "/v21.0/me/messages"
    assert request.url.params["access_token"] == "page-token"
    assert json.loads(request.content) == {"recipient": {"id": "u1"}, "message": {"text": "Hello"}}


@pytest.mark.asyncio
async def test_messenger_buttons_use_postback_template():
    requests = []
    channel = MessengerChannel("page-token", client=_client(requests))
    buttons = [ButtonOption(id="b1", title="Yes"), ButtonOption(title="No")]

    await channel.send_buttons("u1", "Continue?", buttons)

    payload = json.loads(requests[0].content)["message"]["attachment"]["payload"]
    assert payload["template_type"] == "button"
    assert payload["text"] == "Continue?"
    assert payload["buttons"] == [
        {"type": "postback", "title": "Yes", "payload": "b1"},
        {"type": "postback", "title": "No", "payload": "No"},
    ]


@pytest.mark.asyncio
async def test_messenger_long_menus_fall_back_to_numbered_text():
    requests = []
    channel = MessengerChannel("page-token", client=_client(requests))

    await channel.send_buttons("u1", "Pick", _buttons(4))

    text = json.loads(requests[0].content)["message"]["text"]
    assert text == "Pick\n\n1. Option 1\n2. Option 2\n3. Option 3\n4. Option 4"


@pytest.mark.asyncio
async def test_messenger_quick_replies_carry_option_ids():
    requests = []
    channel = MessengerChannel("page-token", client=_client(requests))
    replies = [ButtonOption(id="qr-1", title="A very long quick reply title"), ButtonOption(title="No")]

    await channel.send_quick_replies("u1", "Sure?", replies)

    message = json.loads(requests[0].content)["message"]
    assert message == {
        "text": "Sure?",
        "quick_replies": [
            {"content_type": "text", "title": "A very long quick re", "payload": "qr-1"},
            {"content_type": "text", "title": "No", "payload": "No"},
        ],
    }


@pytest.mark.asyncio
async def test_whatsapp_quick_replies_become_reply_buttons():
    requests = []
    channel = WhatsAppChannel("wa-token", account_id="phone-1", client=_client(requests))

    await channel.send_quick_replies("15550001", "Sure?", _buttons(2))

    body = json.loads(requests[0].content)
    assert body["type"] == "interactive"
    assert [b["reply"]["id"] for b in body["interactive"]["action"]["buttons"]] == ["b1", "b2"]


@pytest.mark.asyncio
async def test_instagram_sends_buttons_as_numbered_text():
    requests = []
    channel = InstagramChannel("ig-token", client=_client(requests))

    await channel.send_buttons("u1", "Pick", _buttons(2))

    body = json.loads(requests[0].content)
    assert body["message"] == {"text": "Pick\n\n1. Option 1\n2. Option 2"}


@pytest.mark.asyncio
async def test_whatsapp_payloads():
    requests = []
    response = httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})
    channel = WhatsAppChannel("wa-token", account_id="12345", client=_client(requests, response))

    result = await channel.send_media("5511999", "file", "https://cdn/x.pdf")
    await channel.send_buttons(
        "5511999", "Pick", [ButtonOption(id="b1", title="A very long button title")]
    )

    assert result.message_id == "wamid.1"
    first, second = requests
    assert first.url.path == "/v21.0/12345/messages"
    assert first.headers["Authorization"] == "Bearer wa-token"
    media = json.loads(first.content)
    assert media["messaging_product"] == "whatsapp"
    assert media["to"] == "5511999"
    assert media["type"] == "document"
    assert media["document"] == {"link": "https://cdn/x.pdf"}
    interactive = json.loads(second.content)["interactive"]
    reply = interactive["action"]["buttons"][0]["reply"]
    assert reply == {"id": "b1", "title": "A very long button t"}


@pytest.mark.asyncio
async def test_provider_error_envelope():
    requests = []
    response = httpx.Response(
        400, json={"error": {"message": "Invalid OAuth access token", "code": 190}}
    )
    channel = MessengerChannel("bad", client=_client(requests, response))

    with pytest.raises(ProviderError) as exc_info:
        await channel.send_text("u1", "Hello")

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == 190
    assert "Invalid OAuth" in str(exc_info.value)


@pytest.mark.asyncio
async def test_network_failure_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    channel = MessengerChannel("token", client=client)

    with pytest.raises(ChannelNetworkError):
        await channel.send_text("u1", "Hello")


@pytest.mark.asyncio
async def test_missing_credentials_raise_config_error():
    with pytest.raises(ChannelConfigError):
        await MessengerChannel(None, client=_client([])).send_text("u1", "Hi")
    with pytest.raises(ChannelConfigError):
        await WhatsAppChannel("token", client=_client([])).send_text("u1", "Hi")


def test_get_channel_resolves_adapter_and_credentials():
    config = ChannelsConfig(credentials={"instagram:ig-1": "stored-token"})

    channel = get_channel(ChannelContext(channel="Instagram", account_id="ig-1"), config)
    assert isinstance(channel, InstagramChannel)
    assert channel.access_token == "stored-token"

    explicit = get_channel(
        ChannelContext(channel="facebook", access_token="request-token"), config
    )
    assert isinstance(explicit, MessengerChannel)
    assert explicit.access_token == "request-token"

    assert isinstance(get_channel(ChannelContext(channel="inmemory")), InMemoryChannel)
    with pytest.raises(ValueError):
        get_channel(ChannelContext(channel="telegram"))


@pytest.mark.asyncio
async def test_inmemory_channel_fails_on_requested_attempt():
    channel = InMemoryChannel(fail_on=2)

    await channel.send_text("u1", "one")
    with pytest.raises(ChannelError):
        await channel.send_text("u1", "two")
    await channel.send_media("u1", "image", "https://x/y.png")

    assert [m["kind"] for m in channel.sent] == ["text", "media"]

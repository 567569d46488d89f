"""Transport and dispatcher tests."""

import pytest

from convoflow.contracts import FlowEvent, TriggerRequest
from convoflow.dispatch import FlowDispatcher
from convoflow.transports import Delivery, dead_letter_topic
from convoflow.transports.inmemory import InMemoryTransport


def _trigger(flow_id="f1", subscriber_id="u1"):
    return FlowEvent(kind="trigger", trigger=TriggerRequest(flow_id=flow_id, subscriber_id=subscriber_id))


async def _take(transport, topic, count):
    deliveries = []
    async for delivery in transport.subscribe(topic, lifespan=1):
        deliveries.append(delivery)
        if len(deliveries) == count:
            break
    return deliveries


@pytest.mark.asyncio
async def test_inmemory_transport_basic():
    """Published events come back out of subscribe in order."""
    transport = InMemoryTransport()
    first, second = _trigger("f1", "u1"), _trigger("f2", "u2")

    await transport.publish("events", first)
    await transport.publish("events", second)

    received = []
    async for delivery in transport.subscribe("events"):
        received.append(delivery.event.event_id)
        assert delivery.topic == "events"
        await transport.ack(delivery)
        if len(received) == 2:
            break

    assert received == [first.event_id, second.event_id]
    assert transport.pending("events") == 0


@pytest.mark.asyncio
async def test_subscribe_stops_after_lifespan():
    transport = InMemoryTransport()
    events = [delivery async for delivery in transport.subscribe("idle", lifespan=0.2)]
    assert events == []


@pytest.mark.asyncio
async def test_nack_requeues_until_attempts_run_out():
    transport = InMemoryTransport(max_attempts=2)
    event = _trigger()
    await transport.publish("events", event)

    (delivery,) = await _take(transport, "events", 1)
    assert delivery.event.attempt == 1
    await transport.nack(delivery)

    (retry,) = await _take(transport, "events", 1)
    assert retry.event.event_id == event.event_id
    assert retry.event.attempt == 2
    await transport.nack(retry)

    assert transport.pending("events") == 0
    (parked,) = transport.dead_letters("events")
    assert FlowEvent.from_json(parked).event_id == event.event_id


@pytest.mark.asyncio
async def test_nack_without_requeue_parks_immediately():
    transport = InMemoryTransport()
    await transport.nack(Delivery(topic="events", event=_trigger()), requeue=False)

    assert transport.pending("events") == 0
    assert transport.pending(dead_letter_topic("events")) == 1


@pytest.mark.asyncio
async def test_malformed_payload_goes_to_dead_letters():
    transport = InMemoryTransport()
    await transport._push("events", '{"kind": "resume"}')
    good = _trigger()
    await transport.publish("events", good)

    (delivery,) = await _take(transport, "events", 1)

    assert delivery.event.event_id == good.event_id
    assert transport.dead_letters("events") == ['{"kind": "resume"}']


@pytest.mark.asyncio
async def test_dispatcher_publishes_trigger_and_resume():
    transport = InMemoryTransport()
    dispatcher = FlowDispatcher(transport, topic="flows")

    trigger_id = await dispatcher.trigger("welcome", "u1", event_id="mid.42")
    resume_id = await dispatcher.resume("exec-1", "2", channel_access_token="tok")

    assert transport.pending("flows") == 2
    seen = [delivery.event for delivery in await _take(transport, "flows", 2)]

    assert seen[0].event_id == trigger_id
    assert seen[0].trigger.flow_id == "welcome"
    assert seen[0].trigger.event_id == "mid.42"
    assert seen[1].event_id == resume_id
    assert seen[1].resume.resume_flow_execution_id == "exec-1"
    assert seen[1].resume.channel_access_token == "tok"


def test_event_json_roundtrip_and_validation():
    event = FlowEvent(kind="trigger", trigger=TriggerRequest(flowId="f1", subscriberId="u1"))
    restored = FlowEvent.from_json(event.to_json())
    assert restored.trigger.flow_id == "f1"
    assert restored.event_id == event.event_id
    assert restored.attempt == 1

    with pytest.raises(ValueError):
        FlowEvent(kind="resume")


@pytest.mark.asyncio
async def test_redis_transport_import():
    """Redis transport can be constructed without a server."""
    from convoflow.transports.redis import RedisTransport

    transport = RedisTransport(max_attempts=5)
    assert transport.host == "localhost"
    assert transport.port == 6379
    assert transport.max_attempts == 5
    assert RedisTransport.queue_name("flow-events") == "convoflow:flow-events"
    assert RedisTransport.queue_name(dead_letter_topic("flow-events")) == "convoflow:flow-events:dead"

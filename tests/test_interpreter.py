"""Interpreter tests driving flows node by node."""

import pytest

from convoflow.channels import InMemoryChannel, ProviderError
from convoflow.config import EngineSettings
from convoflow.contracts import ChannelContext, Completed, ExecutionContext, Failed, Suspended
from convoflow.graph import FlowDefinition
from convoflow.interpreter import FlowInterpreter


def _node(node_id, node_type, **data):
    return {"id": node_id, "type": node_type, "data": data}


def _edge(source, target, handle=None):
    edge = {"id": f"{source}-{target}", "source": source, "target": target}
    if handle:
        edge["sourceHandle"] = handle
    return edge


async def _run(ledger, channel, sleeper, flow, settings=None, start="start"):
    definition = FlowDefinition.model_validate(flow)
    execution = await ledger.create_execution("flow-1", "user-1", "inmemory")
    interpreter = FlowInterpreter(ledger, lambda context: channel, settings, sleep=sleeper)
    context = ExecutionContext(
        execution_id=execution.id,
        flow_id="flow-1",
        subscriber_id="user-1",
        channel=ChannelContext(channel="inmemory"),
    )
    outcome = await interpreter.run(definition.require_node(start), definition, context)
    rows = await ledger.get_node_executions(execution.id)
    return outcome, rows


def _linear(*texts):
    nodes = [_node("start", "start")]
    edges = []
    previous = "start"
    for index, text in enumerate(texts, start=1):
        node_id = f"t{index}"
        nodes.append(_node(node_id, "text", content=text))
        edges.append(_edge(previous, node_id, "message" if previous != "start" else None))
        previous = node_id
    return {"nodes": nodes, "edges": edges}


@pytest.mark.asyncio
async def test_linear_text_chain_visits_every_node_once(ledger, channel, sleeper):
    outcome, rows = await _run(ledger, channel, sleeper, _linear("one", "two", "three"))

    assert outcome == Completed()
    assert [row.node_id for row in rows] == ["start", "t1", "t2", "t3"]
    assert all(row.status == "success" for row in rows)
    assert all(row.execution_time_ms is not None for row in rows)
    ids = [row.id for row in rows]
    assert ids == sorted(ids) and len(set(ids)) == len(ids)
    assert [m["text"] for m in channel.sent] == ["one", "two", "three"]
    assert all(m["recipient_id"] == "user-1" for m in channel.sent)
    # gap between consecutive messages, none after the last one
    assert sleeper.calls == [1.0, 1.0]


@pytest.mark.asyncio
async def test_message_gap_can_be_disabled(ledger, channel, sleeper):
    settings = EngineSettings(message_gap_seconds=0)
    await _run(ledger, channel, sleeper, _linear("one", "two"), settings)
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_button_node_suspends_without_advancing(ledger, channel, sleeper):
    flow = {
        "nodes": [
            _node("start", "start"),
            _node("menu", "button", content="Pick", buttons=[{"id": "b1", "title": "A", "nextNode": "a"}]),
            _node("a", "text", content="A!"),
        ],
        "edges": [_edge("start", "menu")],
    }

    outcome, rows = await _run(ledger, channel, sleeper, flow)

    assert outcome == Suspended(node_id="menu")
    assert [(row.node_id, row.status) for row in rows] == [("start", "success"), ("menu", "success")]
    assert channel.sent == [{"recipient_id": "user-1", "kind": "buttons", "text": "Pick", "buttons": ["A"]}]


@pytest.mark.asyncio
async def test_button_node_without_text_uses_default_prompt(ledger, channel, sleeper):
    flow = {
        "nodes": [_node("start", "start"), _node("menu", "button", buttons=[{"title": "A"}])],
        "edges": [_edge("start", "menu")],
    }
    await _run(ledger, channel, sleeper, flow)
    assert channel.sent[0]["text"] == "Choose an option:"


@pytest.mark.asyncio
async def test_input_node_sends_prompt_and_suspends(ledger, channel, sleeper):
    flow = {
        "nodes": [_node("start", "start"), _node("ask", "input", promptText="Your age?", variableName="age")],
        "edges": [_edge("start", "ask")],
    }

    outcome, _ = await _run(ledger, channel, sleeper, flow)

    assert outcome == Suspended(node_id="ask")
    assert channel.sent[0]["text"] == "Your age?"


@pytest.mark.asyncio
async def test_media_nodes_send_and_missing_urls_are_skipped(ledger, channel, sleeper):
    flow = {
        "nodes": [
            _node("start", "start"),
            _node("img", "image", imageUrl="https://cdn/pic.png"),
            _node("vid", "video"),
            _node("doc", "file", fileUrl="https://cdn/terms.pdf"),
        ],
        "edges": [_edge("start", "img"), _edge("img", "vid"), _edge("vid", "doc")],
    }

    outcome, rows = await _run(ledger, channel, sleeper, flow)

    assert outcome == Completed()
    assert [row.status for row in rows] == ["success"] * 4
    assert [(m["media_type"], m["url"]) for m in channel.sent] == [
        ("image", "https://cdn/pic.png"),
        ("file", "https://cdn/terms.pdf"),
    ]


@pytest.mark.asyncio
async def test_empty_text_node_sends_default_greeting(ledger, channel, sleeper):
    flow = {
        "nodes": [_node("start", "start"), _node("hi", "text"), _node("after", "text", content="next")],
        "edges": [_edge("start", "hi"), _edge("hi", "after")],
    }

    outcome, _ = await _run(ledger, channel, sleeper, flow)

    assert outcome == Completed()
    assert [m["text"] for m in channel.sent] == ["Hello!", "next"]


@pytest.mark.asyncio
async def test_text_node_with_legacy_buttons_sends_quick_replies_and_suspends(ledger, channel, sleeper):
    flow = {
        "nodes": [
            _node("start", "start"),
            _node("ask", "text", content="Size?", buttons=[{"id": "s", "title": "Small"}, {"label": "Large"}]),
            _node("after", "text", content="never sent"),
        ],
        "edges": [_edge("start", "ask"), _edge("ask", "after", "message")],
    }

    outcome, rows = await _run(ledger, channel, sleeper, flow)

    assert outcome == Suspended(node_id="ask")
    assert [row.node_id for row in rows] == ["start", "ask"]
    assert channel.sent == [
        {"recipient_id": "user-1", "kind": "quick_replies", "text": "Size?", "replies": ["Small", "Large"]}
    ]
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_sequence_delay_is_capped(ledger, channel, sleeper):
    flow = {
        "nodes": [
            _node("start", "start"),
            _node("wait_long", "sequence", delayDuration=600),
            _node("wait_legacy", "sequence", delay=1500),
        ],
        "edges": [_edge("start", "wait_long"), _edge("wait_long", "wait_legacy")],
    }
    settings = EngineSettings(max_delay_seconds=5, message_gap_seconds=0)

    outcome, _ = await _run(ledger, channel, sleeper, flow, settings)

    assert outcome == Completed()
    assert sleeper.calls == [5, 1.5]


@pytest.mark.asyncio
async def test_condition_uses_captured_input(ledger, channel, sleeper):
    flow = {
        "nodes": [
            _node("start", "start"),
            _node("check", "condition", condition={"field": "answer", "operator": "equals", "value": "YES", "trueNode": "yes", "falseNode": "no"}),
            _node("yes", "text", content="agreed {{answer}}"),
            _node("no", "text", content="declined"),
        ],
        "edges": [_edge("start", "check")],
    }
    definition = FlowDefinition.model_validate(flow)
    execution = await ledger.create_execution("flow-1", "user-1", "inmemory")
    await ledger.record_user_input(execution.id, "ask", "answer", "yes")
    interpreter = FlowInterpreter(ledger, lambda context: channel, sleep=sleeper)
    context = ExecutionContext(
        execution_id=execution.id, flow_id="flow-1", subscriber_id="user-1",
        channel=ChannelContext(channel="inmemory"),
    )

    outcome = await interpreter.run(definition.find_start(), definition, context)

    assert outcome == Completed()
    assert [m["text"] for m in channel.sent] == ["agreed yes"]


@pytest.mark.asyncio
async def test_condition_on_unbound_variable_takes_false_edge(ledger, channel, sleeper):
    flow = {
        "nodes": [
            _node("start", "start"),
            _node("check", "condition", condition={"field": "missing", "operator": "is_empty"}),
            _node("yes", "text", content="yes"),
            _node("no", "text", content="no"),
        ],
        "edges": [
            _edge("start", "check"),
            _edge("check", "yes", "true"),
            _edge("check", "no", "false"),
        ],
    }

    outcome, _ = await _run(ledger, channel, sleeper, flow)

    assert outcome == Completed()
    assert [m["text"] for m in channel.sent] == ["no"]


@pytest.mark.asyncio
async def test_unknown_node_type_passes_through(ledger, channel, sleeper):
    flow = {
        "nodes": [_node("start", "start"), _node("x", "carousel"), _node("t", "text", content="after")],
        "edges": [_edge("start", "x"), _edge("x", "t")],
    }

    outcome, rows = await _run(ledger, channel, sleeper, flow)

    assert outcome == Completed()
    assert [(row.node_id, row.node_type) for row in rows][1] == ("x", "carousel")
    assert channel.sent[0]["text"] == "after"


@pytest.mark.asyncio
async def test_transport_failure_marks_row_failed(ledger, sleeper):
    channel = InMemoryChannel(fail_on=2, failure=ProviderError("rate limited", status_code=429))

    outcome, rows = await _run(ledger, channel, sleeper, _linear("one", "two", "three"))

    assert isinstance(outcome, Failed)
    assert outcome.reason == "Node t2 execution failed: rate limited"
    assert [(row.node_id, row.status) for row in rows] == [
        ("start", "success"),
        ("t1", "success"),
        ("t2", "failed"),
    ]
    assert rows[2].error_message == "rate limited"
    assert [m["text"] for m in channel.sent] == ["one"]


@pytest.mark.asyncio
async def test_dangling_edge_is_a_definition_error(ledger, channel, sleeper):
    flow = {"nodes": [_node("start", "start")], "edges": [_edge("start", "ghost")]}

    outcome, rows = await _run(ledger, channel, sleeper, flow)

    assert isinstance(outcome, Failed)
    assert "ghost" in outcome.reason
    assert rows[0].status == "failed"


@pytest.mark.asyncio
async def test_cycle_is_stopped_by_step_limit(ledger, channel, sleeper):
    flow = {
        "nodes": [_node("start", "start"), _node("a", "sequence"), _node("b", "sequence")],
        "edges": [_edge("start", "a"), _edge("a", "b"), _edge("b", "a")],
    }
    settings = EngineSettings(max_steps=10)

    outcome, rows = await _run(ledger, channel, sleeper, flow, settings)

    assert isinstance(outcome, Failed)
    assert "Step limit of 10" in outcome.reason
    assert len(rows) == 10


@pytest.mark.asyncio
async def test_unsupported_channel_fails_before_any_node(ledger, sleeper):
    def factory(context):
        raise ValueError(f"Unsupported channel: {context.channel}")

    definition = FlowDefinition.model_validate(_linear("one"))
    execution = await ledger.create_execution("flow-1", "user-1", "fax")
    interpreter = FlowInterpreter(ledger, factory, sleep=sleeper)
    context = ExecutionContext(
        execution_id=execution.id, flow_id="flow-1", subscriber_id="user-1",
        channel=ChannelContext(channel="fax"),
    )

    outcome = await interpreter.run(definition.find_start(), definition, context)

    assert outcome == Failed(reason="Unsupported channel: fax")
    assert await ledger.get_node_executions(execution.id) == []

"""Flow definition model tests."""

import pytest

from convoflow.graph import FlowDefinition, FlowDefinitionError, Node, NodeType


def _definition() -> FlowDefinition:
    return FlowDefinition.model_validate(
        {
            "nodes": [
                {"id": "start", "type": "start", "data": {}},
                {"id": "menu", "type": "button", "data": {
                    "content": "Pick one",
                    "buttons": [
                        {"id": "b1", "title": "Yes", "nextNode": "yes"},
                        {"id": "b2", "label": "No"},
                    ],
                }},
                {"id": "yes", "type": "text", "data": {"content": "Great"}},
                {"id": "no", "type": "text", "data": {"content": "Okay"}},
                {"id": "fallback", "type": "text", "data": {"content": "Hmm"}},
            ],
            "edges": [
                {"id": "e1", "source": "start", "target": "menu"},
                {"id": "e2", "source": "menu", "target": "no", "sourceHandle": "b2"},
                {"id": "e3", "source": "menu", "target": "yes", "sourceHandle": "buttons"},
                {"id": "e4", "source": "menu", "target": "fallback", "sourceHandle": "message"},
            ],
        }
    )


def test_find_start_and_lookup():
    definition = _definition()
    assert definition.find_start().id == "start"
    assert definition.get_node("yes").text == "Great"
    assert definition.get_node("missing") is None
    with pytest.raises(FlowDefinitionError):
        definition.require_node("missing")


def test_missing_start_node_raises():
    definition = FlowDefinition.model_validate(
        {"nodes": [{"id": "a", "type": "text", "data": {}}], "edges": []}
    )
    with pytest.raises(FlowDefinitionError, match="No start node"):
        definition.find_start()


def test_default_target_skips_branch_and_button_handles():
    definition = _definition()
    assert definition.default_target("start") == "menu"
    assert definition.default_target("menu") == "fallback"
    assert definition.handle_target("menu", "b2") == "no"
    assert definition.default_target("yes") is None


def test_button_options_accept_label_and_aliases():
    buttons = _definition().get_node("menu").buttons
    assert [b.title for b in buttons] == ["Yes", "No"]
    assert buttons[0].next_node == "yes"
    assert buttons[1].next_node is None


def test_condition_value_is_stringified():
    node = Node(
        id="c",
        type="condition",
        data={"condition": {"field": "age", "operator": "equals", "value": 17, "trueNode": "t"}},
    )
    spec = node.condition
    assert spec.value == "17"
    assert spec.true_node == "t"
    assert spec.false_node is None


def test_sequence_delay_units():
    assert Node(id="s", type="sequence", data={"delayDuration": 2}).delay_seconds == 2.0
    assert Node(id="s", type="sequence", data={"delay": 1500}).delay_seconds == 1.5
    assert Node(id="s", type="sequence", data={"delay": "bad"}).delay_seconds == 0.0
    assert Node(id="s", type="sequence", data={}).delay_seconds == 0.0


def test_media_url_and_input_fields():
    assert Node(id="i", type="image", data={"imageUrl": "https://x/y.png"}).media_url == "https://x/y.png"
    assert Node(id="t", type="text", data={"imageUrl": "ignored"}).media_url is None
    node = Node(id="q", type="input", data={"promptText": "Age?", "variableName": "age"})
    assert node.prompt == "Age?"
    assert node.variable_name == "age"


def test_text_choices_prefer_attached_buttons_and_cap_counts():
    nodes = [{"id": "ask", "type": "text", "data": {"content": "Pick"}}]
    edges = []
    for index in range(5):
        nodes.append({"id": f"b{index}", "type": "button", "data": {"buttonName": f"B{index}"}})
        edges.append({"source": "ask", "target": f"b{index}", "sourceHandle": "buttons"})
        edges.append({"source": f"b{index}", "target": "end"})
    for index in range(15):
        nodes.append({"id": f"q{index}", "type": "quickReply", "data": {}})
        edges.append({"source": "ask", "target": f"q{index}", "sourceHandle": "quickReplies"})
    nodes.append({"id": "end", "type": "text", "data": {}})
    # a child of the wrong type on the handle is ignored
    nodes.append({"id": "odd", "type": "image", "data": {}})
    edges.append({"source": "ask", "target": "odd", "sourceHandle": "buttons"})
    definition = FlowDefinition.model_validate({"nodes": nodes, "edges": edges})

    style, choices = definition.text_choices("ask")
    assert style == "buttons"
    assert [(c.id, c.title, c.next_node) for c in choices] == [
        ("b0", "B0", "end"), ("b1", "B1", "end"), ("b2", "B2", "end"),
    ]

    replies = definition.attached_choices("ask", "quickReplies", NodeType.QUICK_REPLY, 13)
    assert len(replies) == 13
    assert replies[0].title == "Quick Reply"
    assert replies[0].next_node is None

    assert definition.default_target("ask") is None
    assert FlowDefinition.model_validate(
        {"nodes": [{"id": "t", "type": "text", "data": {}}]}
    ).text_choices("t") == (None, [])

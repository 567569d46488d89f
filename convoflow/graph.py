"""In-memory model of a flow definition produced by the flow editor."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from .constants import (
    DEFAULT_CHOICE_TITLE,
    DEFAULT_QUICK_REPLY_TITLE,
    MAX_ATTACHED_BUTTONS,
    MAX_QUICK_REPLIES,
)

# Edge handles that label a branch rather than the plain continuation.
BRANCH_HANDLES = frozenset({"true", "false", "buttons", "quickReplies"})


class FlowDefinitionError(Exception):
    """The flow graph is unusable, e.g. no start node or a dangling reference."""


class NodeType(str, Enum):
    START = "start"
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    BUTTON = "button"
    INPUT = "input"
    SEQUENCE = "sequence"
    CONDITION = "condition"
    QUICK_REPLY = "quickReply"


MEDIA_URL_KEYS = {
    NodeType.IMAGE.value: "imageUrl",
    NodeType.VIDEO.value: "videoUrl",
    NodeType.AUDIO.value: "audioUrl",
    NodeType.FILE.value: "fileUrl",
}


class ButtonOption(BaseModel):
    """One choice on a button node."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    title: str = ""
    next_node: Optional[str] = Field(default=None, alias="nextNode")

    @model_validator(mode="before")
    @classmethod
    def _title_from_label(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("title") and data.get("label"):
            data = {**data, "title": data["label"]}
        return data


class ConditionSpec(BaseModel):
    """Branching rule of a condition node."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    field: str = ""
    operator: str = ""
    value: str = ""
    true_node: Optional[str] = Field(default=None, alias="trueNode")
    false_node: Optional[str] = Field(default=None, alias="falseNode")

    @model_validator(mode="before")
    @classmethod
    def _stringify_value(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("value") is not None:
            data = {**data, "value": str(data["value"])}
        return data


class Node(BaseModel):
    """A single step of a flow.

    ``type`` is kept as a plain string so that node types added to the editor
    later still load; the interpreter passes through types it does not know.
    ``data`` is the raw editor payload and is read through the accessors below.
    """

    id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.data.get("content") or self.data.get("label") or ""

    @property
    def prompt(self) -> str:
        return self.data.get("promptText") or self.data.get("content") or ""

    @property
    def media_url(self) -> Optional[str]:
        key = MEDIA_URL_KEYS.get(self.type)
        return self.data.get(key) if key else None

    @property
    def buttons(self) -> List[ButtonOption]:
        raw = self.data.get("buttons") or []
        return [ButtonOption.model_validate(item) for item in raw if isinstance(item, dict)]

    @property
    def choice_title(self) -> str:
        """Label of a button or quick reply node attached to a text node."""
        if self.type == NodeType.QUICK_REPLY:
            return self.data.get("replyText") or self.data.get("label") or DEFAULT_QUICK_REPLY_TITLE
        return self.data.get("buttonName") or self.data.get("label") or DEFAULT_CHOICE_TITLE

    @property
    def condition(self) -> Optional[ConditionSpec]:
        raw = self.data.get("condition")
        if not isinstance(raw, dict):
            return None
        return ConditionSpec.model_validate(raw)

    @property
    def variable_name(self) -> Optional[str]:
        return self.data.get("variableName") or None

    @property
    def delay_seconds(self) -> float:
        """Configured pause of a sequence node.

        ``delayDuration`` is in seconds; older flows store ``delay`` in
        milliseconds.
        """
        if self.data.get("delayDuration") is not None:
            return _to_float(self.data["delayDuration"])
        if self.data.get("delay") is not None:
            return _to_float(self.data["delay"]) / 1000
        return 0.0


class Edge(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")


class FlowDefinition(BaseModel):
    """Snapshot of a flow graph. Read-only for the engine."""

    model_config = ConfigDict(extra="ignore")

    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    _by_id: Dict[str, Node] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._by_id = {node.id: node for node in self.nodes}

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._by_id.get(node_id)

    def require_node(self, node_id: str) -> Node:
        node = self._by_id.get(node_id)
        if node is None:
            raise FlowDefinitionError(f"Node {node_id} not found in flow")
        return node

    def find_start(self) -> Node:
        for node in self.nodes:
            if node.type == NodeType.START or node.id == "start":
                return node
        raise FlowDefinitionError("No start node found in flow")

    def outgoing(self, source_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == source_id]

    def handle_target(self, source_id: str, handle: str) -> Optional[str]:
        for edge in self.outgoing(source_id):
            if edge.source_handle == handle:
                return edge.target
        return None

    def default_target(self, source_id: str) -> Optional[str]:
        """Target of the unconditional edge leaving ``source_id``, if any."""
        reserved = set(BRANCH_HANDLES)
        node = self._by_id.get(source_id)
        if node is not None and node.type in (NodeType.BUTTON, NodeType.TEXT):
            reserved.update(button.id for button in node.buttons if button.id)

        candidates = [
            edge for edge in self.outgoing(source_id) if edge.source_handle not in reserved
        ]
        for edge in candidates:
            if edge.source_handle in (None, "message"):
                return edge.target
        return candidates[0].target if candidates else None

    def attached_choices(
        self, source_id: str, handle: str, child_type: NodeType, limit: int
    ) -> List[ButtonOption]:
        """Choice nodes hanging off ``handle`` of ``source_id``, as button options.

        The option id is the child node id; choosing it continues along the
        child's own outgoing edge.
        """
        options = []
        for edge in self.outgoing(source_id):
            if edge.source_handle != handle:
                continue
            child = self._by_id.get(edge.target)
            if child is None or child.type != child_type:
                continue
            options.append(
                ButtonOption(
                    id=child.id,
                    title=child.choice_title,
                    next_node=self.default_target(child.id),
                )
            )
        return options[:limit]

    def text_choices(self, node_id: str) -> Tuple[Optional[str], List[ButtonOption]]:
        """Choices offered with a text node and how to present them.

        Attached button nodes win and go out as ``"buttons"``. Otherwise
        attached quick reply nodes, or the node's own legacy ``buttons`` list,
        go out as ``"quick_replies"``. ``(None, [])`` means plain text.
        """
        buttons = self.attached_choices(
            node_id, "buttons", NodeType.BUTTON, MAX_ATTACHED_BUTTONS
        )
        if buttons:
            return "buttons", buttons
        replies = self.attached_choices(
            node_id, "quickReplies", NodeType.QUICK_REPLY, MAX_QUICK_REPLIES
        )
        if not replies:
            node = self._by_id.get(node_id)
            replies = node.buttons[:MAX_QUICK_REPLIES] if node is not None else []
        if replies:
            return "quick_replies", replies
        return None, []


class StoredFlow(BaseModel):
    """A flow definition as held by the flow store."""

    flow_id: str
    channel: str
    account_id: Optional[str] = None
    definition: FlowDefinition = Field(default_factory=FlowDefinition)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _to_float(value: Any) -> float:
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return 0.0

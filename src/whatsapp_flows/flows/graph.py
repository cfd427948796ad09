"""
Flow Graph

Typed model of a tenant-authored automation graph.

Nodes are a tagged union keyed on the node kind (`data.type`, falling
back to the node's own `type`). Unrecognised kinds are kept as
UnknownNodeData so the engine can stall on them instead of failing the
whole flow. Nodes and edges are held in an arena indexed by node id.
"""

import logging
import re
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from whatsapp_flows.flows.errors import FlowGraphError

logger = logging.getLogger(__name__)

TRIGGER_NODE_ID = "1"
ELSE_HANDLE = "else"

# Reactflow ids may arrive as numbers
NodeId = Annotated[str, BeforeValidator(lambda v: str(v) if isinstance(v, (int, float)) else v)]


class NodeKind(str, Enum):
    """Node types understood by the engine."""

    KEYWORD_TRIGGER = "keywordTrigger"
    MESSAGE = "message"
    CAPTURE_DATA = "captureData"
    CONDITIONAL = "conditional"
    INTERNAL_ACTION = "internalAction"


KNOWN_NODE_KINDS = frozenset(kind.value for kind in NodeKind)


class KeywordMatchType(str, Enum):
    EXACT = "exact"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    REGEX = "regex"


def normalize_text(text: str | None) -> str:
    """Normalise inbound text for keyword matching (lowercase, trimmed)."""
    return (text or "").strip().lower()


class _FlowModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Keyword(_FlowModel):
    """A trigger keyword with its match rule."""

    value: str
    match_type: str = Field(KeywordMatchType.EXACT.value, alias="matchType")

    def matches(self, normalized_text: str) -> bool:
        """
        Check the keyword against already-normalised message text.

        Unknown match types and invalid regular expressions never match.
        """
        keyword = normalize_text(self.value)
        if not keyword:
            return False

        if self.match_type == KeywordMatchType.EXACT.value:
            return normalized_text == keyword
        if self.match_type == KeywordMatchType.CONTAINS.value:
            return keyword in normalized_text
        if self.match_type == KeywordMatchType.STARTS_WITH.value:
            return normalized_text.startswith(keyword)
        if self.match_type == KeywordMatchType.REGEX.value:
            try:
                return re.search(self.value.strip(), normalized_text, re.IGNORECASE) is not None
            except re.error as e:
                logger.warning(
                    f"Invalid trigger regex {self.value!r}: {e}",
                    extra={"keyword": self.value},
                )
                return False

        logger.debug(f"Unknown keyword match type: {self.match_type}")
        return False


class Condition(_FlowModel):
    """One branch of a conditional node; `id` selects the outgoing edge handle."""

    id: NodeId
    variable: str | None = None
    operator: str = "=="
    value: Any = None


class KeywordTriggerData(_FlowModel):
    type: Literal["keywordTrigger"]
    trigger_keywords: list[Keyword] = Field(default_factory=list, alias="triggerKeywords")


class MessageNodeData(_FlowModel):
    type: Literal["message"]
    message_id: NodeId | None = Field(None, alias="messageId")


class CaptureDataNodeData(_FlowModel):
    type: Literal["captureData"]
    prompt: str = ""
    capture_variable: str | None = Field(None, alias="captureVariable")


class ConditionalNodeData(_FlowModel):
    type: Literal["conditional"]
    conditions: list[Condition] = Field(default_factory=list)


class InternalActionNodeData(_FlowModel):
    type: Literal["internalAction"]
    action_type: str | None = Field(None, alias="actionType")
    value: str | None = None


class UnknownNodeData(_FlowModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str = "unknown"


def _node_kind(data: Any) -> str:
    kind = data.get("type") if isinstance(data, dict) else getattr(data, "type", None)
    return kind if kind in KNOWN_NODE_KINDS else "unknown"


NodeData = Annotated[
    Union[
        Annotated[KeywordTriggerData, Tag(NodeKind.KEYWORD_TRIGGER.value)],
        Annotated[MessageNodeData, Tag(NodeKind.MESSAGE.value)],
        Annotated[CaptureDataNodeData, Tag(NodeKind.CAPTURE_DATA.value)],
        Annotated[ConditionalNodeData, Tag(NodeKind.CONDITIONAL.value)],
        Annotated[InternalActionNodeData, Tag(NodeKind.INTERNAL_ACTION.value)],
        Annotated[UnknownNodeData, Tag("unknown")],
    ],
    Discriminator(_node_kind),
]


class FlowNode(_FlowModel):
    """A graph node: id plus kind-specific data."""

    id: NodeId
    data: NodeData

    @model_validator(mode="before")
    @classmethod
    def _kind_into_data(cls, values: Any) -> Any:
        # The kind may live on the node itself rather than in its data
        if isinstance(values, dict):
            data = dict(values.get("data") or {})
            if not data.get("type") and values.get("type"):
                data["type"] = values["type"]
            values = {**values, "data": data}
        return values

    @property
    def kind(self) -> str:
        return self.data.type


class FlowEdge(_FlowModel):
    """A directed edge; `source_handle` selects the exit of multi-exit nodes."""

    id: NodeId | None = None
    source: NodeId
    target: NodeId
    source_handle: str | None = Field(None, alias="sourceHandle")


_nodes_adapter = TypeAdapter(list[FlowNode])
_edges_adapter = TypeAdapter(list[FlowEdge])


class FlowGraph:
    """
    Arena of nodes and edges for one flow.

    Nodes are stored in a list and indexed by id; outgoing edges are
    indexed by source node id, preserving declaration order.
    """

    def __init__(
        self,
        nodes: list[FlowNode],
        edges: list[FlowEdge],
        flow_id: str | None = None,
    ):
        self.flow_id = flow_id
        self.nodes = nodes
        self.edges = edges
        self._index: dict[str, int] = {}
        for position, node in enumerate(nodes):
            self._index.setdefault(node.id, position)
        self._outgoing: dict[str, list[FlowEdge]] = {}
        for edge in edges:
            self._outgoing.setdefault(edge.source, []).append(edge)

    @classmethod
    def from_documents(
        cls,
        nodes: list[dict[str, Any]] | None,
        edges: list[dict[str, Any]] | None,
        flow_id: str | None = None,
    ) -> "FlowGraph":
        """Build a graph from stored JSON documents, validating its structure."""
        try:
            parsed_nodes = _nodes_adapter.validate_python(nodes or [])
            parsed_edges = _edges_adapter.validate_python(edges or [])
        except ValidationError as e:
            raise FlowGraphError(f"Malformed flow document: {e}", flow_id=flow_id) from e

        graph = cls(parsed_nodes, parsed_edges, flow_id=flow_id)
        graph.validate()
        return graph

    @classmethod
    def from_flow(cls, flow: Any) -> "FlowGraph":
        """Build a graph from a persisted Flow row."""
        return cls.from_documents(flow.nodes, flow.edges, flow_id=str(flow.id))

    def node(self, node_id: str) -> FlowNode | None:
        position = self._index.get(node_id)
        return self.nodes[position] if position is not None else None

    def require_node(self, node_id: str) -> FlowNode:
        node = self.node(node_id)
        if node is None:
            raise FlowGraphError(
                f"Node {node_id} not found in flow",
                flow_id=self.flow_id,
                node_id=node_id,
            )
        return node

    def outgoing(self, node_id: str) -> list[FlowEdge]:
        return list(self._outgoing.get(node_id, []))

    def incoming(self, node_id: str) -> list[FlowEdge]:
        return [edge for edge in self.edges if edge.target == node_id]

    def edge_for_handle(self, node_id: str, handle: str) -> FlowEdge | None:
        """First outgoing edge of a node leaving through the given handle."""
        for edge in self._outgoing.get(node_id, []):
            if edge.source_handle == handle:
                return edge
        return None

    @property
    def trigger(self) -> FlowNode:
        return self.require_node(TRIGGER_NODE_ID)

    @property
    def trigger_keywords(self) -> list[Keyword]:
        data = self.trigger.data
        return list(data.trigger_keywords) if isinstance(data, KeywordTriggerData) else []

    @property
    def is_single_turn(self) -> bool:
        """At most one node beyond the trigger and at most one edge."""
        return len(self.nodes) <= 2 and len(self.edges) <= 1

    def matches_trigger(self, normalized_text: str) -> bool:
        return any(keyword.matches(normalized_text) for keyword in self.trigger_keywords)

    def validate(self) -> None:
        """
        Check structural invariants.

        Raises:
            FlowGraphError: if node ids repeat, edges dangle, or the graph
                does not have exactly one keywordTrigger node with id "1"
                and no incoming edges
        """
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise FlowGraphError(f"Duplicate node id {node.id}", flow_id=self.flow_id, node_id=node.id)
            seen.add(node.id)

        triggers = [node for node in self.nodes if node.kind == NodeKind.KEYWORD_TRIGGER.value]
        if len(triggers) != 1:
            raise FlowGraphError(
                f"Flow must have exactly one keywordTrigger node, found {len(triggers)}",
                flow_id=self.flow_id,
            )
        if triggers[0].id != TRIGGER_NODE_ID:
            raise FlowGraphError(
                f"keywordTrigger node must have id {TRIGGER_NODE_ID!r}, got {triggers[0].id!r}",
                flow_id=self.flow_id,
                node_id=triggers[0].id,
            )
        if self.incoming(TRIGGER_NODE_ID):
            raise FlowGraphError(
                "keywordTrigger node must not have incoming edges",
                flow_id=self.flow_id,
                node_id=TRIGGER_NODE_ID,
            )

        for edge in self.edges:
            for end in (edge.source, edge.target):
                if end not in seen:
                    raise FlowGraphError(
                        f"Edge {edge.id or ''} references unknown node {end}",
                        flow_id=self.flow_id,
                        node_id=end,
                    )

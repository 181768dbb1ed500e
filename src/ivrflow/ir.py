from __future__ import annotations
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Tuple, Type

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializeAsAny,
    ValidationError,
    field_validator,
)

from .errors import DuplicateBranch, DuplicateNode, InvalidBlockType, InvalidConfig, NodeNotFound

logger = logging.getLogger(__name__)


class BlockType(str, Enum):
    PROMPT = "prompt"
    KEY = "key"
    TRANSFER = "transfer"
    HANGUP = "hangup"
    API = "api"
    RECORD = "record"
    LANGUAGE = "language"
    MENU = "menu"
    QUEUE = "queue"
    VOICEMAIL = "voicemail"


# Tag for nodes loaded from a document written by a newer schema.
UNKNOWN = "unknown"

BRANCHING_TYPES = frozenset({BlockType.KEY.value, BlockType.LANGUAGE.value})
TERMINAL_TYPES = frozenset({
    BlockType.TRANSFER.value,
    BlockType.HANGUP.value,
    BlockType.QUEUE.value,
    BlockType.VOICEMAIL.value,
})


def _is_set(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (dict, list, tuple, str)):
        return len(value) > 0
    return True


class BlockConfig(BaseModel):
    """Base for the per-type config variants.

    ``required`` lists groups of field names; each group needs at least one
    member set. Blank strings count as unset.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    required: ClassVar[Tuple[Tuple[str, ...], ...]] = ()

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @classmethod
    def document_name(cls, field_name: str) -> str:
        info = cls.model_fields.get(field_name)
        if info is not None and info.alias:
            return info.alias
        return field_name

    @classmethod
    def normalize_keys(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Map document (camelCase) keys onto python field names."""
        by_alias = {info.alias: name for name, info in cls.model_fields.items() if info.alias}
        return {by_alias.get(k, k): v for k, v in data.items()}

    def missing_fields(self) -> List[str]:
        missing = []
        for group in self.required:
            if not any(_is_set(getattr(self, name, None)) for name in group):
                missing.append(" or ".join(self.document_name(name) for name in group))
        return missing

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def _coerce_options(v: Any) -> Any:
    # YAML reads `1: Sales` with an int key
    if isinstance(v, dict):
        return {str(k): ("" if label is None else str(label)) for k, label in v.items()}
    return v


class PromptConfig(BlockConfig):
    required = (("message", "audio_url"),)

    message: Optional[str] = None
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")
    summary: Optional[str] = None


class KeyConfig(BlockConfig):
    required = (("options",),)

    options: Dict[str, str] = Field(default_factory=dict)
    message: Optional[str] = None
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")
    summary: Optional[str] = None

    @field_validator("options", mode="before")
    @classmethod
    def _options_as_str(cls, v: Any) -> Any:
        return _coerce_options(v)


class TransferConfig(BlockConfig):
    required = (("destination",),)

    destination: Optional[str] = None
    conditions: Optional[str] = None
    summary: Optional[str] = None


class HangupConfig(BlockConfig):
    pass


class ApiConfig(BlockConfig):
    required = (("api_mock", "endpoint"),)

    api_mock: Optional[str] = Field(default=None, alias="apiMock")
    endpoint: Optional[str] = None
    method: Optional[str] = None
    conditions: Optional[str] = None
    summary: Optional[str] = None


class RecordConfig(BlockConfig):
    summary: Optional[str] = None
    max_seconds: Optional[int] = Field(default=None, alias="maxSeconds", gt=0)


class LanguageConfig(BlockConfig):
    required = (("options",),)

    options: Dict[str, str] = Field(default_factory=dict)
    summary: Optional[str] = None

    @field_validator("options", mode="before")
    @classmethod
    def _options_as_str(cls, v: Any) -> Any:
        return _coerce_options(v)


class RoutingConfig(BlockConfig):
    required = (("summary", "destination"),)

    summary: Optional[str] = None
    destination: Optional[str] = None
    conditions: Optional[str] = None


class MenuConfig(RoutingConfig):
    pass


class QueueConfig(RoutingConfig):
    pass


class VoicemailConfig(RoutingConfig):
    pass


class UnknownConfig(BlockConfig):
    """Opaque config of a block type this version does not know; kept verbatim."""

    model_config = ConfigDict(extra="allow", frozen=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_unset(cls, v: Any) -> Any:
        return v

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump()


CONFIG_TYPES: Dict[str, Type[BlockConfig]] = {
    BlockType.PROMPT.value: PromptConfig,
    BlockType.KEY.value: KeyConfig,
    BlockType.TRANSFER.value: TransferConfig,
    BlockType.HANGUP.value: HangupConfig,
    BlockType.API.value: ApiConfig,
    BlockType.RECORD.value: RecordConfig,
    BlockType.LANGUAGE.value: LanguageConfig,
    BlockType.MENU.value: MenuConfig,
    BlockType.QUEUE.value: QueueConfig,
    BlockType.VOICEMAIL.value: VoicemailConfig,
    UNKNOWN: UnknownConfig,
}


def coerce_block_type(block_type: Any) -> str:
    if isinstance(block_type, BlockType):
        return block_type.value
    try:
        return BlockType(block_type).value
    except ValueError:
        raise InvalidBlockType(block_type) from None


def build_config(block_type: str, data: Optional[Dict[str, Any]] = None, node_id: Optional[str] = None) -> BlockConfig:
    cls = CONFIG_TYPES[block_type]
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidConfig(node_id, f"expected a mapping, got {type(data).__name__}")
    try:
        return cls.model_validate(cls.normalize_keys(data))
    except ValidationError as exc:
        raise InvalidConfig(node_id, str(exc)) from exc


class Node(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    block_type: str = Field(alias="blockType")
    name: str
    config: SerializeAsAny[BlockConfig]
    position: Dict[str, Any] = Field(default_factory=lambda: {"x": 0, "y": 0})
    # original blockType of an `unknown` node
    declared_type: Optional[str] = None

    @property
    def is_branching(self) -> bool:
        return self.block_type in BRANCHING_TYPES

    @property
    def is_terminal(self) -> bool:
        return self.block_type in TERMINAL_TYPES

    @property
    def is_unknown(self) -> bool:
        return self.block_type == UNKNOWN

    @property
    def options(self) -> Dict[str, str]:
        return dict(getattr(self.config, "options", None) or {})


class Edge(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")

    @field_validator("source_handle", mode="before")
    @classmethod
    def _handle_as_str(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str) and not v:
            return None
        return v


def edge_id_for(source: str, target: str, handle: Optional[str] = None) -> str:
    if handle is None:
        return f"e-{source}-{target}"
    return f"e-{source}-{handle}-{target}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Graph:
    """One call flow: nodes, edges and an optional explicit start marker.

    Mutations never modify a container in place; they build a new one and swap
    it in, so readers never observe a half-applied change. ``version`` counts
    mutations and is not part of equality.
    """

    def __init__(self, nodes: Iterable[Node] = (), edges: Iterable[Edge] = (), start: Optional[str] = None):
        self._nodes: Dict[str, Node] = {}
        for n in nodes:
            if n.id in self._nodes:
                raise DuplicateNode(n.id)
            self._nodes[n.id] = n
        self._edges: Tuple[Edge, ...] = tuple(edges)
        self._start = start
        self.version = 0
        self.modified_at = _now()

    # --- read side -------------------------------------------------------

    @property
    def nodes(self) -> Tuple[Node, ...]:
        return tuple(self._nodes.values())

    @property
    def edges(self) -> Tuple[Edge, ...]:
        return self._edges

    @property
    def start(self) -> Optional[str]:
        return self._start

    def node_map(self) -> Dict[str, Node]:
        return dict(self._nodes)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFound(node_id) from None

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        return next((e for e in self._edges if e.id == edge_id), None)

    def outgoing(self, node_id: str) -> List[Edge]:
        return [e for e in self._edges if e.source == node_id]

    def incoming(self, node_id: str) -> List[Edge]:
        return [e for e in self._edges if e.target == node_id]

    def start_candidates(self) -> List[str]:
        """Nodes with no incoming edge and at least one outgoing edge."""
        has_in = {e.target for e in self._edges}
        has_out = {e.source for e in self._edges}
        return [nid for nid in self._nodes if nid not in has_in and nid in has_out]

    def resolve_start(self) -> Optional[str]:
        """Explicit marker, else the unique entry node, else the first node
        created when nothing is an entry (one node, or every node is entered
        from a cycle)."""
        if self._start is not None and self._start in self._nodes:
            return self._start
        candidates = self.start_candidates()
        if len(candidates) == 1:
            return candidates[0]
        if candidates or not self._nodes:
            return None
        has_in = {e.target for e in self._edges}
        if len(self._nodes) == 1 or all(nid in has_in for nid in self._nodes):
            return next(iter(self._nodes))
        return None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Graph):
            return NotImplemented
        return (
            self.nodes == other.nodes
            and self.edges == other.edges
            and self.start == other.start
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Graph(nodes={len(self._nodes)}, edges={len(self._edges)}, start={self._start!r}, version={self.version})"

    # --- mutations -------------------------------------------------------

    def _touch(self) -> None:
        self.version += 1
        self.modified_at = _now()

    def add_node(
        self,
        block_type: Any,
        initial_config: Optional[Dict[str, Any]] = None,
        *,
        name: Optional[str] = None,
        position: Optional[Dict[str, Any]] = None,
        node_id: Optional[str] = None,
    ) -> Node:
        tag = coerce_block_type(block_type)
        node_id = node_id or uuid.uuid4().hex
        if node_id in self._nodes:
            raise DuplicateNode(node_id)
        node = Node(
            id=node_id,
            block_type=tag,
            name=name or f"{tag}-{len(self._nodes) + 1}",
            config=build_config(tag, initial_config, node_id),
            position=dict(position) if position else {"x": 0, "y": 0},
        )
        self._nodes = {**self._nodes, node_id: node}
        self._touch()
        logger.debug("added %s node %s", tag, node_id)
        return node

    def update_node_config(self, node_id: str, partial: Dict[str, Any]) -> Node:
        node = self.get_node(node_id)
        cls = type(node.config)
        if not isinstance(partial, dict):
            raise InvalidConfig(node_id, f"expected a mapping, got {type(partial).__name__}")
        merged = {**node.config.model_dump(exclude_none=True), **cls.normalize_keys(partial)}
        try:
            config = cls.model_validate(merged)
        except ValidationError as exc:
            raise InvalidConfig(node_id, str(exc)) from exc
        updated = node.model_copy(update={"config": config})
        self._nodes = {**self._nodes, node_id: updated}
        self._touch()
        logger.debug("updated config of %s: %s", node_id, sorted(partial))
        return updated

    def rename_node(self, node_id: str, name: str) -> Node:
        node = self.get_node(node_id)
        updated = node.model_copy(update={"name": name})
        self._nodes = {**self._nodes, node_id: updated}
        self._touch()
        return updated

    def move_node(self, node_id: str, position: Dict[str, Any]) -> Node:
        node = self.get_node(node_id)
        updated = node.model_copy(update={"position": dict(position)})
        self._nodes = {**self._nodes, node_id: updated}
        self._touch()
        return updated

    def remove_node(self, node_id: str) -> None:
        if node_id not in self._nodes:
            logger.debug("remove_node: %s already gone", node_id)
            return
        nodes = {nid: n for nid, n in self._nodes.items() if nid != node_id}
        edges = tuple(e for e in self._edges if e.source != node_id and e.target != node_id)
        dropped = len(self._edges) - len(edges)
        self._nodes, self._edges = nodes, edges
        if self._start == node_id:
            self._start = None
        self._touch()
        logger.debug("removed node %s and %d edge(s)", node_id, dropped)

    def connect(self, source_id: str, target_id: str, handle: Optional[Any] = None) -> Edge:
        for nid in (source_id, target_id):
            if nid not in self._nodes:
                raise NodeNotFound(nid)
        if handle is not None:
            handle = str(handle)
        if any(e.source == source_id and e.source_handle == handle for e in self._edges):
            raise DuplicateBranch(source_id, handle)
        edge_id = edge_id_for(source_id, target_id, handle)
        taken = {e.id for e in self._edges}
        suffix = 1
        while edge_id in taken:
            suffix += 1
            edge_id = f"{edge_id_for(source_id, target_id, handle)}-{suffix}"
        edge = Edge(id=edge_id, source=source_id, target=target_id, source_handle=handle)
        self._edges = self._edges + (edge,)
        self._touch()
        logger.debug("connected %s -[%s]-> %s", source_id, handle, target_id)
        return edge

    def disconnect(self, edge_id: str) -> None:
        edges = tuple(e for e in self._edges if e.id != edge_id)
        if len(edges) == len(self._edges):
            return
        self._edges = edges
        self._touch()

    def mark_start(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise NodeNotFound(node_id)
        self._start = node_id
        self._touch()

    def clear_start(self) -> None:
        if self._start is None:
            return
        self._start = None
        self._touch()

    def replace_with(self, other: "Graph") -> None:
        """Take over another graph's content as a single mutation."""
        self._nodes, self._edges, self._start = dict(other._nodes), other._edges, other._start
        self._touch()

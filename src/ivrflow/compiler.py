from __future__ import annotations
import logging
from collections import defaultdict
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import GraphNotCompilable, UnsupportedBlockType
from .ir import UNKNOWN, BlockType, Edge, Graph, Node
from .validator import validate

logger = logging.getLogger(__name__)


class DeadBranchPolicy(str, Enum):
    """What a branch unit does with an input that has no connected option."""

    REPROMPT = "reprompt"
    HANGUP = "hangup"


class ScriptUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str  # id of the node the unit was compiled from
    name: str


class FallThrough(ScriptUnit):
    next: Optional[str] = None  # None ends the call after this unit


class BranchTable(ScriptUnit):
    options: Dict[str, str] = Field(default_factory=dict)
    branches: Dict[str, str] = Field(default_factory=dict)
    fallback: DeadBranchPolicy


class PlayUnit(FallThrough):
    kind: Literal["play"] = "play"
    message: Optional[str] = None
    audio_url: Optional[str] = None


class CollectDigitUnit(BranchTable):
    kind: Literal["collect_digit"] = "collect_digit"
    message: Optional[str] = None
    audio_url: Optional[str] = None


class LanguageUnit(BranchTable):
    kind: Literal["language"] = "language"
    summary: Optional[str] = None


class ApiCallUnit(FallThrough):
    """External call; with ``branches`` the response code picks the successor
    and ``next`` is unset."""

    kind: Literal["api_call"] = "api_call"
    endpoint: Optional[str] = None
    method: Optional[str] = None
    mock_response: Optional[str] = None
    conditions: Optional[str] = None
    branches: Dict[str, str] = Field(default_factory=dict)


class RecordUnit(FallThrough):
    kind: Literal["record"] = "record"
    max_seconds: Optional[int] = None
    summary: Optional[str] = None


class MenuUnit(FallThrough):
    kind: Literal["menu"] = "menu"
    summary: Optional[str] = None
    destination: Optional[str] = None
    conditions: Optional[str] = None


class TransferUnit(ScriptUnit):
    kind: Literal["transfer"] = "transfer"
    destination: str
    conditions: Optional[str] = None


class HangupUnit(ScriptUnit):
    kind: Literal["hangup"] = "hangup"


class QueueUnit(ScriptUnit):
    kind: Literal["queue"] = "queue"
    queue: str
    conditions: Optional[str] = None


class VoicemailUnit(ScriptUnit):
    kind: Literal["voicemail"] = "voicemail"
    mailbox: str
    conditions: Optional[str] = None


Unit = Annotated[
    Union[
        PlayUnit,
        CollectDigitUnit,
        LanguageUnit,
        ApiCallUnit,
        RecordUnit,
        MenuUnit,
        TransferUnit,
        HangupUnit,
        QueueUnit,
        VoicemailUnit,
    ],
    Field(discriminator="kind"),
]

TERMINAL_KINDS = frozenset({"transfer", "hangup", "queue", "voicemail"})


class Script(BaseModel):
    """Ordered call-control units; ``units[0]`` is the entry point."""

    model_config = ConfigDict(frozen=True)

    start: str
    units: Tuple[Unit, ...]

    def labels(self) -> List[str]:
        return [u.label for u in self.units]

    def unit(self, label: str) -> ScriptUnit:
        for u in self.units:
            if u.label == label:
                return u
        raise KeyError(label)

    def __len__(self) -> int:
        return len(self.units)


def handle_sort_key(handle: Optional[str]) -> Tuple[int, int, str]:
    """Keypad order: no handle, 1-9 then 0 (numbers ascending), '*', '#', then text."""
    if handle is None:
        return (0, 0, "")
    if handle.isascii() and handle.isdigit():
        n = int(handle)
        return (1, n if n else 10, handle)
    if handle in ("*", "#"):
        return (2, "*#".index(handle), handle)
    return (3, 0, handle)


def _first_target(edges: List[Edge]) -> Optional[str]:
    return edges[0].target if edges else None


def _emit(node: Node, edges: List[Edge], policy: DeadBranchPolicy) -> ScriptUnit:
    c = node.config
    common = {"label": node.id, "name": node.name}
    kind = node.block_type

    if kind == BlockType.PROMPT.value:
        return PlayUnit(**common, message=c.message, audio_url=c.audio_url, next=_first_target(edges))
    if kind == BlockType.KEY.value:
        return CollectDigitUnit(
            **common,
            message=c.message,
            audio_url=c.audio_url,
            options=dict(c.options),
            branches={e.source_handle: e.target for e in edges},
            fallback=policy,
        )
    if kind == BlockType.LANGUAGE.value:
        return LanguageUnit(
            **common,
            summary=c.summary,
            options=dict(c.options),
            branches={e.source_handle: e.target for e in edges},
            fallback=policy,
        )
    if kind == BlockType.API.value:
        handled = [e for e in edges if e.source_handle is not None]
        return ApiCallUnit(
            **common,
            endpoint=c.endpoint,
            method=c.method,
            mock_response=c.api_mock,
            conditions=c.conditions,
            branches={e.source_handle: e.target for e in handled},
            next=None if handled else _first_target(edges),
        )
    if kind == BlockType.RECORD.value:
        return RecordUnit(**common, max_seconds=c.max_seconds, summary=c.summary, next=_first_target(edges))
    if kind == BlockType.MENU.value:
        return MenuUnit(
            **common,
            summary=c.summary,
            destination=c.destination,
            conditions=c.conditions,
            next=_first_target(edges),
        )
    if kind == BlockType.TRANSFER.value:
        return TransferUnit(**common, destination=c.destination, conditions=c.conditions)
    if kind == BlockType.HANGUP.value:
        return HangupUnit(**common)
    if kind == BlockType.QUEUE.value:
        return QueueUnit(**common, queue=c.destination or c.summary, conditions=c.conditions)
    if kind == BlockType.VOICEMAIL.value:
        return VoicemailUnit(**common, mailbox=c.destination or c.summary, conditions=c.conditions)
    raise UnsupportedBlockType(node.id, node.declared_type or kind)


def compile_graph(graph: Graph, on_dead_branch: Union[DeadBranchPolicy, str]) -> Script:
    """Compile a valid graph into a Script.

    Walks depth-first from the start node, successors in keypad handle order.
    Every reachable node becomes exactly one unit; a node reached again (shared
    successor or back-edge) is only referenced by label. Raises
    ``GraphNotCompilable`` on validation errors and ``UnsupportedBlockType``
    when an unknown block is reachable; nothing is returned in either case.
    """
    policy = DeadBranchPolicy(on_dead_branch)
    report = validate(graph)
    if not report.compilable:
        raise GraphNotCompilable(report.errors)

    node_map = graph.node_map()
    out_index: Dict[str, List[Edge]] = defaultdict(list)
    for e in graph.edges:
        out_index[e.source].append(e)

    units: List[ScriptUnit] = []
    visited = set()
    stack = [report.start]
    while stack:
        nid = stack.pop()
        if nid in visited:
            continue
        visited.add(nid)
        node = node_map[nid]
        if node.is_unknown:
            raise UnsupportedBlockType(nid, node.declared_type or UNKNOWN)
        edges = sorted(out_index[nid], key=lambda e: handle_sort_key(e.source_handle))
        units.append(_emit(node, edges, policy))
        stack.extend(e.target for e in reversed(edges) if e.target not in visited)

    script = Script(start=report.start, units=tuple(units))
    logger.info("compiled %d unit(s) from %d node(s)", len(units), len(node_map))
    return script

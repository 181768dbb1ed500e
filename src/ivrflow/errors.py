from __future__ import annotations
from typing import Any, List, Optional


class IvrFlowError(Exception):
    """Base class for every error raised by ivrflow."""


class InvalidBlockType(IvrFlowError, ValueError):
    def __init__(self, block_type: Any):
        self.block_type = block_type
        super().__init__(f"Unknown block type '{block_type}'.")


class InvalidConfig(IvrFlowError, ValueError):
    def __init__(self, node_id: Optional[str], detail: str):
        self.node_id = node_id
        super().__init__(f"Invalid config for node '{node_id}': {detail}")


class NodeNotFound(IvrFlowError, KeyError):
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(node_id)

    def __str__(self) -> str:
        return f"Node '{self.node_id}' does not exist."


class DuplicateBranch(IvrFlowError, ValueError):
    def __init__(self, source: str, handle: Optional[str]):
        self.source = source
        self.handle = handle
        branch = f"handle '{handle}'" if handle is not None else "its default output"
        super().__init__(f"Node '{source}' already has an edge on {branch}.")


class MalformedDocument(IvrFlowError, ValueError):
    """The interchange document does not have the expected shape."""


class GraphNotCompilable(IvrFlowError):
    def __init__(self, errors: List[Any]):
        self.errors = list(errors)
        super().__init__(f"Graph has {len(self.errors)} validation error(s); nothing was compiled.")


class UnsupportedBlockType(IvrFlowError):
    def __init__(self, node_id: str, block_type: str):
        self.node_id = node_id
        self.block_type = block_type
        super().__init__(f"Node '{node_id}' has unsupported block type '{block_type}'.")


class StaleVersion(IvrFlowError):
    def __init__(self, name: str, expected: Optional[int], actual: Optional[int]):
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Flow '{name}' is at revision {actual}, not {expected}; reload and reapply your changes."
        )


class TemplateNotFound(IvrFlowError, ValueError):
    def __init__(self, name: str, available: List[str]):
        self.name = name
        super().__init__(f"Unknown template '{name}'. Use one of: {', '.join(available)}")


class DuplicateNode(IvrFlowError, ValueError):
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node id '{node_id}' is already in use.")

from __future__ import annotations
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import MalformedDocument, StaleVersion
from .ir import Graph
from .serializer import deserialize, serialize

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class FlowStore:
    """Flow documents on disk, one ``<name>.json`` envelope per flow.

    Saves are checked against the revision the caller loaded; a mismatch means
    someone else saved in between and raises ``StaleVersion``.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _path(self, name: str) -> Path:
        if not _NAME_RE.match(name):
            raise ValueError(f"Invalid flow name '{name}'.")
        return self.root / f"{name}.json"

    def _read(self, name: str) -> Dict[str, Any]:
        path = self._path(name)
        try:
            envelope = json.loads(path.read_text())
        except json.JSONDecodeError as exc:
            raise MalformedDocument(f"{path} is not valid JSON: {exc}") from exc
        if not isinstance(envelope, dict) or not isinstance(envelope.get("revision"), int):
            raise MalformedDocument(f"{path} is not a flow envelope.")
        return envelope

    def revision(self, name: str) -> Optional[int]:
        if not self._path(name).exists():
            return None
        return self._read(name)["revision"]

    def load(self, name: str) -> Tuple[Graph, int]:
        envelope = self._read(name)
        return deserialize(envelope.get("flow")), envelope["revision"]

    def save(self, name: str, graph: Graph, expected_revision: Optional[int]) -> int:
        """Store ``graph``; ``expected_revision`` is None for a new flow."""
        current = self.revision(name)
        if current != expected_revision:
            raise StaleVersion(name, expected_revision, current)
        revision = (current or 0) + 1
        path = self._path(name)
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(json.dumps({"revision": revision, "flow": serialize(graph)}, indent=2))
        tmp.replace(path)
        logger.info("saved flow %s at revision %d", name, revision)
        return revision

    def delete(self, name: str, expected_revision: Optional[int] = None) -> None:
        current = self.revision(name)
        if current is None:
            return
        if expected_revision is not None and current != expected_revision:
            raise StaleVersion(name, expected_revision, current)
        self._path(name).unlink()

    def list(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))

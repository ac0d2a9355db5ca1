"""Core data models shared by ingestion, graph, retrieval and answer layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

NODE_LABELS = ("Module", "Function", "Class")
EDGE_KINDS = ("DEFINED_IN", "IMPORTS", "CALLS")


@dataclass(frozen=True)
class SourceFile:
    path: str
    language: str
    content: str


@dataclass(frozen=True)
class Chunk:
    id: str
    parent_id: Optional[str]
    file: str
    symbol: str
    kind: str
    language: str
    text: str
    start_byte: int = 0
    end_byte: int = 0

    def metadata(self) -> Dict[str, Any]:
        """Chunk metadata as a plain dict (``None`` values included)."""
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "file": self.file,
            "symbol": self.symbol,
            "kind": self.kind,
            "language": self.language,
        }


@dataclass(frozen=True)
class CallSite:
    callee: str
    start_byte: int


@dataclass(frozen=True)
class FileSymbols:
    file: str
    language: str
    functions: Tuple[str, ...] = ()
    classes: Tuple[str, ...] = ()
    imports: Tuple[str, ...] = ()
    calls: Tuple[CallSite, ...] = ()


@dataclass(frozen=True)
class GraphNode:
    id: str
    label: str
    name: Optional[str] = None
    path: Optional[str] = None
    file: Optional[str] = None
    language: Optional[str] = None


@dataclass(frozen=True)
class Edge:
    src: str
    dst: str
    kind: str


@dataclass(frozen=True)
class GraphNeighbor:
    id: str
    type: str
    name: str


@dataclass(frozen=True)
class VectorRecord:
    id: str
    embedding: List[float]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContextEntry:
    code: str
    metadata: Dict[str, Any]
    graph_context: Tuple[GraphNeighbor, ...] = ()


@dataclass(frozen=True)
class ContextResult:
    query: str
    entries: Tuple[ContextEntry, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "context": [
                {
                    "code": entry.code,
                    "metadata": dict(entry.metadata),
                    "graphContext": [
                        {"id": n.id, "type": n.type, "name": n.name}
                        for n in entry.graph_context
                    ],
                }
                for entry in self.entries
            ],
        }


@dataclass(frozen=True)
class Turn:
    role: str
    text: str


@dataclass(frozen=True)
class IngestStats:
    files: int
    chunks: int
    vectors: int
    dropped: int
    nodes: int
    edges: int

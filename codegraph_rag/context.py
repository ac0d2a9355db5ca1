"""Query-time context assembly.

Joins nearest-neighbour chunk retrieval with bounded graph expansion:
each retrieved chunk is mapped to its graph node and enriched with the
nodes reachable over ``DEFINED_IN`` / ``CALLS`` edges.  A single
deduplication set spans the whole response, so a neighbour shared by two
retrieved chunks is reported only under the first.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Set

from . import config
from .embeddings import Embedder
from .errors import GraphExpansionError, RetrievalError
from .graph_store import GraphStore
from .models import ContextEntry, ContextResult, GraphNeighbor, VectorMatch
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

EXPANSION_KINDS = ("DEFINED_IN", "CALLS")
ENTRY_METADATA = ("file", "symbol", "kind", "language")


def graph_node_id(match: VectorMatch) -> str:
    """Graph node for a retrieved chunk: the file path for module chunks."""
    if match.metadata.get("kind") == "module":
        return str(match.metadata.get("file") or match.id)
    return match.id


class ContextAssembler:
    """Builds a :class:`ContextResult` for one natural-language query."""

    def __init__(
        self,
        vector_store: VectorStore,
        graph_store: GraphStore,
        embedder: Embedder,
        top_k: int = config.DEFAULT_TOP_K,
        hops: int = config.DEFAULT_HOPS,
        neighbor_limit: int = config.DEFAULT_NEIGHBOR_LIMIT,
    ) -> None:
        self.vector_store = vector_store
        self.graph_store = graph_store
        self.embedder = embedder
        self.top_k = top_k
        self.hops = max(1, min(hops, config.MAX_HOPS))
        self.neighbor_limit = neighbor_limit

    def retrieve(self, query: str) -> List[VectorMatch]:
        try:
            embedding = self.embedder.embed_text(query)
        except Exception as exc:
            raise RetrievalError(f"Could not embed query: {exc}") from exc
        return self.vector_store.query(embedding, top_k=self.top_k)

    def expand(self, node_id: str) -> List[GraphNeighbor]:
        """Neighbours of *node_id*.

        Raises:
            GraphExpansionError: the graph store failed.
        """
        try:
            return self.graph_store.expand(
                node_id,
                kinds=EXPANSION_KINDS,
                max_hops=self.hops,
                limit=self.neighbor_limit,
            )
        except Exception as exc:
            raise GraphExpansionError(f"Expanding {node_id} failed: {exc}") from exc

    def build_context(self, query: str) -> ContextResult:
        """Retrieve, expand and deduplicate.

        Raises:
            RetrievalError: the query could not be embedded or searched.
        """
        matches = self.retrieve(query)
        seen: Set[str] = set()
        entries: List[ContextEntry] = []

        for match in matches:
            try:
                neighbors = self.expand(graph_node_id(match))
            except GraphExpansionError as exc:
                logger.warning("%s; continuing without graph context", exc)
                neighbors = []

            unique: List[GraphNeighbor] = []
            for neighbor in neighbors:
                if neighbor.id in seen:
                    continue
                seen.add(neighbor.id)
                unique.append(neighbor)

            metadata: Dict[str, Any] = {
                key: match.metadata.get(key, "") for key in ENTRY_METADATA
            }
            entries.append(ContextEntry(
                code=str(match.metadata.get("text", "")),
                metadata=metadata,
                graph_context=tuple(unique),
            ))

        logger.info("Context for %r: %d snippets, %d graph neighbours", query, len(entries), len(seen))
        return ContextResult(query=query, entries=tuple(entries))

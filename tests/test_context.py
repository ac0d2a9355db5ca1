"""Tests for query-time context assembly."""

from typing import List

import pytest

from codegraph_rag.context import ContextAssembler, graph_node_id
from codegraph_rag.embeddings import HashEmbeddingModel
from codegraph_rag.errors import RetrievalError
from codegraph_rag.graph_store import SQLiteGraphStore
from codegraph_rag.models import GraphNeighbor, VectorMatch


class StubVectorStore:
    def __init__(self, matches: List[VectorMatch], fail: bool = False) -> None:
        self.matches = matches
        self.fail = fail
        self.calls = []

    def query(self, embedding, top_k=5):
        self.calls.append(top_k)
        if self.fail:
            raise RetrievalError("table unavailable")
        return self.matches[:top_k]


class ExplodingGraphStore:
    def expand(self, node_id, kinds=(), max_hops=2, limit=10):
        raise RuntimeError("graph offline")


def _match(chunk_id: str, kind: str = "function") -> VectorMatch:
    file, symbol = chunk_id.split("#", 1)
    return VectorMatch(
        id=chunk_id,
        score=0.9,
        metadata={"id": chunk_id, "text": f"<{symbol}>", "file": file,
                  "symbol": symbol if kind != "module" else "main", "kind": kind, "language": "javascript"},
    )


@pytest.fixture
def graph(graph_store: SQLiteGraphStore) -> SQLiteGraphStore:
    """Two functions in a.js sharing the module; one calls b.js#g."""
    s = graph_store
    for module in ("a.js", "b.js"):
        s.merge_node("Module", module, path=module)
    for fid, name, module in (("a.js#f", "f", "a.js"), ("a.js#h", "h", "a.js"), ("b.js#g", "g", "b.js")):
        s.merge_node("Function", fid, name=name, file=module)
        s.merge_edge(fid, "Function", module, "Module", "DEFINED_IN")
    s.merge_edge("a.js#f", "Function", "b.js#g", "Function", "CALLS")
    return s


def test_graph_node_id_for_module_chunk():
    assert graph_node_id(_match("run.js#module", kind="module")) == "run.js"
    assert graph_node_id(_match("a.js#f")) == "a.js#f"


def test_build_context_entries(graph: SQLiteGraphStore):
    store = StubVectorStore([_match("a.js#f")])
    assembler = ContextAssembler(store, graph, HashEmbeddingModel(), top_k=3, hops=1)

    result = assembler.build_context("what does f do?")

    assert result.query == "what does f do?"
    assert len(result.entries) == 1
    entry = result.entries[0]
    assert entry.code == "<f>"
    assert entry.metadata == {"file": "a.js", "symbol": "f", "kind": "function", "language": "javascript"}
    assert {n.id for n in entry.graph_context} == {"a.js", "b.js#g"}
    assert store.calls == [3]


def test_neighbours_are_deduplicated_across_entries(graph: SQLiteGraphStore):
    store = StubVectorStore([_match("a.js#f"), _match("a.js#h")])
    result = ContextAssembler(store, graph, HashEmbeddingModel(), hops=2).build_context("q")

    all_ids = [n.id for e in result.entries for n in e.graph_context]
    assert len(all_ids) == len(set(all_ids))
    # a.js is reachable from both chunks but reported once, under the first
    assert "a.js" in [n.id for n in result.entries[0].graph_context]
    assert "a.js" not in [n.id for n in result.entries[1].graph_context]


def test_module_chunk_expands_from_file_node(graph: SQLiteGraphStore):
    store = StubVectorStore([_match("a.js#module", kind="module")])
    result = ContextAssembler(store, graph, HashEmbeddingModel(), hops=1).build_context("q")
    assert sorted(n.id for n in result.entries[0].graph_context) == ["a.js#f", "a.js#h"]


def test_neighbor_limit(graph: SQLiteGraphStore):
    store = StubVectorStore([_match("a.js#f")])
    result = ContextAssembler(store, graph, HashEmbeddingModel(), hops=2, neighbor_limit=1).build_context("q")
    assert len(result.entries[0].graph_context) == 1


def test_expansion_failure_gives_empty_neighbours():
    store = StubVectorStore([_match("a.js#f"), _match("a.js#h")])
    result = ContextAssembler(store, ExplodingGraphStore(), HashEmbeddingModel()).build_context("q")

    assert len(result.entries) == 2
    assert all(e.graph_context == () for e in result.entries)


def test_retrieval_failure_propagates(graph: SQLiteGraphStore):
    store = StubVectorStore([], fail=True)
    with pytest.raises(RetrievalError):
        ContextAssembler(store, graph, HashEmbeddingModel()).build_context("q")


def test_embedder_failure_is_retrieval_error(graph: SQLiteGraphStore):
    class BrokenEmbedder:
        def embed_text(self, text):
            raise OSError("model missing")

    with pytest.raises(RetrievalError):
        ContextAssembler(StubVectorStore([]), graph, BrokenEmbedder()).build_context("q")


def test_no_matches_gives_empty_result(graph: SQLiteGraphStore):
    result = ContextAssembler(StubVectorStore([]), graph, HashEmbeddingModel()).build_context("q")
    assert result.entries == ()
    assert result.to_dict() == {"query": "q", "context": []}


def test_to_dict_shape(graph: SQLiteGraphStore):
    store = StubVectorStore([_match("b.js#g")])
    result = ContextAssembler(store, graph, HashEmbeddingModel(), hops=1).build_context("q")
    payload = result.to_dict()
    graph_context = payload["context"][0]["graphContext"]
    assert {"id": "b.js", "type": "Module", "name": "b.js"} in graph_context
    assert {"id": "a.js#f", "type": "Function", "name": "f"} in graph_context
    assert all(isinstance(GraphNeighbor(**n), GraphNeighbor) for n in graph_context)

"""Tests for the SQLite graph store and the Neo4j store's Cypher."""

from unittest.mock import MagicMock

import pytest

from codegraph_rag.graph_store import Neo4jGraphStore, SQLiteGraphStore
from codegraph_rag.models import Edge, GraphNeighbor


class TestMergeNode:
    def test_merge_is_idempotent(self, graph_store: SQLiteGraphStore):
        graph_store.merge_node("Module", "src/a.js", path="src/a.js", language="javascript")
        graph_store.merge_node("Module", "src/a.js", path="src/a.js", language="javascript")
        assert graph_store.count_nodes() == 1
        assert graph_store.count_nodes("Module") == 1

    def test_merge_keeps_existing_properties(self, graph_store: SQLiteGraphStore):
        graph_store.merge_node("Class", "a.js#Calc", name="Calc", file="a.js")
        graph_store.merge_node("Class", "a.js#Calc")
        node = graph_store.get_node("a.js#Calc")
        assert node.name == "Calc"
        assert node.file == "a.js"

    def test_unknown_label_rejected(self, graph_store: SQLiteGraphStore):
        with pytest.raises(ValueError):
            graph_store.merge_node("Variable", "x")

    def test_unknown_property_rejected(self, graph_store: SQLiteGraphStore):
        with pytest.raises(ValueError):
            graph_store.merge_node("Module", "a.js", colour="red")


class TestMergeEdge:
    def test_edge_requires_both_endpoints(self, graph_store: SQLiteGraphStore):
        graph_store.merge_node("Module", "a.js", path="a.js")
        assert graph_store.merge_edge("a.js", "Module", "b.js", "Module", "IMPORTS") is False
        assert graph_store.count_edges() == 0
        # No placeholder node is created
        assert graph_store.get_node("b.js") is None

    def test_edge_requires_matching_label(self, graph_store: SQLiteGraphStore):
        graph_store.merge_node("Module", "a.js", path="a.js")
        graph_store.merge_node("Function", "a.js#f", name="f", file="a.js")
        assert graph_store.merge_edge("a.js#f", "Function", "a.js", "Class", "DEFINED_IN") is False
        assert graph_store.merge_edge("a.js#f", "Function", "a.js", "Module", "DEFINED_IN") is True

    def test_edge_merge_is_idempotent(self, graph_store: SQLiteGraphStore):
        graph_store.merge_node("Module", "a.js")
        graph_store.merge_node("Module", "b.js")
        for _ in range(3):
            graph_store.merge_edge("a.js", "Module", "b.js", "Module", "IMPORTS")
        assert graph_store.edges() == [Edge("a.js", "b.js", "IMPORTS")]

    def test_unknown_kind_rejected(self, graph_store: SQLiteGraphStore):
        with pytest.raises(ValueError):
            graph_store.merge_edge("a", "Module", "b", "Module", "USES")


class TestExpand:
    @pytest.fixture
    def chain(self, graph_store: SQLiteGraphStore) -> SQLiteGraphStore:
        """a.js <- a.js#f -CALLS-> b.js#g -> b.js ; b.js#h -> b.js"""
        s = graph_store
        s.merge_node("Module", "a.js", path="a.js")
        s.merge_node("Module", "b.js", path="b.js")
        s.merge_node("Function", "a.js#f", name="f", file="a.js")
        s.merge_node("Function", "b.js#g", name="g", file="b.js")
        s.merge_node("Function", "b.js#h", name="h", file="b.js")
        s.merge_edge("a.js#f", "Function", "a.js", "Module", "DEFINED_IN")
        s.merge_edge("b.js#g", "Function", "b.js", "Module", "DEFINED_IN")
        s.merge_edge("b.js#h", "Function", "b.js", "Module", "DEFINED_IN")
        s.merge_edge("a.js#f", "Function", "b.js#g", "Function", "CALLS")
        s.merge_edge("a.js", "Module", "b.js", "Module", "IMPORTS")
        return s

    def test_one_hop_both_directions(self, chain: SQLiteGraphStore):
        ids = [n.id for n in chain.expand("b.js#g", max_hops=1)]
        assert sorted(ids) == ["a.js#f", "b.js"]

    def test_two_hops(self, chain: SQLiteGraphStore):
        ids = {n.id for n in chain.expand("b.js#g", max_hops=2)}
        assert ids == {"a.js#f", "b.js", "a.js", "b.js#h"}

    def test_excludes_start_and_respects_kinds(self, chain: SQLiteGraphStore):
        ids = [n.id for n in chain.expand("a.js", kinds=("IMPORTS",), max_hops=2)]
        assert ids == ["b.js"]

    def test_limit(self, chain: SQLiteGraphStore):
        assert len(chain.expand("b.js#g", max_hops=2, limit=2)) == 2

    def test_module_name_falls_back_to_id(self, chain: SQLiteGraphStore):
        neighbors = chain.expand("a.js#f", kinds=("DEFINED_IN",), max_hops=1)
        assert neighbors == [GraphNeighbor(id="a.js", type="Module", name="a.js")]

    def test_unknown_start_is_empty(self, chain: SQLiteGraphStore):
        assert chain.expand("missing") == []

    def test_order_is_deterministic(self, chain: SQLiteGraphStore):
        assert chain.expand("b.js", max_hops=2) == chain.expand("b.js", max_hops=2)


def test_clear(graph_store: SQLiteGraphStore):
    graph_store.merge_node("Module", "a.js")
    graph_store.merge_node("Module", "b.js")
    graph_store.merge_edge("a.js", "Module", "b.js", "Module", "IMPORTS")
    graph_store.clear()
    assert graph_store.count_nodes() == 0
    assert graph_store.count_edges() == 0


def test_persists_across_connections(temp_dir):
    store = SQLiteGraphStore(temp_dir / "g.db")
    store.merge_node("Module", "a.js", path="a.js")
    store.close()
    reopened = SQLiteGraphStore(temp_dir / "g.db")
    assert reopened.get_node("a.js").path == "a.js"
    reopened.close()


class TestNeo4jGraphStore:
    @pytest.fixture
    def driver(self):
        driver = MagicMock()
        session = driver.session.return_value.__enter__.return_value
        session.run.return_value = []
        return driver

    def _queries(self, driver):
        session = driver.session.return_value.__enter__.return_value
        return [c.args[0] for c in session.run.call_args_list]

    def test_creates_constraints(self, driver):
        Neo4jGraphStore("bolt://x", "neo4j", "pw", driver=driver)
        queries = self._queries(driver)
        assert any("FOR (n:Function) REQUIRE n.id IS UNIQUE" in q for q in queries)

    def test_merge_node_uses_parameters(self, driver):
        store = Neo4jGraphStore("bolt://x", "neo4j", "pw", driver=driver)
        store.merge_node("Function", "a.js#f", name="f", file="a.js")
        session = driver.session.return_value.__enter__.return_value
        query, params = session.run.call_args.args
        assert query == "MERGE (n:Function {id: $id}) SET n += $props"
        assert params == {"id": "a.js#f", "props": {"name": "f", "file": "a.js"}}

    def test_merge_edge_matches_both_endpoints(self, driver):
        session = driver.session.return_value.__enter__.return_value
        store = Neo4jGraphStore("bolt://x", "neo4j", "pw", driver=driver)
        session.run.return_value = [{"linked": 1}]
        assert store.merge_edge("a.js#f", "Function", "a.js", "Module", "DEFINED_IN") is True
        query = session.run.call_args.args[0]
        assert "MATCH (a:Function {id: $src})" in query
        assert "MERGE (a)-[r:DEFINED_IN]->(b)" in query

        session.run.return_value = []
        assert store.merge_edge("a.js#f", "Function", "x.js", "Module", "DEFINED_IN") is False

    def test_expand_uses_variable_length_pattern(self, driver):
        session = driver.session.return_value.__enter__.return_value
        store = Neo4jGraphStore("bolt://x", "neo4j", "pw", driver=driver)
        session.run.return_value = [{"id": "a.js", "type": "Module", "name": None}]
        neighbors = store.expand("a.js#f", max_hops=2, limit=10)
        query = session.run.call_args.args[0]
        assert "[:DEFINED_IN|CALLS*1..2]" in query
        assert neighbors == [GraphNeighbor(id="a.js", type="Module", name="a.js")]

    def test_rejects_label_injection(self, driver):
        store = Neo4jGraphStore("bolt://x", "neo4j", "pw", driver=driver)
        with pytest.raises(ValueError):
            store.merge_node("Module) DETACH DELETE (m", "x")

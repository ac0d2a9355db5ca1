"""Graph persistence: idempotent merges and bounded-hop expansion.

Two backends share one interface:

- :class:`SQLiteGraphStore`: embedded, one ``graph.db`` per project.
- :class:`Neo4jGraphStore`: Cypher ``MERGE`` against a Neo4j server.

Every write is a merge keyed by identity (node by id, edge by
``(src, dst, kind)``), so repeated or concurrent ingestion converges to the
same graph and no locking is needed.  Edges are only written between nodes
that already exist; a missing endpoint is a silent no-op.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from collections import deque
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import EDGE_KINDS, NODE_LABELS, Edge, GraphNeighbor, GraphNode

logger = logging.getLogger(__name__)

NODE_PROPERTIES = ("name", "path", "file", "language")


def _check_label(label: str) -> str:
    if label not in NODE_LABELS:
        raise ValueError(f"Unknown node label '{label}'")
    return label


def _check_kinds(kinds: Iterable[str]) -> List[str]:
    out = list(kinds)
    for kind in out:
        if kind not in EDGE_KINDS:
            raise ValueError(f"Unknown edge kind '{kind}'")
    return out


# ===================================================================
# Abstract interface
# ===================================================================

class GraphStore(ABC):
    """Interface shared by all graph backends."""

    @abstractmethod
    def merge_node(self, label: str, node_id: str, **props: Optional[str]) -> None:
        """Create the node if absent; set the given (non-``None``) properties."""

    @abstractmethod
    def merge_edge(self, src: str, src_label: str, dst: str, dst_label: str, kind: str) -> bool:
        """Create ``src -[kind]-> dst`` if absent.

        Returns ``False`` (and writes nothing) when either endpoint does not
        exist with the given label.
        """

    @abstractmethod
    def expand(
        self,
        node_id: str,
        kinds: Sequence[str] = ("DEFINED_IN", "CALLS"),
        max_hops: int = 2,
        limit: int = 10,
    ) -> List[GraphNeighbor]:
        """Nodes within ``1..max_hops`` of *node_id* over *kinds*, either direction."""

    @abstractmethod
    def get_node(self, node_id: str) -> Optional[GraphNode]:
        ...

    @abstractmethod
    def nodes(self, label: Optional[str] = None) -> List[GraphNode]:
        ...

    @abstractmethod
    def edges(self, kind: Optional[str] = None) -> List[Edge]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    def count_nodes(self, label: Optional[str] = None) -> int:
        return len(self.nodes(label))

    def count_edges(self, kind: Optional[str] = None) -> int:
        return len(self.edges(kind))


# ===================================================================
# SQLite backend
# ===================================================================

class SQLiteGraphStore(GraphStore):
    """Embedded graph store: ``nodes`` and ``edges`` tables in SQLite."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        with self.conn:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS nodes (
                    id       TEXT PRIMARY KEY,
                    label    TEXT NOT NULL,
                    name     TEXT,
                    path     TEXT,
                    file     TEXT,
                    language TEXT
                )
            """)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS edges (
                    src  TEXT NOT NULL,
                    dst  TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    PRIMARY KEY (src, dst, kind)
                )
            """)
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_edges_dst ON edges(dst)")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_nodes_label ON nodes(label)")

    def close(self) -> None:
        self.conn.close()

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge_node(self, label: str, node_id: str, **props: Optional[str]) -> None:
        _check_label(label)
        unknown = set(props) - set(NODE_PROPERTIES)
        if unknown:
            raise ValueError(f"Unknown node properties: {sorted(unknown)}")
        values = [props.get(name) for name in NODE_PROPERTIES]
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO nodes (id, label, name, path, file, language)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    label    = excluded.label,
                    name     = COALESCE(excluded.name, nodes.name),
                    path     = COALESCE(excluded.path, nodes.path),
                    file     = COALESCE(excluded.file, nodes.file),
                    language = COALESCE(excluded.language, nodes.language)
                """,
                [node_id, label, *values],
            )

    def merge_edge(self, src: str, src_label: str, dst: str, dst_label: str, kind: str) -> bool:
        _check_label(src_label)
        _check_label(dst_label)
        _check_kinds([kind])
        with self.conn:
            found = self.conn.execute(
                """
                SELECT
                    EXISTS (SELECT 1 FROM nodes WHERE id = ? AND label = ?) AND
                    EXISTS (SELECT 1 FROM nodes WHERE id = ? AND label = ?)
                """,
                (src, src_label, dst, dst_label),
            ).fetchone()[0]
            if not found:
                return False
            self.conn.execute(
                "INSERT OR IGNORE INTO edges (src, dst, kind) VALUES (?, ?, ?)",
                (src, dst, kind),
            )
        return True

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _adjacent(self, node_id: str, kinds: List[str]) -> List[str]:
        placeholders = ",".join("?" * len(kinds))
        rows = self.conn.execute(
            f"""
            SELECT dst AS other FROM edges WHERE src = ? AND kind IN ({placeholders})
            UNION
            SELECT src AS other FROM edges WHERE dst = ? AND kind IN ({placeholders})
            ORDER BY other
            """,
            [node_id, *kinds, node_id, *kinds],
        ).fetchall()
        return [row["other"] for row in rows]

    def expand(
        self,
        node_id: str,
        kinds: Sequence[str] = ("DEFINED_IN", "CALLS"),
        max_hops: int = 2,
        limit: int = 10,
    ) -> List[GraphNeighbor]:
        kinds = _check_kinds(kinds)
        if not kinds or max_hops < 1 or limit < 1:
            return []
        if self.get_node(node_id) is None:
            return []

        seen = {node_id}
        found: List[str] = []
        queue = deque([(node_id, 0)])
        while queue and len(found) < limit:
            current, depth = queue.popleft()
            if depth >= max_hops:
                continue
            for other in self._adjacent(current, kinds):
                if other in seen:
                    continue
                seen.add(other)
                found.append(other)
                queue.append((other, depth + 1))

        neighbors: List[GraphNeighbor] = []
        for other in found[:limit]:
            node = self.get_node(other)
            if node is None:
                continue
            neighbors.append(GraphNeighbor(id=node.id, type=node.label, name=node.name or node.id))
        return neighbors

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> GraphNode:
        return GraphNode(
            id=row["id"], label=row["label"], name=row["name"],
            path=row["path"], file=row["file"], language=row["language"],
        )

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        row = self.conn.execute("SELECT * FROM nodes WHERE id = ?", (node_id,)).fetchone()
        return self._row_to_node(row) if row else None

    def nodes(self, label: Optional[str] = None) -> List[GraphNode]:
        if label is None:
            rows = self.conn.execute("SELECT * FROM nodes ORDER BY id").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM nodes WHERE label = ? ORDER BY id", (label,),
            ).fetchall()
        return [self._row_to_node(row) for row in rows]

    def edges(self, kind: Optional[str] = None) -> List[Edge]:
        if kind is None:
            rows = self.conn.execute("SELECT * FROM edges ORDER BY src, dst, kind").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM edges WHERE kind = ? ORDER BY src, dst", (kind,),
            ).fetchall()
        return [Edge(src=row["src"], dst=row["dst"], kind=row["kind"]) for row in rows]

    def count_nodes(self, label: Optional[str] = None) -> int:
        if label is None:
            return self.conn.execute("SELECT COUNT(*) FROM nodes").fetchone()[0]
        return self.conn.execute("SELECT COUNT(*) FROM nodes WHERE label = ?", (label,)).fetchone()[0]

    def count_edges(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return self.conn.execute("SELECT COUNT(*) FROM edges").fetchone()[0]
        return self.conn.execute("SELECT COUNT(*) FROM edges WHERE kind = ?", (kind,)).fetchone()[0]

    def clear(self) -> None:
        with self.conn:
            self.conn.execute("DELETE FROM edges")
            self.conn.execute("DELETE FROM nodes")


# ===================================================================
# Neo4j backend
# ===================================================================

class Neo4jGraphStore(GraphStore):
    """Neo4j-backed graph store using parameterized Cypher ``MERGE``.

    Labels, relationship types and hop bounds cannot be Cypher parameters,
    so they are validated against fixed sets before interpolation.
    """

    def __init__(
        self,
        uri: str,
        username: str,
        password: str,
        database: str = "neo4j",
        driver: Any = None,
    ) -> None:
        if driver is None:
            from neo4j import GraphDatabase

            if not password:
                raise ValueError("NEO4J_PASSWORD must be set to use the neo4j graph backend.")
            driver = GraphDatabase.driver(uri, auth=(username, password))
        self.driver = driver
        self.database = database
        self._init_schema()

    def _run(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        with self.driver.session(database=self.database) as session:
            return list(session.run(query, params or {}))

    def _init_schema(self) -> None:
        for label in NODE_LABELS:
            self._run(
                f"CREATE CONSTRAINT {label.lower()}_id IF NOT EXISTS "
                f"FOR (n:{label}) REQUIRE n.id IS UNIQUE"
            )

    def close(self) -> None:
        self.driver.close()

    def merge_node(self, label: str, node_id: str, **props: Optional[str]) -> None:
        _check_label(label)
        unknown = set(props) - set(NODE_PROPERTIES)
        if unknown:
            raise ValueError(f"Unknown node properties: {sorted(unknown)}")
        values = {k: v for k, v in props.items() if v is not None}
        self._run(
            f"MERGE (n:{label} {{id: $id}}) SET n += $props",
            {"id": node_id, "props": values},
        )

    def merge_edge(self, src: str, src_label: str, dst: str, dst_label: str, kind: str) -> bool:
        _check_label(src_label)
        _check_label(dst_label)
        _check_kinds([kind])
        rows = self._run(
            f"""
            MATCH (a:{src_label} {{id: $src}})
            MATCH (b:{dst_label} {{id: $dst}})
            MERGE (a)-[r:{kind}]->(b)
            RETURN count(r) AS linked
            """,
            {"src": src, "dst": dst},
        )
        return bool(rows) and rows[0]["linked"] > 0

    def expand(
        self,
        node_id: str,
        kinds: Sequence[str] = ("DEFINED_IN", "CALLS"),
        max_hops: int = 2,
        limit: int = 10,
    ) -> List[GraphNeighbor]:
        kinds = _check_kinds(kinds)
        if not kinds or max_hops < 1 or limit < 1:
            return []
        rows = self._run(
            f"""
            MATCH (n {{id: $id}})
            MATCH (n)-[:{"|".join(kinds)}*1..{int(max_hops)}]-(neighbor)
            WHERE neighbor.id <> $id
            WITH DISTINCT neighbor
            RETURN neighbor.id AS id,
                   head(labels(neighbor)) AS type,
                   neighbor.name AS name
            ORDER BY id
            LIMIT $limit
            """,
            {"id": node_id, "limit": int(limit)},
        )
        return [
            GraphNeighbor(id=row["id"], type=row["type"], name=row["name"] or row["id"])
            for row in rows
        ]

    @staticmethod
    def _record_to_node(record: Any) -> GraphNode:
        props = dict(record["props"])
        return GraphNode(
            id=props["id"], label=record["label"], name=props.get("name"),
            path=props.get("path"), file=props.get("file"), language=props.get("language"),
        )

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        rows = self._run(
            "MATCH (n {id: $id}) RETURN head(labels(n)) AS label, properties(n) AS props LIMIT 1",
            {"id": node_id},
        )
        return self._record_to_node(rows[0]) if rows else None

    def nodes(self, label: Optional[str] = None) -> List[GraphNode]:
        match = f"MATCH (n:{_check_label(label)})" if label else "MATCH (n)"
        rows = self._run(
            f"{match} WHERE n.id IS NOT NULL "
            "RETURN head(labels(n)) AS label, properties(n) AS props ORDER BY n.id"
        )
        return [self._record_to_node(row) for row in rows]

    def edges(self, kind: Optional[str] = None) -> List[Edge]:
        rel = f"[r:{_check_kinds([kind])[0]}]" if kind else "[r]"
        rows = self._run(
            f"MATCH (a)-{rel}->(b) RETURN a.id AS src, b.id AS dst, type(r) AS kind "
            "ORDER BY src, dst, kind"
        )
        return [Edge(src=row["src"], dst=row["dst"], kind=row["kind"]) for row in rows]

    def clear(self) -> None:
        self._run("MATCH (n) WHERE n:Module OR n:Function OR n:Class DETACH DELETE n")

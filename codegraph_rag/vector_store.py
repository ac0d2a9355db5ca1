"""Vector store backed by LanceDB, a serverless local-first vector database.

One row per chunk, keyed by chunk id.  Upserts merge by id, so re-ingesting
an unchanged codebase overwrites rows instead of duplicating them, and a row
is always replaced whole, never partially mutated.

Schema per row:

========== ============ =====================================
Column     Type         Description
========== ============ =====================================
id         utf8         Chunk id (``file#symbol``)
vector     float32[dim] Embedding
text       utf8         Exact chunk source text
file       utf8         Root-relative file path
symbol     utf8         Declared symbol (``main`` for modules)
kind       utf8         module / function / class
language   utf8         Language tag
parent_id  utf8         Container id, empty for module chunks
========== ============ =====================================
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import lancedb
import pyarrow as pa

from .errors import RetrievalError
from .models import VectorMatch, VectorRecord

logger = logging.getLogger(__name__)

PAYLOAD_FIELDS = ("text", "file", "symbol", "kind", "language", "parent_id")

_PRIMITIVES = (str, int, float, bool)


def flatten_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Strip values this class of store cannot hold.

    Drops ``None`` and nested objects; lists survive only when every item is
    a primitive.
    """
    clean: Dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, _PRIMITIVES):
            clean[key] = value
        elif isinstance(value, (list, tuple)) and all(isinstance(v, _PRIMITIVES) for v in value):
            clean[key] = list(value)
    return clean


def _schema(dim: int) -> pa.Schema:
    return pa.schema(
        [pa.field("id", pa.utf8()), pa.field("vector", pa.list_(pa.float32(), dim))]
        + [pa.field(name, pa.utf8()) for name in PAYLOAD_FIELDS]
    )


class VectorStore:
    """LanceDB-backed chunk embedding store."""

    def __init__(self, project_dir: Path, table_name: str = "chunks") -> None:
        self.project_dir = project_dir
        self._lance_dir = project_dir / "lancedb"
        self._lance_dir.mkdir(parents=True, exist_ok=True)
        self._table_name = table_name
        self._db: Any = lancedb.connect(str(self._lance_dir))
        self._table: Optional[Any] = None
        try:
            self._table = self._db.open_table(self._table_name)
        except (ValueError, FileNotFoundError):
            logger.debug("No table %s yet under %s", table_name, self._lance_dir)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def upsert(self, records: Sequence[VectorRecord]) -> None:
        """Insert or overwrite *records* by id in one call.

        Store failures propagate to the caller; the batch is not retried.
        """
        if not records:
            return
        dim = len(records[0].embedding)
        if dim == 0:
            raise ValueError(f"Record '{records[0].id}' has an empty embedding")

        rows = []
        for record in records:
            row: Dict[str, Any] = {"id": record.id, "vector": list(record.embedding)}
            for name in PAYLOAD_FIELDS:
                value = record.payload.get(name, "")
                row[name] = "" if value is None else str(value)
            rows.append(row)

        schema = _schema(dim)
        data = pa.Table.from_pylist(rows, schema=schema)
        if self._table is None:
            self._table = self._db.create_table(self._table_name, schema=schema, exist_ok=True)
        (
            self._table.merge_insert("id")
            .when_matched_update_all()
            .when_not_matched_insert_all()
            .execute(data)
        )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def query(self, embedding: List[float], top_k: int = 5) -> List[VectorMatch]:
        """Return the *top_k* nearest chunks, most similar first.

        An empty or missing table yields ``[]``.

        Raises:
            RetrievalError: the search itself failed.
        """
        if self._table is None:
            return []
        try:
            rows = (
                self._table.search(embedding)
                .distance_type("cosine")
                .limit(top_k)
                .to_list()
            )
        except Exception as exc:
            raise RetrievalError(f"Vector search failed: {exc}") from exc

        matches: List[VectorMatch] = []
        for row in rows:
            # Cosine distance is 1 - cos_sim.
            dist = float(row.get("_distance", 0.0))
            metadata = {name: row.get(name) for name in PAYLOAD_FIELDS if row.get(name)}
            metadata["id"] = row.get("id", "")
            matches.append(VectorMatch(id=row.get("id", ""), score=1.0 - dist, metadata=metadata))
        return matches

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def count(self) -> int:
        if self._table is None:
            return 0
        return self._table.count_rows()

    def clear(self) -> None:
        """Drop the table; the next upsert recreates it."""
        self._db.drop_table(self._table_name, ignore_missing=True)
        self._table = None

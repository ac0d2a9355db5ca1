"""Ingestion: scan, parse, chunk, embed, and write both indexes.

The vector side (:class:`VectorIndexWriter`) and the graph side
(:class:`~codegraph_rag.graph_writer.GraphWriter`) share one identity
scheme, the chunk id, so a retrieved vector can always be joined back to its
graph node.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from . import config
from .chunker import build_file_chunks
from .embeddings import Embedder
from .errors import EmbeddingError, UpsertError
from .graph_writer import GraphWriter
from .models import Chunk, FileSymbols, IngestStats, VectorRecord
from .parser import TreeSitterParser
from .scanner import scan_codebase
from .symbols import extract_symbols
from .vector_store import VectorStore, flatten_metadata

logger = logging.getLogger(__name__)

MAX_EMBED_CHARS = 4000


def chunk_embedding_text(chunk: Chunk) -> str:
    """Text handed to the embedder: a short metadata header, then the code."""
    parts = [
        f"file: {chunk.file}",
        f"symbol: {chunk.symbol}",
        f"type: {chunk.kind}",
        f"language: {chunk.language}",
        "",
        chunk.text[:MAX_EMBED_CHARS],
    ]
    return "\n".join(parts)


class VectorIndexWriter:
    """Embeds chunks with bounded concurrency and upserts them in full batches."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        batch_size: int = config.DEFAULT_BATCH_SIZE,
        max_workers: int = config.DEFAULT_EMBED_WORKERS,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.embedder = embedder
        self.batch_size = batch_size
        self.max_workers = max(1, max_workers)

    def embed_chunk(self, chunk: Chunk) -> VectorRecord:
        """Build the vector record for one chunk.

        Raises:
            EmbeddingError: the embedder failed or returned an empty vector.
        """
        try:
            embedding = self.embedder.embed_text(chunk_embedding_text(chunk))
        except Exception as exc:
            raise EmbeddingError(f"Embedding failed for {chunk.id}: {exc}") from exc
        if not embedding:
            raise EmbeddingError(f"Embedding for {chunk.id} is empty")
        payload = flatten_metadata({**chunk.metadata(), "text": chunk.text})
        payload.pop("id", None)
        return VectorRecord(id=chunk.id, embedding=list(embedding), payload=payload)

    def _embed_or_drop(self, chunk: Chunk) -> Optional[VectorRecord]:
        try:
            return self.embed_chunk(chunk)
        except EmbeddingError as exc:
            logger.warning("Dropping chunk: %s", exc)
            return None

    def _flush(self, batch: List[VectorRecord]) -> None:
        try:
            self.store.upsert(batch)
        except Exception as exc:
            first = batch[0]
            sample = json.dumps(
                {"id": first.id, "dim": len(first.embedding), "payload": first.payload},
                default=str,
            )
            raise UpsertError(
                f"Vector store rejected a batch of {len(batch)} records: {exc}",
                sample=sample,
            ) from exc
        logger.debug("Upserted %d vectors", len(batch))

    def write(self, chunks: Sequence[Chunk]) -> Tuple[int, int]:
        """Embed and store *chunks*.

        Records sharing an id collapse to the last one before each flush,
        since the store merges on id and rejects a batch that matches the
        same row twice.

        Returns:
            ``(written, dropped)`` record counts.

        Raises:
            UpsertError: the store rejected a batch.  Earlier batches stay
                written; the failing one is not retried.
        """
        written = dropped = 0
        batch: Dict[str, VectorRecord] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for record in pool.map(self._embed_or_drop, chunks):
                if record is None:
                    dropped += 1
                    continue
                if batch.pop(record.id, None) is not None:
                    logger.debug("Duplicate chunk id %s; keeping the later record", record.id)
                batch[record.id] = record
                if len(batch) >= self.batch_size:
                    self._flush(list(batch.values()))
                    written += len(batch)
                    batch = {}
        if batch:
            self._flush(list(batch.values()))
            written += len(batch)
        return written, dropped


ProgressCallback = Callable[[str], None]


class IngestionPipeline:
    """scan -> parse -> {symbols, chunks} -> vector writer -> graph writer -> links."""

    def __init__(
        self,
        parser: TreeSitterParser,
        vector_writer: VectorIndexWriter,
        graph_writer: GraphWriter,
    ) -> None:
        self.parser = parser
        self.vector_writer = vector_writer
        self.graph_writer = graph_writer

    def run(self, root: Path, progress: Optional[ProgressCallback] = None) -> IngestStats:
        """Index every supported file under *root*.

        Raises:
            ScanError: the root or a file could not be read.
            UpsertError: the vector store rejected a batch.
        """
        files = scan_codebase(Path(root))

        chunks: List[Chunk] = []
        symbols: List[FileSymbols] = []
        for source in files:
            if progress:
                progress(source.path)
            tree = self.parser.parse(source.content, source.language)
            if tree is None:
                logger.info("No syntax tree for %s; indexing as one module chunk", source.path)
            symbols.append(extract_symbols(source, tree))
            chunks.extend(build_file_chunks(source, tree))
        logger.info("Segmented %d files into %d chunks", len(files), len(chunks))

        written, dropped = self.vector_writer.write(chunks)
        self.graph_writer.sync_chunks(chunks)
        self.graph_writer.link_symbols(symbols, chunks, known_files=[f.path for f in files])

        store = self.graph_writer.store
        return IngestStats(
            files=len(files),
            chunks=len(chunks),
            vectors=written,
            dropped=dropped,
            nodes=store.count_nodes(),
            edges=store.count_edges(),
        )

"""Exception hierarchy for ingestion and query-time failures.

Ingestion-time *enrichment* failures degrade gracefully, ingestion-time
*primary-store* failures are fatal per batch.  At query time, primary
retrieval failures are fatal for the query while enrichment failures are not.
"""

from __future__ import annotations

from typing import Optional


class CodeGraphRAGError(Exception):
    """Base class for all errors raised by codegraph_rag."""


class ScanError(CodeGraphRAGError):
    """A source path could not be read.  Aborts ingestion."""


class ParseError(CodeGraphRAGError):
    """No parser for a language, or the parser raised on malformed source."""


class EmbeddingError(CodeGraphRAGError):
    """Embedding a single chunk failed.  The record is dropped."""


class UpsertError(CodeGraphRAGError):
    """The vector store rejected a batch."""

    def __init__(self, message: str, sample: Optional[str] = None) -> None:
        super().__init__(message)
        self.sample = sample


class GraphExpansionError(CodeGraphRAGError):
    """Graph enrichment traversal failed for one chunk."""


class RetrievalError(CodeGraphRAGError):
    """Similarity search against the vector store failed."""


class GenerationError(CodeGraphRAGError):
    """The generative model call failed."""

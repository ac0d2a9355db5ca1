"""Semantic chunking of parsed source files.

Each file is partitioned into identity-bearing chunks at top-level
function / class boundaries.  A chunk's text is the exact byte span of the
declaration in the original source, never a re-serialization, so formatting
survives verbatim.

Granularity is one chunk per top-level declaration: a matched node is not
descended into, and nested declarations (methods, inner functions) live
inside their container's text.  A file that yields no declarations (or has
no tree at all) becomes a single ``module`` chunk so it is never dropped
from the index.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Tuple

from .models import Chunk, SourceFile

logger = logging.getLogger(__name__)

FUNCTION_TYPES = frozenset({
    "function_declaration",
    "function_definition",
    "method_definition",
})
CLASS_TYPES = frozenset({
    "class_declaration",
    "class_definition",
})
DECORATED_TYPE = "decorated_definition"

ANONYMOUS = "anonymous"
MODULE_SYMBOL = "main"


def chunk_id(file: str, symbol: str) -> str:
    return f"{file}#{symbol}"


def module_chunk_id(file: str) -> str:
    return f"{file}#module"


def symbol_of(node_id: str) -> str:
    """Return the symbol component of a chunk id (text after the first ``#``)."""
    return node_id.split("#", 1)[1] if "#" in node_id else node_id


def node_text(node: Any, source_bytes: bytes) -> str:
    return source_bytes[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def classify(node: Any) -> Optional[Tuple[str, Any]]:
    """Return ``(kind, definition_node)`` when *node* is a chunk boundary.

    ``decorated_definition`` wrappers (Python) classify by their inner
    definition, so the decorators stay part of the chunk text.
    """
    node_type = node.type
    definition = node
    if node_type == DECORATED_TYPE:
        definition = node.child_by_field_name("definition")
        if definition is None:
            return None
        node_type = definition.type
    if node_type in FUNCTION_TYPES:
        return "function", definition
    if node_type in CLASS_TYPES:
        return "class", definition
    return None


def declared_name(definition: Any, source_bytes: bytes) -> str:
    name_node = definition.child_by_field_name("name")
    if name_node is None:
        return ANONYMOUS
    name = node_text(name_node, source_bytes).strip()
    return name or ANONYMOUS


def build_file_chunks(source: SourceFile, tree: Optional[Any]) -> List[Chunk]:
    """Segment one file into chunks.

    Args:
        source: The scanned file.
        tree:   The parser's tree for *source* (anything with ``root_node``),
                or ``None`` when parsing was not possible.

    Returns:
        Chunks in pre-order traversal order; never empty.
    """
    source_bytes = source.content.encode("utf-8")
    chunks: List[Chunk] = []

    root = getattr(tree, "root_node", None) if tree is not None else None
    # Explicit (node, parent_id) stack: pre-order, independent of nesting depth.
    stack: List[Tuple[Any, str]] = []
    if root is not None:
        stack = [(child, source.path) for child in reversed(root.named_children)]

    while stack:
        node, parent_id = stack.pop()
        match = classify(node)
        if match is None:
            for child in reversed(node.named_children):
                stack.append((child, parent_id))
            continue
        kind, definition = match
        symbol = declared_name(definition, source_bytes)
        # Matched nodes are not descended into.
        chunks.append(Chunk(
            id=chunk_id(source.path, symbol),
            parent_id=parent_id,
            file=source.path,
            symbol=symbol,
            kind=kind,
            language=source.language,
            text=node_text(node, source_bytes),
            start_byte=node.start_byte,
            end_byte=node.end_byte,
        ))

    if not chunks:
        chunks.append(Chunk(
            id=module_chunk_id(source.path),
            parent_id=None,
            file=source.path,
            symbol=MODULE_SYMBOL,
            kind="module",
            language=source.language,
            text=source.content,
            start_byte=0,
            end_byte=len(source_bytes),
        ))
    return chunks


def build_chunks(files: Iterable[Tuple[SourceFile, Optional[Any]]]) -> List[Chunk]:
    """Segment many ``(source, tree)`` pairs, preserving file order."""
    chunks: List[Chunk] = []
    for source, tree in files:
        file_chunks = build_file_chunks(source, tree)
        logger.debug("%s: %d chunks", source.path, len(file_chunks))
        chunks.extend(file_chunks)
    return chunks

"""Graph side of the dual-index writer.

Turns chunks into ``Module`` / ``Function`` / ``Class`` nodes joined by
``DEFINED_IN`` edges, then resolves the raw symbol facts of each file into
cross-file ``IMPORTS`` and ``CALLS`` edges.

Every write goes through the store's merge operations, nodes before edges,
so running the writer twice over the same chunks leaves the graph unchanged.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .chunker import symbol_of
from .graph_store import GraphStore
from .models import Chunk, FileSymbols

logger = logging.getLogger(__name__)

JS_LANGUAGES = frozenset({"javascript", "typescript", "tsx"})
JS_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx")

_JS_FROM_RE = re.compile(r"""\bfrom\s*['"]([^'"]+)['"]""")
_JS_BARE_RE = re.compile(r"""^\s*import\s*['"]([^'"]+)['"]""")
_PY_FROM_RE = re.compile(r"^\s*from\s+(\.*[\w.]*)\s+import\s+(.+)$", re.DOTALL)
_PY_IMPORT_RE = re.compile(r"^\s*import\s+(.+)$", re.DOTALL)
_IDENT_RE = re.compile(r"[A-Za-z_$][\w$]*")


@dataclass
class LinkStats:
    imports: int = 0
    calls: int = 0


class GraphWriter:
    """Writes chunks and their relationships into a :class:`GraphStore`."""

    def __init__(self, store: GraphStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Per-chunk sync
    # ------------------------------------------------------------------

    def sync_chunk(self, chunk: Chunk) -> None:
        store = self.store
        store.merge_node("Module", chunk.file, path=chunk.file, language=chunk.language)

        if chunk.kind == "function":
            store.merge_node("Function", chunk.id, name=chunk.symbol, file=chunk.file)
            if chunk.parent_id and chunk.parent_id != chunk.file:
                store.merge_node(
                    "Class", chunk.parent_id, name=symbol_of(chunk.parent_id), file=chunk.file,
                )
                # The container class needs its own DEFINED_IN even if its chunk never arrives.
                store.merge_edge(chunk.parent_id, "Class", chunk.file, "Module", "DEFINED_IN")
                store.merge_edge(chunk.id, "Function", chunk.parent_id, "Class", "DEFINED_IN")
            else:
                store.merge_edge(chunk.id, "Function", chunk.file, "Module", "DEFINED_IN")
        elif chunk.kind == "class":
            store.merge_node("Class", chunk.id, name=chunk.symbol, file=chunk.file)
            store.merge_edge(chunk.id, "Class", chunk.file, "Module", "DEFINED_IN")

    def sync_chunks(self, chunks: Iterable[Chunk]) -> int:
        count = 0
        for chunk in chunks:
            self.sync_chunk(chunk)
            count += 1
        return count

    # ------------------------------------------------------------------
    # Cross-file edges
    # ------------------------------------------------------------------

    def link_module_imports(self, src_file: str, dst_file: str) -> bool:
        return self.store.merge_edge(src_file, "Module", dst_file, "Module", "IMPORTS")

    def link_function_calls(self, caller_id: str, callee_id: str) -> bool:
        return self.store.merge_edge(caller_id, "Function", callee_id, "Function", "CALLS")

    def link_symbols(
        self,
        symbols: Sequence[FileSymbols],
        chunks: Sequence[Chunk],
        known_files: Optional[Iterable[str]] = None,
    ) -> LinkStats:
        """Resolve raw import and call facts into graph edges.

        Only targets among *known_files* (default: the files of *chunks*) and
        among the function chunks are linked; everything else is ignored.
        """
        files = set(known_files) if known_files is not None else {c.file for c in chunks}
        functions_by_file: Dict[str, List[Chunk]] = {}
        functions_by_name: Dict[str, List[str]] = {}
        for chunk in chunks:
            if chunk.kind != "function":
                continue
            functions_by_file.setdefault(chunk.file, []).append(chunk)
            functions_by_name.setdefault(chunk.symbol, []).append(chunk.id)
        for ids in functions_by_name.values():
            ids.sort()

        stats = LinkStats()
        for facts in symbols:
            for target in resolve_imports(facts, files):
                if self.link_module_imports(facts.file, target):
                    stats.imports += 1

            for caller, callee in resolve_calls(
                facts, functions_by_file.get(facts.file, []), functions_by_name,
            ):
                if self.link_function_calls(caller, callee):
                    stats.calls += 1

        logger.info("Linked %d imports and %d calls", stats.imports, stats.calls)
        return stats


# ===================================================================
# Import resolution
# ===================================================================

def _js_specifiers(statement: str) -> List[str]:
    specs = _JS_FROM_RE.findall(statement)
    bare = _JS_BARE_RE.match(statement)
    if bare:
        specs.append(bare.group(1))
    return specs


def _resolve_js(importer: str, spec: str, files: Set[str]) -> Optional[str]:
    if not spec.startswith("."):
        return None
    base = posixpath.normpath(posixpath.join(posixpath.dirname(importer), spec))
    candidates = [base]
    candidates += [base + ext for ext in JS_EXTENSIONS]
    candidates += [posixpath.join(base, "index" + ext) for ext in JS_EXTENSIONS]
    for candidate in candidates:
        if candidate in files:
            return candidate
    return None


def _python_modules(statement: str) -> List[str]:
    statement = " ".join(statement.replace("\\", " ").split())
    match = _PY_FROM_RE.match(statement)
    if match:
        module, names = match.group(1), match.group(2)
        names = names.strip().strip("()")
        out = [module]
        sep = "" if module.endswith(".") else "."
        for name in names.split(","):
            name = name.strip().split(" as ")[0].strip()
            if name and name != "*":
                out.append(f"{module}{sep}{name}")
        return out
    match = _PY_IMPORT_RE.match(statement)
    if match:
        return [part.strip().split(" as ")[0].strip() for part in match.group(1).split(",")]
    return []


def _resolve_python(importer: str, module: str, files: Set[str]) -> Optional[str]:
    dots = len(module) - len(module.lstrip("."))
    name = module[dots:]
    if dots:
        base = posixpath.dirname(importer)
        for _ in range(dots - 1):
            base = posixpath.dirname(base)
    else:
        base = ""
    parts = [p for p in name.split(".") if p]
    if not parts:
        stem = base
        candidates = [posixpath.join(stem, "__init__.py")] if stem else []
    else:
        stem = posixpath.join(base, *parts) if base else posixpath.join(*parts)
        candidates = [stem + ".py", posixpath.join(stem, "__init__.py")]
    for candidate in candidates:
        if candidate in files:
            return candidate
    return None


def resolve_imports(facts: FileSymbols, files: Set[str]) -> List[str]:
    """Map a file's raw import statements to ingested file paths."""
    targets: List[str] = []
    for statement in facts.imports:
        if facts.language in JS_LANGUAGES:
            resolved = [_resolve_js(facts.file, spec, files) for spec in _js_specifiers(statement)]
        elif facts.language == "python":
            resolved = [_resolve_python(facts.file, mod, files) for mod in _python_modules(statement)]
        else:
            continue
        for target in resolved:
            if target and target != facts.file and target not in targets:
                targets.append(target)
    return targets


# ===================================================================
# Call resolution
# ===================================================================

def _enclosing_function(chunks: Sequence[Chunk], offset: int) -> Optional[Chunk]:
    for chunk in chunks:
        if chunk.start_byte <= offset < chunk.end_byte:
            return chunk
    return None


def callee_name(expression: str) -> Optional[str]:
    """Last identifier segment of a callee expression (``a.b.c`` -> ``c``)."""
    names = _IDENT_RE.findall(expression)
    return names[-1] if names else None


def resolve_calls(
    facts: FileSymbols,
    file_functions: Sequence[Chunk],
    functions_by_name: Dict[str, List[str]],
) -> List[Tuple[str, str]]:
    """Return ``(caller_id, callee_id)`` pairs for one file's call sites."""
    pairs: List[Tuple[str, str]] = []
    for call in facts.calls:
        caller = _enclosing_function(file_functions, call.start_byte)
        if caller is None:
            continue
        name = callee_name(call.callee)
        candidates = functions_by_name.get(name or "", [])
        if not candidates:
            continue
        same_file = [cid for cid in candidates if cid.startswith(facts.file + "#")]
        callee = same_file[0] if same_file else candidates[0]
        if callee == caller.id:
            continue
        pair = (caller.id, callee)
        if pair not in pairs:
            pairs.append(pair)
    return pairs

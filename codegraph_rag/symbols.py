"""Best-effort symbol fact extraction.

Walks the whole tree and records raw facts: declared function and class
names, import statement text, and call sites.  These are heuristic seeds for
graph edges, not a sound call-resolution result.  Grammars that lack the
node types below simply produce empty lists.
"""

from __future__ import annotations

from typing import Any, List, Optional

from .chunker import CLASS_TYPES, FUNCTION_TYPES, node_text
from .models import CallSite, FileSymbols, SourceFile

IMPORT_TYPES = frozenset({"import_statement", "import_from_statement"})
CALL_TYPES = frozenset({"call_expression", "call"})


def _callee_node(call: Any) -> Optional[Any]:
    func = call.child_by_field_name("function")
    if func is not None:
        return func
    return call.children[0] if call.children else None


def extract_symbols(source: SourceFile, tree: Optional[Any]) -> FileSymbols:
    """Collect raw symbol facts for one file.  A null tree yields empty lists."""
    root = getattr(tree, "root_node", None) if tree is not None else None
    if root is None:
        return FileSymbols(file=source.path, language=source.language)

    source_bytes = source.content.encode("utf-8")
    functions: List[str] = []
    classes: List[str] = []
    imports: List[str] = []
    calls: List[CallSite] = []

    stack = [root]
    while stack:
        node = stack.pop()
        node_type = node.type

        if node_type in FUNCTION_TYPES or node_type in CLASS_TYPES:
            name_node = node.child_by_field_name("name")
            if name_node is not None:
                target = functions if node_type in FUNCTION_TYPES else classes
                target.append(node_text(name_node, source_bytes))
        elif node_type in IMPORT_TYPES:
            imports.append(node_text(node, source_bytes))
        elif node_type in CALL_TYPES:
            callee = _callee_node(node)
            if callee is not None:
                calls.append(CallSite(
                    callee=node_text(callee, source_bytes),
                    start_byte=node.start_byte,
                ))

        stack.extend(reversed(node.children))

    return FileSymbols(
        file=source.path,
        language=source.language,
        functions=tuple(functions),
        classes=tuple(classes),
        imports=tuple(imports),
        calls=tuple(calls),
    )

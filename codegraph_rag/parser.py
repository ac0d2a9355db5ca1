"""Tree-sitter parser adapter.

Produces one concrete syntax tree per file.  Grammars come from the
per-language ``tree-sitter-<lang>`` packages; a language whose grammar
package is not installed simply has no parser, and its files fall back to a
single whole-file chunk downstream.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from tree_sitter import Language, Parser as TSParser

from .errors import ParseError

logger = logging.getLogger(__name__)

# language -> (grammar module, factory attribute)
GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
    "python": ("tree_sitter_python", "language"),
    "javascript": ("tree_sitter_javascript", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
    "java": ("tree_sitter_java", "language"),
    "go": ("tree_sitter_go", "language"),
    "c": ("tree_sitter_c", "language"),
    "cpp": ("tree_sitter_cpp", "language"),
}


class TreeSitterParser:
    """Error-tolerant, multi-language parser built on Tree-sitter.

    Tree-sitter produces a tree even for broken source (with ``ERROR``
    nodes), so the common failure is a missing grammar rather than an
    exception.
    """

    def __init__(self, languages: Optional[Iterable[str]] = None) -> None:
        self._parsers: Dict[str, Any] = {}
        self._init_parsers(list(languages) if languages is not None else list(GRAMMAR_MODULES))

    def _init_parsers(self, languages: Iterable[str]) -> None:
        for lang in languages:
            spec = GRAMMAR_MODULES.get(lang)
            if spec is None:
                logger.warning("No grammar module mapped for language '%s'", lang)
                continue
            mod_name, factory = spec
            try:
                mod = importlib.import_module(mod_name)
                self._parsers[lang] = TSParser(Language(getattr(mod, factory)()))
                logger.debug("Loaded tree-sitter parser for %s", lang)
            except ImportError:
                logger.info(
                    "Grammar package '%s' not installed; %s files are indexed as whole-file chunks",
                    mod_name, lang,
                )
            except Exception as exc:
                logger.warning("Could not load tree-sitter grammar for %s: %s", lang, exc)

    @property
    def languages(self) -> Tuple[str, ...]:
        return tuple(sorted(self._parsers))

    def supports_language(self, language: str) -> bool:
        return language in self._parsers

    def parse_strict(self, content: str, language: str) -> Any:
        """Parse *content*, raising :class:`ParseError` on failure."""
        parser = self._parsers.get(language)
        if parser is None:
            raise ParseError(f"No parser configured for language '{language}'")
        try:
            return parser.parse(content.encode("utf-8"))
        except Exception as exc:
            raise ParseError(f"Parsing {language} source failed: {exc}") from exc

    def parse(self, content: str, language: str) -> Optional[Any]:
        """Parse *content*; return ``None`` instead of raising.

        ``None`` is the null tree: callers degrade to a whole-file chunk.
        """
        try:
            return self.parse_strict(content, language)
        except ParseError as exc:
            logger.debug("%s", exc)
            return None

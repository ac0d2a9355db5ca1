"""Source tree scanning and language detection."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Set

from .errors import ScanError
from .models import SourceFile

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".py": "python",
    ".java": "java",
    ".go": "go",
    ".cpp": "cpp",
    ".c": "c",
}

IGNORED_DIRS: Set[str] = {
    "node_modules", ".git", "dist", "build", ".next", ".cache",
    "__pycache__", ".venv", "venv", ".tox", ".pytest_cache",
    ".mypy_cache", ".ruff_cache", "site-packages", ".codegraph_rag",
}


def detect_language(extension: str) -> Optional[str]:
    """Return the language tag for *extension* (``".py"`` -> ``"python"``)."""
    return LANGUAGE_MAP.get(extension.lower())


def _walk_error(exc: OSError) -> None:
    raise ScanError(f"Cannot read {exc.filename}: {exc}") from exc


def scan_codebase(
    root: Path,
    ignored_dirs: Optional[Set[str]] = None,
) -> List[SourceFile]:
    """Return every supported source file under *root*.

    Paths are root-relative and POSIX-separated so chunk ids are reproducible
    across machines.  Order is sorted by path.  Ignored directories are
    pruned before they are listed.

    Raises:
        ScanError: *root* is missing, or a directory or file under it
            cannot be read.
    """
    ignored = IGNORED_DIRS if ignored_dirs is None else ignored_dirs
    root = Path(root)
    if not root.is_dir():
        raise ScanError(f"Root folder does not exist or is not a directory: {root}")

    files: List[SourceFile] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=_walk_error):
        dirnames[:] = sorted(d for d in dirnames if d not in ignored)
        for filename in filenames:
            path = Path(dirpath) / filename
            language = detect_language(path.suffix)
            if language is None or not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8", errors="ignore")
            except OSError as exc:
                raise ScanError(f"Cannot read {path}: {exc}") from exc
            rel = path.relative_to(root).as_posix()
            files.append(SourceFile(path=rel, language=language, content=content))

    files.sort(key=lambda f: f.path)
    logger.info("Scanned %d source files under %s", len(files), root)
    return files

"""Per-project storage directories and the active-project pointer."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import List, Optional

from . import config
from .config_manager import GraphSettings
from .graph_store import GraphStore, Neo4jGraphStore, SQLiteGraphStore
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def project_name_for(root: Path) -> str:
    """Default project name for a codebase root: its directory name."""
    name = _UNSAFE_NAME_RE.sub("-", Path(root).resolve().name).strip("-.")
    return name or "default"


class ProjectManager:
    """Manage project memory directories and active project state."""

    def __init__(self) -> None:
        config.ensure_base_dirs()

    def list_projects(self) -> List[str]:
        if not config.MEMORY_DIR.exists():
            return []
        return sorted(p.name for p in config.MEMORY_DIR.iterdir() if p.is_dir())

    def project_dir(self, project_name: str) -> Path:
        return config.MEMORY_DIR / project_name

    def create_or_get_project(self, project_name: str) -> Path:
        path = self.project_dir(project_name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def set_current_project(self, project_name: str) -> None:
        config.ensure_base_dirs()
        config.STATE_FILE.write_text(
            json.dumps({"current_project": project_name}, indent=2),
            encoding="utf-8",
        )

    def get_current_project(self) -> Optional[str]:
        if not config.STATE_FILE.exists():
            return None
        try:
            payload = json.loads(config.STATE_FILE.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt state file %s", config.STATE_FILE)
            return None
        return payload.get("current_project")

    # ------------------------------------------------------------------
    # Store factories
    # ------------------------------------------------------------------

    def open_vector_store(self, project_name: str) -> VectorStore:
        return VectorStore(self.create_or_get_project(project_name))

    def open_graph_store(self, project_name: str, settings: Optional[GraphSettings] = None) -> GraphStore:
        settings = settings or GraphSettings()
        if settings.backend == "neo4j":
            return Neo4jGraphStore(
                uri=settings.uri,
                username=settings.username,
                password=settings.password,
                database=settings.database,
            )
        if settings.backend != "sqlite":
            raise ValueError(f"Unknown graph backend '{settings.backend}' (expected sqlite or neo4j)")
        return SQLiteGraphStore(self.create_or_get_project(project_name) / "graph.db")

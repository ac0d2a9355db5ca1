"""Configuration paths and defaults for local CodeGraph RAG storage."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("CODEGRAPH_RAG_HOME", str(Path.home() / ".codegraph_rag"))).expanduser()
MEMORY_DIR = BASE_DIR / "memory"
STATE_FILE = BASE_DIR / "state.json"
CONFIG_FILE = BASE_DIR / "config.toml"

DEFAULT_EMBEDDING_DIM = 256
DEFAULT_EMBEDDING_MODEL = "hash"

# Retrieval / expansion
DEFAULT_TOP_K = 5
DEFAULT_HOPS = 2
MAX_HOPS = 2
DEFAULT_NEIGHBOR_LIMIT = 10

# Vector ingestion
DEFAULT_BATCH_SIZE = 100
DEFAULT_EMBED_WORKERS = 4

DEFAULT_LLM_PROVIDER = "ollama"
DEFAULT_LLM_MODEL = "qwen2.5-coder:7b"
DEFAULT_LLM_ENDPOINT = "http://127.0.0.1:11434/api/chat"
DEFAULT_LLM_TIMEOUT = 60.0

DEFAULT_GRAPH_BACKEND = "sqlite"


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)
    MEMORY_DIR.mkdir(parents=True, exist_ok=True)

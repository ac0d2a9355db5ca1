"""Configuration manager for CodeGraph RAG using TOML files.

Settings are read from ``~/.codegraph_rag/config.toml``::

    [llm]
    provider = "ollama"
    model = "qwen2.5-coder:7b"
    endpoint = "http://127.0.0.1:11434/api/chat"

    [embeddings]
    model = "hash"

    [index]
    top_k = 5
    hops = 2

    [graph]
    backend = "sqlite"     # or "neo4j"

Secrets may come from the environment (or a ``.env`` file loaded by the CLI)
instead of the TOML file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from . import config

logger = logging.getLogger(__name__)

# Default model per provider when the configured model is left at the
# Ollama default.
PROVIDER_DEFAULT_MODELS: Dict[str, str] = {
    "ollama": config.DEFAULT_LLM_MODEL,
    "openai": "gpt-4o-mini",
    "groq": "llama-3.3-70b-versatile",
    "openrouter": "google/gemini-2.0-flash-exp:free",
    "anthropic": "claude-3-5-sonnet-20241022",
    "gemini": "gemini-2.5-flash",
}


@dataclass
class LLMSettings:
    provider: str = config.DEFAULT_LLM_PROVIDER
    model: str = config.DEFAULT_LLM_MODEL
    api_key: str = ""
    endpoint: str = ""
    timeout: float = config.DEFAULT_LLM_TIMEOUT


@dataclass
class IndexSettings:
    top_k: int = config.DEFAULT_TOP_K
    hops: int = config.DEFAULT_HOPS
    neighbor_limit: int = config.DEFAULT_NEIGHBOR_LIMIT
    batch_size: int = config.DEFAULT_BATCH_SIZE
    embed_workers: int = config.DEFAULT_EMBED_WORKERS


@dataclass
class GraphSettings:
    backend: str = config.DEFAULT_GRAPH_BACKEND
    uri: str = "bolt://localhost:7687"
    username: str = "neo4j"
    password: str = ""
    database: str = "neo4j"


@dataclass
class Settings:
    llm: LLMSettings = field(default_factory=LLMSettings)
    embedding_model: str = config.DEFAULT_EMBEDDING_MODEL
    index: IndexSettings = field(default_factory=IndexSettings)
    graph: GraphSettings = field(default_factory=GraphSettings)


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the entire TOML config (all sections).

    A missing file yields ``{}``.  A malformed file is logged and ignored so
    the defaults still apply.
    """
    path = path or config.CONFIG_FILE
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (toml.TomlDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return {}


def _pick(section: Dict[str, Any], key: str, default: Any, cast: Any) -> Any:
    value = section.get(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError):
        logger.warning("Invalid value %r for '%s'; using %r", value, key, default)
        return default


def load_settings(path: Optional[Path] = None) -> Settings:
    """Build :class:`Settings` from the TOML file plus environment overrides."""
    raw = load_full_config(path)
    llm_raw = raw.get("llm", {})
    emb_raw = raw.get("embeddings", {})
    idx_raw = raw.get("index", {})
    graph_raw = raw.get("graph", {})

    provider = str(llm_raw.get("provider", config.DEFAULT_LLM_PROVIDER)).lower()
    model = str(llm_raw.get("model") or PROVIDER_DEFAULT_MODELS.get(provider, config.DEFAULT_LLM_MODEL))
    llm = LLMSettings(
        provider=provider,
        model=model,
        api_key=os.environ.get("CODEGRAPH_LLM_API_KEY") or str(llm_raw.get("api_key", "")),
        endpoint=str(llm_raw.get("endpoint", "")),
        timeout=_pick(llm_raw, "timeout", config.DEFAULT_LLM_TIMEOUT, float),
    )

    index = IndexSettings(
        top_k=_pick(idx_raw, "top_k", config.DEFAULT_TOP_K, int),
        hops=_pick(idx_raw, "hops", config.DEFAULT_HOPS, int),
        neighbor_limit=_pick(idx_raw, "neighbor_limit", config.DEFAULT_NEIGHBOR_LIMIT, int),
        batch_size=_pick(idx_raw, "batch_size", config.DEFAULT_BATCH_SIZE, int),
        embed_workers=_pick(idx_raw, "embed_workers", config.DEFAULT_EMBED_WORKERS, int),
    )

    graph = GraphSettings(
        backend=str(graph_raw.get("backend", config.DEFAULT_GRAPH_BACKEND)).lower(),
        uri=os.environ.get("NEO4J_URI") or str(graph_raw.get("uri", "bolt://localhost:7687")),
        username=os.environ.get("NEO4J_USERNAME") or str(graph_raw.get("username", "neo4j")),
        password=os.environ.get("NEO4J_PASSWORD") or str(graph_raw.get("password", "")),
        database=os.environ.get("NEO4J_DATABASE") or str(graph_raw.get("database", "neo4j")),
    )

    return Settings(
        llm=llm,
        embedding_model=str(emb_raw.get("model", config.DEFAULT_EMBEDDING_MODEL)),
        index=index,
        graph=graph,
    )

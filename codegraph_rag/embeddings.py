"""Code embedding engines.

Supported models (``[embeddings] model = ...`` in ``config.toml``):

========== ====================================== ====== ==========================
Key        HuggingFace Model                      Dim    Notes
========== ====================================== ====== ==========================
jina-code  jinaai/jina-embeddings-v2-base-code      768  Code-aware
bge-base   BAAI/bge-base-en-v1.5                    768  General-purpose
minilm     sentence-transformers/all-MiniLM-L6-v2   384  Tiny and fast
hash       (none)                                   256  No ML, keyword-level only
========== ====================================== ====== ==========================

Transformer models are downloaded once into ``~/.codegraph_rag/models`` and
run on-device.  They need the ``embeddings`` extra (``torch`` and
``transformers``).  The hash embedder is the zero-download default.
"""

from __future__ import annotations

import logging
import math
import re
import threading
from hashlib import blake2b
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from . import config

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


EMBEDDING_MODELS: Dict[str, Dict[str, Any]] = {
    "jina-code": {
        "hf_id": "jinaai/jina-embeddings-v2-base-code",
        "dim": 768,
        "max_tokens": 8192,
        "pooling": "mean",
        "trust_remote_code": True,
    },
    "bge-base": {
        "hf_id": "BAAI/bge-base-en-v1.5",
        "dim": 768,
        "max_tokens": 512,
        "pooling": "cls",
        "trust_remote_code": False,
    },
    "minilm": {
        "hf_id": "sentence-transformers/all-MiniLM-L6-v2",
        "dim": 384,
        "max_tokens": 256,
        "pooling": "mean",
        "trust_remote_code": False,
    },
    "hash": {
        "hf_id": None,
        "dim": config.DEFAULT_EMBEDDING_DIM,
        "max_tokens": None,
        "pooling": None,
        "trust_remote_code": False,
    },
}


class TransformerEmbedder:
    """HuggingFace embedding engine with mean or CLS pooling.

    The model is loaded lazily on first use; loading is guarded by a lock so
    concurrent ingestion workers share one instance.
    """

    def __init__(
        self,
        model_key: str,
        cache_dir: Optional[Path] = None,
        device: str = "cpu",
    ) -> None:
        spec = EMBEDDING_MODELS.get(model_key)
        if spec is None or spec["hf_id"] is None:
            raise ValueError(f"'{model_key}' is not a transformer embedding model")

        self.model_key = model_key
        self.hf_id: str = spec["hf_id"]
        self.dim: int = spec["dim"]
        self.max_length: int = spec["max_tokens"]
        self.pooling: str = spec["pooling"]
        self.trust_remote_code: bool = spec["trust_remote_code"]
        self.cache_dir = cache_dir or (config.BASE_DIR / "models")
        self.device = device
        self._model: Any = None
        self._tokenizer: Any = None
        self._lock = threading.Lock()

    def _load_model(self) -> None:
        with self._lock:
            if self._model is not None:
                return
            try:
                from transformers import AutoModel, AutoTokenizer
            except ImportError as exc:
                raise ImportError(
                    "torch and transformers are required for neural embeddings. "
                    "Install with: pip install codegraph-rag[embeddings]"
                ) from exc

            logger.info("Loading embedding model '%s' (%s)", self.model_key, self.hf_id)
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self._tokenizer = AutoTokenizer.from_pretrained(
                self.hf_id,
                cache_dir=str(self.cache_dir),
                trust_remote_code=self.trust_remote_code,
            )
            model = AutoModel.from_pretrained(
                self.hf_id,
                cache_dir=str(self.cache_dir),
                trust_remote_code=self.trust_remote_code,
            )
            model.eval()
            model.to(self.device)
            self._model = model

    def _pool(self, last_hidden_states: Any, attention_mask: Any) -> Any:
        if self.pooling == "cls":
            return last_hidden_states[:, 0]
        mask = attention_mask.unsqueeze(-1).expand(last_hidden_states.size()).float()
        return (last_hidden_states * mask).sum(dim=1) / mask.sum(dim=1).clamp(min=1e-9)

    def _encode(self, texts: List[str]) -> List[List[float]]:
        import torch
        import torch.nn.functional as F

        self._load_model()
        batch = self._tokenizer(
            texts,
            max_length=self.max_length,
            padding=True,
            truncation=True,
            return_tensors="pt",
        )
        batch = {k: v.to(self.device) for k, v in batch.items()}
        with torch.no_grad():
            outputs = self._model(**batch)
        pooled = self._pool(outputs.last_hidden_state, batch["attention_mask"])
        return F.normalize(pooled, p=2, dim=1).cpu().tolist()

    def embed_text(self, text: str) -> List[float]:
        return self._encode([text])[0]


class HashEmbeddingModel:
    """Deterministic token-hashing embedder, no ML dependencies.

    Gives keyword-level similarity: identifiers shared between a question and
    a chunk land in the same buckets.
    """

    model_key = "hash"

    def __init__(self, dim: int = config.DEFAULT_EMBEDDING_DIM) -> None:
        self.dim = dim

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for token in _TOKEN_RE.findall(text.lower()):
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dim
            vec[idx] += 1.0 if (digest[4] & 1) == 0 else -1.0
        return _l2_normalize(vec)


Embedder = Union[TransformerEmbedder, HashEmbeddingModel]


def get_embedder(
    model_key: Optional[str] = None,
    cache_dir: Optional[Path] = None,
    device: str = "cpu",
) -> Embedder:
    """Return the embedder for *model_key* (default ``"hash"``).

    Raises:
        ValueError: unknown model key.
    """
    model_key = model_key or config.DEFAULT_EMBEDDING_MODEL
    if model_key not in EMBEDDING_MODELS:
        raise ValueError(
            f"Unknown embedding model '{model_key}'. "
            f"Available: {', '.join(EMBEDDING_MODELS)}"
        )
    if EMBEDDING_MODELS[model_key]["hf_id"] is None:
        return HashEmbeddingModel()
    return TransformerEmbedder(model_key=model_key, cache_dir=cache_dir, device=device)


def _l2_normalize(vec: List[float]) -> List[float]:
    norm = math.sqrt(sum(v * v for v in vec))
    if norm < 1e-12:
        return vec
    return [v / norm for v in vec]

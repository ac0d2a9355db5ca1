"""CodeGraph RAG: dual-index (vector + graph) code question answering."""

__version__ = "0.1.0"

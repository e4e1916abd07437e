"""
qdrant-rag: semantic and hybrid document retrieval over Qdrant.

Embedding providers (Ollama, OpenAI, Cohere, Voyage AI) produce dense
vectors, a BM25-style encoder produces sparse ones, and FusionStore merges
dense and sparse rankings with Reciprocal Rank Fusion.
"""

from __future__ import annotations

__version__ = "0.1.0"

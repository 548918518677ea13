"""Embedding providers, caching and vector search."""

from .cache import CachedEmbeddingProvider
from .index import VectorIndex, as_vector, cosine
from .provider import EmbeddingProvider, HttpEmbeddingProvider, embed_with_timeout

__all__ = [
    "CachedEmbeddingProvider",
    "EmbeddingProvider",
    "HttpEmbeddingProvider",
    "VectorIndex",
    "as_vector",
    "cosine",
    "embed_with_timeout",
]

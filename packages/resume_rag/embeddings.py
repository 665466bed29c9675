"""
Embedding capability used by the vector store.

Providers turn text into a fixed-dimension vector. The real provider
(BGE-M3, see `bge_m3.py`) may be missing or fail at runtime, so the store
always carries a `HashingEmbeddingProvider` of the same dimension to fall
back on.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import TYPE_CHECKING, Protocol, Sequence, Union

import numpy as np

if TYPE_CHECKING:
    from .config import RAGSettings

_log = logging.getLogger(__name__)

DEFAULT_FALLBACK_DIMENSION = 768

_TOKEN = re.compile(r"[a-z0-9]+")

Vector = Union[Sequence[float], np.ndarray]


class EmbeddingProvider(Protocol):
    """Text -> fixed-dimension vector. Implementations may raise on failure."""

    dimension: int

    def embed(self, text: str) -> Vector: ...


class HashingEmbeddingProvider:
    """Deterministic hashing-trick embedding.

    Each lower-cased word and its character trigrams are hashed with blake2b
    into a signed bucket. The result is L2-normalised, so cosine similarity
    reflects shared vocabulary. Same text, same vector, in every process.
    """

    def __init__(self, dimension: int = DEFAULT_FALLBACK_DIMENSION, trigram_weight: float = 0.5):
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")
        self.dimension = dimension
        self.trigram_weight = trigram_weight

    def _bucket(self, feature: str) -> tuple[int, float]:
        digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, "little")
        sign = 1.0 if value & 1 else -1.0
        return (value >> 1) % self.dimension, sign

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)

        for token in _TOKEN.findall(text.lower()):
            idx, sign = self._bucket(token)
            vector[idx] += sign

            padded = f"#{token}#"
            for i in range(len(padded) - 2):
                idx, sign = self._bucket(padded[i : i + 3])
                vector[idx] += sign * self.trigram_weight

        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector


def build_embedding_provider(settings: "RAGSettings") -> EmbeddingProvider:
    """Create the provider selected by settings."""
    if settings.embedding_backend == "hashing":
        _log.info("Using hashing embeddings (dim=%d)", settings.embedding_dimension)
        return HashingEmbeddingProvider(dimension=settings.embedding_dimension)

    # Imported here so the core does not pull in torch unless BGE-M3 is used.
    from .bge_m3 import BGEM3EmbeddingProvider

    return BGEM3EmbeddingProvider(
        model_name=settings.embedding_model,
        dimension=settings.embedding_dimension,
        max_length=settings.embedding_max_length,
    )


__all__ = [
    "EmbeddingProvider",
    "HashingEmbeddingProvider",
    "build_embedding_provider",
    "DEFAULT_FALLBACK_DIMENSION",
    "Vector",
]

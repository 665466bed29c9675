from __future__ import annotations

import hashlib
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from .config import RerankConfig
from .embeddings import DEFAULT_FALLBACK_DIMENSION, EmbeddingProvider, HashingEmbeddingProvider, Vector
from .errors import EmbeddingUnavailable
from .models import DocumentChunk, ResumeSectionType, RetrievalResult, relevance_for
from .observability import LoggingObserver, RAGObserver
from .text import query_tokens

_log = logging.getLogger(__name__)

DEFAULT_RETRIEVE_THRESHOLD = 0.65

# Query substring -> section it signals.
SECTION_INTENTS: Tuple[Tuple[str, ResumeSectionType], ...] = (
    ("skill", ResumeSectionType.SKILLS),
    ("experience", ResumeSectionType.EXPERIENCE),
    ("education", ResumeSectionType.EDUCATION),
)

_NUMBERED_ID = re.compile(r"(.*?)(\d+)")


def _cosine_scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of every row of `matrix` against `query`; 0.0 where either is zero."""
    magnitudes = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(magnitudes > 0, dots / magnitudes, 0.0)


def _content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _chunk_order(chunk_id: str) -> Tuple[str, int, str]:
    """Sort key for chunk ids that orders chunk_2 before chunk_10."""
    match = _NUMBERED_ID.fullmatch(chunk_id)
    if match is None:
        return chunk_id, -1, chunk_id
    return match.group(1), int(match.group(2)), chunk_id


def rank_key(result: RetrievalResult) -> Tuple[float, Tuple[str, int, str]]:
    """Descending score, then ascending chunk id."""
    return -result.score, _chunk_order(result.chunk.id)


class VectorStore:
    """In-memory chunk store with cosine retrieval and heuristic reranking.

    Holds one resume's chunks for one session. Embeddings come from the
    injected provider and are cached by content hash; when the provider is
    missing or fails, a hashing embedding of the same dimension is used so
    retrieval degrades instead of breaking.
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider] = None,
        *,
        fallback: Optional[HashingEmbeddingProvider] = None,
        rerank_config: Optional[RerankConfig] = None,
        max_workers: int = 4,
        observer: Optional[RAGObserver] = None,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")

        if fallback is None:
            dimension = provider.dimension if provider is not None else DEFAULT_FALLBACK_DIMENSION
            fallback = HashingEmbeddingProvider(dimension=dimension)
        elif provider is not None and fallback.dimension != provider.dimension:
            raise ValueError(
                f"Fallback dimension {fallback.dimension} does not match provider dimension {provider.dimension}"
            )

        self.provider = provider
        self.fallback = fallback
        self.rerank_config = rerank_config or RerankConfig()
        self.max_workers = max_workers
        self.observer = observer or LoggingObserver()

        self._chunks: Dict[str, DocumentChunk] = {}
        self._vectors: Dict[str, np.ndarray] = {}
        self._cache: Dict[str, np.ndarray] = {}

    @property
    def dimension(self) -> int:
        return self.fallback.dimension

    def add_chunks(self, chunks: Iterable[DocumentChunk]) -> None:
        """Embed chunks that lack an embedding and store copies of all of them."""
        chunks = list(chunks)
        # Reject bad supplied embeddings before anything is stored.
        supplied = {
            chunk.id: self._as_vector(chunk.embedding) for chunk in chunks if chunk.embedding is not None
        }
        pending = {
            _content_hash(chunk.content): chunk.content for chunk in chunks if chunk.embedding is None
        }
        embedded = self._embed_many(pending)

        for chunk in chunks:
            if chunk.embedding is None:
                vector = embedded[_content_hash(chunk.content)]
            else:
                vector = supplied[chunk.id]

            if chunk.id in self._chunks:
                _log.warning("Replacing stored chunk with duplicate id %s", chunk.id)
            self._chunks[chunk.id] = chunk.model_copy(update={"embedding": vector.tolist()})
            self._vectors[chunk.id] = vector

        self.observer.event(
            "chunks_added",
            added=len(chunks),
            embedded=len(pending),
            stored=len(self._chunks),
        )

    def retrieve(
        self,
        query: str,
        top_k: int = 5,
        threshold: float = DEFAULT_RETRIEVE_THRESHOLD,
    ) -> List[RetrievalResult]:
        """Stored chunks with cosine similarity >= threshold, best first, at most top_k."""
        if top_k <= 0 or not self._chunks:
            return []

        query_vector = self._embed(query).astype(np.float64)
        ids = list(self._vectors)
        matrix = np.vstack([self._vectors[chunk_id] for chunk_id in ids]).astype(np.float64)
        scores = _cosine_scores(matrix, query_vector)

        results: list[RetrievalResult] = []
        for chunk_id, raw_score in zip(ids, scores):
            score = float(raw_score)
            if score >= threshold:
                results.append(
                    RetrievalResult(
                        chunk=self._chunks[chunk_id],
                        score=score,
                        similarity=score,
                        relevance=relevance_for(score),
                    )
                )

        results.sort(key=rank_key)
        return results[:top_k]

    def rerank(self, results: List[RetrievalResult], query: str) -> List[RetrievalResult]:
        """Boost similarity with metadata signals and re-sort.

        Boosts always start from the raw similarity, so reranking an already
        reranked list gives the same list. Returns new result objects.
        """
        cfg = self.rerank_config
        query_lower = query.lower()
        intents = {section for marker, section in SECTION_INTENTS if marker in query_lower}
        tokens = query_tokens(query)

        reranked: list[RetrievalResult] = []
        for result in results:
            meta = result.chunk.metadata
            score = result.similarity

            if meta.has_quantifiable_metrics:
                score *= cfg.metrics_boost
            if meta.section_type in intents:
                score *= cfg.section_boost

            matching_keywords = len(tokens & {kw.lower() for kw in meta.keywords})
            if matching_keywords:
                score *= 1 + cfg.keyword_boost * matching_keywords

            score = min(score, 1.0)
            reranked.append(result.model_copy(update={"score": score, "relevance": relevance_for(score)}))

        reranked.sort(key=rank_key)
        return reranked

    def size(self) -> int:
        return len(self._chunks)

    def __len__(self) -> int:
        return self.size()

    def clear(self) -> None:
        """Drop all chunks and the embedding cache."""
        self._chunks.clear()
        self._vectors.clear()
        self._cache.clear()

    def _embed_many(self, texts: Dict[str, str]) -> Dict[str, np.ndarray]:
        """Embed distinct texts keyed by content hash, bounded by max_workers."""
        if not texts:
            return {}

        keys = list(texts)
        if self.max_workers == 1 or len(keys) == 1:
            vectors = [self._embed(texts[key]) for key in keys]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(keys))) as pool:
                vectors = list(pool.map(lambda key: self._embed(texts[key]), keys))
        return dict(zip(keys, vectors))

    def _embed(self, text: str) -> np.ndarray:
        if self.provider is None:
            return self._as_vector(self.fallback.embed(text))

        key = _content_hash(text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            vector = self._embed_with_provider(text)
        except EmbeddingUnavailable as exc:
            self.observer.failure("embedding_fallback", exc, chars=len(text))
            return self._as_vector(self.fallback.embed(text))

        self._cache[key] = vector
        return vector

    def _embed_with_provider(self, text: str) -> np.ndarray:
        try:
            raw = self.provider.embed(text)
        except Exception as exc:
            raise EmbeddingUnavailable(f"Embedding provider failed: {exc}") from exc

        try:
            return self._as_vector(raw)
        except (TypeError, ValueError) as exc:
            raise EmbeddingUnavailable(str(exc)) from exc

    def _as_vector(self, raw: Vector) -> np.ndarray:
        vector = np.asarray(raw, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise ValueError(f"Expected embedding of dimension {self.dimension}, got shape {vector.shape}")
        if not np.all(np.isfinite(vector)):
            raise ValueError("Embedding contains non-finite values")
        return vector


__all__ = [
    "VectorStore",
    "rank_key",
    "SECTION_INTENTS",
    "DEFAULT_RETRIEVE_THRESHOLD",
]

from __future__ import annotations

import re
import threading
from typing import Any, Dict, List, Sequence, Tuple

import pytest

from resume_rag.models import ChunkMetadata, DocumentChunk, ResumeSectionType, RetrievalResult, relevance_for

SAMPLE_RESUME = """Jane Doe
Senior Software Engineer
jane.doe@example.com | +1 555 0100

PROFESSIONAL SUMMARY
Backend engineer with 8 years of experience building data platforms.

EXPERIENCE
Acme Corp - Staff Engineer (2019 - Present)
- Led a team of 6 engineers building a Python data pipeline.
- Reduced infrastructure cost by 35% through Kubernetes autoscaling.
- Grew platform usage to 2 million users.

EDUCATION
B.Sc. Computer Science, State University, 2014

SKILLS
Python, Go, PostgreSQL, Kubernetes, Terraform, AWS
"""

VOCABULARY = (
    "python",
    "go",
    "kubernetes",
    "terraform",
    "engineers",
    "team",
    "cost",
    "university",
    "science",
    "backend",
    "data",
    "platforms",
)

_WORD = re.compile(r"[a-z0-9]+")


class WordTokenizer:
    """One token per whitespace-separated word; stands in for tiktoken offline."""

    def encode(self, text: str) -> List[int]:
        return [0] * len(text.split())


class CharTokenizer:
    """One token per character, so separators between units count too."""

    def encode(self, text: str) -> List[int]:
        return [0] * len(text)


class KeywordEmbeddingProvider:
    """Counts vocabulary words, so similarity follows shared terms."""

    def __init__(self, vocabulary: Sequence[str] = VOCABULARY):
        self.vocabulary = list(vocabulary)
        self.dimension = len(self.vocabulary)
        self.calls = 0
        self._lock = threading.Lock()

    def embed(self, text: str) -> List[float]:
        with self._lock:
            self.calls += 1
        words = _WORD.findall(text.lower())
        return [float(words.count(term)) for term in self.vocabulary]


class FixedVectorProvider:
    """Returns preset vectors keyed by exact text."""

    def __init__(self, vectors: Dict[str, Sequence[float]]):
        self.vectors = {text: list(vector) for text, vector in vectors.items()}
        self.dimension = len(next(iter(self.vectors.values())))

    def embed(self, text: str) -> List[float]:
        return self.vectors[text]


class FailingProvider:
    def __init__(self, dimension: int = 16):
        self.dimension = dimension
        self.calls = 0
        self._lock = threading.Lock()

    def embed(self, text: str) -> List[float]:
        with self._lock:
            self.calls += 1
        raise RuntimeError("embedding service unavailable")


class RecordingObserver:
    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        self.failures: List[Tuple[str, BaseException, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def event(self, name: str, **fields: Any) -> None:
        with self._lock:
            self.events.append((name, fields))

    def failure(self, name: str, exc: BaseException, **fields: Any) -> None:
        with self._lock:
            self.failures.append((name, exc, fields))

    def event_names(self) -> List[str]:
        return [name for name, _ in self.events]

    def failure_names(self) -> List[str]:
        return [name for name, _, _ in self.failures]


@pytest.fixture
def sample_resume() -> str:
    return SAMPLE_RESUME


@pytest.fixture
def word_tokenizer() -> WordTokenizer:
    return WordTokenizer()


@pytest.fixture
def char_tokenizer() -> CharTokenizer:
    return CharTokenizer()


@pytest.fixture
def keyword_provider() -> KeywordEmbeddingProvider:
    return KeywordEmbeddingProvider()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def offline_tokenizer(monkeypatch):
    """Make chunkers that load their own tokenizer use WordTokenizer."""
    monkeypatch.setattr("resume_rag.chunking.load_tokenizer", lambda: WordTokenizer())


@pytest.fixture
def make_chunk():
    def _make(
        chunk_id: str,
        content: str,
        section_type: ResumeSectionType = ResumeSectionType.OTHER,
        metrics: bool = False,
        keywords: Sequence[str] = (),
        embedding: Sequence[float] | None = None,
    ) -> DocumentChunk:
        return DocumentChunk(
            id=chunk_id,
            content=content,
            metadata=ChunkMetadata(
                section_type=section_type,
                section_title=section_type.value.title(),
                start_index=0,
                end_index=len(content),
                has_quantifiable_metrics=metrics,
                keywords=list(keywords),
            ),
            embedding=list(embedding) if embedding is not None else None,
        )

    return _make


@pytest.fixture
def make_result(make_chunk):
    def _make(chunk_id: str, similarity: float, **chunk_kwargs: Any) -> RetrievalResult:
        chunk = make_chunk(chunk_id, chunk_kwargs.pop("content", f"content of {chunk_id}"), **chunk_kwargs)
        return RetrievalResult(
            chunk=chunk,
            score=similarity,
            similarity=similarity,
            relevance=relevance_for(similarity),
        )

    return _make

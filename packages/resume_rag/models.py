from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

HIGH_RELEVANCE = 0.85
MEDIUM_RELEVANCE = 0.70
MAX_KEYWORDS = 10


class ResumeSectionType(str, Enum):
    """Resume section a chunk was taken from."""

    HEADER = "HEADER"
    SUMMARY = "SUMMARY"
    EXPERIENCE = "EXPERIENCE"
    EDUCATION = "EDUCATION"
    SKILLS = "SKILLS"
    PROJECTS = "PROJECTS"
    CERTIFICATIONS = "CERTIFICATIONS"
    AWARDS = "AWARDS"
    OTHER = "OTHER"


class Relevance(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


def relevance_for(score: float) -> Relevance:
    """Map a similarity score to its relevance tier."""
    if score >= HIGH_RELEVANCE:
        return Relevance.HIGH
    if score >= MEDIUM_RELEVANCE:
        return Relevance.MEDIUM
    return Relevance.LOW


class ChunkMetadata(BaseModel):
    """Where a chunk came from and what the heuristics found in it."""

    section_type: ResumeSectionType = Field(
        default=ResumeSectionType.OTHER,
        description="Section the chunk belongs to.",
    )
    section_title: Optional[str] = Field(
        default=None,
        description="Heading line of the section as written in the resume.",
    )
    start_index: int = Field(
        ...,
        ge=0,
        description="Character offset of the chunk start in the original text.",
    )
    end_index: int = Field(
        ...,
        description="Character offset one past the chunk end in the original text.",
    )
    bullet_point: bool = Field(
        default=False,
        description="True if the chunk starts with a bullet or number marker.",
    )
    has_quantifiable_metrics: bool = Field(
        default=False,
        description="True if the chunk mentions a number with a unit (%, $, million...).",
    )
    keywords: List[str] = Field(
        default_factory=list,
        description="Most frequent non-stopword terms, at most ten.",
    )

    @field_validator("keywords")
    @classmethod
    def _limit_keywords(cls, value: List[str]) -> List[str]:
        if len(value) > MAX_KEYWORDS:
            raise ValueError(f"at most {MAX_KEYWORDS} keywords allowed, got {len(value)}")
        return value

    @model_validator(mode="after")
    def _check_offsets(self) -> "ChunkMetadata":
        if self.end_index <= self.start_index:
            raise ValueError(
                f"end_index ({self.end_index}) must be greater than start_index ({self.start_index})"
            )
        return self


class DocumentChunk(BaseModel):
    """A contiguous span of the resume used as one retrieval unit."""

    id: str
    content: str
    metadata: ChunkMetadata
    embedding: Optional[List[float]] = None

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("chunk content must not be empty")
        return stripped


class RetrievalResult(BaseModel):
    """A stored chunk matched against a query.

    `similarity` is the raw cosine similarity from retrieval. `score` starts
    equal to it and is replaced by the boosted value when results are reranked.
    """

    chunk: DocumentChunk
    score: float
    similarity: float
    relevance: Relevance


class Citation(BaseModel):
    id: str
    content: str
    section: str
    section_type: ResumeSectionType
    relevance_score: float
    start_index: int
    end_index: int
    line_reference: str


class RAGContext(BaseModel):
    """Retrieved chunks plus the citation-marked context text built from them."""

    query: str
    retrieved_chunks: List[RetrievalResult] = Field(default_factory=list)
    context_text: str = ""
    citations: List[Citation] = Field(default_factory=list)

    @classmethod
    def empty(cls, query: str) -> "RAGContext":
        return cls(query=query)

    @property
    def is_empty(self) -> bool:
        return not self.retrieved_chunks


__all__ = [
    "ResumeSectionType",
    "Relevance",
    "relevance_for",
    "ChunkMetadata",
    "DocumentChunk",
    "RetrievalResult",
    "Citation",
    "RAGContext",
]

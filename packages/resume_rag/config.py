from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkingConfig(BaseModel):
    """How resume sections are cut into chunks. Sizes are in tokens."""

    max_chunk_size: int = Field(
        default=500,
        gt=0,
        description="Token budget of a single chunk.",
    )
    overlap: int = Field(
        default=50,
        ge=0,
        description="Token budget carried over from the previous chunk.",
    )
    respect_boundaries: bool = Field(
        default=True,
        description="Treat line breaks as hard unit boundaries when splitting.",
    )
    preserve_formatting: bool = Field(
        default=True,
        description="Keep the original line layout in chunk content.",
    )

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.overlap >= self.max_chunk_size:
            raise ValueError(
                f"overlap ({self.overlap}) must be smaller than max_chunk_size ({self.max_chunk_size})"
            )
        return self


class RerankConfig(BaseModel):
    """Multipliers applied on top of cosine similarity when reranking."""

    metrics_boost: float = Field(default=1.10, ge=1.0)
    section_boost: float = Field(default=1.15, ge=1.0)
    keyword_boost: float = Field(
        default=0.05,
        ge=0.0,
        description="Added to the multiplier once per matching keyword.",
    )


class RAGConfig(BaseModel):
    top_k: int = Field(default=5, ge=1)
    similarity_threshold: float = Field(default=0.45, ge=-1.0, le=1.0)
    max_context_length: int = Field(
        default=3000,
        gt=0,
        description="Character budget of the assembled context text.",
    )
    reranking: bool = True
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    rerank: RerankConfig = Field(default_factory=RerankConfig)


class RAGSettings(BaseSettings):
    """Process-level settings, read from RESUME_RAG_* variables or `.env`."""

    model_config = SettingsConfigDict(
        env_prefix="RESUME_RAG_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    rag: RAGConfig = Field(default_factory=RAGConfig)

    embedding_backend: Literal["bge-m3", "hashing"] = Field(
        default="bge-m3",
        description="Embedding provider used when none is injected.",
    )
    embedding_model: str = "BAAI/bge-m3"
    embedding_dimension: int = Field(default=1024, gt=0)
    embedding_max_length: int = Field(default=8192, gt=0)
    embedding_concurrency: int = Field(
        default=4,
        ge=1,
        description="Maximum number of embedding calls in flight during initialize.",
    )

    log_level: str = "INFO"


def get_settings() -> RAGSettings:
    """Return freshly validated settings."""
    return RAGSettings()


def load_rag_config(path: Path) -> RAGConfig:
    """Read a JSON config file and validate it.

    Raises pydantic's ValidationError for malformed values, so a bad file is
    rejected here rather than during retrieval.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    data = json.loads(path.read_text(encoding="utf-8"))
    return RAGConfig.model_validate(data)


__all__ = [
    "ChunkingConfig",
    "RerankConfig",
    "RAGConfig",
    "RAGSettings",
    "get_settings",
    "load_rag_config",
]

from __future__ import annotations

import logging
import threading
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from resume_rag.config import get_settings
from resume_rag.embeddings import EmbeddingProvider, build_embedding_provider
from resume_rag.errors import InitializationError
from resume_rag.models import Citation, Relevance, ResumeSectionType
from resume_rag.service import RAGService

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
_log = logging.getLogger(__name__)

app = FastAPI(title="Resume RAG API")

# CORS: allow public frontend and local dev without credentials
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

_provider: EmbeddingProvider | None = None
_provider_lock = threading.Lock()


def get_embedding_provider() -> EmbeddingProvider:
    """Build the embedding provider once; it is shared between requests."""
    global _provider
    with _provider_lock:
        if _provider is None:
            _provider = build_embedding_provider(get_settings())
        return _provider


class ContextRequest(BaseModel):
    resume_text: str
    queries: list[str] = Field(default_factory=list)
    job_description: str | None = None
    analysis_type: str = Field(default="comprehensive")
    base_prompt: str | None = None


class ChunkSummary(BaseModel):
    id: str
    section_type: ResumeSectionType
    section_title: str | None
    score: float
    similarity: float
    relevance: Relevance
    start_index: int
    end_index: int


class ContextResponse(BaseModel):
    query: str
    context_text: str
    citations: list[Citation]
    chunks: list[ChunkSummary]
    augmented_prompt: str | None = None


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/context", response_model=ContextResponse)
def context(
    req: ContextRequest,
    provider: Annotated[EmbeddingProvider, Depends(get_embedding_provider)],
) -> ContextResponse:
    """
    Build cited resume context for an analysis request.

    A fresh service is created per request so resumes never share a store;
    only the embedding provider is reused.
    """
    service = RAGService(embedding_provider=provider)
    try:
        try:
            service.initialize(req.resume_text)
        except InitializationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        queries = req.queries or service.generate_queries(req.analysis_type, req.job_description)
        rag_context = service.retrieve_multi_query_context(queries)

        chunks = [
            ChunkSummary(
                id=result.chunk.id,
                section_type=result.chunk.metadata.section_type,
                section_title=result.chunk.metadata.section_title,
                score=result.score,
                similarity=result.similarity,
                relevance=result.relevance,
                start_index=result.chunk.metadata.start_index,
                end_index=result.chunk.metadata.end_index,
            )
            for result in rag_context.retrieved_chunks
        ]
        augmented = (
            service.augment_prompt(req.base_prompt, rag_context) if req.base_prompt is not None else None
        )
        _log.info("Built context with %d citations for %d queries", len(rag_context.citations), len(queries))
    finally:
        service.dispose()

    return ContextResponse(
        query=rag_context.query,
        context_text=rag_context.context_text,
        citations=rag_context.citations,
        chunks=chunks,
        augmented_prompt=augmented,
    )


__all__ = ["app", "get_embedding_provider"]

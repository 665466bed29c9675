from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from .chunking import ResumeChunker
from .config import RAGConfig, RAGSettings, get_settings
from .embeddings import EmbeddingProvider, build_embedding_provider
from .errors import InitializationError, NotInitializedError, RetrievalFailure
from .models import Citation, RAGContext, RetrievalResult
from .observability import LoggingObserver, RAGObserver
from .text import extract_keywords
from .vector_store import VectorStore, rank_key

_log = logging.getLogger(__name__)

BASE_QUERIES = (
    "Professional experience and work history",
    "Technical skills and competencies",
    "Education and academic qualifications",
    "Notable achievements and accomplishments",
)
JOB_QUERY_TERMS = 5

CONTEXT_SEPARATOR = "\n\n"

VERIFIED_CONTENT_TEMPLATE = """VERIFIED RESUME CONTENT (use ONLY this information):
{context_text}

IMPORTANT INSTRUCTIONS:
- Base your analysis ONLY on the verified resume content provided above
- Each piece of information is labeled with a citation (e.g., [citation_1])
- When making observations or suggestions, reference the citation number
- DO NOT invent or introduce any claim that cannot be traced to a citation
- If information is not available in the context, explicitly state "Information not found in resume"
- Prioritize content from citations with higher relevance scores
"""


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RAGService:
    """Retrieval session over a single resume.

    Usage:
        service = create_rag_service()
        service.initialize(resume_text)
        context = service.retrieve_multi_query_context(
            service.generate_queries("comprehensive", job_description)
        )
        prompt = service.augment_prompt(base_prompt, context)
        service.dispose()

    One instance serves one analysis request; it is not meant to be shared
    between concurrent callers.
    """

    def __init__(
        self,
        config: Optional[RAGConfig] = None,
        *,
        embedding_provider: Optional[EmbeddingProvider] = None,
        chunker: Optional[ResumeChunker] = None,
        vector_store: Optional[VectorStore] = None,
        observer: Optional[RAGObserver] = None,
        settings: Optional[RAGSettings] = None,
    ):
        self.settings = settings or get_settings()
        self.config = config or self.settings.rag
        self.observer = observer or LoggingObserver()
        self.chunker = chunker or ResumeChunker(self.config.chunking)

        if vector_store is None:
            provider = embedding_provider or build_embedding_provider(self.settings)
            vector_store = VectorStore(
                provider,
                rerank_config=self.config.rerank,
                max_workers=self.settings.embedding_concurrency,
                observer=self.observer,
            )
        self.vector_store = vector_store

        self._initialized = False

    def initialize(self, resume_text: str) -> None:
        """Chunk and embed the resume. Raises InitializationError if nothing is produced."""
        if self._initialized:
            self.vector_store.clear()
            self._initialized = False

        started = time.perf_counter()
        try:
            chunks = self.chunker.chunk(resume_text)
        except Exception as exc:
            raise InitializationError(f"Failed to chunk resume text: {exc}") from exc

        self.observer.event("chunked", chunks=len(chunks), chars=len(resume_text or ""))
        if not chunks:
            raise InitializationError("No chunks generated from resume text")

        try:
            self.vector_store.add_chunks(chunks)
        except Exception as exc:
            self.vector_store.clear()
            raise InitializationError(f"Failed to store resume chunks: {exc}") from exc

        self._initialized = True
        self.observer.event("initialized", chunks=len(chunks), duration_ms=_elapsed_ms(started))

    def retrieve_context(self, query: str) -> RAGContext:
        """Retrieve, optionally rerank, and build cited context for one query.

        Runtime failures yield an empty context so the caller's pipeline can
        continue without citations.
        """
        self._ensure_initialized()

        started = time.perf_counter()
        try:
            results = self.vector_store.retrieve(
                query,
                top_k=self.config.top_k,
                threshold=self.config.similarity_threshold,
            )
            if self.config.reranking and results:
                results = self.vector_store.rerank(results, query)
                self.observer.event("reranked", query=query, results=len(results))
            context = self._build_context(query, results)
        except Exception as exc:
            failure = RetrievalFailure(f"Context retrieval failed: {exc}")
            failure.__cause__ = exc
            self.observer.failure("retrieval_failed", failure, query=query)
            return RAGContext.empty(query)

        self.observer.event(
            "retrieved",
            query=query,
            results=len(results),
            citations=len(context.citations),
            context_chars=len(context.context_text),
            duration_ms=_elapsed_ms(started),
        )
        return context

    def retrieve_multi_query_context(self, queries: Iterable[str]) -> RAGContext:
        """Run every query, merge chunks by id keeping the best score, keep top_k."""
        self._ensure_initialized()

        queries = list(queries)
        label = "; ".join(queries)

        merged: dict[str, RetrievalResult] = {}
        for query in queries:
            context = self.retrieve_context(query)
            for result in context.retrieved_chunks:
                existing = merged.get(result.chunk.id)
                if existing is None or result.score > existing.score:
                    merged[result.chunk.id] = result

        ranked = sorted(merged.values(), key=rank_key)[: self.config.top_k]
        _log.debug("Merged %d queries into %d unique chunks", len(queries), len(ranked))
        return self._build_context(label, ranked)

    def augment_prompt(self, base_prompt: str, context: RAGContext) -> str:
        """Prefix the prompt with cited resume content, or return it unchanged if there is none."""
        if context.is_empty:
            return base_prompt

        return VERIFIED_CONTENT_TEMPLATE.format(context_text=context.context_text) + "\n\n" + base_prompt

    def generate_queries(self, analysis_type: str, job_description: Optional[str] = None) -> List[str]:
        """Base queries for a full analysis, plus one built from the job description's top terms."""
        queries = list(BASE_QUERIES)

        if job_description and job_description.strip():
            terms = extract_keywords(job_description)[:JOB_QUERY_TERMS]
            if terms:
                queries.append(f"Skills and experience related to: {', '.join(terms)}")

        _log.debug("Generated %d queries for analysis_type=%s", len(queries), analysis_type)
        return queries

    def is_ready(self) -> bool:
        return self._initialized and self.vector_store.size() > 0

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_initialized": self._initialized,
            "chunks_stored": self.vector_store.size(),
            "config": self.config.model_dump(),
        }

    def dispose(self) -> None:
        """Release the tokenizer and drop all session state."""
        self.chunker.dispose()
        self.vector_store.clear()
        self._initialized = False
        self.observer.event("disposed")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("RAG service not initialized; call initialize() first")

    def _build_context(self, query: str, results: List[RetrievalResult]) -> RAGContext:
        """Concatenate citation-marked blocks within max_context_length.

        The first block is always included, even when it alone exceeds the
        budget. Citation ids follow rank order.
        """
        blocks: list[str] = []
        citations: list[Citation] = []
        length = 0

        for rank, result in enumerate(results, start=1):
            citation_id = f"citation_{rank}"
            block = f"[{citation_id}] {result.chunk.content}"
            added = len(block) + (len(CONTEXT_SEPARATOR) if blocks else 0)
            if blocks and length + added > self.config.max_context_length:
                break

            blocks.append(block)
            length += added
            citations.append(self._make_citation(citation_id, result))

        return RAGContext(
            query=query,
            retrieved_chunks=list(results),
            context_text=CONTEXT_SEPARATOR.join(blocks),
            citations=citations,
        )

    @staticmethod
    def _make_citation(citation_id: str, result: RetrievalResult) -> Citation:
        meta = result.chunk.metadata
        return Citation(
            id=citation_id,
            content=result.chunk.content,
            section=meta.section_title or "Unknown Section",
            section_type=meta.section_type,
            relevance_score=result.score,
            start_index=meta.start_index,
            end_index=meta.end_index,
            line_reference=f"chars {meta.start_index}-{meta.end_index}",
        )


def create_rag_service(config: Optional[RAGConfig] = None, **kwargs: Any) -> RAGService:
    """Create a RAG service; keyword arguments are passed to RAGService."""
    return RAGService(config, **kwargs)


__all__ = [
    "RAGService",
    "create_rag_service",
    "BASE_QUERIES",
    "VERIFIED_CONTENT_TEMPLATE",
]

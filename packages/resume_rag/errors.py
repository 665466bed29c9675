from __future__ import annotations


class ResumeRAGError(Exception):
    """Base class for errors raised by the resume RAG core."""


class InitializationError(ResumeRAGError):
    """The resume text could not be turned into a searchable session."""


class NotInitializedError(ResumeRAGError):
    """Retrieval was attempted before `initialize` or after `dispose`."""


class EmbeddingUnavailable(ResumeRAGError):
    """The embedding provider failed or returned an unusable vector.

    Recovered inside the vector store through the fallback embedding.
    """


class RetrievalFailure(ResumeRAGError):
    """A retrieval or rerank step failed at runtime.

    Reported to the observer; callers receive an empty context instead.
    """


__all__ = [
    "ResumeRAGError",
    "InitializationError",
    "NotInitializedError",
    "EmbeddingUnavailable",
    "RetrievalFailure",
]

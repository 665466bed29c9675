import pytest

from conftest import FailingProvider, FixedVectorProvider, KeywordEmbeddingProvider
from resume_rag.config import RerankConfig
from resume_rag.embeddings import HashingEmbeddingProvider
from resume_rag.models import Relevance, ResumeSectionType
from resume_rag.observability import NullObserver
from resume_rag.vector_store import VectorStore


@pytest.fixture
def store(keyword_provider, observer):
    return VectorStore(keyword_provider, observer=observer)


def test_retrieve_returns_only_chunks_above_threshold(make_chunk):
    provider = FixedVectorProvider(
        {
            "query": [1.0, 0.0],
            "chunk a": [0.2, 0.9798],
            "chunk b": [0.9, 0.43589],
            "chunk c": [0.2, 0.9798],
        }
    )
    store = VectorStore(provider, observer=NullObserver())
    store.add_chunks([make_chunk("A", "chunk a"), make_chunk("B", "chunk b"), make_chunk("C", "chunk c")])

    results = store.retrieve("query", top_k=5, threshold=0.65)

    assert [r.chunk.id for r in results] == ["B"]
    assert results[0].score == pytest.approx(0.9, abs=1e-3)
    assert results[0].relevance == Relevance.HIGH


def test_retrieve_scores_scaled_orthogonal_and_zero_vectors(make_chunk):
    provider = FixedVectorProvider(
        {
            "query": [1.0, 0.0],
            "same": [3.0, 0.0],
            "orth": [0.0, 2.0],
            "zero": [0.0, 0.0],
        }
    )
    store = VectorStore(provider, observer=NullObserver())
    store.add_chunks([make_chunk(text, text) for text in ("same", "orth", "zero")])

    results = store.retrieve("query", top_k=5, threshold=-1.0)
    scores = {r.chunk.id: r.similarity for r in results}

    assert scores["same"] == pytest.approx(1.0)
    assert scores["orth"] == 0.0
    assert scores["zero"] == 0.0
    assert [r.chunk.id for r in results] == ["same", "orth", "zero"]


@pytest.mark.parametrize("top_k, threshold", [(1, -1.0), (2, 0.0), (3, 0.3), (10, 0.5), (4, 0.99)])
def test_retrieve_respects_top_k_and_threshold(make_chunk, top_k, threshold):
    store = VectorStore(HashingEmbeddingProvider(dimension=64), observer=NullObserver())
    store.add_chunks(
        [
            make_chunk(f"chunk_{i}", text)
            for i, text in enumerate(
                [
                    "Python developer building data pipelines",
                    "Kubernetes and Terraform infrastructure",
                    "Python and Go microservices",
                    "Led a team of engineers",
                    "Bachelor of Science in Computer Science",
                ]
            )
        ]
    )

    results = store.retrieve("python services", top_k=top_k, threshold=threshold)

    assert len(results) <= top_k
    assert all(r.score >= threshold for r in results)
    assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)


def test_retrieve_on_empty_store_or_zero_top_k(store, make_chunk):
    assert store.retrieve("python") == []

    store.add_chunks([make_chunk("chunk_0", "python python")])

    assert store.retrieve("python", top_k=0) == []


def test_retrieve_no_matches_is_empty(store, make_chunk):
    store.add_chunks([make_chunk("chunk_0", "python team")])

    assert store.retrieve("university", threshold=0.5) == []


def test_add_chunks_stores_copies(store, make_chunk):
    chunk = make_chunk("chunk_0", "python data")

    store.add_chunks([chunk])

    assert chunk.embedding is None
    assert store.size() == len(store) == 1
    stored = store.retrieve("python", threshold=0.0)[0].chunk
    assert stored.embedding is not None
    assert len(stored.embedding) == store.dimension


def test_chunks_with_embeddings_skip_the_provider(store, keyword_provider, make_chunk):
    vector = [0.0] * keyword_provider.dimension
    vector[0] = 1.0

    store.add_chunks([make_chunk("chunk_0", "anything", embedding=vector)])

    assert keyword_provider.calls == 0
    assert store.retrieve("python", threshold=0.9)[0].chunk.id == "chunk_0"


def test_supplied_embedding_of_wrong_dimension_rejected(store, make_chunk):
    with pytest.raises(ValueError):
        store.add_chunks([make_chunk("chunk_0", "python"), make_chunk("chunk_1", "go", embedding=[1.0, 0.0])])

    assert store.size() == 0


def test_embeddings_cached_by_content(keyword_provider, make_chunk):
    store = VectorStore(keyword_provider, max_workers=3, observer=NullObserver())

    store.add_chunks(
        [
            make_chunk("chunk_0", "python team"),
            make_chunk("chunk_1", "python team"),
            make_chunk("chunk_2", "kubernetes cost"),
        ]
    )
    assert keyword_provider.calls == 2

    store.retrieve("python")
    store.retrieve("python")
    assert keyword_provider.calls == 3


def test_clear_drops_chunks_and_cache(store, keyword_provider, make_chunk):
    store.add_chunks([make_chunk("chunk_0", "python team")])
    store.clear()

    assert store.size() == 0
    assert store.retrieve("python") == []

    store.add_chunks([make_chunk("chunk_0", "python team")])
    assert keyword_provider.calls == 2


def test_failing_provider_falls_back_to_hashing(make_chunk, observer):
    provider = FailingProvider(dimension=32)
    store = VectorStore(provider, observer=observer)
    chunks = [make_chunk("chunk_0", "python pipelines"), make_chunk("chunk_1", "bakery team")]

    store.add_chunks(chunks)
    results = store.retrieve("python pipelines", threshold=-1.0)

    reference = VectorStore(None, fallback=HashingEmbeddingProvider(dimension=32), observer=NullObserver())
    reference.add_chunks(chunks)
    expected = reference.retrieve("python pipelines", threshold=-1.0)

    assert [r.chunk.id for r in results] == [r.chunk.id for r in expected]
    assert [r.score for r in results] == pytest.approx([r.score for r in expected])
    assert results[0].chunk.id == "chunk_0"
    assert set(observer.failure_names()) == {"embedding_fallback"}
    assert provider.calls == 3


def test_wrong_dimension_from_provider_falls_back(make_chunk, observer):
    class ShortProvider:
        dimension = 8

        def embed(self, text):
            return [1.0, 2.0]

    store = VectorStore(ShortProvider(), observer=observer)
    store.add_chunks([make_chunk("chunk_0", "python")])

    assert store.size() == 1
    assert len(store.retrieve("python", threshold=-1.0)[0].chunk.embedding) == 8
    assert "embedding_fallback" in observer.failure_names()


def test_no_provider_uses_fallback_silently(make_chunk, observer):
    store = VectorStore(None, observer=observer)
    store.add_chunks([make_chunk("chunk_0", "python")])

    assert store.dimension == 768
    assert store.retrieve("python")[0].score == pytest.approx(1.0)
    assert observer.failures == []


def test_mismatched_fallback_dimension_rejected(keyword_provider):
    with pytest.raises(ValueError):
        VectorStore(keyword_provider, fallback=HashingEmbeddingProvider(dimension=keyword_provider.dimension + 1))


def test_rerank_boosts(store, make_result):
    results = [
        make_result("chunk_0", 0.5),
        make_result("chunk_1", 0.5, metrics=True),
        make_result("chunk_2", 0.5, section_type=ResumeSectionType.SKILLS),
        make_result("chunk_3", 0.5, keywords=["python", "docker", "aws"]),
    ]

    reranked = {r.chunk.id: r for r in store.rerank(results, "Python skills with AWS?")}

    assert reranked["chunk_0"].score == pytest.approx(0.5)
    assert reranked["chunk_1"].score == pytest.approx(0.5 * 1.10)
    assert reranked["chunk_2"].score == pytest.approx(0.5 * 1.15)
    assert reranked["chunk_3"].score == pytest.approx(0.5 * 1.10)
    assert all(r.similarity == 0.5 for r in reranked.values())


def test_rerank_uses_configured_boosts(keyword_provider, make_result):
    store = VectorStore(keyword_provider, rerank_config=RerankConfig(metrics_boost=1.5), observer=NullObserver())

    reranked = store.rerank([make_result("chunk_0", 0.4, metrics=True)], "anything")

    assert reranked[0].score == pytest.approx(0.6)


def test_rerank_clamps_and_reorders(store, make_result):
    results = [
        make_result("chunk_0", 0.92),
        make_result(
            "chunk_1",
            0.9,
            metrics=True,
            section_type=ResumeSectionType.EXPERIENCE,
            keywords=["python"],
        ),
    ]

    reranked = store.rerank(results, "python experience")

    assert [r.chunk.id for r in reranked] == ["chunk_1", "chunk_0"]
    assert reranked[0].score == 1.0
    assert reranked[0].relevance == Relevance.HIGH


def test_rerank_is_idempotent_and_does_not_mutate(store, make_result):
    results = [
        make_result("chunk_0", 0.6, metrics=True),
        make_result("chunk_1", 0.7, keywords=["python"]),
        make_result("chunk_2", 0.65, section_type=ResumeSectionType.EDUCATION),
    ]
    query = "python education"

    once = store.rerank(results, query)
    twice = store.rerank(once, query)

    assert twice == once
    assert [r.score for r in results] == [0.6, 0.7, 0.65]
    assert [r.chunk.id for r in results] == ["chunk_0", "chunk_1", "chunk_2"]


def test_ties_broken_by_ascending_chunk_id(store, make_result):
    results = [make_result("chunk_10", 0.8), make_result("chunk_2", 0.8), make_result("chunk_1", 0.8)]

    assert [r.chunk.id for r in store.rerank(results, "query")] == ["chunk_1", "chunk_2", "chunk_10"]


def test_retrieve_then_rerank_is_deterministic(sample_resume, word_tokenizer):
    from resume_rag.chunking import ResumeChunker

    chunks = ResumeChunker(tokenizer=word_tokenizer).chunk(sample_resume)
    store = VectorStore(KeywordEmbeddingProvider(), observer=NullObserver())
    store.add_chunks(chunks)

    runs = [store.rerank(store.retrieve("python kubernetes", threshold=0.0), "python kubernetes") for _ in range(3)]

    assert runs[0] == runs[1] == runs[2]
    assert runs[0]


def test_invalid_max_workers():
    with pytest.raises(ValueError):
        VectorStore(HashingEmbeddingProvider(dimension=8), max_workers=0)


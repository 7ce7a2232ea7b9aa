import asyncio
import logging

import pytest
from hypothesis import given, settings, strategies as st

from conftest import FakeStore
from scp_rerank.errors import (
    NotFoundError,
    ScoringPreconditionError,
    SearchFailureError,
    StoreError,
)
from scp_rerank.models import Article, ExtractedTags, SearchCandidate
from scp_rerank.search import HybridSearch, VectorSearch, cosine_similarity, rank_by_cosine

QUERY_TAGS = ExtractedTags("Euclid", ("horror", "sci-fi"), ("cognition", "biological"), "standard")


def make_store(query, candidates, tags=None):
    store = FakeStore(articles=[query], candidates=candidates, tags=tags or {})
    store.tags.setdefault(query.id, QUERY_TAGS)
    return store


class TestVectorSearch:
    @pytest.mark.asyncio
    async def test_excludes_query_and_sorts(self, scp_173):
        candidates = [
            SearchCandidate("SCP-096", "The Shy Guy", 0.71),
            SearchCandidate("SCP-173", "The Sculpture", 1.0),
            SearchCandidate("SCP-049", "Plague Doctor", 0.83),
        ]
        store = make_store(scp_173, candidates)

        response = await VectorSearch(store).search("SCP-173", limit=5)

        assert response.query_title == "The Sculpture"
        assert [r.article_id for r in response.results] == ["SCP-049", "SCP-096"]
        assert response.search_time_ms >= 0
        assert store.search_calls == [("SCP-173", 5)]

    @pytest.mark.asyncio
    async def test_truncates_to_limit(self, scp_173, five_candidates):
        store = make_store(scp_173, five_candidates)
        response = await VectorSearch(store).search("SCP-173", limit=2)
        assert [r.similarity_score for r in response.results] == [0.92, 0.88]

    @pytest.mark.asyncio
    async def test_missing_article(self):
        with pytest.raises(NotFoundError):
            await VectorSearch(FakeStore()).search("SCP-999")

    @pytest.mark.asyncio
    async def test_missing_embedding(self, scp_173):
        store = FakeStore(articles=[scp_173], embedded=[])
        with pytest.raises(NotFoundError, match="embedding"):
            await VectorSearch(store).search("SCP-173")
        assert store.search_calls == []

    @pytest.mark.asyncio
    async def test_backend_failure(self, scp_173):
        store = make_store(scp_173, [])
        store.search_error = StoreError("connection refused")
        with pytest.raises(SearchFailureError, match="connection refused"):
            await VectorSearch(store).search("SCP-173")

    @pytest.mark.asyncio
    async def test_embedding_lookup_failure(self, scp_173):
        store = make_store(scp_173, [])

        async def unreachable(article_id):
            raise StoreError("GET /scp_embeddings failed: connection refused")

        store.has_embedding = unreachable
        with pytest.raises(SearchFailureError, match="connection refused"):
            await VectorSearch(store).search("SCP-173")
        assert store.search_calls == []

    @pytest.mark.asyncio
    async def test_article_lookup_failure(self, scp_173):
        store = make_store(scp_173, [])

        async def unreachable(article_id):
            raise StoreError("GET /scp_articles returned 503: unavailable")

        store.get_article = unreachable
        with pytest.raises(SearchFailureError, match="unavailable"):
            await VectorSearch(store).search("SCP-173")


class TestHybridSearch:
    @pytest.mark.asyncio
    async def test_overfetches_and_ranks(self, scp_173, five_candidates):
        store = make_store(scp_173, five_candidates)
        hybrid = HybridSearch(VectorSearch(store), store)

        results = await hybrid.search("SCP-173", embedding_weight=0.7, tag_weight=0.3, limit=5)

        assert store.search_calls == [("SCP-173", 15)]
        assert len(results) == 5
        scores = [r.similarity_score for r in results]
        assert scores == sorted(scores, reverse=True)
        for r in results:
            assert r.similarity_score == pytest.approx(
                0.7 * r.embedding_score + 0.3 * r.tag_score, abs=1e-9
            )

    @pytest.mark.asyncio
    async def test_tags_can_overtake_embedding_order(self, scp_173, five_candidates):
        # Last candidate shares every tag with the query.
        store = make_store(scp_173, five_candidates, tags={"SCP-104": QUERY_TAGS})
        hybrid = HybridSearch(VectorSearch(store), store)

        results = await hybrid.search("SCP-173", limit=5)

        assert results[0].id == "SCP-104"
        assert results[0].tag_score == 1.0
        assert results[0].matched_tags.genre == ["horror", "sci-fi"]

    @pytest.mark.asyncio
    async def test_tag_failure_uses_fallback(self, scp_173, five_candidates, caplog):
        store = make_store(scp_173, five_candidates)
        store.failing_tags.add("SCP-102")
        hybrid = HybridSearch(VectorSearch(store), store)

        with caplog.at_level(logging.WARNING):
            results = await hybrid.search("SCP-173", limit=5)

        assert len(results) == 5
        failed = next(r for r in results if r.id == "SCP-102")
        fallback = ExtractedTags.fallback()
        assert fallback.object_class == "Other"
        assert fallback.format == "standard"
        assert failed.tag_score == pytest.approx(
            (0.0 + 0.0 + 0.0 + 1.0) / 4  # only the "standard" format matches
        )
        assert "SCP-102" in caplog.text

    @pytest.mark.asyncio
    async def test_query_tag_failure_propagates(self, scp_173, five_candidates):
        store = make_store(scp_173, five_candidates)
        store.failing_tags.add("SCP-173")
        with pytest.raises(RuntimeError):
            await HybridSearch(VectorSearch(store), store).search("SCP-173")

    @pytest.mark.asyncio
    async def test_not_found_propagates(self):
        store = FakeStore()
        with pytest.raises(NotFoundError):
            await HybridSearch(VectorSearch(store), store).search("SCP-404")

    @pytest.mark.asyncio
    async def test_ties_keep_vector_order(self, scp_173):
        candidates = [
            SearchCandidate("SCP-A", "A", 0.8),
            SearchCandidate("SCP-B", "B", 0.8),
            SearchCandidate("SCP-C", "C", 0.8),
        ]
        store = make_store(scp_173, candidates)
        results = await HybridSearch(VectorSearch(store), store).search("SCP-173")
        assert [r.id for r in results] == ["SCP-A", "SCP-B", "SCP-C"]

    @pytest.mark.asyncio
    async def test_weights_are_not_normalised(self, scp_173, five_candidates):
        store = make_store(scp_173, five_candidates)
        results = await HybridSearch(VectorSearch(store), store).search(
            "SCP-173", embedding_weight=2.0, tag_weight=0.0
        )
        assert results[0].similarity_score == pytest.approx(1.84)

    @settings(deadline=None, max_examples=30)
    @given(
        scores=st.lists(st.floats(min_value=0, max_value=1), min_size=1, max_size=15),
        embedding_weight=st.floats(min_value=0, max_value=1),
    )
    def test_scores_bounded_when_weights_sum_to_one(self, scores, embedding_weight):
        candidates = [SearchCandidate(f"SCP-{i}", "", s) for i, s in enumerate(scores)]
        store = make_store(Article("SCP-Q", "Q", ""), candidates)
        results = asyncio.run(
            HybridSearch(VectorSearch(store), store).search(
                "SCP-Q", embedding_weight=embedding_weight, tag_weight=1 - embedding_weight
            )
        )
        finals = [r.similarity_score for r in results]
        assert finals == sorted(finals, reverse=True)
        for r in results:
            assert 0.0 <= r.tag_score <= 1.0
            assert -1e-9 <= r.similarity_score <= 1.0 + 1e-9


class TestCosine:
    def test_identical_and_orthogonal(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ScoringPreconditionError):
            cosine_similarity([1.0], [1.0, 2.0])

    def test_rank_by_cosine(self):
        embeddings = {
            "SCP-173": [1.0, 0.0],
            "SCP-096": [0.9, 0.1],
            "SCP-049": [0.0, 1.0],
        }
        ranked = rank_by_cosine("SCP-173", embeddings, {"SCP-096": "The Shy Guy"}, top_k=5)
        assert [c.article_id for c in ranked] == ["SCP-096", "SCP-049"]
        assert ranked[0].title == "The Shy Guy"
        assert ranked[1].title == "Unknown"

    def test_rank_by_cosine_aborts_on_corrupt_corpus(self):
        embeddings = {"SCP-173": [1.0, 0.0], "SCP-096": [1.0, 0.0, 0.0]}
        with pytest.raises(ScoringPreconditionError, match="SCP-096"):
            rank_by_cosine("SCP-173", embeddings)

    def test_rank_by_cosine_missing_query(self):
        with pytest.raises(NotFoundError):
            rank_by_cosine("SCP-173", {"SCP-096": [1.0]})

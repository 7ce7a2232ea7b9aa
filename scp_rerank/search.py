"""Vector search and hybrid (embedding + tag) re-ranking."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Protocol

import numpy as np
from numpy.typing import NDArray

from scp_rerank.constants import (
    DEFAULT_EMBEDDING_WEIGHT,
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_TAG_WEIGHT,
    HYBRID_OVERFETCH_FACTOR,
    VERIFY_TOP_K,
)
from scp_rerank.errors import (
    NotFoundError,
    ScoringPreconditionError,
    SearchFailureError,
    StoreError,
)
from scp_rerank.models import (
    Article,
    ExtractedTags,
    HybridResult,
    SearchCandidate,
    VectorSearchResponse,
)
from scp_rerank.scoring import calculate_tag_score, matched_tags

logger = logging.getLogger(__name__)


class SimilarityStore(Protocol):
    async def get_article(self, article_id: str) -> Article: ...

    async def has_embedding(self, article_id: str) -> bool: ...

    async def search_similar(
        self, query_id: str, match_count: int
    ) -> list[SearchCandidate]: ...


class TagStore(Protocol):
    async def get_tags(self, article_id: str) -> ExtractedTags: ...


class VectorSearch:
    """Nearest neighbours of a stored article, delegated to the pgvector RPC."""

    def __init__(self, store: SimilarityStore) -> None:
        self.store = store

    async def search(
        self, query_id: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> VectorSearchResponse:
        started = time.perf_counter()
        try:
            query = await self.store.get_article(query_id)
            if not await self.store.has_embedding(query_id):
                raise NotFoundError(f"No embedding stored for {query_id}")
            candidates = await self.store.search_similar(query_id, limit)
        except StoreError as e:
            raise SearchFailureError(f"Search failed for {query_id}: {e}") from e

        results = [c for c in candidates if c.article_id != query_id]
        results.sort(key=lambda c: c.similarity_score, reverse=True)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Vector search for %s: %d results in %.0fms", query_id, len(results), elapsed_ms
        )
        return VectorSearchResponse(
            query_id=query_id,
            query_title=query.title,
            results=results[:limit],
            search_time_ms=elapsed_ms,
        )


class HybridSearch:
    """Re-rank vector search candidates by blending in tag overlap."""

    def __init__(self, vector_search: VectorSearch, tag_store: TagStore) -> None:
        self.vector_search = vector_search
        self.tag_store = tag_store

    async def _candidate_tags(self, article_id: str) -> ExtractedTags:
        try:
            return await self.tag_store.get_tags(article_id)
        except Exception as e:
            logger.warning("Tag lookup failed for %s, using fallback tags: %s", article_id, e)
            return ExtractedTags.fallback()

    async def search(
        self,
        query_id: str,
        embedding_weight: float = DEFAULT_EMBEDDING_WEIGHT,
        tag_weight: float = DEFAULT_TAG_WEIGHT,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[HybridResult]:
        """
        Top ``limit`` articles similar to ``query_id``.

        Weights are applied verbatim: they are not required to sum to 1 and
        are never renormalised. Ties in the final score keep the vector
        search order.
        """
        response = await self.vector_search.search(
            query_id, limit=limit * HYBRID_OVERFETCH_FACTOR
        )
        query_tags = await self.tag_store.get_tags(query_id)
        candidates = response.results

        candidate_tags = await asyncio.gather(
            *(self._candidate_tags(c.article_id) for c in candidates)
        )

        scored: list[HybridResult] = []
        for candidate, tags in zip(candidates, candidate_tags):
            tag_score = calculate_tag_score(query_tags, tags)
            scored.append(
                HybridResult(
                    id=candidate.article_id,
                    title=candidate.title,
                    similarity_score=embedding_weight * candidate.similarity_score
                    + tag_weight * tag_score,
                    embedding_score=candidate.similarity_score,
                    tag_score=tag_score,
                    matched_tags=matched_tags(query_tags, tags),
                )
            )

        # list.sort is stable, so equal scores keep their vector rank.
        scored.sort(key=lambda r: r.similarity_score, reverse=True)
        return scored[:limit]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between ``a`` and ``b``; 0.0 if either is zero."""
    if len(a) != len(b):
        raise ScoringPreconditionError(
            f"Vector dimensions differ: {len(a)} != {len(b)}"
        )
    va: NDArray[np.float64] = np.asarray(a, dtype=np.float64)
    vb: NDArray[np.float64] = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0
    return float(np.dot(va, vb) / magnitude)


def rank_by_cosine(
    query_id: str,
    embeddings: Mapping[str, Sequence[float]],
    titles: Mapping[str, str] | None = None,
    top_k: int = VERIFY_TOP_K,
) -> list[SearchCandidate]:
    """
    Brute-force nearest neighbours over a whole corpus, for checking the
    vector index by hand. A dimension mismatch anywhere aborts the whole
    comparison: it means the corpus is corrupt.
    """
    if query_id not in embeddings:
        raise NotFoundError(f"No embedding stored for {query_id}")
    titles = titles or {}
    query_vec = embeddings[query_id]
    dim = len(query_vec)

    others = [(aid, vec) for aid, vec in embeddings.items() if aid != query_id]
    for aid, vec in others:
        if len(vec) != dim:
            raise ScoringPreconditionError(
                f"Embedding for {aid} has {len(vec)} dimensions, expected {dim}"
            )

    scored = [
        SearchCandidate(aid, titles.get(aid, "Unknown"), cosine_similarity(query_vec, vec))
        for aid, vec in others
    ]
    scored.sort(key=lambda c: c.similarity_score, reverse=True)
    return scored[:top_k]

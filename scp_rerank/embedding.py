"""Embedding generation for SCP articles."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from scp_rerank.batch import BatchRunner, ProgressCallback
from scp_rerank.constants import EMBEDDING_DIMENSIONS
from scp_rerank.costs import calculate_cost
from scp_rerank.errors import ProviderError
from scp_rerank.models import Article, EmbeddingResult, EmbeddingStats, ItemError
from scp_rerank.providers import EmbeddingProvider
from scp_rerank.text import estimate_tokens, preprocess_content

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenEstimate:
    article_id: str
    tokens: int
    chars: int


def dry_run_estimates(articles: Sequence[Article]) -> tuple[list[TokenEstimate], int, float]:
    """Per-article token estimates, total tokens and cost. No provider calls."""
    estimates: list[TokenEstimate] = []
    for article in articles:
        processed = preprocess_content(article.content)
        estimates.append(
            TokenEstimate(article.id, estimate_tokens(processed), len(processed))
        )
    total_tokens = sum(e.tokens for e in estimates)
    return estimates, total_tokens, calculate_cost(total_tokens)


class EmbeddingGenerator:
    def __init__(
        self,
        provider: EmbeddingProvider,
        runner: BatchRunner | None = None,
        dimensions: int = EMBEDDING_DIMENSIONS,
    ) -> None:
        self.provider = provider
        self.runner = runner or BatchRunner()
        self.dimensions = dimensions

    async def generate_embedding(self, text: str) -> tuple[list[float], int]:
        """Embed preprocessed ``text``; returns (vector, token_count)."""
        processed = preprocess_content(text)
        if not processed:
            raise ProviderError("Content is empty after preprocessing")
        vector, tokens = await self.provider.embed(processed)
        if len(vector) != self.dimensions:
            raise ProviderError(
                f"Expected a {self.dimensions}-dimensional embedding, got {len(vector)}"
            )
        return vector, tokens

    async def _embed_article(self, article: Article) -> EmbeddingResult:
        vector, tokens = await self.generate_embedding(article.content)
        return EmbeddingResult(article.id, vector, tokens)

    async def generate_batch(
        self,
        articles: Sequence[Article],
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> tuple[list[EmbeddingResult], list[ItemError], EmbeddingStats]:
        outcome = await self.runner.run(
            articles,
            self._embed_article,
            item_id=lambda a: a.id,
            on_progress=on_progress,
            timeout=timeout,
        )
        total_tokens = sum(r.token_count for r in outcome.results)
        stats = EmbeddingStats(
            total_articles=len(articles),
            success_count=len(outcome.results),
            error_count=len(outcome.errors),
            total_tokens=total_tokens,
            estimated_cost=calculate_cost(total_tokens),
            elapsed_seconds=outcome.elapsed_seconds,
            errors=list(outcome.errors),
        )
        logger.info(
            "Embedded %d/%d articles (%d tokens, %d retries)",
            stats.success_count,
            stats.total_articles,
            total_tokens,
            outcome.retries,
        )
        return outcome.results, outcome.errors, stats

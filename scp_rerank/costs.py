from __future__ import annotations

from scp_rerank.constants import (
    EMBEDDING_COST_PER_MILLION_TOKENS,
    TAGGING_PRICES_PER_MILLION_TOKENS,
)

TOKENS_PER_MILLION = 1_000_000


def calculate_cost(
    tokens: int, price_per_million: float = EMBEDDING_COST_PER_MILLION_TOKENS
) -> float:
    """USD cost of ``tokens`` at a single per-million-token rate."""
    if tokens == 0:
        return 0.0
    return tokens / TOKENS_PER_MILLION * price_per_million


def calculate_tagging_cost(input_tokens: int, output_tokens: int, provider: str) -> float:
    """USD cost of a completion call priced separately for input and output."""
    try:
        input_rate, output_rate = TAGGING_PRICES_PER_MILLION_TOKENS[provider]
    except KeyError as e:
        raise ValueError(f"Unknown tagging provider: {provider!r}") from e
    return calculate_cost(input_tokens, input_rate) + calculate_cost(
        output_tokens, output_rate
    )

"""LLM tag extraction for SCP articles."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from scp_rerank.batch import BatchRunner, ProgressCallback
from scp_rerank.constants import (
    FALLBACK_FORMAT,
    FALLBACK_OBJECT_CLASS,
    FORMATS,
    GENRES,
    MAX_GENRE_TAGS,
    MAX_THEME_TAGS,
    OBJECT_CLASSES,
    TAGGING_OUTPUT_TOKENS_ESTIMATE,
    THEMES,
)
from scp_rerank.costs import calculate_tagging_cost
from scp_rerank.errors import ParseError, ProviderError
from scp_rerank.llm_utils import safe_json_loads
from scp_rerank.models import (
    Article,
    ExtractedTags,
    ItemError,
    TagCategory,
    TaggingResult,
    TaggingStats,
)
from scp_rerank.providers import CompletionProvider
from scp_rerank.text import estimate_tokens, preprocess_content

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = f"""You are classifying articles from the SCP Foundation wiki.
Read the article and answer with a single JSON object with these fields:

- "object_class": one of {", ".join(OBJECT_CLASSES)}; use "{FALLBACK_OBJECT_CLASS}" if none applies.
- "genre": up to {MAX_GENRE_TAGS} of {", ".join(GENRES)}.
- "theme": up to {MAX_THEME_TAGS} of {", ".join(THEMES)}.
- "format": one of {", ".join(FORMATS)}.

Prefer the listed values; add a new lowercase value only when nothing fits.
Respond with JSON only, no commentary.

Example:
{{"object_class": "Euclid", "genre": ["horror"], "theme": ["cognition", "biological"], "format": "standard"}}
"""

_OBJECT_CLASS_LOOKUP = {c.lower(): c for c in OBJECT_CLASSES}


def build_extraction_prompt(content: str) -> str:
    return f"{EXTRACTION_PROMPT}\nArticle:\n{content}"


def _clean_value(value: object) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def _as_value_list(value: object, cap: int) -> tuple[str, ...]:
    items = [value] if isinstance(value, str) else value
    if not isinstance(items, list):
        return ()
    cleaned = [_clean_value(v) for v in items]
    # Deduplicate before capping so repeats don't eat the budget.
    return tuple(dict.fromkeys(v for v in cleaned if v))[:cap]


def parse_tag_response(text: str) -> ExtractedTags:
    """
    Turn a model answer into normalized tags.

    Accepts Markdown-fenced JSON. A bare string for genre/theme becomes a
    one-element list; missing fields fall back to defaults; unknown object
    classes map to the fallback class. Raises ParseError if no JSON object
    can be recovered.
    """
    data = safe_json_loads(text)
    if data is None:
        raise ParseError(f"Tag response is not a JSON object: {text[:80]!r}")

    object_class = _OBJECT_CLASS_LOOKUP.get(
        _clean_value(data.get("object_class")), FALLBACK_OBJECT_CLASS
    )
    return ExtractedTags(
        object_class=object_class,
        genre=_as_value_list(data.get("genre"), MAX_GENRE_TAGS),
        theme=_as_value_list(data.get("theme"), MAX_THEME_TAGS),
        format=_clean_value(data.get("format")) or FALLBACK_FORMAT,
    )


def collect_unique_tags(tag_sets: Iterable[ExtractedTags]) -> dict[str, list[str]]:
    """Sorted vocabulary seen per category."""
    seen: dict[str, set[str]] = {c.value: set() for c in TagCategory}
    for tags in tag_sets:
        for row in tags.to_rows():
            seen[row.category.value].add(row.value)
    return {category: sorted(values) for category, values in seen.items()}


def estimate_tagging_cost(articles: Sequence[Article], provider: str) -> tuple[int, int, float]:
    """Estimated (input_tokens, output_tokens, cost) for a dry run."""
    input_tokens = sum(
        estimate_tokens(build_extraction_prompt(preprocess_content(a.content)))
        for a in articles
    )
    output_tokens = TAGGING_OUTPUT_TOKENS_ESTIMATE * len(articles)
    return (
        input_tokens,
        output_tokens,
        calculate_tagging_cost(input_tokens, output_tokens, provider),
    )


class TagExtractor:
    def __init__(
        self, provider: CompletionProvider, runner: BatchRunner | None = None
    ) -> None:
        self.provider = provider
        self.runner = runner or BatchRunner()

    async def extract_tags(self, article_id: str, content: str) -> TaggingResult:
        processed = preprocess_content(content)
        if not processed:
            raise ProviderError(f"{article_id}: content is empty after preprocessing")
        completion = await self.provider.complete(build_extraction_prompt(processed))
        tags = parse_tag_response(completion.text)
        return TaggingResult(
            article_id=article_id,
            tags=tags,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )

    async def extract_batch(
        self,
        articles: Sequence[Article],
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> tuple[list[TaggingResult], list[ItemError], TaggingStats]:
        outcome = await self.runner.run(
            articles,
            lambda a: self.extract_tags(a.id, a.content),
            item_id=lambda a: a.id,
            on_progress=on_progress,
            timeout=timeout,
        )
        results = outcome.results
        input_tokens = sum(r.input_tokens for r in results)
        output_tokens = sum(r.output_tokens for r in results)
        stats = TaggingStats(
            total_articles=len(articles),
            success_count=len(results),
            error_count=len(outcome.errors),
            total_input_tokens=input_tokens,
            total_output_tokens=output_tokens,
            estimated_cost=calculate_tagging_cost(
                input_tokens, output_tokens, self.provider.name
            ),
            elapsed_seconds=outcome.elapsed_seconds,
            unique_tags=collect_unique_tags(r.tags for r in results),
            errors=list(outcome.errors),
        )
        logger.info(
            "Tagged %d/%d articles (%d in / %d out tokens)",
            stats.success_count,
            stats.total_articles,
            input_tokens,
            output_tokens,
        )
        return results, outcome.errors, stats

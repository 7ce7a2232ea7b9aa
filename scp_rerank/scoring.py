"""Tag-overlap similarity between two articles."""

from __future__ import annotations

from collections.abc import Iterable

from scp_rerank.models import ExtractedTags, MatchedTags


def jaccard_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    """
    |A ∩ B| / |A ∪ B|.

    Two empty sets score 0.0, not 1.0: an article with no genre/theme tags
    carries no information, so it must not count as a perfect match. The
    hybrid ranking depends on this convention.
    """
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def calculate_tag_score(query: ExtractedTags, target: ExtractedTags) -> float:
    """Mean of four equally weighted sub-scores, in [0, 1] and symmetric."""
    sub_scores = (
        1.0 if query.object_class == target.object_class else 0.0,
        jaccard_similarity(query.genre, target.genre),
        jaccard_similarity(query.theme, target.theme),
        1.0 if query.format == target.format else 0.0,
    )
    return sum(sub_scores) / len(sub_scores)


def matched_tags(query: ExtractedTags, target: ExtractedTags) -> MatchedTags:
    """Tags shared by both articles, in query order. Not used for scoring."""
    target_genre, target_theme = set(target.genre), set(target.theme)
    return MatchedTags(
        object_class=query.object_class == target.object_class,
        genre=[g for g in query.genre if g in target_genre],
        theme=[t for t in query.theme if t in target_theme],
        format=query.format == target.format,
    )

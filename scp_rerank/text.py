from __future__ import annotations

import math
import re

from scp_rerank.constants import CHARS_PER_TOKEN_ESTIMATE, MAX_CONTENT_CHARS

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def preprocess_content(raw: str, max_chars: int = MAX_CONTENT_CHARS) -> str:
    """
    Prepare article text for embedding and tagging.

    Strips HTML-like tags, collapses whitespace runs (newlines included) to a
    single space, trims, then truncates to ``max_chars``. The character cap is
    a conservative stand-in for the provider's token limit.
    """
    text = _TAG_RE.sub("", raw)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text[:max_chars]


def estimate_tokens(text: str) -> int:
    """Rough token count (~4 chars per token), used for dry runs."""
    return math.ceil(len(text) / CHARS_PER_TOKEN_ESTIMATE)

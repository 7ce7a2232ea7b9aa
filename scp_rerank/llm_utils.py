from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from email.utils import parsedate_to_datetime

from scp_rerank.constants import LLM_TEMPERATURE, TAGGING_MAX_TOKENS

logger = logging.getLogger(__name__)


def build_messages(prompt: str | list[str]) -> list[dict[str, str]]:
    if isinstance(prompt, str):
        return [{"role": "user", "content": prompt}]
    return [{"role": "user", "content": part} for part in prompt if part]


def build_chat_payload(
    model: str,
    prompt: str | list[str],
    max_tokens: int = TAGGING_MAX_TOKENS,
    json_mode: bool = True,
) -> dict[str, object]:
    """OpenAI chat completions request body."""
    payload: dict[str, object] = {
        "model": model,
        "messages": build_messages(prompt),
        "temperature": LLM_TEMPERATURE,
    }
    if max_tokens > 0:
        payload["max_tokens"] = max_tokens
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    return payload


def build_anthropic_payload(
    model: str,
    prompt: str | list[str],
    max_tokens: int = TAGGING_MAX_TOKENS,
) -> dict[str, object]:
    """Anthropic messages request body. ``max_tokens`` is mandatory there."""
    return {
        "model": model,
        "max_tokens": max(1, max_tokens),
        "temperature": LLM_TEMPERATURE,
        "messages": build_messages(prompt),
    }


def parse_retry_after(value: str | None) -> float | None:
    """
    Cooldown in seconds from a ``Retry-After`` header.

    Both forms are accepted: a delay in seconds, or an HTTP date. Negative
    delays and dates in the past clamp to 0. A missing or unreadable header
    gives None so the caller falls back to exponential backoff.
    """
    value = (value or "").strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        seconds = (when - datetime.now(when.tzinfo)).total_seconds()
    return max(0.0, seconds)


_FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?```$", re.DOTALL)


def safe_json_loads(text: str) -> dict[str, object] | None:
    """
    First JSON object in a model reply.

    Tag extraction replies are asked to be bare JSON, but models still wrap
    them in a fenced code block or add a sentence before or after. The reply
    is unwrapped and scanned for the first ``{`` that decodes to an object.
    Returns None (not an empty dict) when nothing decodes, so the caller can
    report the reply as unparseable instead of tagging with empty values.
    """
    if not text:
        return None
    body = text.strip()
    fenced = _FENCE_RE.match(body)
    if fenced:
        body = fenced.group(1).strip()

    decoder = json.JSONDecoder()
    start = body.find("{")
    while start != -1:
        try:
            parsed, _ = decoder.raw_decode(body, start)
        except json.JSONDecodeError as e:
            logger.debug("No JSON object at offset %d: %s", start, e)
        else:
            if isinstance(parsed, dict):
                return parsed
        start = body.find("{", start + 1)
    return None

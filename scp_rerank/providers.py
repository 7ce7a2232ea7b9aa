"""HTTP clients for the embedding and completion providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, cast

import httpx
from aiolimiter import AsyncLimiter

from scp_rerank.constants import (
    ANTHROPIC_BASE_URL,
    ANTHROPIC_REQUESTS_PER_MINUTE,
    ANTHROPIC_VERSION,
    EMBEDDING_MODEL,
    HTTP_CONNECT_TIMEOUT,
    HTTP_POOL_TIMEOUT,
    HTTP_READ_TIMEOUT,
    HTTP_USER_AGENT,
    HTTP_WRITE_TIMEOUT,
    OPENAI_BASE_URL,
    OPENAI_REQUESTS_PER_MINUTE,
    TAGGING_CLAUDE_MODEL,
    TAGGING_OPENAI_MODEL,
)
from scp_rerank.errors import ConfigError, ProviderError, RateLimitedError
from scp_rerank.llm_utils import (
    build_anthropic_payload,
    build_chat_payload,
    parse_retry_after,
)

if TYPE_CHECKING:
    from scp_rerank.config import Settings

logger = logging.getLogger(__name__)

# Anthropic answers 529 when overloaded; treat it like a 429.
_THROTTLE_STATUSES = {429, 529}
_QUOTA_MARKERS = ("insufficient_quota", "exceeded your current quota")


@dataclass(frozen=True)
class Completion:
    text: str
    input_tokens: int
    output_tokens: int


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> tuple[list[float], int]: ...


class CompletionProvider(Protocol):
    name: str

    async def complete(self, prompt: str) -> Completion: ...


def _default_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=HTTP_CONNECT_TIMEOUT,
        read=HTTP_READ_TIMEOUT,
        write=HTTP_WRITE_TIMEOUT,
        pool=HTTP_POOL_TIMEOUT,
    )


def _extract_error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text.strip()
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str):
                return msg.strip()
    return resp.text.strip()


def _raise_for_status(resp: httpx.Response, provider: str) -> None:
    if resp.is_success:
        return
    error_msg = _extract_error_message(resp)
    if resp.status_code in _THROTTLE_STATUSES:
        if any(marker in error_msg.lower() for marker in _QUOTA_MARKERS):
            # Out of credit: waiting will not help.
            raise ProviderError(f"{provider} quota exhausted: {error_msg}", resp.status_code)
        raise RateLimitedError(
            f"{provider} rate limited ({resp.status_code}): {error_msg}",
            retry_after=parse_retry_after(resp.headers.get("retry-after")),
        )
    raise ProviderError(
        f"{provider} API error {resp.status_code}: {error_msg}", resp.status_code
    )


class _ProviderClient:
    """Shared plumbing: one lazily built httpx client, one request limiter."""

    name: str = ""
    label: str = ""

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str],
        requests_per_minute: float,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self._headers = {"User-Agent": HTTP_USER_AGENT, **headers}
        self._client = client
        self._limiter = AsyncLimiter(requests_per_minute, 60)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=_default_timeout(),
            )
        return self._client

    async def _post(self, path: str, payload: dict[str, object]) -> dict[str, object]:
        try:
            async with self._limiter:
                resp = await self.client.post(path, json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.label} request failed: {e}") from e

        _raise_for_status(resp, self.label)
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError(f"{self.label} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ProviderError(f"{self.label} returned an unexpected payload")
        return cast(dict[str, object], data)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


class OpenAIClient(_ProviderClient):
    name = "openai"
    label = "OpenAI"

    def __init__(
        self,
        api_key: str,
        embedding_model: str = EMBEDDING_MODEL,
        chat_model: str = TAGGING_OPENAI_MODEL,
        requests_per_minute: float = OPENAI_REQUESTS_PER_MINUTE,
        base_url: str = OPENAI_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigError("OPENAI_API_KEY is not set")
        super().__init__(
            base_url,
            {"Authorization": f"Bearer {api_key}"},
            requests_per_minute,
            client,
        )
        self.embedding_model = embedding_model
        self.chat_model = chat_model

    async def embed(self, text: str) -> tuple[list[float], int]:
        data = await self._post(
            "/embeddings", {"model": self.embedding_model, "input": text}
        )
        try:
            items = cast(list[dict[str, object]], data["data"])
            vector = [float(x) for x in cast(list[float], items[0]["embedding"])]
            usage = cast(dict[str, int], data.get("usage") or {})
            tokens = int(usage.get("total_tokens", usage.get("prompt_tokens", 0)))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderError(f"Malformed embedding response: {e!r}") from e
        return vector, tokens

    async def complete(self, prompt: str) -> Completion:
        data = await self._post(
            "/chat/completions", build_chat_payload(self.chat_model, prompt)
        )
        try:
            choices = cast(list[dict[str, dict[str, str]]], data["choices"])
            text = choices[0]["message"]["content"] or ""
            usage = cast(dict[str, int], data.get("usage") or {})
            return Completion(
                text=text,
                input_tokens=int(usage.get("prompt_tokens", 0)),
                output_tokens=int(usage.get("completion_tokens", 0)),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderError(f"Malformed completion response: {e!r}") from e


class AnthropicClient(_ProviderClient):
    name = "claude"
    label = "Anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = TAGGING_CLAUDE_MODEL,
        requests_per_minute: float = ANTHROPIC_REQUESTS_PER_MINUTE,
        base_url: str = ANTHROPIC_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigError("ANTHROPIC_API_KEY is not set")
        super().__init__(
            base_url,
            {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
            requests_per_minute,
            client,
        )
        self.model = model

    async def complete(self, prompt: str) -> Completion:
        data = await self._post("/messages", build_anthropic_payload(self.model, prompt))
        try:
            blocks = cast(list[dict[str, str]], data["content"])
            text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
            usage = cast(dict[str, int], data.get("usage") or {})
            return Completion(
                text=text,
                input_tokens=int(usage.get("input_tokens", 0)),
                output_tokens=int(usage.get("output_tokens", 0)),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProviderError(f"Malformed completion response: {e!r}") from e


def build_completion_provider(settings: Settings) -> OpenAIClient | AnthropicClient:
    """Pick the tagging client named by ``settings.tagging_provider``."""
    if settings.tagging_provider == "claude":
        return AnthropicClient(settings.require("anthropic_api_key"))
    return OpenAIClient(settings.require("openai_api_key"))

"""Supabase (PostgREST + pgvector) access for articles, embeddings and tags.

Raw rows are validated into typed records here; nothing past this module
handles untrusted dictionaries.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from typing import cast

import httpx

from scp_rerank.constants import (
    ARTICLE_TAGS_TABLE,
    ARTICLES_TABLE,
    EMBEDDINGS_TABLE,
    HTTP_CONNECT_TIMEOUT,
    HTTP_READ_TIMEOUT,
    HTTP_USER_AGENT,
    SEARCH_RPC_NAME,
    TAGS_TABLE,
)
from scp_rerank.errors import ConfigError, NotFoundError, StoreError
from scp_rerank.models import (
    Article,
    EmbeddingResult,
    ExtractedTags,
    SearchCandidate,
    TagRow,
)

logger = logging.getLogger(__name__)

type Row = dict[str, object]

ARTICLE_COLUMNS = "id,title,content,rating"
_UPSERT_PREFER = "resolution=merge-duplicates,return=minimal"


def parse_vector(raw: object) -> list[float]:
    """pgvector columns come back as ``"[0.1,0.2]"`` strings over REST."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreError(f"Malformed vector value: {raw[:40]!r}") from e
    if not isinstance(raw, list):
        raise StoreError(f"Expected a vector, got {type(raw).__name__}")
    return [float(x) for x in raw]


def _parse_candidate(row: Row) -> SearchCandidate:
    try:
        return SearchCandidate(
            article_id=str(row["id"]),
            title=str(row.get("title") or ""),
            similarity_score=float(cast(float, row["similarity_score"])),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise StoreError(f"Malformed search row: {row!r}") from e


class SupabaseStore:
    def __init__(
        self, url: str, key: str, client: httpx.AsyncClient | None = None
    ) -> None:
        if not url or not key:
            raise ConfigError("Supabase URL and key are required")
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self._key = key
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "apikey": self._key,
                    "Authorization": f"Bearer {self._key}",
                    "User-Agent": HTTP_USER_AGENT,
                },
                timeout=httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_body: object = None,
        prefer: str | None = None,
    ) -> object:
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = await self.client.request(
                method, path, params=params, json=json_body, headers=headers
            )
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e

        if not resp.is_success:
            message = resp.text.strip()
            try:
                body = resp.json()
                if isinstance(body, dict) and isinstance(body.get("message"), str):
                    message = body["message"]
            except ValueError:
                pass
            raise StoreError(
                f"{method} {path} returned {resp.status_code}: {message}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise StoreError(f"{method} {path} returned invalid JSON") from e

    async def _select(self, table: str, params: dict[str, str]) -> list[Row]:
        data = await self._request("GET", f"/{table}", params=params)
        if not isinstance(data, list):
            raise StoreError(f"Expected rows from {table}, got {type(data).__name__}")
        return [cast(Row, r) for r in data if isinstance(r, dict)]

    # Articles

    async def get_article(self, article_id: str) -> Article:
        rows = await self._select(
            ARTICLES_TABLE, {"select": ARTICLE_COLUMNS, "id": f"eq.{article_id}"}
        )
        if not rows:
            raise NotFoundError(f"Article not found: {article_id}")
        return Article.from_dict(rows[0])

    async def list_articles(
        self, article_id: str | None = None, limit: int | None = None
    ) -> list[Article]:
        params = {"select": ARTICLE_COLUMNS, "order": "id.asc"}
        if article_id:
            params["id"] = f"eq.{article_id}"
        if limit:
            params["limit"] = str(limit)
        return [Article.from_dict(r) for r in await self._select(ARTICLES_TABLE, params)]

    async def upsert_articles(self, articles: Sequence[Article]) -> None:
        if not articles:
            return
        await self._request(
            "POST",
            f"/{ARTICLES_TABLE}",
            params={"on_conflict": "id"},
            json_body=[a.to_dict() for a in articles],
            prefer=_UPSERT_PREFER,
        )

    # Embeddings

    async def upsert_embeddings(self, results: Sequence[EmbeddingResult]) -> None:
        if not results:
            return
        await self._request(
            "POST",
            f"/{EMBEDDINGS_TABLE}",
            params={"on_conflict": "id"},
            json_body=[{"id": r.article_id, "embedding": r.embedding} for r in results],
            prefer=_UPSERT_PREFER,
        )

    async def has_embedding(self, article_id: str) -> bool:
        rows = await self._select(
            EMBEDDINGS_TABLE, {"select": "id", "id": f"eq.{article_id}"}
        )
        return bool(rows)

    async def list_embeddings(self) -> dict[str, list[float]]:
        rows = await self._select(EMBEDDINGS_TABLE, {"select": "id,embedding"})
        return {str(r["id"]): parse_vector(r.get("embedding")) for r in rows}

    # Tags

    async def get_tags(self, article_id: str) -> ExtractedTags:
        """Tags for one article; an untagged article gets the fallback tags."""
        rows = await self._select(
            ARTICLE_TAGS_TABLE,
            {"select": "tags(category,value)", "article_id": f"eq.{article_id}"},
        )
        tag_rows: list[TagRow] = []
        for row in rows:
            tag = row.get("tags")
            if not isinstance(tag, dict):
                raise StoreError(f"Malformed article_tags row for {article_id}: {row!r}")
            tag_rows.append(TagRow.from_record(cast(Row, tag)))
        if not tag_rows:
            return ExtractedTags.fallback()
        return ExtractedTags.from_rows(tag_rows)

    async def _upsert_tag_ids(self, rows: Iterable[TagRow]) -> list[int]:
        payload = [{"category": str(r.category), "value": r.value} for r in rows]
        data = await self._request(
            "POST",
            f"/{TAGS_TABLE}",
            params={"on_conflict": "category,value", "select": "id"},
            json_body=payload,
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not isinstance(data, list):
            raise StoreError("Tag upsert returned no rows")
        ids: list[int] = []
        for r in data:
            raw_id = r.get("id") if isinstance(r, dict) else None
            if not isinstance(raw_id, (int, str)) or not str(raw_id).isdigit():
                raise StoreError(f"Malformed tag upsert response: {data!r}")
            ids.append(int(raw_id))
        return ids

    async def set_tags(self, article_id: str, tags: ExtractedTags) -> None:
        """Replace an article's tags, adding new vocabulary rows as needed."""
        tag_ids = await self._upsert_tag_ids(tags.to_rows())
        # Insert before pruning; a failed write must leave the previous tags intact.
        await self._request(
            "POST",
            f"/{ARTICLE_TAGS_TABLE}",
            params={"on_conflict": "article_id,tag_id"},
            json_body=[{"article_id": article_id, "tag_id": t} for t in tag_ids],
            prefer="resolution=ignore-duplicates,return=minimal",
        )
        stale = {"article_id": f"eq.{article_id}"}
        if tag_ids:
            stale["tag_id"] = f"not.in.({','.join(str(t) for t in tag_ids)})"
        await self._request("DELETE", f"/{ARTICLE_TAGS_TABLE}", params=stale)

    # Search

    async def search_similar(self, query_id: str, match_count: int) -> list[SearchCandidate]:
        data = await self._request(
            "POST",
            f"/rpc/{SEARCH_RPC_NAME}",
            json_body={"query_id": query_id, "match_count": match_count},
        )
        if data is None:
            return []
        if not isinstance(data, list):
            raise StoreError(f"Unexpected search payload: {type(data).__name__}")
        return [_parse_candidate(cast(Row, r)) for r in data]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> SupabaseStore:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

"""Fetch SCP articles from the SCP Data API (https://scp-data.tedivm.com)."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import httpx
from bs4 import BeautifulSoup

from scp_rerank.cache_utils import atomic_write_json
from scp_rerank.constants import (
    DEFAULT_FETCH_LIMIT,
    HTTP_CONNECT_TIMEOUT,
    HTTP_READ_TIMEOUT,
    HTTP_USER_AGENT,
    LOCAL_ARTICLES_FILE,
    LOCAL_DATA_DIR,
    SCP_DATA_API_URL,
)
from scp_rerank.models import Article

logger = logging.getLogger(__name__)

CONTENT_FETCH_CONCURRENCY = 4

type IndexEntry = dict[str, object]


@dataclass(frozen=True)
class CrawlerOptions:
    limit: int = DEFAULT_FETCH_LIMIT
    save_local: bool = True
    save_db: bool = True


def html_to_text(raw_html: str) -> str:
    """Visible text of an article page, one block per line."""
    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text("\n", strip=True)


def _rating(entry: IndexEntry) -> int:
    raw = entry.get("rating")
    try:
        return int(cast(int, raw))
    except (TypeError, ValueError):
        return 0


def select_top_entries(index: dict[str, IndexEntry], limit: int) -> list[tuple[str, IndexEntry]]:
    """Highest rated entries that point at a content file."""
    entries = [
        (link, entry)
        for link, entry in index.items()
        if isinstance(entry, dict) and entry.get("content_file")
    ]
    # Highest rating first; link name keeps equal ratings deterministic.
    entries.sort(key=lambda item: (-_rating(item[1]), item[0]))
    return entries[:limit]


class ScpCrawler:
    def __init__(
        self, base_url: str = SCP_DATA_API_URL, client: httpx.AsyncClient | None = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._sem = asyncio.Semaphore(CONTENT_FETCH_CONCURRENCY)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                headers={"User-Agent": HTTP_USER_AGENT},
                timeout=httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
            )
        return self._client

    async def _get_json(self, name: str) -> dict[str, IndexEntry]:
        async with self._sem:
            resp = await self.client.get(f"{self.base_url}/{name}")
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"{name}: expected a JSON object")
        return cast(dict[str, IndexEntry], data)

    async def fetch_articles(self, limit: int = DEFAULT_FETCH_LIMIT) -> list[Article]:
        index = await self._get_json("index.json")
        selected = select_top_entries(index, limit)

        by_file: dict[str, list[tuple[str, IndexEntry]]] = defaultdict(list)
        for link, entry in selected:
            by_file[str(entry["content_file"])].append((link, entry))

        files = list(by_file)
        contents = await asyncio.gather(*(self._get_json(f) for f in files))
        content_by_file = dict(zip(files, contents))

        articles: list[Article] = []
        for link, entry in selected:
            page = content_by_file[str(entry["content_file"])].get(link)
            raw_html = page.get("raw_content") if isinstance(page, dict) else None
            if not isinstance(raw_html, str) or not raw_html.strip():
                logger.warning("No content for %s, skipping", link)
                continue
            article_id = str(entry.get("scp") or link.upper())
            articles.append(
                Article(
                    id=article_id,
                    title=str(entry.get("title") or article_id),
                    content=html_to_text(raw_html),
                    rating=_rating(entry),
                )
            )
        logger.info("Fetched %d/%d articles", len(articles), len(selected))
        return articles

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ScpCrawler:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


def local_articles_path(data_dir: Path = Path(LOCAL_DATA_DIR)) -> Path:
    return data_dir / LOCAL_ARTICLES_FILE


def save_local_articles(articles: list[Article], path: Path | None = None) -> Path:
    path = path or local_articles_path()
    atomic_write_json(path, [a.to_dict() for a in articles])
    return path

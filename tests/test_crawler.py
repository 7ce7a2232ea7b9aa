import json

import pytest
import respx
from httpx import Response

from scp_rerank.constants import SCP_DATA_API_URL
from scp_rerank.crawler import (
    ScpCrawler,
    html_to_text,
    local_articles_path,
    save_local_articles,
    select_top_entries,
)
from scp_rerank.models import Article

INDEX = {
    "scp-173": {"scp": "SCP-173", "title": "The Sculpture", "rating": 5000, "content_file": "content_series-1.json"},
    "scp-096": {"scp": "SCP-096", "title": "The Shy Guy", "rating": 4000, "content_file": "content_series-1.json"},
    "scp-3000": {"scp": "SCP-3000", "title": "Anantashesha", "rating": 4500, "content_file": "content_series-4.json"},
    "scp-001": {"scp": "SCP-001", "title": "Proposals", "rating": "n/a", "content_file": "content_series-1.json"},
    "orphan": {"title": "No content file", "rating": 9999},
}


def test_html_to_text_drops_scripts():
    html = "<div><p>Item #: SCP-173</p><script>track()</script><p>Object Class: Euclid</p></div>"
    assert html_to_text(html) == "Item #: SCP-173\nObject Class: Euclid"


def test_select_top_entries():
    selected = select_top_entries(INDEX, 3)
    assert [link for link, _ in selected] == ["scp-173", "scp-3000", "scp-096"]


def test_select_top_entries_bad_rating_sorts_last():
    selected = select_top_entries(INDEX, 10)
    assert selected[-1][0] == "scp-001"
    assert "orphan" not in dict(selected)


@pytest.mark.asyncio
@respx.mock
async def test_fetch_articles_reads_each_content_file_once():
    respx.get(f"{SCP_DATA_API_URL}/index.json").mock(return_value=Response(200, json=INDEX))
    series_1 = respx.get(f"{SCP_DATA_API_URL}/content_series-1.json").mock(
        return_value=Response(
            200,
            json={
                "scp-173": {"raw_content": "<p>Moves when unobserved.</p>"},
                "scp-096": {"raw_content": "<p>Do not look at its face.</p>"},
            },
        )
    )
    respx.get(f"{SCP_DATA_API_URL}/content_series-4.json").mock(
        return_value=Response(200, json={"scp-3000": {"raw_content": ""}})
    )

    async with ScpCrawler() as crawler:
        articles = await crawler.fetch_articles(limit=3)

    assert series_1.call_count == 1
    # SCP-3000 has no content and is skipped.
    assert articles == [
        Article("SCP-173", "The Sculpture", "Moves when unobserved.", 5000),
        Article("SCP-096", "The Shy Guy", "Do not look at its face.", 4000),
    ]


def test_save_local_articles(tmp_path):
    path = save_local_articles([Article("SCP-173", "The Sculpture", "text", 1)], local_articles_path(tmp_path))
    assert path == tmp_path / "articles.json"
    assert json.loads(path.read_text()) == [
        {"id": "SCP-173", "title": "The Sculpture", "content": "text", "rating": 1}
    ]

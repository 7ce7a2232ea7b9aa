import pytest

from scp_rerank.batch import BatchRunner
from scp_rerank.constants import EMBEDDING_DIMENSIONS
from scp_rerank.errors import NotFoundError
from scp_rerank.models import Article, ExtractedTags, SearchCandidate
from scp_rerank.providers import Completion


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


class FakeStore:
    """In-memory store with the same async surface as SupabaseStore."""

    def __init__(self, articles=(), candidates=None, tags=None, embedded=None, embeddings=None):
        self.articles = {a.id: a for a in articles}
        self.candidates = candidates or []
        self.tags = tags or {}
        self.embedded = set(self.articles) if embedded is None else set(embedded)
        self.search_calls: list[tuple[str, int]] = []
        self.failing_tags: set[str] = set()
        self.search_error: Exception | None = None
        self.upserted_embeddings = []
        self.saved_tags = {}
        self.embeddings = embeddings or {}

    async def get_article(self, article_id):
        if article_id not in self.articles:
            raise NotFoundError(f"Article not found: {article_id}")
        return self.articles[article_id]

    async def has_embedding(self, article_id):
        return article_id in self.embedded

    async def search_similar(self, query_id, match_count):
        self.search_calls.append((query_id, match_count))
        if self.search_error:
            raise self.search_error
        return list(self.candidates)[:match_count]

    async def get_tags(self, article_id):
        if article_id in self.failing_tags:
            raise RuntimeError(f"tag lookup exploded for {article_id}")
        return self.tags.get(article_id, ExtractedTags.fallback())

    async def list_articles(self, article_id=None, limit=None):
        found = [a for a in self.articles.values() if not article_id or a.id == article_id]
        return found[:limit] if limit else found

    async def upsert_embeddings(self, results):
        self.upserted_embeddings.extend(results)

    async def set_tags(self, article_id, tags):
        self.saved_tags[article_id] = tags

    async def list_embeddings(self):
        return dict(self.embeddings)

    async def close(self):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()


class FakeEmbeddingProvider:
    def __init__(self, dimensions=EMBEDDING_DIMENSIONS, tokens=42):
        self.dimensions = dimensions
        self.tokens = tokens
        self.calls: list[str] = []

    async def embed(self, text):
        self.calls.append(text)
        return [0.01] * self.dimensions, self.tokens


class FakeCompletionProvider:
    name = "openai"

    def __init__(self, text, input_tokens=500, output_tokens=40):
        self.text = text
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.prompts: list[str] = []

    async def complete(self, prompt):
        self.prompts.append(prompt)
        return Completion(self.text, self.input_tokens, self.output_tokens)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def fast_runner(recording_sleep):
    return BatchRunner(batch_delay=5.0, retry_base_delay=0.1, sleep=recording_sleep)


@pytest.fixture
def articles():
    return [
        Article(f"SCP-{n:03d}", f"Title {n}", f"<p>Article body {n}</p>", rating=n)
        for n in range(1, 13)
    ]


@pytest.fixture
def scp_173():
    return Article("SCP-173", "The Sculpture", "Moves when not observed.", rating=9000)


@pytest.fixture
def five_candidates():
    scores = [0.92, 0.88, 0.85, 0.82, 0.79]
    return [
        SearchCandidate(f"SCP-{n}", f"Candidate {n}", s)
        for n, s in zip(range(100, 105), scores)
    ]

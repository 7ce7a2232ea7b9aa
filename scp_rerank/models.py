"""Typed data models for SCP reranking."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Iterable, Mapping, TypedDict

from scp_rerank.constants import FALLBACK_FORMAT, FALLBACK_OBJECT_CLASS
from scp_rerank.errors import StoreError


class ArticleDict(TypedDict):
    """Serialized Article payload for local files and store rows."""

    id: str
    title: str
    content: str
    rating: int


class TagsDict(TypedDict):
    object_class: str
    genre: list[str]
    theme: list[str]
    format: str


class MatchedTagsDict(TypedDict):
    object_class: bool
    genre: list[str]
    theme: list[str]
    format: bool


class HybridResultDict(TypedDict):
    id: str
    title: str
    similarity_score: float
    embedding_score: float
    tag_score: float
    matched_tags: MatchedTagsDict


class TagCategory(StrEnum):
    OBJECT_CLASS = "object_class"
    GENRE = "genre"
    THEME = "theme"
    FORMAT = "format"


@dataclass(frozen=True)
class Article:
    """An SCP article as fetched from the data API."""

    id: str
    title: str
    content: str
    rating: int = 0

    @classmethod
    def from_dict(cls, d: Mapping[str, object]) -> Article:
        rating = d.get("rating") or 0
        return cls(
            id=str(d.get("id", "")),
            title=str(d.get("title") or ""),
            content=str(d.get("content") or ""),
            rating=int(rating) if isinstance(rating, (int, float, str)) else 0,
        )

    def to_dict(self) -> ArticleDict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "rating": self.rating,
        }


@dataclass(frozen=True)
class TagRow:
    """One (category, value) row from the tag vocabulary table."""

    category: TagCategory
    value: str

    @classmethod
    def from_record(cls, record: Mapping[str, object]) -> TagRow:
        """Validate a raw store row. Raises StoreError on malformed rows."""
        raw_category = record.get("category")
        raw_value = record.get("value")
        try:
            category = TagCategory(str(raw_category))
        except ValueError as e:
            raise StoreError(f"Unknown tag category: {raw_category!r}") from e
        if not isinstance(raw_value, str) or not raw_value.strip():
            raise StoreError(f"Empty tag value for category {category}")
        return cls(category=category, value=raw_value.strip())


@dataclass(frozen=True)
class ExtractedTags:
    """Structured tags for one article.

    ``genre`` and ``theme`` are sets semantically; they are stored as
    deduplicated tuples so the extraction order survives for display.
    """

    object_class: str = FALLBACK_OBJECT_CLASS
    genre: tuple[str, ...] = ()
    theme: tuple[str, ...] = ()
    format: str = FALLBACK_FORMAT

    def __post_init__(self) -> None:
        object.__setattr__(self, "genre", tuple(dict.fromkeys(self.genre)))
        object.__setattr__(self, "theme", tuple(dict.fromkeys(self.theme)))

    @classmethod
    def fallback(cls) -> ExtractedTags:
        """Tags for an article we know nothing about."""
        return cls()

    @classmethod
    def from_rows(cls, rows: Iterable[TagRow]) -> ExtractedTags:
        object_class = FALLBACK_OBJECT_CLASS
        fmt = FALLBACK_FORMAT
        genre: list[str] = []
        theme: list[str] = []
        for row in rows:
            if row.category is TagCategory.OBJECT_CLASS:
                object_class = row.value
            elif row.category is TagCategory.FORMAT:
                fmt = row.value
            elif row.category is TagCategory.GENRE:
                genre.append(row.value)
            else:
                theme.append(row.value)
        return cls(
            object_class=object_class, genre=tuple(genre), theme=tuple(theme), format=fmt
        )

    def to_rows(self) -> list[TagRow]:
        rows = [TagRow(TagCategory.OBJECT_CLASS, self.object_class)]
        rows.extend(TagRow(TagCategory.GENRE, g) for g in self.genre)
        rows.extend(TagRow(TagCategory.THEME, t) for t in self.theme)
        rows.append(TagRow(TagCategory.FORMAT, self.format))
        return rows

    def to_dict(self) -> TagsDict:
        return {
            "object_class": self.object_class,
            "genre": list(self.genre),
            "theme": list(self.theme),
            "format": self.format,
        }


@dataclass(frozen=True)
class SearchCandidate:
    """A nearest-neighbour hit from the vector index."""

    article_id: str
    title: str
    similarity_score: float


@dataclass
class VectorSearchResponse:
    query_id: str
    query_title: str
    results: list[SearchCandidate]
    search_time_ms: float


@dataclass
class MatchedTags:
    """Which tags a candidate shares with the query (display only)."""

    object_class: bool
    genre: list[str]
    theme: list[str]
    format: bool

    def to_dict(self) -> MatchedTagsDict:
        return {
            "object_class": self.object_class,
            "genre": list(self.genre),
            "theme": list(self.theme),
            "format": self.format,
        }


@dataclass
class HybridResult:
    """Result of re-ranking a single vector search candidate."""

    id: str
    title: str
    similarity_score: float  # Final weighted score
    embedding_score: float
    tag_score: float
    matched_tags: MatchedTags

    def to_dict(self) -> HybridResultDict:
        return {
            "id": self.id,
            "title": self.title,
            "similarity_score": self.similarity_score,
            "embedding_score": self.embedding_score,
            "tag_score": self.tag_score,
            "matched_tags": self.matched_tags.to_dict(),
        }


@dataclass(frozen=True)
class EmbeddingResult:
    article_id: str
    embedding: list[float]
    token_count: int


@dataclass(frozen=True)
class TaggingResult:
    article_id: str
    tags: ExtractedTags
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class ItemError:
    """A work item that did not produce a result."""

    item_id: str
    message: str
    attempts: int = 1
    attempted: bool = True


@dataclass
class EmbeddingStats:
    total_articles: int = 0
    success_count: int = 0
    error_count: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    elapsed_seconds: float = 0.0
    errors: list[ItemError] = field(default_factory=list)


@dataclass
class TaggingStats:
    total_articles: int = 0
    success_count: int = 0
    error_count: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    estimated_cost: float = 0.0
    elapsed_seconds: float = 0.0
    unique_tags: dict[str, list[str]] = field(default_factory=dict)
    errors: list[ItemError] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

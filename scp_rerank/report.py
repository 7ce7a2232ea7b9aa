"""Markdown validation report for a pipeline run."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from enum import StrEnum
from pathlib import Path
from typing import Any

from scp_rerank.cache_utils import atomic_write_json, read_json
from scp_rerank.constants import (
    LOCAL_DATA_DIR,
    MONTHLY_UPDATE_FRACTION,
    RUN_STATS_FILE,
    SUPABASE_MONTHLY_COST,
    TOTAL_SCP_ARTICLES,
)


@dataclass
class DataFetchSummary:
    success: bool = False
    article_count: int = 0
    avg_content_length: int = 0


@dataclass
class EmbeddingSummary:
    success: bool = False
    token_count: int = 0
    cost: float = 0.0
    time_seconds: float = 0.0


@dataclass
class TaggingSummary:
    success: bool = False
    token_count: int = 0
    cost: float = 0.0


@dataclass
class SearchSummary:
    vector_search_success: bool = False
    hybrid_search_success: bool = False
    search_time_ms: float = 0.0


@dataclass
class ReportData:
    data_fetch: DataFetchSummary = field(default_factory=DataFetchSummary)
    embedding: EmbeddingSummary = field(default_factory=EmbeddingSummary)
    tagging: TaggingSummary = field(default_factory=TaggingSummary)
    search: SearchSummary = field(default_factory=SearchSummary)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ReportData:
        def section[S](key: str, kind: type[S]) -> S:
            raw = d.get(key)
            if not isinstance(raw, dict):
                return kind()
            known = {k: v for k, v in raw.items() if k in kind.__dataclass_fields__}  # type: ignore[attr-defined]
            return kind(**known)

        return cls(
            data_fetch=section("data_fetch", DataFetchSummary),
            embedding=section("embedding", EmbeddingSummary),
            tagging=section("tagging", TaggingSummary),
            search=section("search", SearchSummary),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Judgment(StrEnum):
    GO = "Go"
    NO_GO = "No-Go"
    CONDITIONAL_GO = "Conditional Go"


def create_sample_report_data() -> ReportData:
    """Representative numbers for a 10-article run, used when no stats exist."""
    return ReportData(
        data_fetch=DataFetchSummary(True, 10, 5200),
        embedding=EmbeddingSummary(True, 48500, 0.00097, 25),
        tagging=TaggingSummary(True, 12000, 0.0018),
        search=SearchSummary(True, True, 120),
    )


# Run stats: each CLI stage records its summary so the report reflects real runs.


def run_stats_path(data_dir: Path = Path(LOCAL_DATA_DIR)) -> Path:
    return data_dir / RUN_STATS_FILE


def load_run_stats(path: Path | None = None) -> ReportData | None:
    data = read_json(path or run_stats_path())
    return ReportData.from_dict(data) if isinstance(data, dict) else None


def record_stage(section: str, summary: object, path: Path | None = None) -> None:
    path = path or run_stats_path()
    data = read_json(path)
    if not isinstance(data, dict):
        data = {}
    data[section] = asdict(summary)  # type: ignore[call-overload]
    atomic_write_json(path, data)


# Formatting


def format_cost(cost: float) -> str:
    if cost >= 1:
        return f"${cost:.2f}"
    return f"${cost:.4f}"


def _status(success: bool) -> str:
    return "✅" if success else "❌"


def _ok(success: bool) -> str:
    return "Succeeded" if success else "Failed"


def _flags(data: ReportData) -> list[bool]:
    return [
        data.data_fetch.success,
        data.embedding.success,
        data.tagging.success,
        data.search.vector_search_success,
        data.search.hybrid_search_success,
    ]


def determine_judgment(data: ReportData) -> Judgment:
    flags = _flags(data)
    if all(flags):
        return Judgment.GO
    if not any(flags):
        return Judgment.NO_GO
    return Judgment.CONDITIONAL_GO


def calculate_production_cost(data: ReportData) -> tuple[float, float, float]:
    """(embedding, tagging, monthly) cost scaled to the full corpus."""
    article_count = data.data_fetch.article_count or 1
    scale = TOTAL_SCP_ARTICLES / article_count
    embedding_cost = data.embedding.cost * scale
    tagging_cost = data.tagging.cost * scale
    monthly = SUPABASE_MONTHLY_COST + embedding_cost * MONTHLY_UPDATE_FRACTION
    return embedding_cost, tagging_cost, monthly


def _overview(data: ReportData) -> list[str]:
    return [
        "## 1. Overview",
        "",
        "### Purpose",
        "",
        "Validate the technical feasibility of an SCP article recommender.",
        "",
        "### Scope",
        "",
        "- Data source: SCP Data API (EN)",
        f"- Articles: {data.data_fetch.article_count}",
        "- Embedding: OpenAI text-embedding-3-small",
        "- Vector DB: Supabase pgvector",
        "",
    ]


def _summary(data: ReportData) -> list[str]:
    return [
        "## 2. Results Summary",
        "",
        "| Check | Result | Notes |",
        "|-------|--------|-------|",
        f"| Data fetch | {_status(data.data_fetch.success)} | {data.data_fetch.article_count} articles |",
        f"| Embedding | {_status(data.embedding.success)} | {data.embedding.token_count:,} tokens |",
        f"| Tagging | {_status(data.tagging.success)} | {data.tagging.token_count:,} tokens |",
        f"| Vector search | {_status(data.search.vector_search_success)} | {data.search.search_time_ms:.0f}ms |",
        f"| Hybrid search | {_status(data.search.hybrid_search_success)} | - |",
        "",
    ]


def _stages(data: ReportData) -> list[str]:
    fetch, emb, tag, search = data.data_fetch, data.embedding, data.tagging, data.search
    return [
        "## 3. Data Fetch",
        "",
        f"- Articles fetched: {fetch.article_count}",
        f"- Average content length: {fetch.avg_content_length} chars",
        f"- Status: {_ok(fetch.success)}",
        "",
        "## 4. Embedding Generation",
        "",
        f"- Articles processed: {fetch.article_count}",
        f"- Total tokens: {emb.token_count:,}",
        f"- Cost: {format_cost(emb.cost)}",
        f"- Time: {emb.time_seconds:g}s",
        f"- Status: {_ok(emb.success)}",
        "",
        "## 5. Tag Extraction",
        "",
        f"- Articles processed: {fetch.article_count}",
        f"- Total tokens: {tag.token_count:,}",
        f"- Cost: {format_cost(tag.cost)}",
        f"- Status: {_ok(tag.success)}",
        "",
        "## 6. Search",
        "",
        "### Vector vs hybrid",
        "",
        f"- Vector search: {_ok(search.vector_search_success)}",
        f"- Hybrid search: {_ok(search.hybrid_search_success)}",
        f"- Search time: {search.search_time_ms:.0f}ms",
        "",
    ]


def _performance(data: ReportData) -> list[str]:
    count = data.data_fetch.article_count
    per_article = data.embedding.time_seconds / count if count > 0 else 0.0
    return [
        "## 7. Performance",
        "",
        f"- Embedding speed: {per_article:.2f}s/article",
        f"- Search latency: {data.search.search_time_ms:.0f}ms",
        "",
    ]


def _costs(data: ReportData) -> list[str]:
    embedding_cost, tagging_cost, monthly = calculate_production_cost(data)
    return [
        "## 8. Cost Estimate",
        "",
        "### This run",
        "",
        "| Item | Volume | Cost |",
        "|------|--------|------|",
        f"| Embedding | {data.embedding.token_count:,} tokens | {format_cost(data.embedding.cost)} |",
        f"| Tagging | {data.tagging.token_count:,} tokens | {format_cost(data.tagging.cost)} |",
        "",
        f"### Full corpus ({TOTAL_SCP_ARTICLES:,} articles)",
        "",
        "| Item | Estimated cost |",
        "|------|----------------|",
        f"| Initial embedding | {format_cost(embedding_cost)} |",
        f"| Initial tagging | {format_cost(tagging_cost)} |",
        f"| Supabase | ${SUPABASE_MONTHLY_COST}/month |",
        f"| Monthly operation ({MONTHLY_UPDATE_FRACTION:.0%} updates) | {format_cost(monthly)}/month |",
        "",
    ]


def _issues(data: ReportData) -> list[str]:
    checks = [
        (data.data_fetch.success, "Data fetch failed: check API connectivity"),
        (data.embedding.success, "Embedding failed: check OpenAI rate limits"),
        (data.tagging.success, "Tagging failed: improve prompt accuracy"),
        (data.search.vector_search_success, "Vector search failed: check index settings"),
        (data.search.hybrid_search_success, "Hybrid search failed: tune tag filtering"),
    ]
    issues = [message for ok, message in checks if not ok]
    lines = ["## 9. Issues and Risks", ""]
    if not issues:
        lines.append("- None (every check passed)")
    else:
        lines.extend(f"{i}. {issue}" for i, issue in enumerate(issues, 1))
    lines.append("")
    return lines


def _recommendations(data: ReportData) -> list[str]:
    judgment = determine_judgment(data)
    lines = [
        "## 10. Recommendations",
        "",
        "### Go / No-Go",
        "",
        f"**{judgment}**",
        "",
    ]
    if judgment is Judgment.GO:
        lines.append("Every check passed; proceed to a full implementation.")
    elif judgment is Judgment.NO_GO:
        lines.append("Multiple checks failed; fix them and validate again.")
    else:
        lines.append("Some checks failed; proceed once they are addressed.")
    lines += ["", "### Technology choices", ""]
    if judgment is Judgment.NO_GO:
        lines.append("- Revisit the technology choices")
    else:
        lines += [
            "- Current choices hold up",
            "- OpenAI text-embedding-3-small: cost efficient",
            "- Supabase pgvector: search performance is sufficient",
        ]
    lines += ["", "### Priorities", ""]
    if data.search.vector_search_success and not data.search.hybrid_search_success:
        lines += ["1. Improve hybrid search", "2. Optimise tag-based filtering"]
    elif judgment is Judgment.NO_GO:
        lines += ["1. Investigate the failed checks", "2. Validate again after fixes"]
    else:
        lines += ["1. Performance at full scale", "2. Harden error handling"]
    lines += [
        "",
        "### Next phase",
        "",
        f"1. Performance at {TOTAL_SCP_ARTICLES:,} articles",
        "2. Recommendation quality from user ratings",
        "3. Measured operating cost",
        "",
    ]
    return lines


def generate_report(data: ReportData, today: date | None = None) -> str:
    today = today or date.today()
    lines = [
        "# SCP Recommend PoC Validation Report",
        "",
        f"**Generated**: {today.isoformat()}",
        "",
    ]
    for section in (
        _overview,
        _summary,
        _stages,
        _performance,
        _costs,
        _issues,
        _recommendations,
    ):
        lines.extend(section(data))
    return "\n".join(lines)

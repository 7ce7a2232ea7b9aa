from datetime import date

import pytest

from scp_rerank.report import (
    DataFetchSummary,
    EmbeddingSummary,
    Judgment,
    ReportData,
    SearchSummary,
    calculate_production_cost,
    create_sample_report_data,
    determine_judgment,
    format_cost,
    generate_report,
    load_run_stats,
    record_stage,
)


def test_sample_report_is_go():
    data = create_sample_report_data()
    report = generate_report(data, today=date(2026, 1, 15))

    assert report.startswith("# SCP Recommend PoC Validation Report")
    assert "**Generated**: 2026-01-15" in report
    assert "**Go**" in report
    assert "None (every check passed)" in report
    for heading in ("## 1. Overview", "## 8. Cost Estimate", "## 10. Recommendations"):
        assert heading in report


def test_judgment():
    assert determine_judgment(ReportData()) is Judgment.NO_GO
    partial = ReportData(data_fetch=DataFetchSummary(success=True, article_count=10))
    assert determine_judgment(partial) is Judgment.CONDITIONAL_GO


def test_failed_hybrid_search_is_flagged():
    data = create_sample_report_data()
    data.search.hybrid_search_success = False
    report = generate_report(data)

    assert "**Conditional Go**" in report
    assert "Hybrid search failed" in report
    assert "1. Improve hybrid search" in report


def test_production_cost_scales_to_full_corpus():
    data = ReportData(
        data_fetch=DataFetchSummary(True, 10, 5000),
        embedding=EmbeddingSummary(True, 50000, 0.001, 20),
    )
    embedding_cost, tagging_cost, monthly = calculate_production_cost(data)
    assert embedding_cost == pytest.approx(1.0)
    assert tagging_cost == 0
    assert monthly == pytest.approx(25.1)


def test_format_cost():
    assert format_cost(0.00097) == "$0.0010"
    assert format_cost(12.345) == "$12.35"


def test_run_stats_round_trip(tmp_path):
    path = tmp_path / "run_stats.json"
    assert load_run_stats(path) is None

    record_stage("search", SearchSummary(True, False, 85.0), path)
    record_stage("data_fetch", DataFetchSummary(True, 3, 1200), path)

    data = load_run_stats(path)
    assert data is not None
    assert data.search == SearchSummary(True, False, 85.0)
    assert data.data_fetch.article_count == 3
    assert data.embedding == EmbeddingSummary()


def test_from_dict_ignores_unknown_fields():
    data = ReportData.from_dict({"tagging": {"success": True, "legacy": 1}, "search": "bad"})
    assert data.tagging.success is True
    assert data.search == SearchSummary()

"""Unit tests for report aggregation and rendering."""

import pytest
from datetime import datetime, timezone

from slack_digest.errors import AggregationError
from slack_digest.models import MessageRecord, SummarizationResult, TokenUsage
from slack_digest.report import (
    NOT_FOUND,
    SEPARATOR,
    ReportAggregator,
    format_duration,
    render_markdown,
)
from slack_digest.statistics import StatisticsAggregator


GENERATED = datetime(2025, 10, 6, 8, 30, tzinfo=timezone.utc)

SUMMARY_1 = """# Community Insights

## Community Overview
Busy week with lots of [questions](https://example.slack.com/p1).

## Feature Wishlist
- Dark mode
### Details
Requested by three members."""

SUMMARY_2 = """## Success Stories
> "Shipped our pitch deck in an hour" - carol

## Emerging Trends
More API usage."""


def result(index: int, summary: str, prompt: int = 100, done: int = 40, duration: float = 1.5) -> SummarizationResult:
    return SummarizationResult(
        batch_index=index,
        summary=summary,
        usage=TokenUsage.of(prompt, done),
        duration=duration,
    )


class TestAggregate:
    """Tests for ReportAggregator.aggregate."""

    def setup_method(self):
        """Set up test fixtures."""
        self.aggregator = ReportAggregator()

    def test_merge_and_totals(self):
        """Test summaries are joined verbatim and totals summed."""
        results = [result(1, SUMMARY_1, 100, 40, 1.5), result(2, SUMMARY_2, 80, 20, 2.0)]
        report = self.aggregator.aggregate(results, total_messages=30, generated_at=GENERATED)

        assert report.body == SUMMARY_1 + SEPARATOR + SUMMARY_2
        assert report.batch_count == 2
        assert report.total_messages == 30
        assert report.usage == TokenUsage.of(180, 60)
        assert report.total_duration == pytest.approx(3.5)
        assert report.unified is False

    def test_out_of_order_rejected(self):
        """Test results must be in batch-index order."""
        with pytest.raises(AggregationError):
            self.aggregator.aggregate([result(2, "b"), result(1, "a")], total_messages=2)

    def test_duplicate_rejected(self):
        """Test duplicate batch indices are rejected."""
        with pytest.raises(AggregationError) as excinfo:
            self.aggregator.aggregate([result(1, "a"), result(1, "a")], total_messages=2)
        assert excinfo.value.context["batch_index"] == 1

    def test_idempotent(self):
        """Test the same input yields byte-identical output."""
        results = [result(1, SUMMARY_1), result(2, SUMMARY_2)]
        first = self.aggregator.aggregate(results, 10, generated_at=GENERATED)
        second = self.aggregator.aggregate(results, 10, generated_at=GENERATED)

        assert first.body == second.body
        assert first == second
        assert render_markdown(first) == render_markdown(second)

    def test_zero_results(self):
        """Test an empty run produces an empty report."""
        report = self.aggregator.aggregate([], total_messages=0)

        assert report.batch_count == 0
        assert report.total_messages == 0
        assert report.body == ""
        assert report.usage.total_tokens == 0
        assert set(report.insights.to_dict().values()) == {NOT_FOUND}


class TestExtractInsights:
    """Tests for keyword-based insight extraction."""

    def setup_method(self):
        """Set up test fixtures."""
        self.aggregator = ReportAggregator()

    def test_sections_by_keyword(self):
        """Test each category picks the first matching section."""
        insights = self.aggregator.extract_insights(SUMMARY_1 + SEPARATOR + SUMMARY_2)

        assert insights.community_activity.startswith("Busy week")
        assert insights.feature_feedback.startswith("- Dark mode")
        assert insights.success_stories.startswith('> "Shipped our pitch deck')
        assert insights.emerging_trends == "More API usage."
        assert insights.support_patterns == NOT_FOUND

    def test_third_level_headings_stay_in_section(self):
        """Test ### headings do not start a new section."""
        insights = self.aggregator.extract_insights(SUMMARY_1)
        assert "### Details" in insights.feature_feedback
        assert "Requested by three members." in insights.feature_feedback

    def test_first_match_wins(self):
        """Test an earlier matching section beats a later one."""
        body = "## Support Questions\nfirst\n\n## Help Desk\nsecond"
        assert self.aggregator.extract_insights(body).support_patterns == "first"

    def test_title_only_match(self):
        """Test keywords in section bodies are ignored."""
        body = "## Overview\nLots of community support and feedback."
        insights = self.aggregator.extract_insights(body)
        assert insights.community_activity == NOT_FOUND
        assert insights.support_patterns == NOT_FOUND

    def test_no_headings(self):
        """Test free text without headings yields placeholders."""
        insights = self.aggregator.extract_insights("Just a paragraph about community.")
        assert set(insights.to_dict().values()) == {NOT_FOUND}


class TestRenderMarkdown:
    """Tests for the report artifact."""

    def test_layout(self):
        """Test sections appear in order."""
        report = ReportAggregator().aggregate(
            [result(1, SUMMARY_1), result(2, SUMMARY_2)], 42, generated_at=GENERATED
        )
        text = render_markdown(report)

        assert text.startswith("# Slack Community Analysis Report\n")
        assert "Generated on 2025-10-06T08:30+00:00" in text
        assert "- **Total Messages Analyzed:** 42" in text
        assert "- **Analysis Chunks:** 2" in text
        assert "- **Total Tokens Used:** 280" in text

        positions = [
            text.index("## Summary Statistics"),
            text.index("## Analysis Results"),
            text.index(SUMMARY_1),
            text.index("## Structured Insights"),
            text.index("### Community Activity"),
            text.index("### Emerging Trends"),
        ]
        assert positions == sorted(positions)
        assert "### Support Patterns\n\nNo specific insights found." in text

    def test_statistics_in_summary_block(self):
        """Test the statistics snapshot is rendered before the analysis."""
        records = [MessageRecord(channel="general", user="alice", text="hi", timestamp=GENERATED)]
        snapshot = StatisticsAggregator().compute(records)
        report = ReportAggregator().aggregate([result(1, SUMMARY_2)], 1, statistics=snapshot, generated_at=GENERATED)
        text = render_markdown(report)

        assert text.index("### Message Overview") < text.index("## Analysis Results")

    def test_unified_title(self):
        """Test the unified report has its own title."""
        report = ReportAggregator().aggregate([result(1, "x")], 1, unified=True, generated_at=GENERATED)
        assert render_markdown(report).startswith("# Slack Community Analysis Report (Unified)")
        assert render_markdown(report, title="Weekly Digest").startswith("# Weekly Digest\n")

    def test_empty_report(self):
        """Test rendering with no analyzed messages."""
        report = ReportAggregator().aggregate([], 0, generated_at=GENERATED)
        assert "_No messages were analyzed._" in render_markdown(report)


class TestFormatDuration:
    """Tests for format_duration."""

    def test_seconds(self):
        assert format_duration(12.34) == "12.3s"

    def test_minutes(self):
        assert format_duration(125) == "2m 5s"

"""Report aggregation for Slack Digest.

Merges per-batch summaries into one report, pulls out the five insight
sections by heading keywords and renders the final markdown artifact.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional, Sequence

from .errors import AggregationError
from .models import (
    AggregatedReport,
    InsightSections,
    StatisticsSnapshot,
    SummarizationResult,
    TokenUsage,
)
from .statistics import render_statistics_markdown

logger = logging.getLogger(__name__)

SEPARATOR = "\n\n---\n\n"
NOT_FOUND = "No specific insights found."

DEFAULT_TITLE = "Slack Community Analysis Report"

# Insight category -> keywords looked for in a section title
INSIGHT_KEYWORDS = {
    "community_activity": ("activity", "engagement", "community", "participation"),
    "feature_feedback": ("feedback", "feature", "request", "improvement", "suggestion"),
    "success_stories": ("success", "story", "case study", "achievement", "win"),
    "support_patterns": ("support", "help", "question", "issue", "problem"),
    "emerging_trends": ("trend", "emerging", "pattern", "development", "growth"),
}

INSIGHT_TITLES = {
    "community_activity": "Community Activity",
    "feature_feedback": "Feature Feedback",
    "success_stories": "Success Stories",
    "support_patterns": "Support Patterns",
    "emerging_trends": "Emerging Trends",
}

SECTION_HEADING = re.compile(r"^##\s+", re.MULTILINE)


class ReportAggregator:
    """Merges summarization results into an AggregatedReport."""

    def aggregate(
        self,
        results: Sequence[SummarizationResult],
        total_messages: int,
        statistics: Optional[StatisticsSnapshot] = None,
        unified: bool = False,
        generated_at: Optional[datetime] = None,
    ) -> AggregatedReport:
        """
        Merge results into one report.

        Args:
            results: One result per batch, in batch-index order
            total_messages: Number of records that were summarized
            statistics: Pre-calculated statistics to carry into the report
            unified: Whether the results came from a single unified call
            generated_at: Report timestamp (defaults to now, UTC)

        Returns:
            AggregatedReport

        Raises:
            AggregationError: If batch indices are duplicated or out of order
        """
        previous = 0
        for result in results:
            if result.batch_index <= previous:
                raise AggregationError(
                    f"Batch {result.batch_index} is duplicated or out of order",
                    operation="aggregate",
                    batch_index=result.batch_index,
                )
            previous = result.batch_index

        body = SEPARATOR.join(r.summary for r in results)

        usage = TokenUsage()
        for result in results:
            usage = usage + result.usage

        report = AggregatedReport(
            batch_count=len(results),
            total_messages=total_messages,
            usage=usage,
            total_duration=sum(r.duration for r in results),
            body=body,
            insights=self.extract_insights(body),
            generated_at=generated_at or datetime.now(timezone.utc),
            unified=unified,
            statistics=statistics,
        )

        logger.info(
            f"Aggregated {report.batch_count} results "
            f"({report.usage.total_tokens} tokens, {report.total_duration:.1f}s)"
        )
        return report

    @staticmethod
    def split_sections(body: str) -> list[tuple[str, str]]:
        """
        Split markdown into (title, content) pairs at second-level headings.

        Text before the first ``## `` heading is ignored.
        """
        sections = []
        for chunk in SECTION_HEADING.split(body)[1:]:
            title, _, content = chunk.partition("\n")
            sections.append((title.strip(), content.strip()))
        return sections

    def extract_insights(self, body: str) -> InsightSections:
        """
        Pick a section for each insight category.

        The first section whose lowercased title contains any of the
        category's keywords wins. A section may serve several categories.
        """
        sections = self.split_sections(body)
        found = {}

        for category, keywords in INSIGHT_KEYWORDS.items():
            found[category] = NOT_FOUND
            for title, content in sections:
                lowered = title.lower()
                if any(keyword in lowered for keyword in keywords):
                    found[category] = content or NOT_FOUND
                    break

        return InsightSections(**found)


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, rest = divmod(seconds, 60)
    return f"{int(minutes)}m {rest:.0f}s"


def render_markdown(report: AggregatedReport, title: Optional[str] = None) -> str:
    """
    Render the report artifact.

    Layout: title, generation date, summary statistics (with the
    pre-calculated statistics when present), the merged analysis and the
    five insight sections.
    """
    if title is None:
        title = f"{DEFAULT_TITLE} (Unified)" if report.unified else DEFAULT_TITLE

    lines = [
        f"# {title}",
        "",
        f"Generated on {report.generated_at.isoformat(timespec='minutes')}",
        "",
        "## Summary Statistics",
        "",
        f"- **Total Messages Analyzed:** {report.total_messages}",
        f"- **Analysis Chunks:** {report.batch_count}",
        f"- **Total Tokens Used:** {report.usage.total_tokens:,}",
        f"- **Processing Time:** {format_duration(report.total_duration)}",
    ]

    if report.statistics is not None:
        lines += ["", render_statistics_markdown(report.statistics)]

    lines += [
        "",
        "## Analysis Results",
        "",
        report.body or "_No messages were analyzed._",
        "",
        "## Structured Insights",
    ]

    for category, heading in INSIGHT_TITLES.items():
        lines += ["", f"### {heading}", "", getattr(report.insights, category)]

    return "\n".join(lines) + "\n"

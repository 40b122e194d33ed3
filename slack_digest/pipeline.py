"""Analysis pipeline for Slack Digest.

Wires the components together for one run: statistics, batching,
summarization, aggregation, report file and (optionally) the slide deck.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Optional, Sequence

from .config import ClassificationConfig, Settings
from .errors import InputError
from .gamma_client import GammaClient, format_markdown_for_presentation
from .llm_client import LLMClient
from .models import AggregatedReport, AnalysisProgress, MessageRecord, PresentationResult
from .partitioner import batch_stats, partition_records
from .report import ReportAggregator, render_markdown
from .statistics import StatisticsAggregator, render_statistics_markdown
from .summarizer import SummarizationDriver

logger = logging.getLogger(__name__)


@dataclass
class AnalysisOutcome:
    """Everything one run produced."""

    report: AggregatedReport
    markdown: str
    report_path: Optional[Path] = None
    presentation: Optional[PresentationResult] = None


def report_filename(day: date, unified: bool = False) -> str:
    suffix = "-unified" if unified else ""
    return f"slack-analysis-{day.isoformat()}{suffix}.md"


def save_report(markdown: str, output_dir: str, unified: bool = False, day: Optional[date] = None) -> Path:
    """
    Write the report markdown to ``output_dir``.

    Returns:
        Path of the written file
    """
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)

    path = directory / report_filename(day or date.today(), unified)
    with open(path, "w", encoding="utf-8") as f:
        f.write(markdown)

    logger.info(f"Saved report to {path}")
    return path


class AnalysisPipeline:
    """Runs one analysis over a record set."""

    def __init__(
        self,
        llm_client: LLMClient,
        settings: Optional[Settings] = None,
        gamma_client: Optional[GammaClient] = None,
        classification: Optional[ClassificationConfig] = None,
    ):
        """
        Initialize pipeline.

        Args:
            llm_client: Client for the summarization calls
            settings: Runtime settings
            gamma_client: Slide client; presentations are skipped without one
            classification: Topic table and staff partition
        """
        self.settings = settings or Settings()
        self.gamma_client = gamma_client
        self.statistics = StatisticsAggregator(classification)
        self.driver = SummarizationDriver(
            llm_client,
            self.settings,
            is_staff=self.statistics.is_staff,
        )
        self.aggregator = ReportAggregator()

        self._listeners: list[Callable[[AnalysisProgress], None]] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, listener: Callable[[AnalysisProgress], None]):
        """Receive pipeline and per-batch progress events."""
        self._listeners.append(listener)
        self.driver.subscribe(listener)

    def _publish(self, stage: str, current: int = 0, total: int = 0, status: str = "processing", message: str = ""):
        event = AnalysisProgress(stage=stage, current=current, total=total, status=status, message=message)
        for listener in self._listeners:
            listener(event)

    def run(
        self,
        records: Sequence[MessageRecord],
        unified: bool = False,
        create_presentation: bool = True,
        output_dir: Optional[str] = None,
        allow_empty: bool = True,
    ) -> Optional[AnalysisOutcome]:
        """
        Analyze records end to end.

        Args:
            records: Validated records in export order
            unified: Analyze everything in one LLM call instead of batches
            create_presentation: Request a slide deck when a Gamma client is set
            output_dir: Where to write the report file (not written if None)
            allow_empty: When False, an empty record set is an input error

        Returns:
            AnalysisOutcome, or None if another run is already in progress

        Raises:
            InputError: If records are empty and ``allow_empty`` is False
            LLMError: If a batch fails; the run is aborted
            ServiceError: If the slide deck cannot be produced (the report
                file has already been written)
        """
        if self._running:
            logger.warning("Analysis already in progress, skipping this run")
            return None

        self._running = True
        started = time.monotonic()
        try:
            outcome = self._run(records, unified, create_presentation, output_dir, allow_empty)
        except Exception as e:
            self._publish("error", status="error", message=str(e))
            raise
        finally:
            self._running = False

        logger.info(
            f"Analysis completed in {time.monotonic() - started:.1f}s: "
            f"{outcome.report.total_messages} messages, {outcome.report.batch_count} chunks"
        )
        self._publish("completed", status="completed", message="Analysis complete")
        return outcome

    def _run(
        self,
        records: Sequence[MessageRecord],
        unified: bool,
        create_presentation: bool,
        output_dir: Optional[str],
        allow_empty: bool,
    ) -> AnalysisOutcome:
        if not records and not allow_empty:
            raise InputError("No messages to analyze", operation="run_pipeline")

        self._publish("statistics", message="Calculating statistics")
        snapshot = self.statistics.compute(records)
        statistics_block = render_statistics_markdown(snapshot)

        if not records:
            logger.warning("No messages to analyze; producing an empty report")
            results = []
        elif unified:
            results = [self.driver.summarize_unified(records, statistics_block)]
        else:
            batches = partition_records(records, self.settings.batch_size)
            logger.info(f"Batch stats: {batch_stats(batches)}")
            results = self.driver.summarize_batches(batches, statistics_block)

        self._publish("aggregate", message="Aggregating analysis results")
        report = self.aggregator.aggregate(results, len(records), statistics=snapshot, unified=unified)
        markdown = render_markdown(report)

        outcome = AnalysisOutcome(report=report, markdown=markdown)
        if output_dir is not None:
            outcome.report_path = save_report(
                markdown, output_dir, unified=unified, day=report.generated_at.date()
            )
            self._publish("report_saved", message=str(outcome.report_path))

        if create_presentation and self.gamma_client is not None and records:
            self._publish("presentation", message="Generating presentation")
            outcome.presentation = self.gamma_client.generate_presentation(
                format_markdown_for_presentation(markdown, report.generated_at.date()),
                title="Slack Community Analysis",
                description=f"Analysis of {report.total_messages} messages from {report.generated_at.date().isoformat()}",
            )
        elif create_presentation and self.gamma_client is None:
            logger.info("No Gamma client configured; skipping presentation")

        return outcome

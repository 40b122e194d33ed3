"""CLI entry point for Slack Digest."""

import json
import logging
import math
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from .config import ClassificationConfig, ClassificationValidator, Settings
from .errors import ConfigError, InputError, LLMError, LoaderError, ServiceError
from .loader import MessageLoader, find_latest_csv
from .models import AnalysisProgress, MessageRecord, StatisticsSnapshot
from .statistics import StatisticsAggregator, format_date_range, render_statistics_markdown

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="slack-digest",
    help="Summarize a Slack export with an LLM and turn it into a presentation.",
)
console = Console()

EXIT_INPUT_ERROR = 1
EXIT_SERVICE_ERROR = 2
EXIT_MISSING_KEY = 3


@app.callback()
def main(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        envvar="LOG_LEVEL",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    ),
):
    """Slack Digest command-line interface."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


# ============================================================================
# Helpers
# ============================================================================

def _load_settings() -> Settings:
    try:
        return Settings.from_env()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(EXIT_INPUT_ERROR)


def _resolve_data(data: Optional[str], exports_dir: str) -> Path:
    """Use the given CSV, or fall back to the newest one in the exports directory."""
    if data:
        return Path(data)

    latest = find_latest_csv(exports_dir)
    if latest is None:
        console.print(f"[red]Error:[/red] No --data given and no CSV files found in {exports_dir}/")
        raise typer.Exit(EXIT_INPUT_ERROR)

    console.print(f"[cyan]→[/cyan] Using latest export: {latest}")
    return latest


def _load_records(data_path: Path) -> list[MessageRecord]:
    loader = MessageLoader()
    try:
        records = loader.load_file(str(data_path))
    except LoaderError as e:
        console.print(f"[red]Error loading export:[/red] {e}")
        raise typer.Exit(EXIT_INPUT_ERROR)

    console.print(f"[green]✓[/green] Loaded {len(records)} messages from {data_path}")
    return records


def _load_classification(config: Optional[str]) -> Optional[ClassificationConfig]:
    if not config:
        return None
    try:
        classification = ClassificationConfig.load(config)
    except (FileNotFoundError, json.JSONDecodeError, ConfigError) as e:
        console.print(f"[red]Error loading classification config:[/red] {e}")
        raise typer.Exit(EXIT_INPUT_ERROR)

    console.print(f"[green]✓[/green] Classification config: {config} ({len(classification.topics)} topics)")
    return classification


def _print_statistics(snapshot: StatisticsSnapshot):
    overview = Table(title="Message Overview", show_header=False, box=None)
    overview.add_column("Metric", style="cyan")
    overview.add_column("Value", style="white")
    overview.add_row("Total Messages", f"{snapshot.total_messages:,}")
    overview.add_row("Community Messages", f"{snapshot.community_messages:,} ({snapshot.community_percentage}%)")
    overview.add_row("Staff Messages", f"{snapshot.staff_messages:,}")
    overview.add_row("Time Period", format_date_range(snapshot.date_range))
    overview.add_row("Users", str(snapshot.users.total_users))
    overview.add_row(
        "Questions Answered",
        f"{snapshot.responses.answered_questions}/{snapshot.responses.total_questions} "
        f"({snapshot.responses.response_rate}%)",
    )
    if snapshot.responses.average_response_hours is not None:
        overview.add_row("Avg Response Time", f"{snapshot.responses.average_response_hours} hours")
    console.print(overview)
    console.print()

    channels = Table(title="Channels (Community)")
    channels.add_column("Channel", style="cyan")
    channels.add_column("Messages", justify="right")
    channels.add_column("%", justify="right")
    channels.add_column("Users", justify="right")
    channels.add_column("Reactions", justify="right")
    for ch in snapshot.channels:
        channels.add_row(ch.name, str(ch.message_count), f"{ch.percentage}%", str(ch.active_users), str(ch.reaction_count))
    console.print(channels)
    console.print()

    topics = Table(title="Topics (Community)")
    topics.add_column("Topic", style="cyan")
    topics.add_column("Messages", justify="right")
    topics.add_column("%", justify="right")
    for topic in snapshot.topics:
        topics.add_row(topic.name, str(topic.message_count), f"{topic.percentage}%")
    console.print(topics)
    console.print()

    console.print("[bold]Top Contributors:[/bold]")
    for i, user in enumerate(snapshot.users.top_users, 1):
        console.print(f"  {i}. {user.name} ({user.message_count} messages)")


# ============================================================================
# ANALYZE COMMAND - Full pipeline
# ============================================================================

@app.command()
def analyze(
    data: Optional[str] = typer.Option(
        None,
        "--data",
        "-d",
        help="Path to the Slack CSV export (defaults to the newest CSV in the exports directory).",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a classification JSON file (topics and staff markers).",
    ),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Directory to save the markdown report (defaults to EXPORTS_DIR).",
    ),
    unified: bool = typer.Option(
        False,
        "--unified",
        "-u",
        help="Analyze the whole export in a single LLM call.",
    ),
    batch_size: Optional[int] = typer.Option(
        None,
        "--batch-size",
        "-b",
        help="Messages per LLM call (defaults to CHUNK_SIZE or 25).",
    ),
    model: Optional[str] = typer.Option(
        None,
        "--model",
        "-m",
        help="OpenAI model to use (defaults to GPT_MODEL or gpt-4o).",
    ),
    skip_presentation: bool = typer.Option(
        False,
        "--skip-presentation",
        help="Write the markdown report only; do not call Gamma.",
    ),
    openai_key: Optional[str] = typer.Option(
        None,
        "--openai-key",
        envvar="OPENAI_API_KEY",
        help="OpenAI API key.",
    ),
    gamma_key: Optional[str] = typer.Option(
        None,
        "--gamma-key",
        envvar="GAMMA_API_KEY",
        help="Gamma API key.",
    ),
):
    """
    Analyze a Slack export and generate a report and presentation.

    Messages are summarized in batches (or in one call with --unified),
    merged into a markdown report with pre-calculated statistics, and
    sent to Gamma to build a slide deck.
    """
    from .gamma_client import GammaClient
    from .llm_client import create_llm_client
    from .pipeline import AnalysisPipeline

    console.print(f"\n[bold cyan]Slack Digest[/bold cyan] - Community Analysis\n")

    settings = _load_settings()
    try:
        settings = settings.with_overrides(
            openai_api_key=openai_key,
            gamma_api_key=gamma_key,
            batch_size=batch_size,
            model=model,
        ).validate()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(EXIT_INPUT_ERROR)

    if not settings.openai_api_key:
        console.print("[yellow]Warning:[/yellow] No OpenAI API key provided.")
        console.print("Set OPENAI_API_KEY environment variable or use --openai-key option.")
        raise typer.Exit(EXIT_MISSING_KEY)

    create_presentation = not skip_presentation
    if create_presentation and not settings.gamma_api_key:
        console.print("[yellow]Warning:[/yellow] No Gamma API key; skipping presentation.")
        create_presentation = False

    data_path = _resolve_data(data, settings.exports_dir)
    classification = _load_classification(config)
    records = _load_records(data_path)
    output_dir = output or settings.exports_dir

    mode = "unified (single call)" if unified else f"batched ({settings.batch_size} messages per call)"
    console.print(f"[cyan]Mode:[/cyan] {mode}, model {settings.model}")

    llm = create_llm_client(
        model=settings.model,
        api_key=settings.openai_api_key,
        timeout=settings.request_timeout,
    )
    gamma = GammaClient(settings.gamma_api_key, settings) if create_presentation else None
    pipeline = AnalysisPipeline(llm, settings, gamma_client=gamma, classification=classification)

    total_calls = 1 if unified else math.ceil(len(records) / settings.batch_size)
    saved = {}

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Starting analysis...", total=max(total_calls, 1))

            def on_progress(event: AnalysisProgress):
                if event.stage == "batch_end":
                    progress.advance(task)
                elif event.stage == "report_saved":
                    saved["path"] = event.message
                if event.message:
                    progress.update(task, description=event.message)

            pipeline.subscribe(on_progress)
            outcome = pipeline.run(
                records,
                unified=unified,
                create_presentation=create_presentation,
                output_dir=output_dir,
            )
    except InputError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(EXIT_INPUT_ERROR)
    except LLMError as e:
        console.print(f"\n[red]Analysis failed:[/red] {e}")
        console.print("[dim]No report was written; incomplete analyses are discarded.[/dim]")
        raise typer.Exit(EXIT_SERVICE_ERROR)
    except ServiceError as e:
        console.print(f"\n[red]Presentation failed:[/red] {e}")
        if "path" in saved:
            console.print(f"[green]✓[/green] Report saved to: {saved['path']}")
        raise typer.Exit(EXIT_SERVICE_ERROR)

    report = outcome.report
    console.print(f"\n[green]✓[/green] Analyzed {report.total_messages} messages in {report.batch_count} chunks")
    console.print(f"[green]✓[/green] Report saved to: {outcome.report_path}")

    usage = Table(title="Token Usage", show_header=False, box=None)
    usage.add_column("Metric", style="cyan")
    usage.add_column("Value", style="white")
    usage.add_row("Prompt Tokens", f"{report.usage.prompt_tokens:,}")
    usage.add_row("Completion Tokens", f"{report.usage.completion_tokens:,}")
    usage.add_row("Total Tokens", f"{report.usage.total_tokens:,}")
    usage.add_row("Estimated Cost", f"${llm.get_estimated_cost():.4f}")
    usage.add_row("Processing Time", f"{report.total_duration:.1f}s")
    console.print(usage)

    if outcome.presentation:
        console.print(f"\n[bold green]✓ Presentation ready:[/bold green] {outcome.presentation.url}")


# ============================================================================
# STATS COMMAND - Statistics only, no API calls
# ============================================================================

@app.command()
def stats(
    data: Optional[str] = typer.Option(
        None,
        "--data",
        "-d",
        help="Path to the Slack CSV export (defaults to the newest CSV in the exports directory).",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a classification JSON file (topics and staff markers).",
    ),
    markdown: bool = typer.Option(
        False,
        "--markdown",
        help="Print the statistics block exactly as it is sent to the LLM.",
    ),
):
    """
    Show statistics for a Slack export without calling any API.
    """
    settings = _load_settings()
    data_path = _resolve_data(data, settings.exports_dir)
    classification = _load_classification(config)
    records = _load_records(data_path)

    snapshot = StatisticsAggregator(classification).compute(records)

    console.print()
    if markdown:
        console.print(render_statistics_markdown(snapshot), markup=False, highlight=False)
    else:
        _print_statistics(snapshot)


# ============================================================================
# VALIDATE COMMAND - Check inputs without running the analysis
# ============================================================================

@app.command()
def validate(
    data: str = typer.Option(
        ...,
        "--data",
        "-d",
        help="Path to the Slack CSV export.",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a classification JSON file (topics and staff markers).",
    ),
):
    """
    Validate the export and classification config without calling any API.

    Every row of the export is checked; malformed rows are reported.
    """
    console.print(f"\n[bold]Slack Digest[/bold] - Validation\n")

    all_errors = []
    all_warnings = []

    data_path = Path(data)
    if not data_path.exists():
        all_errors.append(f"Data file not found: {data}")
    else:
        loader = MessageLoader(strict=False)
        try:
            loader.load_file(str(data_path))
        except LoaderError as e:
            all_errors.append(str(e))
        else:
            load_stats = loader.get_stats()
            console.print(
                f"[green]✓[/green] Data file: {load_stats['loaded']} of {load_stats['total_rows']} rows valid"
            )
            if load_stats["skipped_invalid"]:
                all_errors.append(f"{load_stats['skipped_invalid']} malformed rows")
                all_errors.extend(loader.failed_rows)

    if config:
        validator = ClassificationValidator()
        is_valid, errors, warnings = validator.validate(config)
        all_errors.extend(errors)
        all_warnings.extend(warnings)

        if is_valid:
            try:
                classification = ClassificationConfig.load(config)
                console.print(
                    f"[green]✓[/green] Config valid: {len(classification.topics)} topics, "
                    f"catch-all '{classification.catch_all_topic}'"
                )
            except ConfigError as e:
                all_errors.append(f"Failed to load config: {e}")

    try:
        Settings.from_env().validate()
    except ConfigError as e:
        all_errors.append(f"Environment settings: {e}")

    # Display warnings
    if all_warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for warning in all_warnings:
            console.print(f"  ⚠ {warning}")

    # Display errors and exit
    if all_errors:
        console.print("\n[red]Validation failed:[/red]")
        for error in all_errors:
            console.print(f"  ✗ {error}")
        raise typer.Exit(EXIT_INPUT_ERROR)

    console.print("\n[bold green]✓ Validation passed[/bold green]")


# ============================================================================
# CHECK COMMAND - Verify API credentials
# ============================================================================

@app.command()
def check(
    skip_gamma: bool = typer.Option(
        False,
        "--skip-gamma",
        help="Only check OpenAI (a Gamma check starts a small generation).",
    ),
):
    """
    Check that the OpenAI and Gamma API keys work.
    """
    from .gamma_client import GammaClient
    from .llm_client import create_llm_client

    settings = _load_settings()
    failed = False

    if not settings.openai_api_key:
        console.print("[red]✗[/red] OPENAI_API_KEY is not set")
        raise typer.Exit(EXIT_MISSING_KEY)

    llm = create_llm_client(model=settings.model, api_key=settings.openai_api_key)
    if llm.test_connection():
        console.print(f"[green]✓[/green] OpenAI connection OK ({settings.model})")
    else:
        console.print("[red]✗[/red] OpenAI connection failed")
        failed = True

    if not skip_gamma:
        if not settings.gamma_api_key:
            console.print("[yellow]⚠[/yellow] GAMMA_API_KEY is not set; presentations will be skipped")
        elif GammaClient(settings.gamma_api_key, settings).test_connection():
            console.print("[green]✓[/green] Gamma connection OK")
        else:
            console.print("[red]✗[/red] Gamma connection failed")
            failed = True

    if failed:
        raise typer.Exit(EXIT_SERVICE_ERROR)


if __name__ == "__main__":
    app()

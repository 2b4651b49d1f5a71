"""
CLI interface for Chart Radar.

Provides command-line access to quota accounting and chart analysis.
"""

import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from chart_radar.config.loader import AppConfig, StorageConfig, default_config, load_config
from chart_radar.core.capture import CaptureArtifact, CaptureValidator
from chart_radar.core.clock import SystemClock
from chart_radar.core.errors import FailureReason
from chart_radar.core.pairs import format_trading_pair, is_valid_trading_pair
from chart_radar.core.parser import AUTO_DETECT
from chart_radar.core.pipeline import (
    AnalysisRequest,
    PipelineFailure,
    PipelineOrchestrator,
    PipelineOutcome
)
from chart_radar.core.quota import QuotaManager
from chart_radar.core.tiers import AnalysisKind, Tier
from chart_radar.sdk.gateway import ProviderGateway
from chart_radar.storage.models import AnalysisResult
from chart_radar.storage.repository import (
    AnalysisRepository,
    UsageCounterRepository,
    initialize_schema
)
from chart_radar.utils.logger import setup_logging

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_QUOTA = 2  # Quota exhausted; retrying before reset is pointless


def _config(ctx: typer.Context) -> AppConfig:
    return ctx.obj or default_config()


def _build_gateway(config: AppConfig) -> ProviderGateway:
    """Create the provider gateway from configuration."""
    provider = config.provider
    return ProviderGateway(
        model=provider.model,
        api_key=provider.api_key,
        base_url=provider.base_url,
        timeout=provider.timeout_seconds,
        max_tokens=provider.max_tokens,
        temperature=provider.temperature
    )


def _build_orchestrator(config: AppConfig) -> PipelineOrchestrator:
    db_path = config.storage.db_path
    initialize_schema(db_path)
    capture = config.capture
    return PipelineOrchestrator(
        quota_manager=QuotaManager(UsageCounterRepository(db_path), limits=config.limits),
        gateway=_build_gateway(config),
        validator=CaptureValidator(
            background=capture.background,
            channel_threshold=capture.channel_threshold,
            min_content_percentage=capture.min_content_percentage,
            min_color_diversity=capture.min_color_diversity,
            target_samples=capture.target_samples
        ),
        persistence=AnalysisRepository(db_path)
    )


def _failure_to_exit_code(failure: PipelineFailure) -> int:
    if failure.reason is FailureReason.QUOTA_EXCEEDED:
        return EXIT_CODE_QUOTA
    return EXIT_CODE_FAIL


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    db_path: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite database path (overrides configuration)"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (overrides configuration)"
    )
):
    """Chart Radar CLI."""
    try:
        config = load_config(str(config_path)) if config_path else default_config()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if db_path:
        config = replace(config, storage=StorageConfig(db_path=db_path))

    try:
        setup_logging(log_level or config.logging.level)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    ctx.obj = config
    if ctx.invoked_subcommand is None:
        console.print("Chart Radar - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Chart Radar database."""
    try:
        initialize_schema(_config(ctx).storage.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("server-time")
def server_time(
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON")
):
    """Show the authoritative UTC time and the next daily reset."""
    report = SystemClock().server_time()
    if as_json:
        console.print_json(json.dumps(report.to_dict()))
        return

    console.print(f"[bold]Current UTC time:[/bold] {report.current_utc.isoformat()}")
    console.print(f"[bold]Next reset:[/bold] {report.next_reset_utc.isoformat()}")
    console.print(
        f"[bold]Time until reset:[/bold] "
        f"{report.hours:02d}:{report.minutes:02d}:{report.seconds:02d}"
    )


@app.command("set-tier")
def set_tier(
    ctx: typer.Context,
    subject: str = typer.Argument(..., help="Subject (user) id"),
    tier: str = typer.Argument(..., help="Tier: free, starter or pro")
):
    """Set a subject's subscription tier."""
    valid_tiers = [t.value for t in Tier]
    if tier.lower() not in valid_tiers:
        console.print(f"[red]Error:[/] tier must be one of: {', '.join(valid_tiers)}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        db_path = _config(ctx).storage.db_path
        initialize_schema(db_path)
        UsageCounterRepository(db_path).set_tier(subject, tier.lower())
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] {subject} is now on the {tier.lower()} tier")


@app.command()
def usage(
    ctx: typer.Context,
    subject: str = typer.Argument(..., help="Subject (user) id"),
    kind: AnalysisKind = typer.Option(AnalysisKind.BASIC, "--kind", "-k", help="Analysis kind")
):
    """Show remaining daily and monthly allowance."""
    config = _config(ctx)
    try:
        initialize_schema(config.storage.db_path)
        manager = QuotaManager(UsageCounterRepository(config.storage.db_path), limits=config.limits)
        state = manager.check_limits(subject, kind)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"{kind.value.capitalize()} analysis usage for {subject} ({state.tier.value})")
    table.add_column("Window")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Resets at (UTC)")
    for window in (state.daily, state.monthly):
        table.add_row(
            window.kind.value,
            str(window.count),
            str(window.limit),
            str(window.remaining),
            window.reset_at.strftime("%Y-%m-%d %H:%M")
        )
    console.print(table)

    if not state.can_proceed:
        console.print(f"[yellow]Limit reached for the {state.exhausted_window.value} window[/]")


@app.command("analyze-chart")
def analyze_chart(
    ctx: typer.Context,
    image: Path = typer.Argument(..., help="Chart screenshot (PNG or JPEG)"),
    subject: str = typer.Option(..., "--subject", "-s", help="Subject (user) id"),
    pair: str = typer.Option(AUTO_DETECT, "--pair", "-p", help="Trading pair, or detect from the chart"),
    timeframe: str = typer.Option(AUTO_DETECT, "--timeframe", "-t", help="Chart timeframe, or detect"),
    kind: AnalysisKind = typer.Option(AnalysisKind.BASIC, "--kind", "-k", help="Analysis kind"),
    detailed: bool = typer.Option(False, "--detailed", help="Use the numbered-section prompt"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON")
):
    """Validate a chart screenshot and analyze it."""
    try:
        capture = CaptureArtifact.from_bytes(image.read_bytes())
    except (OSError, ValueError) as e:
        console.print(f"[red]Could not read chart image:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if pair != AUTO_DETECT:
        pair = format_trading_pair(pair)

    request = AnalysisRequest(
        subject_id=subject,
        capture=capture,
        symbol=pair,
        timeframe=timeframe,
        kind=kind,
        detailed=detailed
    )
    _run_and_report(_config(ctx), request, as_json)


@app.command("analyze-pair")
def analyze_pair(
    ctx: typer.Context,
    pair: str = typer.Argument(..., help="Trading pair, e.g. EUR/USD or bitcoin"),
    subject: str = typer.Option(..., "--subject", "-s", help="Subject (user) id"),
    timeframe: str = typer.Option("1D", "--timeframe", "-t", help="Timeframe"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON")
):
    """Analyze a trading pair without a chart."""
    symbol = format_trading_pair(pair)
    if not is_valid_trading_pair(symbol):
        console.print(f"[red]Error:[/] {pair!r} is not a recognizable trading pair")
        sys.exit(EXIT_CODE_FAIL)

    request = AnalysisRequest(subject_id=subject, symbol=symbol, timeframe=timeframe)
    _run_and_report(_config(ctx), request, as_json)


@app.command()
def history(
    ctx: typer.Context,
    subject: str = typer.Argument(..., help="Subject (user) id"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum rows to show")
):
    """List a subject's saved analyses, newest first."""
    db_path = _config(ctx).storage.db_path
    try:
        initialize_schema(db_path)
        records = AnalysisRepository(db_path).get_history(subject, limit)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not records:
        console.print(f"[dim]No analyses saved for {subject}.[/]")
        return

    table = Table(title=f"Analysis history for {subject}")
    table.add_column("ID", justify="right")
    table.add_column("Created (UTC)")
    table.add_column("Pair")
    table.add_column("Timeframe")
    table.add_column("Sentiment")
    table.add_column("Confidence", justify="right")
    for record in records:
        table.add_row(
            str(record.id),
            record.created_at.strftime("%Y-%m-%d %H:%M"),
            record.pair_name,
            record.timeframe,
            record.result.overall_sentiment.value,
            f"{record.result.confidence_score}%"
        )
    console.print(table)


def _run_and_report(config: AppConfig, request: AnalysisRequest, as_json: bool) -> None:
    try:
        orchestrator = _build_orchestrator(config)
        outcome = orchestrator.run(request)
    except PipelineFailure as failure:
        _display_failure(failure)
        sys.exit(_failure_to_exit_code(failure))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if as_json:
        console.print_json(json.dumps(outcome.result.to_dict()))
    else:
        _display_result(outcome)
    for warning in outcome.warnings:
        console.print(f"[yellow]Warning:[/] {warning.message}")
    sys.exit(EXIT_CODE_PASS)


def _display_failure(failure: PipelineFailure) -> None:
    """Render a pipeline failure with guidance for the user."""
    reason = failure.reason
    if reason is FailureReason.QUOTA_EXCEEDED:
        state = failure.cause.state
        window = failure.cause.window
        exhausted = state.daily if window.value == "daily" else state.monthly
        console.print(
            f"[red]{window.value.capitalize()} limit reached[/] "
            f"({exhausted.count}/{exhausted.limit} on the {state.tier.value} tier)."
        )
        console.print(f"Resets at {exhausted.reset_at.strftime('%Y-%m-%d %H:%M')} UTC.")
    elif reason is FailureReason.INSUFFICIENT_CONTENT:
        console.print(
            "[red]The chart image looks empty.[/] "
            f"Content {failure.cause.content_percentage:.1f}%, "
            f"{failure.cause.color_diversity} distinct colors. "
            "Wait for the chart to finish loading and capture again."
        )
    else:
        console.print(f"[red]Analysis failed ({reason.value}):[/] {str(failure.cause)}")


def _display_result(outcome: PipelineOutcome) -> None:
    """Display an analysis in a compact, readable layout."""
    result: AnalysisResult = outcome.result
    console.print(f"\n[bold]{result.pair_name}[/bold] ({result.timeframe})")
    console.print("-" * 40)
    console.print(
        f"Sentiment: {result.overall_sentiment.value} "
        f"(confidence {result.confidence_score}%)"
    )
    console.print(f"Trend: {result.trend_direction.value}")

    if result.price_levels:
        table = Table(title="Key levels")
        table.add_column("Level")
        table.add_column("Price", justify="right")
        for level in result.price_levels:
            table.add_row(level.name, level.price)
        console.print(table)

    for pattern in result.chart_patterns:
        status = f", {pattern.status}" if pattern.status else ""
        console.print(f"Pattern: {pattern.name} ({pattern.signal.value}, {pattern.confidence}%{status})")

    for factor in result.market_factors:
        console.print(f"{factor.name}: {factor.description}", markup=False)

    setup = result.trading_setup
    if setup is not None:
        targets = ", ".join(setup.targets) or "-"
        console.print(
            f"\n[bold]Setup:[/bold] {setup.type.value} "
            f"entry {setup.entry} / stop {setup.stop_loss} / targets {targets} "
            f"(R:R {setup.risk_reward})"
        )

    console.print(f"\n{result.market_analysis}", markup=False)
    if result.trading_insight:
        console.print(f"\n{result.trading_insight}", style="italic", markup=False)

    daily = outcome.usage.daily
    console.print(f"\n[dim]{daily.remaining} of {daily.limit} analyses left today.[/]")


if __name__ == "__main__":
    app()

"""
CLI interface for the LLM cost exporter.

Runs the exporter and offers one-shot inspection commands.
"""

import asyncio
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from llm_cost_exporter.config.loader import ExporterConfig, load_exporter_config, load_pricing_from_env
from llm_cost_exporter.config.logger import setup_logging
from llm_cost_exporter.core.errors import ConfigError
from llm_cost_exporter.core.exposition import start_exposition_server
from llm_cost_exporter.core.registry import MetricsRegistry
from llm_cost_exporter.core.scheduler import PollingScheduler, PollOutcome
from llm_cost_exporter.providers import build_providers

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _load_config_or_exit() -> ExporterConfig:
    try:
        return load_exporter_config()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


async def _close_all(providers) -> None:
    for provider in providers:
        await provider.aclose()


async def _run_loop(scheduler: PollingScheduler) -> None:
    try:
        await scheduler.run_forever()
    finally:
        await _close_all(scheduler.providers)


async def _run_once(scheduler: PollingScheduler) -> List[PollOutcome]:
    try:
        return await scheduler.run_tick()
    finally:
        await _close_all(scheduler.providers)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """LLM cost exporter CLI."""
    if ctx.invoked_subcommand is None:
        console.print("LLM Cost Exporter - Use --help to see available commands")


@app.command()
def serve(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Override LOG_LEVEL"
    )
):
    """Serve /metrics and poll every configured provider forever."""
    setup_logging(log_level)
    config = _load_config_or_exit()

    try:
        registry = MetricsRegistry(config.identities)
        registry.register_all_metric_descriptors()
        providers = build_providers(config)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        start_exposition_server(registry, config.listen_host, config.listen_port)
    except OSError as e:
        console.print(f"[red]Cannot listen on {config.listen_host}:{config.listen_port}:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    scheduler = PollingScheduler(providers, registry, config.poll_interval_seconds)
    try:
        asyncio.run(_run_loop(scheduler))
    except KeyboardInterrupt:
        console.print("Shutting down")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def poll(
    log_level: Optional[str] = typer.Option(
        "WARNING",
        "--log-level",
        "-l",
        help="Log level for the run"
    )
):
    """
    Poll every configured provider once and print the results.

    Exits non-zero if any provider failed.
    """
    setup_logging(log_level)
    config = _load_config_or_exit()

    registry = MetricsRegistry(config.identities)
    scheduler = PollingScheduler(build_providers(config), registry, config.poll_interval_seconds)
    outcomes = asyncio.run(_run_once(scheduler))

    _display_outcomes(outcomes)

    if any(not outcome.succeeded for outcome in outcomes):
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def pricing():
    """Show the effective pricing table."""
    try:
        pricing_table = load_pricing_from_env()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Pricing (USD per 1K tokens)")
    table.add_column("Model")
    table.add_column("Prompt", justify="right")
    table.add_column("Completion", justify="right")
    for model, rates in sorted(pricing_table.prices.items()):
        table.add_row(model, str(rates.prompt_rate_per_1k), str(rates.completion_rate_per_1k))
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def _display_outcomes(outcomes: List[PollOutcome]):
    table = Table(title="LLM Usage")
    for column in ("Provider", "Model", "Status", "Cost", "Tokens", "Requests", "Balance"):
        table.add_column(column)

    for outcome in outcomes:
        identity = outcome.identity
        record = outcome.record
        if record is None:
            table.add_row(
                identity.provider_name, identity.model_name,
                f"[red]{outcome.error_kind} error[/]", "-", "-", "-", "-",
            )
            continue
        balance = "n/a" if record.remaining_balance is None else _format_currency(record.remaining_balance)
        table.add_row(
            identity.provider_name,
            identity.model_name,
            "[green]ok[/]",
            _format_currency(record.cost_usd),
            f"{record.prompt_tokens:,}/{record.completion_tokens:,}",
            f"{record.request_count:,}",
            balance,
        )
    console.print(table)


if __name__ == "__main__":
    app()

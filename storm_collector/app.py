"""Typer CLI entrypoint for storm-collector."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, NoReturn, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .collector import CollectionOutcome
from .config import CollectorConfig, ConfigRepository
from .errors import CollectorError, ConfigError
from .logging_conf import (
    available_source_logs,
    configure_logging,
    flush_logging,
    log_file,
    tail_log,
)
from .service import CollectorService

app = typer.Typer(
    help="Poll storm report feeds and publish new lines.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Inspect log files.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
app.add_typer(log_app, name="log")

console = Console()

EXIT_FATAL = 1
EXIT_CONFIG = 2


@dataclass
class AppState:
    repository: ConfigRepository
    config_path: Path | None = None
    service_factory: Callable[..., CollectorService] = CollectorService


def build_state(verbose: bool, config_path: Path | None = None) -> AppState:
    repository = ConfigRepository()
    configure_logging(verbose=verbose, log_dir=repository.locator.logs_dir)
    return AppState(repository=repository, config_path=config_path)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _load_config(state: AppState) -> CollectorConfig:
    try:
        return state.repository.load_config(state.config_path)
    except ConfigError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=EXIT_CONFIG) from exc


def _fail(exc: CollectorError) -> NoReturn:
    console.print(str(exc), style="red")
    flush_logging()
    raise typer.Exit(code=EXIT_FATAL) from exc


def _render_sources_table(config: CollectorConfig) -> Table:
    table = Table(
        title=f"Report sources · {len(config.sources)} configured",
        box=box.SIMPLE_HEAD,
    )
    table.add_column("Category", style="cyan", no_wrap=True)
    table.add_column("URL", style="green", overflow="fold")
    for source in config.sources:
        table.add_row(source.category.value, source.url)
    return table


def _render_outcomes_table(outcomes: Sequence[CollectionOutcome], title: str) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Category", style="cyan", no_wrap=True)
    table.add_column("Total", justify="right")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_column("Published", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Status", overflow="fold")
    for outcome in outcomes:
        status = "ok" if outcome.fetched else f"fetch failed: {outcome.error}"
        table.add_row(
            outcome.category.value,
            str(outcome.total),
            str(outcome.skipped),
            str(outcome.published),
            str(outcome.failed),
            status,
        )
    return table


async def _collect(service: CollectorService) -> list[CollectionOutcome]:
    async with service:
        return await service.collect_once()


async def _serve(service: CollectorService) -> None:
    async with service:
        await service.run_forever()


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Configuration file (defaults to config/collector.yaml under the project home).",
    ),
) -> None:
    ctx.obj = build_state(verbose, config)


@app.command("run", help="Poll every configured source until interrupted.")
def run(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    config = _load_config(state)
    service = state.service_factory(config, state.repository.locator)
    console.print(
        f"Polling {len(config.sources)} sources on {config.schedule.describe()}; Ctrl+C to stop.",
        style="cyan",
    )
    try:
        asyncio.run(_serve(service))
    except CollectorError as exc:
        _fail(exc)
    except KeyboardInterrupt:
        console.print("Interrupted.", style="yellow")
    console.print("Collector stopped.", style="dim")


@app.command("collect", help="Run one collection cycle immediately.")
def collect(
    ctx: typer.Context,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Use an in-memory store and write messages to data/outputs instead of the broker.",
    ),
) -> None:
    state = _get_state(ctx)
    config = _load_config(state)
    service = state.service_factory(config, state.repository.locator, dry_run=dry_run)
    try:
        outcomes = asyncio.run(_collect(service))
    except CollectorError as exc:
        _fail(exc)
    title = "Collection results (dry run)" if dry_run else "Collection results"
    console.print(_render_outcomes_table(outcomes, title))
    published = sum(outcome.published for outcome in outcomes)
    failed = sum(outcome.failed for outcome in outcomes)
    console.print(f"Published {published} new lines, {failed} failed.", style="green" if not failed else "yellow")


@app.command("sources", help="Show configured report sources and the schedule.")
def sources(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    config = _load_config(state)
    console.print(_render_sources_table(config))
    console.print(f"Schedule: {config.schedule.describe()}", style="yellow")
    console.print(
        f"Dedup: {config.deduplication.backend} · Publisher: {config.publisher.backend}"
        f" (topic {config.kafka.topic})",
        style="dim",
    )


@app.command("init", help="Write the bundled configuration template.")
def init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    state = _get_state(ctx)
    try:
        target = state.repository.write_template(state.config_path, overwrite=force)
    except FileExistsError as exc:
        console.print(f"{exc}; pass --force to overwrite.", style="yellow")
        raise typer.Exit(code=1) from exc
    console.print(f"Configuration written to {target}", style="green")


@log_app.command("list", help="List per-source log files.")
def log_list() -> None:
    logs = list(available_source_logs())
    console.print("Log files:", style="cyan")
    if not logs:
        console.print("No source logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the last lines of a log.")
def log_show(
    source: Optional[str] = typer.Option(
        None,
        "--source",
        help="Report category (defaults to the collector log).",
    ),
    tail: int = typer.Option(100, "--tail", help="Number of lines to show."),
) -> None:
    lines = tail_log(log_file(source), tail)
    if not lines:
        console.print("No log entries yet.", style="dim")
        return
    header = f"{source or 'collector'} log · last {len(lines)} lines"
    console.print(header, style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()

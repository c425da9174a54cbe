"""Click-based CLI for tiingo-import.

Thin wrapper around library modules. Every operation
delegates to the universe loader, the pipeline runner, or the sinks.
"""

from __future__ import annotations

import asyncio
import logging

import click
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

console = Console(stderr=True)
logger = logging.getLogger("tiingo_import.cli")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call, and set up logging."""
    if "config" not in ctx.obj:
        from tiingo_import.core import ConfigError, load_config
        from tiingo_import.core.log import configure_logging

        try:
            config = load_config(config_path=ctx.obj.get("config_path"))
        except ConfigError as e:
            raise click.ClickException(str(e)) from e

        level = "DEBUG" if ctx.obj.get("verbose") else config.log.level
        configure_logging(level, ctx.obj.get("log_json") or config.log.json_output)
        ctx.obj["config"] = config
    return ctx.obj["config"]


def _dispatch_progress(hide: bool) -> Progress:
    return Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        disable=hide,
    )


def _quotes_table(records) -> Table:
    table = Table(title="EOD quotes")
    for header in ("Date", "Ticker", "Open", "High", "Low", "Close", "Volume", "Dividend", "Split"):
        table.add_column(header, justify="left" if header in ("Date", "Ticker") else "right")
    for r in records:
        table.add_row(
            r.display_date,
            r.ticker,
            f"{r.open:.2f}",
            f"{r.high:.2f}",
            f"{r.low:.2f}",
            f"{r.close:.2f}",
            f"{r.volume:,.0f}",
            f"{r.dividend:.4f}",
            f"{r.split_factor:g}",
        )
    return table


def _print_sink(report) -> None:
    if report is None:
        return
    if report.error:
        console.print(f"[red]✗[/red] {report.sink}: {report.error}")
        return
    line = f"[green]✓[/green] {report.sink}: {report.written} written"
    if report.skipped:
        line += f", [yellow]{report.skipped} skipped[/yellow]"
    console.print(line)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="TIINGO_IMPORT_CONFIG",
    default=None,
    help="Path to tiingo-import.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.option(
    "--log-json",
    is_flag=True,
    default=False,
    help="Print logs as JSON lines to stderr.",
)
@click.version_option(package_name="tiingo-import")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool, log_json: bool) -> None:
    """Download end-of-day quotes from Tiingo into parquet and SQL."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["log_json"] = log_json


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--universe",
    "-u",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="Instrument universe file (.csv or .json).",
)
@click.option("--max", "max_assets", type=int, default=None, help="Maximum instruments to download.")
@click.option("--parquet-file", type=click.Path(dir_okay=False), default=None, help="Save results to parquet.")
@click.option("--deadline", type=float, default=None, help="Stop dispatching after this many seconds.")
@click.option("--hide-progress", is_flag=True, default=False, help="Hide the progress bar.")
@click.pass_context
def run(
    ctx: click.Context,
    universe: str,
    max_assets: int | None,
    parquet_file: str | None,
    deadline: float | None,
    hide_progress: bool,
) -> None:
    """Download EOD quotes for a universe and save them to every configured sink."""
    from tiingo_import.pipeline import history_start, run_import
    from tiingo_import.universe import load_instruments

    config = _load_config(ctx)
    try:
        instruments = load_instruments(universe)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot read universe: {e}") from e
    if max_assets is not None and max_assets > 0:
        instruments = instruments[:max_assets]
    if not instruments:
        raise click.ClickException("Universe is empty")

    start = history_start(config)
    logger.info("Loading %d tickers since %s", len(instruments), start)
    hide = hide_progress or config.display.hide_progress

    with _dispatch_progress(hide) as progress:
        task = progress.add_task("Dispatching", total=len(instruments))
        report = _run_async(
            run_import(
                config,
                instruments,
                start,
                parquet_path=parquet_file,
                deadline=deadline,
                on_dispatch=lambda _: progress.advance(task),
            )
        )

    fetched = report.fetch
    console.print(
        f"[green]✓[/green] Fetched {len(fetched.records)} quotes for "
        f"{fetched.succeeded}/{len(instruments)} instruments"
        + (f" ({len(fetched.failed)} failed)" if fetched.failed else "")
    )
    if fetched.abandoned or fetched.skipped:
        console.print(
            f"[yellow]Deadline reached: {len(fetched.abandoned)} abandoned, "
            f"{len(fetched.skipped)} not dispatched[/yellow]"
        )
    _print_sink(report.parquet)
    _print_sink(report.database)
    if report.database is not None and report.database.lost:
        console.print(f"[red]{report.database.lost} quotes lost after fallback[/red]")


# ---------------------------------------------------------------------------
# ticker
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("tickers", nargs=-1, required=True)
@click.pass_context
def ticker(ctx: click.Context, tickers: tuple[str, ...]) -> None:
    """Download EOD quotes for the given tickers and print them."""
    from tiingo_import.pipeline import fetch_quotes, history_start
    from tiingo_import.universe import instruments_from_tickers

    config = _load_config(ctx)
    instruments = instruments_from_tickers(tickers)
    start = history_start(config)
    logger.info("Loading %d tickers since %s", len(instruments), start)

    report = _run_async(fetch_quotes(config, instruments, start))
    Console().print(_quotes_table(report.records))
    if report.failed:
        console.print(f"[yellow]No data for: {', '.join(report.failed)}[/yellow]")


# ---------------------------------------------------------------------------
# init-db
# ---------------------------------------------------------------------------


@cli.command("init-db")
@click.option("--legacy", is_flag=True, default=False, help="Also create the legacy table.")
@click.pass_context
def init_db(ctx: click.Context, legacy: bool) -> None:
    """Create the quote table(s) in the configured store."""
    from tiingo_import.core import StorageError
    from tiingo_import.sinks import build_store

    config = _load_config(ctx)
    if not config.storage.enabled:
        raise click.ClickException("No database configured (storage.sqlite_path or storage.postgresql_url)")

    async def _run():
        store = build_store(config.storage)
        await store.initialize()
        try:
            await store.create_schema(config.storage.table)
            if legacy:
                await store.create_schema(config.storage.legacy_table, legacy=True)
        finally:
            await store.close()

    try:
        _run_async(_run())
    except StorageError as e:
        raise click.ClickException(str(e)) from e

    created = [config.storage.table] + ([config.storage.legacy_table] if legacy else [])
    console.print(f"[green]✓[/green] Created {', '.join(created)}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()

"""End-to-end import: fetch the universe, then persist to both sinks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import date, timedelta

from tiingo_import.core.config import ImportConfig
from tiingo_import.core.exceptions import SinkError
from tiingo_import.core.models import (
    FetchReport,
    Instrument,
    QuoteRecord,
    RunReport,
    SinkReport,
)
from tiingo_import.fetch.client import TiingoClient
from tiingo_import.fetch.limiter import RateLimiter
from tiingo_import.pipeline.dispatcher import QuoteFetcher, QuotePipeline
from tiingo_import.sinks.database import UpsertSink
from tiingo_import.sinks.parquet import ParquetSink

logger = logging.getLogger(__name__)


def history_start(config: ImportConfig, today: date | None = None) -> date:
    """First day of the history window requested from the API."""
    today = today or date.today()
    return today - timedelta(days=config.tiingo.history_days)


async def fetch_quotes(
    config: ImportConfig,
    instruments: Iterable[Instrument],
    start_date: date,
    *,
    deadline: float | None = None,
    on_dispatch: Callable[[Instrument], None] | None = None,
    fetcher: QuoteFetcher | None = None,
) -> FetchReport:
    """Fan out one rate-limited fetch per instrument and collect the results.

    ``deadline`` defaults to ``pipeline.deadline`` from the config.
    """
    limiter = RateLimiter(config.tiingo.rate_limit)
    if deadline is None:
        deadline = config.pipeline.deadline

    async def _run(f: QuoteFetcher) -> FetchReport:
        pipeline = QuotePipeline(
            f,
            limiter,
            max_concurrency=config.pipeline.max_concurrency,
            queue_size=config.pipeline.queue_size,
            on_dispatch=on_dispatch,
        )
        return await pipeline.fetch(instruments, start_date, deadline=deadline)

    if fetcher is not None:
        return await _run(fetcher)
    async with TiingoClient(config.tiingo) as client:
        return await _run(client)


async def _guarded(sink: str, write: Awaitable[SinkReport]) -> SinkReport:
    """Run one sink; any failure is confined to its own report."""
    try:
        return await write
    except SinkError as e:
        logger.error("%s sink failed: %s", sink, e, extra=e.context)
        return SinkReport(sink=sink, error=str(e))
    except Exception as e:
        logger.exception("%s sink failed unexpectedly", sink)
        return SinkReport(sink=sink, error=repr(e))


async def persist(
    config: ImportConfig,
    records: list[QuoteRecord],
    parquet_path: str | None = None,
) -> tuple[SinkReport | None, SinkReport | None]:
    """Write ``records`` to every configured sink, concurrently.

    Returns ``(parquet_report, database_report)``; a sink that is not
    configured yields None. The two sinks are independent: one failing never
    prevents the other from running.
    """
    parquet_path = parquet_path or config.parquet.path
    jobs: dict[str, Awaitable[SinkReport]] = {}

    if parquet_path:
        sink = ParquetSink(config.parquet)
        jobs[sink.name] = _guarded(
            sink.name, asyncio.to_thread(sink.write, records, parquet_path)
        )
    if config.storage.enabled:
        upsert = UpsertSink(config.storage)
        jobs[upsert.name] = _guarded(upsert.name, upsert.write(records))

    if not jobs:
        logger.warning("No sink configured; %d quotes were not persisted", len(records))
        return None, None

    results = dict(zip(jobs, await asyncio.gather(*jobs.values())))
    return results.get(ParquetSink.name), results.get(UpsertSink.name)


async def run_import(
    config: ImportConfig,
    instruments: Iterable[Instrument],
    start_date: date | None = None,
    *,
    parquet_path: str | None = None,
    deadline: float | None = None,
    on_dispatch: Callable[[Instrument], None] | None = None,
    fetcher: QuoteFetcher | None = None,
) -> RunReport:
    """Fetch EOD quotes for ``instruments`` and persist them.

    Best effort: the run completes even if every fetch or write failed; the
    returned report carries the counts.
    """
    start_date = start_date or history_start(config)
    logger.info("Loading quotes since %s", start_date.isoformat())

    fetched = await fetch_quotes(
        config,
        instruments,
        start_date,
        deadline=deadline,
        on_dispatch=on_dispatch,
        fetcher=fetcher,
    )
    parquet_report, database_report = await persist(
        config, fetched.records, parquet_path=parquet_path
    )
    return RunReport(fetch=fetched, parquet=parquet_report, database=database_report)

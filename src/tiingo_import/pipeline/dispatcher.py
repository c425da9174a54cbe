"""Rate-gated fan-out of quote fetches and fan-in of their results.

One task is started per instrument, in universe order. Dispatch is gated by
the shared RateLimiter (start rate) and a semaphore (tasks alive at once).
Every worker publishes its records into a single bounded queue that the
ResultAggregator drains concurrently, so a slow early instrument never holds
back the collection of later ones.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import date
from typing import Protocol, runtime_checkable

from tiingo_import.core.exceptions import FetchError
from tiingo_import.core.models import FetchReport, Instrument, QuoteRecord
from tiingo_import.fetch.limiter import RateLimiter

logger = logging.getLogger(__name__)

_STOP = object()


@runtime_checkable
class QuoteFetcher(Protocol):
    """Anything that can download the quotes of one instrument."""

    async def get_eod_quotes(
        self, instrument: Instrument, start_date: date
    ) -> list[QuoteRecord]: ...


class ResultAggregator:
    """Drains the shared result queue into one in-memory record list.

    Finishes when the stop marker arrives; the pipeline only sends it after
    every worker has ended, so the returned list is complete.
    """

    def __init__(self, queue: asyncio.Queue) -> None:
        self._queue = queue

    async def run(self) -> list[QuoteRecord]:
        records: list[QuoteRecord] = []
        while True:
            item = await self._queue.get()
            if item is _STOP:
                break
            records.append(item)
        return records


class QuotePipeline:
    """Fetch EOD quotes for a universe of instruments concurrently.

    Parameters
    ----------
    fetcher : QuoteFetcher
        Performs the HTTP call for one instrument (normally TiingoClient).
    limiter : RateLimiter
        Shared token bucket; one token is taken per dispatched instrument.
    max_concurrency : int
        Upper bound on fetch tasks alive at the same time.
    queue_size : int
        Capacity of the shared result queue. Workers block when it is full.
    on_dispatch : Callable[[Instrument], None] | None
        Called once per dispatched instrument (progress reporting).
    """

    def __init__(
        self,
        fetcher: QuoteFetcher,
        limiter: RateLimiter,
        max_concurrency: int = 64,
        queue_size: int = 1000,
        on_dispatch: Callable[[Instrument], None] | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._fetcher = fetcher
        self._limiter = limiter
        self._max_concurrency = max_concurrency
        self._queue_size = queue_size
        self._on_dispatch = on_dispatch

    async def fetch(
        self,
        instruments: Iterable[Instrument],
        start_date: date,
        deadline: float | None = None,
    ) -> FetchReport:
        """Run the fan-out/fan-in and return the merged record set.

        Failed fetches contribute zero records and are listed in
        ``FetchReport.failed``; they never abort the run. When ``deadline``
        (seconds from now) expires, dispatch stops, in-flight fetches are
        cancelled, and whatever was already collected is returned.
        """
        universe = list(instruments)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        slots = asyncio.Semaphore(self._max_concurrency)
        aggregator = asyncio.create_task(ResultAggregator(queue).run())
        tasks: dict[asyncio.Task, Instrument] = {}
        failed: list[str] = []
        abandoned: list[str] = []

        loop = asyncio.get_running_loop()
        expires = loop.time() + deadline if deadline is not None else None

        try:
            try:
                async with asyncio.timeout_at(expires):
                    for instrument in universe:
                        await slots.acquire()
                        await self._limiter.take()
                        task = asyncio.create_task(
                            self._work(instrument, start_date, queue, slots, failed)
                        )
                        tasks[task] = instrument
                        if self._on_dispatch is not None:
                            self._on_dispatch(instrument)
                    if tasks:
                        await asyncio.wait(tasks)
            except TimeoutError:
                pending = [t for t in tasks if not t.done()]
                logger.warning(
                    "Deadline of %.1fs reached: %d dispatched, %d in flight abandoned, "
                    "%d not dispatched",
                    deadline, len(tasks), len(pending), len(universe) - len(tasks),
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                abandoned = [tasks[t].ticker for t in pending]

            await queue.put(_STOP)
            records = await aggregator
        finally:
            for task in tasks:
                task.cancel()
            aggregator.cancel()

        skipped = [i.ticker for i in universe[len(tasks):]]
        logger.info(
            "Fetched %d quotes for %d instruments (%d failed)",
            len(records), len(tasks), len(failed),
        )
        return FetchReport(
            records=records,
            attempted=len(tasks),
            failed=failed,
            abandoned=abandoned,
            skipped=skipped,
        )

    async def _work(
        self,
        instrument: Instrument,
        start_date: date,
        queue: asyncio.Queue,
        slots: asyncio.Semaphore,
        failed: list[str],
    ) -> None:
        """Fetch one instrument and publish its records; never raises."""
        try:
            records = await self._fetcher.get_eod_quotes(instrument, start_date)
            for record in records:
                await queue.put(record)
        except FetchError as e:
            failed.append(instrument.ticker)
            logger.error(
                "Error when requesting EOD quotes from %s: %s",
                e.context.get("url", instrument.ticker), e,
                extra=e.context,
            )
        except Exception:
            failed.append(instrument.ticker)
            logger.exception("Unexpected error fetching %s", instrument.ticker)
        finally:
            slots.release()

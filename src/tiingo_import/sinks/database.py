"""Relational sink: idempotent upserts with a legacy-schema fallback.

Each record goes through a two-stage write:

1. upsert into the canonical table (``storage.table``),
2. if that fails, the same upsert into the legacy table
   (``storage.legacy_table``), for stores that are mid-migration.

The per-record outcome is ``success``, ``fallback_success`` or ``lost``.
Only failing to open the store is fatal; record failures are logged,
counted and never stop the batch.
"""

from __future__ import annotations

import logging
from collections import Counter

from tiingo_import.core.config import StorageConfig
from tiingo_import.core.exceptions import StorageError
from tiingo_import.core.models import QuoteRecord, SinkReport, WriteOutcome
from tiingo_import.sinks.store import QuoteStore, build_store

logger = logging.getLogger(__name__)


class UpsertSink:
    """Writes a record set to the relational store.

    Parameters
    ----------
    config : StorageConfig
        Backend selection, table names and the ``source`` column value.
    store : QuoteStore | None
        Store to write through. Built from ``config`` when omitted. The sink
        opens and closes it.
    """

    name = "database"

    def __init__(self, config: StorageConfig, store: QuoteStore | None = None) -> None:
        self._config = config
        self._store = store if store is not None else build_store(config)

    async def write(self, records: list[QuoteRecord]) -> SinkReport:
        """Upsert every record; raises StorageError only if the store won't open."""
        logger.info("Saving %d quotes to database", len(records))
        await self._store.initialize()

        outcomes: Counter[WriteOutcome] = Counter()
        try:
            for record in records:
                outcomes[await self._write_record(record)] += 1
            await self._store.commit()
        finally:
            await self._store.close()

        written = outcomes[WriteOutcome.SUCCESS] + outcomes[WriteOutcome.FALLBACK_SUCCESS]
        lost = outcomes[WriteOutcome.LOST]
        if lost:
            logger.error(
                "%d of %d quotes could not be saved to %s or %s",
                lost, len(records), self._config.table, self._config.legacy_table,
            )
        logger.info(
            "Database save finished: %d upserted (%d via %s), %d lost",
            written, outcomes[WriteOutcome.FALLBACK_SUCCESS],
            self._config.legacy_table, lost,
        )
        return SinkReport(
            sink=self.name,
            written=written,
            skipped=lost,
            outcomes=dict(outcomes),
        )

    async def _write_record(self, record: QuoteRecord) -> WriteOutcome:
        try:
            await self._store.upsert(self._config.table, record, self._config.source)
            return WriteOutcome.SUCCESS
        except StorageError as e:
            logger.warning(
                "Upsert into %s failed for %s %s, retrying against %s: %s",
                self._config.table, record.ticker, record.display_date,
                self._config.legacy_table, e,
            )
        except Exception:
            logger.exception(
                "Unexpected error upserting %s %s into %s, retrying against %s",
                record.ticker, record.display_date,
                self._config.table, self._config.legacy_table,
            )

        extra = {
            "ticker": record.ticker,
            "composite_figi": record.composite_figi,
            "event_date": record.display_date,
        }
        try:
            await self._store.upsert(
                self._config.legacy_table, record, self._config.source, legacy=True
            )
            return WriteOutcome.FALLBACK_SUCCESS
        except StorageError as e:
            logger.error("Error saving EOD quote to database: %s", e, extra=extra)
        except Exception:
            logger.exception("Unexpected error saving EOD quote to database", extra=extra)
        return WriteOutcome.LOST

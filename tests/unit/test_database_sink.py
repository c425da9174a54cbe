"""Tests for tiingo_import.sinks.database (UpsertSink)."""

from __future__ import annotations

from datetime import date

import aiosqlite
import pytest

from tiingo_import.core.config import StorageConfig
from tiingo_import.core.exceptions import StorageError
from tiingo_import.core.models import WriteOutcome
from tiingo_import.sinks.database import UpsertSink
from tiingo_import.sinks.store import SqliteQuoteStore


@pytest.fixture
def storage_config(tmp_path) -> StorageConfig:
    return StorageConfig(sqlite_path=str(tmp_path / "quotes.db"))


async def _create_tables(config: StorageConfig, canonical=True, legacy=False) -> None:
    store = SqliteQuoteStore(config)
    await store.initialize()
    if canonical:
        await store.create_schema(config.table)
    if legacy:
        await store.create_schema(config.legacy_table, legacy=True)
    await store.close()


async def _count(config: StorageConfig, table: str) -> int:
    async with aiosqlite.connect(config.sqlite_path) as db:
        async with db.execute(f"SELECT COUNT(*) FROM {table}") as cursor:
            (n,) = await cursor.fetchone()
    return n


class TestUpsertSink:
    async def test_writes_to_canonical_table(self, storage_config, make_record):
        await _create_tables(storage_config)
        records = [make_record("AAPL"), make_record("MSFT")]

        report = await UpsertSink(storage_config).write(records)

        assert report.sink == "database"
        assert report.written == 2
        assert report.outcomes == {WriteOutcome.SUCCESS: 2}
        assert await _count(storage_config, "eod") == 2

    async def test_rewrite_is_idempotent(self, storage_config, make_record):
        await _create_tables(storage_config)
        records = [make_record("AAPL", date(2022, 1, d)) for d in (3, 4, 5)]

        await UpsertSink(storage_config).write(records)
        report = await UpsertSink(storage_config).write(records)

        assert report.written == 3
        assert await _count(storage_config, "eod") == 3

    async def test_falls_back_to_legacy_table(self, storage_config, make_record):
        await _create_tables(storage_config, canonical=False, legacy=True)

        report = await UpsertSink(storage_config).write([make_record("AAPL"), make_record("MSFT")])

        assert report.written == 2
        assert report.outcomes == {WriteOutcome.FALLBACK_SUCCESS: 2}
        assert await _count(storage_config, "eod_v1") == 2

    async def test_both_fail_counts_lost(self, storage_config, make_record, caplog):
        await _create_tables(storage_config, canonical=False, legacy=False)

        report = await UpsertSink(storage_config).write([make_record("AAPL")])

        assert report.written == 0
        assert report.skipped == 1
        assert report.lost == 1
        assert "Error saving EOD quote to database" in caplog.text

    async def test_unkeyable_record_lost_others_written(self, storage_config, make_record):
        await _create_tables(storage_config, legacy=True)
        records = [
            make_record("AAPL"),
            make_record("BAD", date_str="garbage", event_date=None),
            make_record("MSFT"),
        ]

        report = await UpsertSink(storage_config).write(records)

        assert report.outcomes[WriteOutcome.SUCCESS] == 2
        assert report.lost == 1
        assert await _count(storage_config, "eod") == 2

    async def test_infinite_volume_on_legacy_path_lost_others_written(self, storage_config, make_record):
        await _create_tables(storage_config, canonical=False, legacy=True)
        records = [
            make_record("A"),
            make_record("INF", volume=float("inf")),
            make_record("C"),
        ]

        report = await UpsertSink(storage_config).write(records)

        assert report.outcomes == {WriteOutcome.FALLBACK_SUCCESS: 2, WriteOutcome.LOST: 1}
        assert await _count(storage_config, "eod_v1") == 2

    async def test_unexpected_store_error_counts_lost(self, storage_config, make_record, caplog):
        class ExplodingStore(SqliteQuoteStore):
            async def upsert(self, table, record, source, legacy=False):
                if record.ticker == "BOOM":
                    raise RuntimeError("driver bug")
                await super().upsert(table, record, source, legacy)

        await _create_tables(storage_config)
        sink = UpsertSink(storage_config, store=ExplodingStore(storage_config))

        report = await sink.write([make_record("A"), make_record("BOOM"), make_record("C")])

        assert report.outcomes == {WriteOutcome.SUCCESS: 2, WriteOutcome.LOST: 1}
        assert "Unexpected error saving EOD quote to database" in caplog.text
        assert await _count(storage_config, "eod") == 2

    async def test_custom_table_names(self, tmp_path, make_record):
        config = StorageConfig(
            sqlite_path=str(tmp_path / "q.db"), table="quotes", legacy_table="quotes_old"
        )
        await _create_tables(config)
        report = await UpsertSink(config).write([make_record()])
        assert report.outcomes == {WriteOutcome.SUCCESS: 1}
        assert await _count(config, "quotes") == 1

    async def test_connect_failure_is_fatal(self, tmp_path, make_record):
        blocker = tmp_path / "file"
        blocker.write_text("")
        config = StorageConfig(sqlite_path=str(blocker / "sub" / "q.db"))

        with pytest.raises(StorageError):
            await UpsertSink(config).write([make_record()])

    async def test_store_closed_after_write(self, storage_config, make_record):
        await _create_tables(storage_config)
        store = SqliteQuoteStore(storage_config)
        await UpsertSink(storage_config, store=store).write([make_record()])
        assert await store.health_check() is False

    async def test_empty_record_set(self, storage_config):
        await _create_tables(storage_config)
        report = await UpsertSink(storage_config).write([])
        assert report.written == 0
        assert report.outcomes == {}

"""Tests for the relational quote stores."""

from __future__ import annotations

from datetime import date

import aiosqlite
import pytest

from tiingo_import.core.config import StorageConfig
from tiingo_import.core.exceptions import StorageError
from tiingo_import.core.models import StorageBackend
from tiingo_import.sinks.store import (
    QUOTE_COLUMNS,
    PostgresQuoteStore,
    QuoteStore,
    SqliteQuoteStore,
    build_store,
    upsert_sql,
)


# --- Fixtures ---


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "quotes.db")


@pytest.fixture
async def store(db_path):
    s = SqliteQuoteStore(StorageConfig(sqlite_path=db_path))
    await s.initialize()
    await s.create_schema("eod")
    yield s
    await s.close()


async def _rows(db_path: str, table: str = "eod") -> list[tuple]:
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(
            f"SELECT ticker, event_date, close, volume, source FROM {table} ORDER BY ticker, event_date"
        ) as cursor:
            return list(await cursor.fetchall())


class TestUpsertSql:
    def test_sqlite_statement(self):
        sql = upsert_sql("eod", ["?"] * len(QUOTE_COLUMNS), "(ticker, event_date)")
        assert sql.startswith('INSERT INTO eod ("ticker", "composite_figi", "event_date"')
        assert "ON CONFLICT (ticker, event_date) DO UPDATE SET open = EXCLUDED.open" in sql
        assert "source = EXCLUDED.source" in sql
        assert "ticker = EXCLUDED" not in sql

    def test_postgres_statement(self):
        sql = upsert_sql("eod", [f"${i}" for i in range(1, 12)], "ON CONSTRAINT eod_pkey")
        assert "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)" in sql
        assert "ON CONFLICT ON CONSTRAINT eod_pkey DO UPDATE" in sql


class TestSqliteQuoteStore:
    def test_satisfies_protocol(self, db_path):
        assert isinstance(SqliteQuoteStore(StorageConfig(sqlite_path=db_path)), QuoteStore)

    async def test_health_check(self, store):
        assert await store.health_check() is True

    async def test_health_check_before_initialize(self, db_path):
        assert await SqliteQuoteStore(StorageConfig(sqlite_path=db_path)).health_check() is False

    async def test_upsert_inserts(self, store, db_path, make_record):
        await store.upsert("eod", make_record("AAPL"), "api.tiingo.com")
        await store.commit()

        rows = await _rows(db_path)
        assert rows == [("AAPL", "2022-01-03T16:00:00-05:00", 182.01, 104487900.0, "api.tiingo.com")]

    async def test_upsert_is_idempotent(self, store, db_path, make_record):
        record = make_record("AAPL")
        await store.upsert("eod", record, "api.tiingo.com")
        await store.upsert("eod", record, "api.tiingo.com")
        await store.commit()
        assert len(await _rows(db_path)) == 1

    async def test_upsert_overwrites_values(self, store, db_path, make_record):
        await store.upsert("eod", make_record("AAPL", close=1.0), "api.tiingo.com")
        await store.upsert("eod", make_record("AAPL", close=2.0), "replay")
        await store.commit()

        rows = await _rows(db_path)
        assert len(rows) == 1
        assert rows[0][2] == 2.0
        assert rows[0][4] == "replay"

    async def test_distinct_keys_kept(self, store, db_path, make_record):
        await store.upsert("eod", make_record("AAPL", date(2022, 1, 3)), "s")
        await store.upsert("eod", make_record("AAPL", date(2022, 1, 4)), "s")
        await store.upsert("eod", make_record("MSFT", date(2022, 1, 3)), "s")
        await store.commit()
        assert len(await _rows(db_path)) == 3

    async def test_missing_table_raises(self, store, make_record):
        with pytest.raises(StorageError, match="no such table") as exc_info:
            await store.upsert("eod_missing", make_record(), "s")
        assert exc_info.value.context["operation"] == "upsert"
        assert exc_info.value.context["ticker"] == "AAPL"

    async def test_null_event_date_rejected(self, store, make_record):
        with pytest.raises(StorageError):
            await store.upsert("eod", make_record(date_str="garbage", event_date=None), "s")

    async def test_legacy_volume_is_integer(self, store, db_path, make_record):
        await store.create_schema("eod_v1", legacy=True)
        await store.upsert("eod_v1", make_record(volume=1234.0), "s", legacy=True)
        await store.commit()

        rows = await _rows(db_path, "eod_v1")
        assert rows[0][3] == 1234
        assert isinstance(rows[0][3], int)

    @pytest.mark.parametrize("volume", [float("inf"), float("nan")])
    async def test_legacy_non_finite_volume_raises_storage_error(self, store, make_record, volume):
        await store.create_schema("eod_v1", legacy=True)
        with pytest.raises(StorageError) as exc_info:
            await store.upsert("eod_v1", make_record("INF", volume=volume), "s", legacy=True)
        assert exc_info.value.context["table"] == "eod_v1"
        assert exc_info.value.context["ticker"] == "INF"

    async def test_use_before_initialize_raises(self, db_path, make_record):
        s = SqliteQuoteStore(StorageConfig(sqlite_path=db_path))
        with pytest.raises(StorageError, match="not initialized"):
            await s.upsert("eod", make_record(), "s")

    async def test_initialize_bad_path_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        s = SqliteQuoteStore(StorageConfig(sqlite_path=str(blocker / "sub" / "q.db")))
        with pytest.raises(StorageError, match="Failed to open SQLite store"):
            await s.initialize()


class TestBuildStore:
    def test_sqlite(self, db_path):
        assert isinstance(build_store(StorageConfig(sqlite_path=db_path)), SqliteQuoteStore)

    def test_postgres(self):
        config = StorageConfig(
            backend=StorageBackend.POSTGRESQL,
            postgresql_url="postgresql://localhost/quotes",
        )
        assert isinstance(build_store(config), PostgresQuoteStore)

    async def test_postgres_unreachable_raises_storage_error(self):
        pytest.importorskip("asyncpg")
        config = StorageConfig(
            backend=StorageBackend.POSTGRESQL,
            postgresql_url="postgresql://nobody@127.0.0.1:1/quotes",
        )
        with pytest.raises(StorageError) as exc_info:
            await build_store(config).initialize()
        assert exc_info.value.context["operation"] == "connect"

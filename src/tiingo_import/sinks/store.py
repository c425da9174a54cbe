"""Relational quote stores: Protocol definition, SQLite and PostgreSQL backends."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import aiosqlite

from tiingo_import.core.config import StorageConfig
from tiingo_import.core.exceptions import StorageError
from tiingo_import.core.models import QuoteRecord, StorageBackend

logger = logging.getLogger(__name__)

QUOTE_COLUMNS = (
    "ticker",
    "composite_figi",
    "event_date",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "dividend",
    "split_factor",
    "source",
)

# Columns overwritten when a row for (ticker, event_date) already exists.
UPDATE_COLUMNS = (
    "open",
    "high",
    "low",
    "close",
    "volume",
    "dividend",
    "split_factor",
    "source",
)


def upsert_sql(table: str, placeholders: list[str], conflict_target: str) -> str:
    """Compose an insert-or-update statement for the quote columns.

    ``table`` must already be a validated identifier (see StorageConfig);
    values are always bound through ``placeholders``.
    """
    columns = ", ".join(f'"{c}"' for c in QUOTE_COLUMNS)
    updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in UPDATE_COLUMNS)
    return (
        f"INSERT INTO {table} ({columns}) VALUES ({', '.join(placeholders)}) "
        f"ON CONFLICT {conflict_target} DO UPDATE SET {updates}"
    )


@runtime_checkable
class QuoteStore(Protocol):
    """Abstract relational store for EOD quotes."""

    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def commit(self) -> None: ...
    async def health_check(self) -> bool: ...
    async def create_schema(self, table: str, legacy: bool = False) -> None: ...
    async def upsert(
        self,
        table: str,
        record: QuoteRecord,
        source: str,
        legacy: bool = False,
    ) -> None: ...


def _quote_params(record: QuoteRecord, source: str, legacy: bool) -> list[Any]:
    # The legacy schema stores volume as an integer; int() raises on NaN and inf.
    volume = int(record.volume) if legacy else record.volume
    return [
        record.ticker,
        record.composite_figi,
        record.event_date,
        record.open,
        record.high,
        record.low,
        record.close,
        volume,
        record.dividend,
        record.split_factor,
        source,
    ]


class SqliteQuoteStore:
    """SQLite implementation of the quote store.

    Statements run inside one implicit transaction that ``commit()`` closes;
    a failed statement does not undo the ones before it. ``event_date`` is
    stored as an ISO-8601 string with its UTC offset.
    """

    def __init__(self, config: StorageConfig) -> None:
        self._path = config.sqlite_path or ":memory:"
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the connection."""
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._path)
            await self._db.execute("PRAGMA journal_mode=WAL")
        except Exception as e:
            raise StorageError(
                f"Failed to open SQLite store: {e}",
                context={"operation": "connect", "path": self._path},
            ) from e
        logger.debug("Opened SQLite store at %s", self._path)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def commit(self) -> None:
        try:
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(
                f"Failed to commit: {e}",
                context={"operation": "commit", "path": self._path},
            ) from e

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except aiosqlite.Error:
            return False

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError(
                "SQLite store is not initialized",
                context={"operation": "connect", "path": self._path},
            )
        return self._db

    async def create_schema(self, table: str, legacy: bool = False) -> None:
        volume_type = "INTEGER" if legacy else "REAL"
        try:
            await self._conn.execute(
                f"""CREATE TABLE IF NOT EXISTS {table} (
                    ticker TEXT NOT NULL,
                    composite_figi TEXT,
                    event_date TEXT NOT NULL,
                    open REAL,
                    high REAL,
                    low REAL,
                    close REAL,
                    volume {volume_type},
                    dividend REAL,
                    split_factor REAL,
                    source TEXT,
                    PRIMARY KEY (ticker, event_date)
                )"""
            )
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(
                f"Failed to create table {table}: {e}",
                context={"operation": "create_schema", "table": table},
            ) from e

    async def upsert(
        self,
        table: str,
        record: QuoteRecord,
        source: str,
        legacy: bool = False,
    ) -> None:
        sql = upsert_sql(
            table,
            ["?"] * len(QUOTE_COLUMNS),
            "(ticker, event_date)",
        )
        try:
            params = _quote_params(record, source, legacy)
            if record.event_date is not None:
                params[2] = record.event_date.isoformat()
            await self._conn.execute(sql, params)
        except (aiosqlite.Error, ValueError, TypeError, OverflowError) as e:
            raise StorageError(
                f"Upsert into {table} failed: {e}",
                context={
                    "operation": "upsert",
                    "table": table,
                    "ticker": record.ticker,
                    "event_date": record.display_date,
                },
            ) from e


class PostgresQuoteStore:
    """PostgreSQL implementation of the quote store, via asyncpg.

    Each statement autocommits, so one failing upsert never poisons the
    rest of the batch. Conflicts resolve on the table's ``<table>_pkey``
    constraint.
    """

    def __init__(self, config: StorageConfig) -> None:
        self._url = config.postgresql_url
        self._conn: Any = None

    async def initialize(self) -> None:
        try:
            import asyncpg
        except ImportError as e:
            raise StorageError(
                "asyncpg is required for the postgresql backend "
                "(pip install 'tiingo-import[postgres]')",
                context={"operation": "connect"},
            ) from e
        try:
            self._conn = await asyncpg.connect(self._url)
        except Exception as e:
            raise StorageError(
                f"Could not connect to database: {e}",
                context={"operation": "connect"},
            ) from e
        logger.debug("Connected to PostgreSQL store")

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def commit(self) -> None:
        """Statements autocommit; nothing to flush."""

    async def health_check(self) -> bool:
        if self._conn is None:
            return False
        try:
            return await self._conn.fetchval("SELECT 1") == 1
        except Exception:
            return False

    def _require_conn(self) -> Any:
        if self._conn is None:
            raise StorageError(
                "PostgreSQL store is not initialized",
                context={"operation": "connect"},
            )
        return self._conn

    async def create_schema(self, table: str, legacy: bool = False) -> None:
        volume_type = "BIGINT" if legacy else "DOUBLE PRECISION"
        constraint = f"{table.rsplit('.', 1)[-1]}_pkey"
        try:
            await self._require_conn().execute(
                f"""CREATE TABLE IF NOT EXISTS {table} (
                    ticker TEXT NOT NULL,
                    composite_figi TEXT,
                    event_date TIMESTAMPTZ NOT NULL,
                    open DOUBLE PRECISION,
                    high DOUBLE PRECISION,
                    low DOUBLE PRECISION,
                    close DOUBLE PRECISION,
                    volume {volume_type},
                    dividend DOUBLE PRECISION,
                    split_factor DOUBLE PRECISION,
                    source TEXT,
                    CONSTRAINT {constraint} PRIMARY KEY (ticker, event_date)
                )"""
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"Failed to create table {table}: {e}",
                context={"operation": "create_schema", "table": table},
            ) from e

    async def upsert(
        self,
        table: str,
        record: QuoteRecord,
        source: str,
        legacy: bool = False,
    ) -> None:
        constraint = f"{table.rsplit('.', 1)[-1]}_pkey"
        sql = upsert_sql(
            table,
            [f"${i}" for i in range(1, len(QUOTE_COLUMNS) + 1)],
            f"ON CONSTRAINT {constraint}",
        )
        conn = self._require_conn()
        try:
            await conn.execute(sql, *_quote_params(record, source, legacy))
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"Upsert into {table} failed: {e}",
                context={
                    "operation": "upsert",
                    "table": table,
                    "ticker": record.ticker,
                    "event_date": record.display_date,
                },
            ) from e


def build_store(config: StorageConfig) -> QuoteStore:
    """Create (but do not open) the store selected by ``config.backend``."""
    if config.backend == StorageBackend.SQLITE:
        return SqliteQuoteStore(config)
    if config.backend == StorageBackend.POSTGRESQL:
        return PostgresQuoteStore(config)
    raise StorageError(
        f"Unsupported storage backend: {config.backend}",
        context={"operation": "build_store", "backend": str(config.backend)},
    )

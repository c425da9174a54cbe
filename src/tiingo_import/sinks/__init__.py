"""Persistence sinks: parquet archive and relational upserts."""

from tiingo_import.sinks.database import UpsertSink
from tiingo_import.sinks.parquet import QUOTE_SCHEMA, ParquetSink, read_parquet_quotes
from tiingo_import.sinks.store import (
    PostgresQuoteStore,
    QuoteStore,
    SqliteQuoteStore,
    build_store,
)

__all__ = [
    "QUOTE_SCHEMA",
    "ParquetSink",
    "PostgresQuoteStore",
    "QuoteStore",
    "SqliteQuoteStore",
    "UpsertSink",
    "build_store",
    "read_parquet_quotes",
]

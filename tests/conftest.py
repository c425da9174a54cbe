"""Shared pytest fixtures for tiingo-import."""

import logging
import os
from datetime import date, datetime
from pathlib import Path

import pytest

from tiingo_import.core.config import (
    ImportConfig,
    ParquetConfig,
    PipelineConfig,
    StorageConfig,
    TiingoConfig,
)
from tiingo_import.core.models import Instrument, QuoteRecord
from tiingo_import.fetch.normalize import MARKET_TZ

TEST_BASE_URL = "https://api.test/tiingo/daily"


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep a developer's own config and env vars out of the tests."""
    for key in list(os.environ):
        if key.startswith("TIINGO_IMPORT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """configure_logging() replaces root handlers; undo it after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def make_instrument():
    """Factory for Instrument with overridable defaults."""

    def _make(ticker: str = "AAPL", **overrides) -> Instrument:
        defaults = dict(
            ticker=ticker,
            composite_figi=f"BBG-{ticker}",
            exchange="XNAS",
            asset_type="CS",
            currency="USD",
            listed_utc=date(1980, 12, 12),
        )
        defaults.update(overrides)
        return Instrument(**defaults)

    return _make


@pytest.fixture
def make_record():
    """Factory for QuoteRecord with overridable defaults."""

    def _make(ticker: str = "AAPL", day: date = date(2022, 1, 3), **overrides) -> QuoteRecord:
        defaults = dict(
            date_str=f"{day.isoformat()}T00:00:00.000Z",
            event_date=datetime(day.year, day.month, day.day, 16, tzinfo=MARKET_TZ),
            ticker=ticker,
            composite_figi=f"BBG-{ticker}",
            open=177.83,
            high=182.88,
            low=177.71,
            close=182.01,
            volume=104487900.0,
            dividend=0.0,
            split_factor=1.0,
        )
        defaults.update(overrides)
        return QuoteRecord(**defaults)

    return _make


@pytest.fixture
def quote_payload():
    """Factory for a Tiingo ``/prices`` JSON entry."""

    def _make(day: str = "2022-01-03", close: float = 182.01, **overrides) -> dict:
        payload = {
            "date": f"{day}T00:00:00.000Z",
            "close": close,
            "high": 182.88,
            "low": 177.71,
            "open": 177.83,
            "volume": 104487900,
            "adjClose": 180.68,
            "adjHigh": 181.55,
            "adjLow": 176.41,
            "adjOpen": 176.53,
            "adjVolume": 104487900,
            "divCash": 0.0,
            "splitFactor": 1.0,
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def import_config(tmp_path: Path) -> ImportConfig:
    """Config pointing at a mock API host and a throwaway SQLite file."""
    return ImportConfig(
        tiingo=TiingoConfig(token="test-token", base_url=TEST_BASE_URL, rate_limit=1000),
        pipeline=PipelineConfig(max_concurrency=8, queue_size=16),
        parquet=ParquetConfig(batch_size=2),
        storage=StorageConfig(sqlite_path=str(tmp_path / "quotes.db")),
    )

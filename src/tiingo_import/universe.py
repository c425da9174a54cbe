"""Instrument universe loading from CSV or JSON files.

The universe is produced upstream (already filtered by exchange, asset type
and listing age); this module only decodes it.
"""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from tiingo_import.core.models import Instrument

logger = logging.getLogger(__name__)

# Column aliases seen in asset exports
_ALIASES: dict[str, str] = {
    "compositefigi": "composite_figi",
    "composite_figi": "composite_figi",
    "figi": "composite_figi",
    "assettype": "asset_type",
    "asset_type": "asset_type",
    "listed": "listed_utc",
    "listed_utc": "listed_utc",
    "startdate": "listed_utc",
    "delisted": "delisted_utc",
    "delisted_utc": "delisted_utc",
    "enddate": "delisted_utc",
    "ticker": "ticker",
    "symbol": "ticker",
    "exchange": "exchange",
    "currency": "currency",
    "pricecurrency": "currency",
}


def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    """Map aliased column names to Instrument fields, dropping blanks."""
    out: dict[str, Any] = {}
    for key, value in row.items():
        if key is None:
            continue
        field = _ALIASES.get(key.strip().lower().replace(" ", ""))
        if field is None or value in (None, ""):
            continue
        out[field] = value.strip() if isinstance(value, str) else value
    return out


def parse_instruments(rows: Iterable[dict[str, Any]]) -> list[Instrument]:
    """Build instruments from decoded rows; invalid rows are logged and skipped."""
    instruments: list[Instrument] = []
    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            logger.warning("Skipping universe row %d: not an object", i)
            continue
        try:
            instruments.append(Instrument.model_validate(_normalize_row(row)))
        except ValidationError as e:
            logger.warning("Skipping universe row %d: %s", i, e.errors()[0]["msg"])
    return instruments


def load_instruments(path: str | Path) -> list[Instrument]:
    """Load the universe from a ``.csv`` or ``.json`` file.

    JSON must be an array of objects. CSV needs a header row with at least a
    ticker (or symbol) column.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Universe file not found: {path}")

    if path.suffix.lower() == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"Universe JSON must be an array, got {type(data).__name__}")
        rows = data
    else:
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))

    instruments = parse_instruments(rows)
    logger.info("Loaded %d instruments from %s", len(instruments), path)
    return instruments


def instruments_from_tickers(tickers: Iterable[str]) -> list[Instrument]:
    """Bare instruments for ad-hoc lookups (no FIGI or exchange)."""
    return [Instrument(ticker=t) for t in tickers if t.strip()]

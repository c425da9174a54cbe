"""Provider-format normalization: ticker symbols and trade dates."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

MARKET_TZ = ZoneInfo("America/New_York")
MARKET_CLOSE_HOUR = 16


def tiingo_ticker(ticker: str) -> str:
    """Translate a ticker to Tiingo's convention, e.g. ``BRK/B`` -> ``BRK-B``."""
    return ticker.replace("/", "-")


def normalize_trade_date(raw: str) -> datetime | None:
    """Pin a provider date to the 16:00 New York market close of the same day.

    The calendar day is taken as written by the provider, whatever offset it
    carries (Tiingo sends midnight UTC, ``2022-01-03T00:00:00.000Z``), so the
    result never shifts to a neighbouring day. Returns None when ``raw`` is
    not an ISO-8601 date or timestamp.
    """
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except (AttributeError, ValueError):
        return None
    return datetime(
        parsed.year,
        parsed.month,
        parsed.day,
        MARKET_CLOSE_HOUR,
        tzinfo=MARKET_TZ,
    )

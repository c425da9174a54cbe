"""Tiingo quote fetching: HTTP client, rate limiter, normalization."""

from tiingo_import.fetch.client import TiingoClient
from tiingo_import.fetch.limiter import RateLimiter
from tiingo_import.fetch.normalize import normalize_trade_date, tiingo_ticker

__all__ = [
    "RateLimiter",
    "TiingoClient",
    "normalize_trade_date",
    "tiingo_ticker",
]

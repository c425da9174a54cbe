"""Pydantic data models: the system's type contracts."""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Type Aliases ---

Ticker = str
CompositeFigi = str

# --- Enumerations ---


class StorageBackend(StrEnum):
    """Supported relational store backends."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class WriteOutcome(StrEnum):
    """Per-record result of the two-stage database write."""

    SUCCESS = "success"
    FALLBACK_SUCCESS = "fallback_success"
    LOST = "lost"


# --- Instrument Universe ---


class Instrument(BaseModel):
    """A tradable instrument from the universe feed. Immutable for a run."""

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    composite_figi: CompositeFigi = ""
    exchange: str | None = None
    asset_type: str | None = None
    currency: str | None = None
    listed_utc: date | None = None
    delisted_utc: date | None = None

    @field_validator("ticker")
    @classmethod
    def ticker_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("ticker must not be empty")
        return v


# --- Quotes ---


class TiingoQuote(BaseModel):
    """One entry of the Tiingo ``/prices`` JSON array, as returned.

    Missing or null numeric fields decode to 0.0. Fields the importer does
    not persist (adjusted prices etc.) are ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    date: str
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    volume: float = 0.0
    div_cash: float = Field(default=0.0, alias="divCash")
    split_factor: float = Field(default=0.0, alias="splitFactor")

    @field_validator(
        "open", "high", "low", "close", "volume", "div_cash", "split_factor",
        mode="before",
    )
    @classmethod
    def null_is_zero(cls, v: object) -> object:
        return 0.0 if v is None else v


class QuoteRecord(BaseModel):
    """A normalized end-of-day quote, the canonical output record.

    ``ticker`` and ``composite_figi`` come from the owning Instrument.
    ``event_date`` is the trade date at the 16:00 New York close, or None
    when the provider date could not be parsed; ``date_str`` always holds
    the provider's original string.
    """

    model_config = ConfigDict(frozen=True)

    date_str: str
    event_date: datetime | None = None
    ticker: Ticker
    composite_figi: CompositeFigi = ""
    open: float
    high: float
    low: float
    close: float
    volume: float
    dividend: float = 0.0
    split_factor: float = 1.0

    @property
    def display_date(self) -> str:
        """ISO-8601 normalized date, falling back to the provider string."""
        if self.event_date is None:
            return self.date_str
        return self.event_date.isoformat()


# --- Reports ---


class FetchReport(BaseModel):
    """Outcome of one fetch fan-out/fan-in."""

    records: list[QuoteRecord] = Field(default_factory=list)
    attempted: int = 0
    failed: list[Ticker] = Field(default_factory=list)
    abandoned: list[Ticker] = Field(default_factory=list)
    skipped: list[Ticker] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.attempted - len(self.failed) - len(self.abandoned)


class SinkReport(BaseModel):
    """Outcome of one persistence sink."""

    sink: str
    written: int = 0
    skipped: int = 0
    outcomes: dict[WriteOutcome, int] = Field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def lost(self) -> int:
        return self.outcomes.get(WriteOutcome.LOST, 0)


class RunReport(BaseModel):
    """Aggregate result of a full import run."""

    fetch: FetchReport
    parquet: SinkReport | None = None
    database: SinkReport | None = None

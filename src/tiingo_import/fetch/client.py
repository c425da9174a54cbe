"""Async HTTP client for the Tiingo end-of-day prices API."""

from __future__ import annotations

import logging
from datetime import date

import httpx
from pydantic import TypeAdapter, ValidationError

from tiingo_import.core.config import TiingoConfig
from tiingo_import.core.exceptions import FetchError
from tiingo_import.core.models import Instrument, QuoteRecord, TiingoQuote
from tiingo_import.fetch.normalize import normalize_trade_date, tiingo_ticker

logger = logging.getLogger(__name__)

_PRICES_PATH = "{base_url}/{ticker}/prices"
_BODY_PREVIEW = 200

_QUOTES_ADAPTER = TypeAdapter(list[TiingoQuote])


class TiingoClient:
    """Fetches EOD quote history for one instrument per call.

    Holds a single pooled ``httpx.AsyncClient`` so concurrent fetches share
    connections. Rate limiting is the caller's job (see ``QuotePipeline``).

    Use via ``async with TiingoClient(config) as client:``.
    """

    def __init__(
        self,
        config: TiingoConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(config.request_timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> TiingoClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    def prices_url(self, instrument: Instrument) -> str:
        """Endpoint for an instrument, without query string."""
        return _PRICES_PATH.format(
            base_url=self._config.base_url,
            ticker=tiingo_ticker(instrument.ticker),
        )

    async def get_eod_quotes(
        self, instrument: Instrument, start_date: date
    ) -> list[QuoteRecord]:
        """Download and normalize EOD quotes from ``start_date`` onwards.

        Returns:
            QuoteRecords in the order the API returned them, stamped with the
            instrument's ticker and composite FIGI.

        Raises:
            FetchError: Network failure, HTTP status >= 400, or a body that is
                not a JSON array of quote objects.
        """
        body = await self._request(instrument, start_date)
        try:
            quotes = _QUOTES_ADAPTER.validate_json(body)
        except ValidationError as e:
            raise FetchError(
                f"Could not decode quotes for {instrument.ticker}: "
                f"{e.error_count()} validation errors",
                context={
                    "ticker": instrument.ticker,
                    "url": self.prices_url(instrument),
                    "body": body[:_BODY_PREVIEW].decode("utf-8", "replace"),
                },
            ) from e

        return [self._to_record(q, instrument) for q in quotes]

    async def _request(self, instrument: Instrument, start_date: date) -> bytes:
        url = self.prices_url(instrument)
        params = {"startDate": start_date.isoformat(), "token": self._config.token}
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise FetchError(
                f"Request failed for {instrument.ticker}: {e!r}",
                context={"ticker": instrument.ticker, "url": url},
            ) from e

        if response.status_code >= 400:
            raise FetchError(
                f"HTTP {response.status_code} for {instrument.ticker}",
                context={
                    "ticker": instrument.ticker,
                    "url": url,
                    "status_code": response.status_code,
                    "body": response.text[:_BODY_PREVIEW],
                },
            )
        return response.content

    @staticmethod
    def _to_record(quote: TiingoQuote, instrument: Instrument) -> QuoteRecord:
        event_date = normalize_trade_date(quote.date)
        if event_date is None:
            logger.warning(
                "Unparseable quote date %r for %s; keeping provider value",
                quote.date, instrument.ticker,
            )
        return QuoteRecord(
            date_str=quote.date,
            event_date=event_date,
            ticker=instrument.ticker,
            composite_figi=instrument.composite_figi,
            open=quote.open,
            high=quote.high,
            low=quote.low,
            close=quote.close,
            volume=quote.volume,
            dividend=quote.div_cash,
            split_factor=quote.split_factor,
        )

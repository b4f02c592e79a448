"""Yahoo Finance market-data client — quotes and earnings calendar over httpx."""

from __future__ import annotations

import asyncio
import datetime
from types import TracebackType
from typing import Any

import httpx
import structlog

from src.core.config import MarketDataConfig, get_settings
from src.core.types import DividendEvent, EarningsEvent, EventsCalendar, Quote
from src.market.exceptions import (
    MarketDataConnectionError,
    MarketDataError,
    MarketDataParseError,
)

logger = structlog.stdlib.get_logger()


def _parse_chart(symbol: str, body: Any) -> Quote:
    """Build a Quote from a v8 chart response."""
    try:
        meta = body["chart"]["result"][0]["meta"]
        price = float(meta["regularMarketPrice"])
        prev = meta.get("chartPreviousClose", meta.get("previousClose"))
        prev_close = float(prev) if prev is not None else None
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise MarketDataParseError(f"unexpected chart payload for {symbol}") from exc

    change_pct = 0.0
    if prev_close:
        change_pct = (price - prev_close) / prev_close * 100.0

    return Quote(
        symbol=str(meta.get("symbol") or symbol).upper(),
        price=price,
        change_percent=round(change_pct, 4),
        previous_close=prev_close,
        name=meta.get("shortName") or meta.get("longName"),
    )


def _raw_ts(value: Any) -> datetime.datetime | None:
    if isinstance(value, dict):
        value = value.get("raw")
    if value is None:
        return None
    try:
        return datetime.datetime.fromtimestamp(float(value), datetime.UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_calendar(symbol: str, body: Any) -> EventsCalendar:
    """Build an EventsCalendar from a quoteSummary ``calendarEvents`` response."""
    try:
        result = body["quoteSummary"]["result"]
        events = result[0]["calendarEvents"] if result else {}
    except (KeyError, IndexError, TypeError) as exc:
        raise MarketDataParseError(f"unexpected calendar payload for {symbol}") from exc

    calendar = EventsCalendar()
    earnings = events.get("earnings") or {}
    estimate = earnings.get("earningsAverage")
    if isinstance(estimate, dict):
        estimate = estimate.get("raw")
    for raw in earnings.get("earningsDate") or []:
        date = _raw_ts(raw)
        if date is not None:
            calendar.earnings.append(
                EarningsEvent(symbol=symbol, date=date, estimate=estimate)
            )
            break  # first date is the scheduled report

    ex_div = _raw_ts(events.get("exDividendDate"))
    if ex_div is not None:
        calendar.dividends.append(DividendEvent(symbol=symbol, date=ex_div))
    return calendar


class YahooMarketData:
    """Fetches quotes and corporate events from Yahoo Finance.

    Requests for a batch of symbols run concurrently, bounded by
    ``max_concurrency``. A symbol that fails is logged and skipped; a batch
    in which every symbol fails raises the first error.

    Usage::

        async with YahooMarketData() as market:
            quotes = await market.get_quotes(["AAPL", "MSFT"])
    """

    def __init__(
        self,
        config: MarketDataConfig | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_settings().market_data
        self._http = http
        self._sem = asyncio.Semaphore(max(1, self._config.max_concurrency))

    @property
    def connected(self) -> bool:
        return self._http is not None and not self._http.is_closed

    async def connect(self) -> httpx.AsyncClient:
        """Create the httpx async client if needed and return it."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_secs),
                headers={"User-Agent": self._config.user_agent},
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> YahooMarketData:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _get_json(self, url: str, params: dict[str, str]) -> Any:
        http = await self.connect()
        async with self._sem:
            try:
                response = await http.get(url, params=params)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise MarketDataConnectionError(
                    f"{url} returned {exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise MarketDataConnectionError(f"{url} request failed: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise MarketDataParseError(f"{url} returned invalid JSON") from exc

    async def get_quote(self, symbol: str) -> Quote:
        body = await self._get_json(
            f"{self._config.chart_url}/{symbol}",
            {"range": "1d", "interval": "1d"},
        )
        return _parse_chart(symbol, body)

    async def get_quotes(self, symbols: list[str]) -> list[Quote]:
        if not symbols:
            return []
        results = await asyncio.gather(
            *(self.get_quote(s) for s in symbols), return_exceptions=True
        )
        quotes: list[Quote] = []
        errors: list[MarketDataError] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, MarketDataError):
                logger.warning("quote_fetch_failed", symbol=symbol, error=str(result))
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                quotes.append(result)
        if not quotes and errors:
            raise errors[0]
        return quotes

    async def get_calendar(self, symbol: str) -> EventsCalendar:
        body = await self._get_json(
            f"{self._config.summary_url}/{symbol}",
            {"modules": "calendarEvents"},
        )
        return _parse_calendar(symbol, body)

    async def get_events_calendar(self, symbols: list[str]) -> EventsCalendar:
        merged = EventsCalendar()
        if not symbols:
            return merged
        results = await asyncio.gather(
            *(self.get_calendar(s) for s in symbols), return_exceptions=True
        )
        errors: list[MarketDataError] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, MarketDataError):
                logger.warning("calendar_fetch_failed", symbol=symbol, error=str(result))
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                merged.earnings.extend(result.earnings)
                merged.dividends.extend(result.dividends)
        if len(errors) == len(symbols):
            raise errors[0]
        return merged

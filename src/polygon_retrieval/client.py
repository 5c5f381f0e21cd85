"""
Polygon.io REST client.

PolygonClient owns an HTTP session, a rate limiter and the settings it was
built from. Every request goes through the same chain:

    RateLimiter.acquire -> requests GET (stream) -> ResponseDecoder

wrapped in a RetryExecutor, so connection failures, timeouts, 429 and 5xx
are retried with exponential backoff while everything else surfaces at
once. Endpoint methods normalize records and validate their timestamps
against the requested window.

Example:
    >>> with PolygonClient(ClientSettings.from_env()) as client:
    ...     aggs = client.get_aggs("AAPL", 1, Timespan.MINUTE,
    ...                            date(2020, 11, 5), date(2020, 11, 5))
    ...     print(len(aggs.results))
"""

import logging
import time
from datetime import date, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from .config import AuthMode, ClientSettings, SensitiveDataMasker
from .decoder import ResponseDecoder
from .diagnostics import DiagnosticDumper
from .exceptions import (
    ConfigError,
    ConnectionError,
    EmptyResultError,
    HTTPStatusError,
    PermanentError,
    RetrievalError,
    TransientError,
)
from .pagination import Paginator
from .params import QueryParams, as_params
from .rate_limiter import RateLimiter
from .records import AggsResponse, Candle, QuoteV2, TradeV2, TradeV3, parse_records
from .retry import Outcome, RetryExecutor, RetryPolicy
from .timestamps import TimestampNormalizer, day_window, is_equity_symbol

logger = logging.getLogger(__name__)

ParamsLike = Optional[Union[QueryParams, Dict[str, Any]]]

# Largest page the v2 tick endpoints serve
MAX_TICKS_PER_PAGE = 50000


class Timespan(Enum):
    """Size of the aggregate window."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class PolygonClient:
    """
    Client for the Polygon.io REST API.

    The rate limiter is started on construction and stopped by close();
    use the client as a context manager to make that deterministic.

    Attributes:
        settings: Validated ClientSettings.
        session: requests.Session used for every request.
        rate_limiter: Per-client RateLimiter.
        retry_policy: Backoff schedule applied to every request.
        normalizer: TimestampNormalizer used by endpoint methods.
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        normalizer: Optional[TimestampNormalizer] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize client.

        Args:
            settings: Client settings; resolved from the environment if omitted.
            session: HTTP session to use (a new one by default).
            rate_limiter: Rate limiter to own (built from settings by default).
            retry_policy: Backoff schedule (RetryPolicy() by default).
            normalizer: Timestamp normalizer (built from settings by default).
            sleep: Function used to wait between retries.

        Raises:
            ConfigError: If the settings are invalid, e.g. no API key.
        """
        self.settings = (settings or ClientSettings.from_env()).validate()
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self.decoder = ResponseDecoder(self.settings.max_body_bytes)
        self.normalizer = normalizer or TimestampNormalizer(
            equity_offset_hours=self.settings.equity_offset_hours,
            dumper=DiagnosticDumper(self.settings.log_dir),
        )

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Accept-Encoding": "gzip",
        })
        if self.settings.auth_mode is AuthMode.HEADER:
            self.session.headers["Authorization"] = f"Bearer {self.settings.api_key}"

        self.rate_limiter = rate_limiter or RateLimiter(self.settings.rate_limit_per_second)
        self.rate_limiter.start()
        self._closed = False

        logger.info(
            f"Polygon client ready: {self.settings.base_url} "
            f"({self.settings.auth_mode.value} auth, "
            f"{self.rate_limiter.requests_per_second:g} req/s)"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop the rate limiter and close the HTTP session."""
        if self._closed:
            return
        self._closed = True
        self.rate_limiter.stop()
        self.session.close()
        logger.debug("Polygon client closed")

    def __enter__(self) -> "PolygonClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Request chain
    # ------------------------------------------------------------------

    def url_for(self, path: str) -> str:
        return self.settings.base_url.rstrip("/") + "/" + path.lstrip("/")

    def get_json(self, path: str, params: ParamsLike = None) -> Any:
        """
        GET path and return the decoded JSON body.

        Args:
            path: Endpoint path, e.g. '/v1/marketstatus/now'.
            params: Query parameters.

        Raises:
            EmptyResultError: On HTTP 404.
            TransientError: When retries are exhausted.
            PermanentError: On any non-retryable failure.
        """
        if self._closed:
            raise RuntimeError("Client is closed")

        url = self.url_for(path)
        query = as_params(params).to_dict()
        if self.settings.auth_mode is AuthMode.QUERY:
            query["apiKey"] = self.settings.api_key

        executor = RetryExecutor(self.retry_policy, sleep=self._sleep, name=f"GET {path}")
        return executor.execute(lambda: self._attempt(url, query))

    def _attempt(self, url: str, query: Dict[str, str]) -> Outcome:
        self.rate_limiter.acquire()
        logger.debug(f"GET {url} {SensitiveDataMasker.mask_message(str(query))}")

        try:
            response = self.session.get(
                url,
                params=query,
                timeout=self.settings.timeout_seconds,
                stream=True,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            return Outcome.transient(_wrap_transport_error(ConnectionError, url, e))
        except requests.RequestException as e:
            return Outcome.permanent(_wrap_transport_error(PermanentError, url, e))

        try:
            return Outcome.success(self.decoder.decode(response, url=url))
        except TransientError as e:
            return Outcome.transient(e)
        except RetrievalError as e:
            return Outcome.permanent(e)

    def paginate_cursor(
        self,
        path: str,
        params: ParamsLike = None,
        results_field: str = "results",
        paginator: Optional[Paginator] = None,
    ) -> List[Any]:
        """Collect every page of a cursor-paginated endpoint."""
        paginator = paginator or Paginator()
        return paginator.collect_cursor(
            lambda query: self.get_json(path, query),
            params,
            results_field=results_field,
        )

    def paginate_timestamp(
        self,
        path: str,
        params: ParamsLike = None,
        limit: int = MAX_TICKS_PER_PAGE,
        paginator: Optional[Paginator] = None,
    ) -> List[Dict[str, Any]]:
        """Collect every page of a timestamp-paginated v2 tick endpoint."""
        paginator = paginator or Paginator()
        return paginator.collect_by_timestamp(
            lambda query: self.get_json(path, query),
            params,
            limit=limit,
            timestamp_key="t",
            id_key="q",
        )

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def get_aggs(
        self,
        symbol: str,
        multiplier: int,
        timespan: Timespan,
        from_date: date,
        to_date: date,
        params: ParamsLike = None,
    ) -> AggsResponse:
        """
        Fetch aggregate bars for symbol between two dates (inclusive).

        Timestamps arrive in milliseconds; equity bars get the exchange
        timezone correction. Every bar must fall inside
        [from_date, to_date + 1 day).

        Raises:
            EmptyResultError: If no bars are returned.
            TimestampRangeError: If any bar is outside the window; the
                payload is dumped under {log_dir}/aggs.
        """
        path = (
            f"/v2/aggs/ticker/{symbol}/range/{multiplier}/{Timespan(timespan).value}/"
            f"{from_date:%Y-%m-%d}/{to_date:%Y-%m-%d}"
        )
        envelope = self.get_json(path, params)
        is_equity = is_equity_symbol(symbol)
        candles = parse_records(
            envelope.get("results") or [],
            lambda row: Candle.from_json(row, self.normalizer, is_equity, symbol),
        )
        self.normalizer.validate_window(
            (c.ts for c in candles),
            from_date,
            to_date + timedelta(days=1),
            endpoint="aggs",
            payload=envelope,
        )
        return AggsResponse.from_json(envelope, symbol, candles)

    def get_prev(self, symbol: str) -> Candle:
        """
        Fetch the previous day's bar for symbol.

        Raises:
            EmptyResultError: Unless exactly one bar is returned.
        """
        envelope = self.get_json(f"/v2/aggs/ticker/{symbol}/prev")
        results = envelope.get("results") or []
        if len(results) != 1:
            raise EmptyResultError(
                f"results has length {len(results)} (expected 1)",
                endpoint="prev",
            )
        is_equity = is_equity_symbol(symbol)
        return parse_records(
            results,
            lambda row: Candle.from_json(row, self.normalizer, is_equity, symbol),
        )[0]

    def get_grouped(
        self,
        locale: str,
        market: str,
        day: date,
        params: ParamsLike = None,
    ) -> List[Candle]:
        """
        Fetch the daily bar of every ticker in a market.

        Bars must belong to the requested day; their timestamp is then set
        to the day's midnight.
        """
        path = f"/v2/aggs/grouped/locale/{locale.lower()}/market/{market.lower()}/{day:%Y-%m-%d}"
        envelope = self.get_json(path, params)
        candles = parse_records(
            envelope.get("results") or [],
            lambda row: Candle.from_json(row, self.normalizer, False),
        )
        start, end = day_window(day)
        self.normalizer.validate_window(
            (c.ts for c in candles), start, end, endpoint="grouped", payload=envelope
        )
        for candle in candles:
            candle.ts = start
        return candles

    # ------------------------------------------------------------------
    # Trades and quotes
    # ------------------------------------------------------------------

    def get_trades_v2(self, symbol: str, day: date, params: ParamsLike = None) -> List[TradeV2]:
        """Fetch one page of legacy v2 trades for symbol on day."""
        envelope = self.get_json(self._ticks_path("trades", symbol, day), params)
        return self._ticks(envelope.get("results") or [], symbol, day, TradeV2, "trades", envelope)

    def get_all_trades_v2(
        self,
        symbol: str,
        day: date,
        limit: int = MAX_TICKS_PER_PAGE,
        paginator: Optional[Paginator] = None,
    ) -> List[TradeV2]:
        """Fetch every legacy v2 trade for symbol on day, without duplicates."""
        _check_tick_limit(limit)
        rows = self.paginate_timestamp(self._ticks_path("trades", symbol, day), limit=limit, paginator=paginator)
        return self._ticks(rows, symbol, day, TradeV2, "trades", {"ticker": symbol, "results": rows})

    def get_nbbo_v2(self, symbol: str, day: date, params: ParamsLike = None) -> List[QuoteV2]:
        """Fetch one page of legacy v2 NBBO quotes for symbol on day."""
        envelope = self.get_json(self._ticks_path("nbbo", symbol, day), params)
        return self._ticks(envelope.get("results") or [], symbol, day, QuoteV2, "nbbo", envelope)

    def get_all_nbbo_v2(
        self,
        symbol: str,
        day: date,
        limit: int = MAX_TICKS_PER_PAGE,
        paginator: Optional[Paginator] = None,
    ) -> List[QuoteV2]:
        """Fetch every legacy v2 NBBO quote for symbol on day, without duplicates."""
        _check_tick_limit(limit)
        rows = self.paginate_timestamp(self._ticks_path("nbbo", symbol, day), limit=limit, paginator=paginator)
        return self._ticks(rows, symbol, day, QuoteV2, "nbbo", {"ticker": symbol, "results": rows})

    @staticmethod
    def _ticks_path(kind: str, symbol: str, day: date) -> str:
        return f"/v2/ticks/stocks/{kind}/{symbol}/{day:%Y-%m-%d}"

    def _ticks(
        self,
        rows: List[Dict[str, Any]],
        symbol: str,
        day: date,
        record_type: Callable,
        endpoint: str,
        payload: Any,
    ) -> List[Any]:
        records = parse_records(
            rows, lambda row: record_type.from_json(row, self.normalizer, symbol)
        )
        start, end = day_window(day)
        self.normalizer.validate_window(
            (r.ts for r in records), start, end, endpoint=endpoint, payload=payload
        )
        return records

    def get_trades(
        self,
        symbol: str,
        day: Optional[date] = None,
        params: ParamsLike = None,
        paginator: Optional[Paginator] = None,
    ) -> List[TradeV3]:
        """
        Fetch every v3 trade for symbol, following next_url cursors.

        If day is given only that day's trades are requested and every
        trade must fall inside it.
        """
        query = as_params(params)
        if day is not None:
            query.timestamp(day.strftime("%Y-%m-%d"))
        rows = self.paginate_cursor(f"/v3/trades/{symbol}", query, paginator=paginator)

        is_equity = is_equity_symbol(symbol)
        trades = parse_records(
            rows, lambda row: TradeV3.from_json(row, self.normalizer, symbol, is_equity)
        )
        if day is not None:
            start, end = day_window(day)
            self.normalizer.validate_window(
                (t.ts for t in trades), start, end,
                endpoint="trades", payload={"ticker": symbol, "results": rows},
            )
        elif not trades:
            raise EmptyResultError("results is empty", endpoint="trades")
        return trades

    # ------------------------------------------------------------------
    # Reference data and market status
    # ------------------------------------------------------------------

    def get_tickers(self, params: ParamsLike = None, paginator: Optional[Paginator] = None) -> List[Dict[str, Any]]:
        """Fetch every ticker matching params from /v3/reference/tickers."""
        return self.paginate_cursor("/v3/reference/tickers", params, paginator=paginator)

    def get_ticker_details(self, symbol: str) -> Dict[str, Any]:
        """Fetch reference details for one ticker."""
        envelope = self.get_json(f"/v3/reference/tickers/{symbol}")
        details = envelope.get("results")
        if not details:
            raise EmptyResultError("no ticker details", symbol=symbol)
        return details

    def get_dividends(self, symbol: str) -> List[Dict[str, Any]]:
        """Fetch every dividend for symbol."""
        return self.paginate_cursor("/v3/reference/dividends", {"ticker": symbol})

    def get_splits(self, symbol: str) -> List[Dict[str, Any]]:
        """Fetch every split for symbol."""
        return self.paginate_cursor("/v3/reference/splits", {"ticker": symbol})

    def get_financials(
        self,
        symbol: str,
        params: ParamsLike = None,
        paginator: Optional[Paginator] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch every financial statement filing for symbol.

        Args:
            symbol: Ticker the filings belong to.
            params: Extra filters, e.g. timeframe, filing_date.gte or limit.
            paginator: Optional paginator for page caps and cancellation.

        Returns:
            The raw filings, each with its financials section by statement.
        """
        query = as_params(params).set("ticker", symbol)
        return self.paginate_cursor("/vX/reference/financials", query, paginator=paginator)

    def get_locales(self) -> List[Dict[str, Any]]:
        """Fetch the locales Polygon covers."""
        return self._reference_list("/v2/reference/locales")

    def get_markets(self) -> List[Dict[str, Any]]:
        """Fetch the markets Polygon covers."""
        return self._reference_list("/v2/reference/markets")

    def _reference_list(self, path: str) -> List[Dict[str, Any]]:
        results = self.get_json(path).get("results")
        if not results:
            raise EmptyResultError("results is empty", endpoint=path)
        return results

    def get_market_status_now(self) -> Dict[str, Any]:
        return self.get_json("/v1/marketstatus/now")

    def get_market_status_upcoming(self) -> List[Dict[str, Any]]:
        return self.get_json("/v1/marketstatus/upcoming")

    def check_credentials(self) -> None:
        """
        Make a cheap authenticated request to verify the API key.

        Raises:
            ConfigError: If the vendor rejects the key (401/403).
        """
        try:
            self.get_market_status_now()
        except HTTPStatusError as e:
            if e.status in (401, 403):
                raise ConfigError("Polygon rejected the API key", cause=e, status=e.status) from e
            raise


def _check_tick_limit(limit: int) -> None:
    # A page shorter than limit ends timestamp pagination, so limit can't
    # exceed what the server will return.
    if not 1 <= limit <= MAX_TICKS_PER_PAGE:
        raise ValueError(f"limit must be between 1 and {MAX_TICKS_PER_PAGE}, got {limit}")


def _wrap_transport_error(error_type: type, url: str, cause: Exception) -> RetrievalError:
    # requests puts the full URL, query string included, into its messages
    message = SensitiveDataMasker.mask_message(f"GET {url} failed: {cause}")
    error = error_type(message)
    error.__cause__ = cause
    return error

"""
OHLCV data providers backed by the Polygon REST client.

DataProvider is the vendor-agnostic interface used by downstream code;
PolygonDataProvider implements it on top of PolygonClient.get_aggs.

Standardized output:
- Index: DatetimeIndex named 'timestamp' (UTC), sorted oldest first
- Columns: open, high, low, close (float64), volume (int64)
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from .client import PolygonClient, Timespan
from .config import ClientSettings
from .exceptions import ConfigError
from .params import QueryParams

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]

# Vendor-agnostic timeframe -> (multiplier, timespan)
TIMEFRAMES: Dict[str, Tuple[int, Timespan]] = {
    "1m": (1, Timespan.MINUTE),
    "5m": (5, Timespan.MINUTE),
    "15m": (15, Timespan.MINUTE),
    "30m": (30, Timespan.MINUTE),
    "60m": (1, Timespan.HOUR),
    "1H": (1, Timespan.HOUR),
    "D": (1, Timespan.DAY),
    "1D": (1, Timespan.DAY),
    "W": (1, Timespan.WEEK),
    "1W": (1, Timespan.WEEK),
    "M": (1, Timespan.MONTH),
    "1M": (1, Timespan.MONTH),
}


class DataProvider(ABC):
    """
    Abstract base class for market data providers.

    Implementations return OHLCV data in the standardized schema described
    in the module docstring and may be used as context managers:
    __enter__ authenticates and __exit__ disconnects.
    """

    def __init__(self) -> None:
        self._authenticated = False

    def __enter__(self):
        self.authenticate()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    @abstractmethod
    def authenticate(self) -> None:
        """
        Establish connection and authenticate with the provider.

        Raises
        ------
        ConfigError
            If credentials are missing or rejected.
        """

    def disconnect(self) -> None:
        """Close the connection to the provider. Default is a no-op."""

    @abstractmethod
    def fetch_ohlcv(
        self,
        symbol: str,
        start_date: Union[date, datetime],
        end_date: Union[date, datetime],
        timeframe: str,
    ) -> pd.DataFrame:
        """
        Retrieve OHLCV bars for a symbol.

        Parameters
        ----------
        symbol : str
            The asset symbol, e.g. "AAPL" or "X:BTCUSD".
        start_date : date
            Start of the date range (inclusive).
        end_date : date
            End of the date range (inclusive).
        timeframe : str
            One of the keys of TIMEFRAMES.

        Returns
        -------
        pd.DataFrame
            OHLCV data in the standardized schema.
        """

    @abstractmethod
    def get_available_symbols(self) -> List[str]:
        """Retrieve the list of symbols available from this provider."""

    def validate_ohlcv_data(self, df: pd.DataFrame) -> None:
        """
        Check that df conforms to the standardized OHLCV schema.

        Raises
        ------
        ValueError
            If the DataFrame doesn't conform to the schema.
        """
        if list(df.columns) != OHLCV_COLUMNS:
            raise ValueError(f"DataFrame columns must be {OHLCV_COLUMNS}, got {list(df.columns)}")
        if not isinstance(df.index, pd.DatetimeIndex) or df.index.name != "timestamp":
            raise ValueError("DataFrame index must be a DatetimeIndex named 'timestamp'")
        if df.index.tz is None or str(df.index.tz) != "UTC":
            raise ValueError("DatetimeIndex must be timezone-aware (UTC)")
        if df["volume"].dtype != "int64":
            raise ValueError(f"Volume dtype must be int64, got {df['volume'].dtype}")
        for col in ["open", "high", "low", "close"]:
            if df[col].dtype != "float64":
                raise ValueError(f"{col} dtype must be float64, got {df[col].dtype}")
        if (df["volume"] < 0).any():
            raise ValueError("Volume must be non-negative")
        if (df["high"] < df["low"]).any():
            raise ValueError("High must be >= Low")


class PolygonDataProvider(DataProvider):
    """
    Polygon.io data provider.

    Wraps a PolygonClient; the client is created on authenticate() unless
    one is injected.

    Example:
        >>> with PolygonDataProvider(ClientSettings.from_env()) as provider:
        ...     df = provider.fetch_ohlcv(
        ...         symbol='AAPL',
        ...         start_date=date(2024, 1, 2),
        ...         end_date=date(2024, 1, 31),
        ...         timeframe='1D'
        ...     )
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        client: Optional[PolygonClient] = None,
        market: str = "stocks",
    ):
        """
        Initialize Polygon data provider.

        Args:
            settings: Client settings; resolved from the environment if omitted.
            client: Pre-built client (takes precedence over settings).
            market: Market used to list available symbols.
        """
        super().__init__()
        self.settings = settings
        self.market = market
        self._client = client
        self._owns_client = client is None
        self._symbols: Optional[List[str]] = None

    @property
    def client(self) -> PolygonClient:
        if self._client is None:
            raise ConfigError("Not authenticated. Call authenticate() first.")
        return self._client

    def authenticate(self) -> None:
        """
        Create the client and verify the API key with one cheap request.

        Raises:
            ConfigError: If the API key is missing or rejected.
        """
        logger.info("Authenticating with Polygon.io")
        if self._client is None:
            self._client = PolygonClient(self.settings)
        self._client.check_credentials()
        self._authenticated = True
        logger.info("Polygon authentication successful")

    def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        self._authenticated = False

    def fetch_ohlcv(
        self,
        symbol: str,
        start_date: Union[date, datetime],
        end_date: Union[date, datetime],
        timeframe: str = "1D",
    ) -> pd.DataFrame:
        """
        Fetch aggregate bars from /v2/aggs and convert them to the OHLCV schema.

        Returns:
            DataFrame with OHLCV data in the standard schema

        Raises:
            ValueError: If the timeframe is unknown or the dates are reversed.
            EmptyResultError: If Polygon has no bars for the range.
            RetrievalError: On any other retrieval failure.
        """
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unsupported timeframe '{timeframe}'; expected one of {sorted(TIMEFRAMES)}")
        start = _as_date(start_date)
        end = _as_date(end_date)
        if start > end:
            raise ValueError("start_date must be <= end_date")

        multiplier, timespan = TIMEFRAMES[timeframe]
        logger.info(f"Fetching {symbol} OHLCV data: {start} to {end} ({timeframe})")

        params = QueryParams().sort("asc").limit(50000).adjusted(True)
        aggs = self.client.get_aggs(symbol, multiplier, timespan, start, end, params)

        df = pd.DataFrame(
            {
                "open": [c.open for c in aggs.results],
                "high": [c.high for c in aggs.results],
                "low": [c.low for c in aggs.results],
                "close": [c.close for c in aggs.results],
                "volume": [c.volume for c in aggs.results],
            },
            index=pd.DatetimeIndex(
                pd.to_datetime([c.ts for c in aggs.results], unit="ns", utc=True),
                name="timestamp",
            ),
        )
        df = df.astype({"open": "float64", "high": "float64", "low": "float64",
                        "close": "float64", "volume": "int64"})
        df = df[~df.index.duplicated(keep="first")].sort_index()

        logger.info(f"Successfully fetched {len(df)} bars for {symbol}")
        return df

    def get_available_symbols(self) -> List[str]:
        """
        List active tickers of the configured market, cached after the first call.
        """
        if self._symbols is None:
            params = QueryParams().market(self.market).active(True).limit(1000)
            tickers = self.client.get_tickers(params)
            self._symbols = sorted(t["ticker"] for t in tickers if "ticker" in t)
            logger.debug(f"Loaded {len(self._symbols)} {self.market} symbols")
        return self._symbols

    def get_ticker_details(self, symbol: str) -> Dict[str, Any]:
        """Reference details for symbol from /v3/reference/tickers/{symbol}."""
        return self.client.get_ticker_details(symbol)


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value

"""
Polygon.io REST retrieval layer.

This package provides:
- PolygonClient: rate-limited, retrying client for the Polygon REST API
- Record types normalized to canonical UTC nanosecond timestamps
- Condition code and trade ID codecs
- Cursor and timestamp pagination
- PolygonDataProvider: OHLCV DataFrames on top of the client
"""

from src.polygon_retrieval.client import PolygonClient, Timespan
from src.polygon_retrieval.conditions import (
    decode_conditions,
    decode_correction,
    decode_trade_id,
    encode_conditions,
)
from src.polygon_retrieval.config import AuthMode, ClientSettings
from src.polygon_retrieval.decoder import ResponseDecoder
from src.polygon_retrieval.exceptions import (
    CodecError,
    ConfigError,
    ConnectionError,
    DecodeError,
    EmptyResultError,
    ErrorKind,
    HTTPStatusError,
    PaginationError,
    PermanentError,
    RateLimitError,
    ResponseTooLargeError,
    RetrievalError,
    TimestampRangeError,
    TransientError,
)
from src.polygon_retrieval.logging_utils import get_logger, setup_logging
from src.polygon_retrieval.pagination import Paginator
from src.polygon_retrieval.params import QueryParams
from src.polygon_retrieval.provider import DataProvider, PolygonDataProvider
from src.polygon_retrieval.rate_limiter import RateLimiter
from src.polygon_retrieval.records import (
    AggsResponse,
    Candle,
    QuoteV2,
    TradeV2,
    TradeV3,
    records_to_frame,
)
from src.polygon_retrieval.retry import Outcome, RetryExecutor, RetryPolicy
from src.polygon_retrieval.timestamps import TimestampNormalizer, TimeUnit

__all__ = [
    # Client
    "PolygonClient",
    "Timespan",
    "ClientSettings",
    "AuthMode",
    "QueryParams",
    # Components
    "RateLimiter",
    "RetryExecutor",
    "RetryPolicy",
    "Outcome",
    "ResponseDecoder",
    "TimestampNormalizer",
    "TimeUnit",
    "Paginator",
    # Codecs
    "encode_conditions",
    "decode_conditions",
    "decode_correction",
    "decode_trade_id",
    # Records
    "AggsResponse",
    "Candle",
    "TradeV2",
    "QuoteV2",
    "TradeV3",
    "records_to_frame",
    # Providers
    "DataProvider",
    "PolygonDataProvider",
    # Exceptions
    "ErrorKind",
    "RetrievalError",
    "ConfigError",
    "TransientError",
    "RateLimitError",
    "ConnectionError",
    "PermanentError",
    "HTTPStatusError",
    "DecodeError",
    "ResponseTooLargeError",
    "CodecError",
    "TimestampRangeError",
    "PaginationError",
    "EmptyResultError",
    # Logging
    "get_logger",
    "setup_logging",
]

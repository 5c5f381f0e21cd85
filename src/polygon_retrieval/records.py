"""
Record types for Polygon responses.

Polygon has served the same logical data under incompatible schemas. The
legacy /v2/ticks endpoints use single-letter fields, the /v3 endpoints use
named fields. Each schema gets its own record type and the call site picks
one; no type bridges schemas with optional fields.

Every record carries a canonical timestamp `ts` in UTC nanoseconds.
Condition codes are packed with encode_conditions and trade IDs decoded
with decode_trade_id.
"""

import math
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

import pandas as pd

from .conditions import (
    QUOTE_CONDITION_MAX,
    TRADE_CONDITION_MAX,
    decode_correction,
    decode_trade_id,
    encode_conditions,
)
from .exceptions import DecodeError, RetrievalError
from .timestamps import TimeUnit, TimestampNormalizer

R = TypeVar('R')


def _as_count(value: Any, field_name: str) -> int:
    """Volumes and tick counts sometimes arrive as floats; accept integral ones."""
    if isinstance(value, bool):
        raise DecodeError(f"{field_name} is not a number", value=value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise DecodeError(f"cannot convert {value} to an integer", field=field_name)


def _optional_nanos(
    normalizer: TimestampNormalizer,
    raw: Optional[Any],
    is_equity: bool,
) -> Optional[int]:
    if raw is None:
        return None
    return normalizer.to_nanos(raw, TimeUnit.NANOSECONDS, is_equity)


def parse_records(
    rows: Iterable[Dict[str, Any]],
    parse: Callable[[Dict[str, Any]], R],
) -> List[R]:
    """Apply parse to every row, wrapping schema mismatches in DecodeError."""
    records = []
    for row in rows:
        try:
            records.append(parse(row))
        except RetrievalError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError("record does not match schema", cause=e, row=row) from e
    return records


@dataclass
class Candle:
    """
    One aggregate bar (aggs, grouped and prev endpoints).

    Vendor fields: t, T, o, h, l, c, v, vw, n.
    """

    ts: int
    symbol: str
    open: float
    high: float
    low: float
    close: float
    volume: int
    vwap: float = math.nan
    num_ticks: Optional[int] = None

    @classmethod
    def from_json(
        cls,
        row: Dict[str, Any],
        normalizer: TimestampNormalizer,
        is_equity: bool,
        symbol: str = "",
    ) -> "Candle":
        ticks = row.get("n")
        return cls(
            ts=normalizer.to_nanos(row["t"], TimeUnit.MILLISECONDS, is_equity),
            symbol=row.get("T", symbol),
            open=float(row["o"]),
            high=float(row["h"]),
            low=float(row["l"]),
            close=float(row["c"]),
            volume=_as_count(row["v"], "v"),
            vwap=float(row.get("vw", math.nan)),
            num_ticks=None if ticks is None else _as_count(ticks, "n"),
        )


@dataclass
class TradeV2:
    """
    Trade from the legacy /v2/ticks/stocks/trades endpoint.

    Vendor fields: t, y, f, q, i, x, s, c, p, z, e.
    """

    ts: int
    sequence_number: int
    symbol: str
    trade_id: int
    exchange: int
    size: int
    price: float
    conditions: int
    tape: int
    correction: int = 0
    ts_participant: Optional[int] = None
    ts_trf: Optional[int] = None

    @classmethod
    def from_json(
        cls,
        row: Dict[str, Any],
        normalizer: TimestampNormalizer,
        symbol: str,
    ) -> "TradeV2":
        return cls(
            ts=normalizer.to_nanos(row["t"], TimeUnit.NANOSECONDS, True),
            sequence_number=int(row["q"]),
            symbol=symbol,
            trade_id=decode_trade_id(str(row.get("i", ""))),
            exchange=int(row["x"]),
            size=int(row["s"]),
            price=float(row["p"]),
            conditions=encode_conditions(row.get("c") or [], TRADE_CONDITION_MAX),
            tape=int(row["z"]),
            correction=decode_correction(row.get("e", 0)),
            ts_participant=_optional_nanos(normalizer, row.get("y"), True),
            ts_trf=_optional_nanos(normalizer, row.get("f"), True),
        )


@dataclass
class QuoteV2:
    """
    NBBO quote from the legacy /v2/ticks/stocks/nbbo endpoint.

    Vendor fields: t, y, f, q, x, X, s, S, c, p, P, z.
    """

    ts: int
    sequence_number: int
    symbol: str
    bid_exchange: int
    ask_exchange: int
    bid_lots: int
    ask_lots: int
    bid_price: float
    ask_price: float
    conditions: int
    tape: int
    ts_participant: Optional[int] = None
    ts_trf: Optional[int] = None

    @classmethod
    def from_json(
        cls,
        row: Dict[str, Any],
        normalizer: TimestampNormalizer,
        symbol: str,
    ) -> "QuoteV2":
        return cls(
            ts=normalizer.to_nanos(row["t"], TimeUnit.NANOSECONDS, True),
            sequence_number=int(row["q"]),
            symbol=symbol,
            bid_exchange=int(row["x"]),
            ask_exchange=int(row["X"]),
            bid_lots=int(row["s"]),
            ask_lots=int(row["S"]),
            bid_price=float(row["p"]),
            ask_price=float(row["P"]),
            conditions=encode_conditions(row.get("c") or [], QUOTE_CONDITION_MAX),
            tape=int(row["z"]),
            ts_participant=_optional_nanos(normalizer, row.get("y"), True),
            ts_trf=_optional_nanos(normalizer, row.get("f"), True),
        )


@dataclass
class TradeV3:
    """
    Trade from the /v3/trades endpoint.

    Vendor fields: sip_timestamp, participant_timestamp, trf_timestamp,
    sequence_number, id, exchange, size, price, conditions, correction, tape.
    """

    ts: int
    sequence_number: int
    symbol: str
    trade_id: int
    exchange: int
    size: float
    price: float
    conditions: int
    tape: Optional[int] = None
    correction: int = 0
    ts_participant: Optional[int] = None
    ts_trf: Optional[int] = None

    @classmethod
    def from_json(
        cls,
        row: Dict[str, Any],
        normalizer: TimestampNormalizer,
        symbol: str,
        is_equity: bool,
    ) -> "TradeV3":
        tape = row.get("tape")
        return cls(
            ts=normalizer.to_nanos(row["sip_timestamp"], TimeUnit.NANOSECONDS, is_equity),
            sequence_number=int(row["sequence_number"]),
            symbol=symbol,
            trade_id=decode_trade_id(str(row["id"])),
            exchange=int(row["exchange"]),
            size=float(row["size"]),
            price=float(row["price"]),
            conditions=encode_conditions(row.get("conditions") or [], TRADE_CONDITION_MAX),
            tape=None if tape is None else int(tape),
            correction=decode_correction(row.get("correction", 0)),
            ts_participant=_optional_nanos(normalizer, row.get("participant_timestamp"), is_equity),
            ts_trf=_optional_nanos(normalizer, row.get("trf_timestamp"), is_equity),
        )


def records_to_frame(records: Iterable[Any]) -> pd.DataFrame:
    """
    Build a DataFrame indexed by canonical timestamp.

    The index is a UTC DatetimeIndex named 'timestamp', sorted oldest first.
    """
    rows = [asdict(r) for r in records]
    if not rows:
        return pd.DataFrame(index=pd.DatetimeIndex([], name="timestamp", tz="UTC"))

    df = pd.DataFrame(rows)
    df.index = pd.DatetimeIndex(pd.to_datetime(df.pop("ts"), unit="ns", utc=True), name="timestamp")
    return df.sort_index(kind="stable")


@dataclass
class AggsResponse:
    """Envelope of the aggregates endpoint with normalized candles."""

    symbol: str
    query_count: int
    results_count: int
    adjusted: bool
    results: List[Candle]
    request_id: Optional[str] = None

    @classmethod
    def from_json(cls, envelope: Dict[str, Any], symbol: str, results: List[Candle]) -> "AggsResponse":
        return cls(
            symbol=envelope.get("ticker", symbol),
            query_count=int(envelope.get("queryCount", len(results))),
            results_count=int(envelope.get("resultsCount", len(results))),
            adjusted=bool(envelope.get("adjusted", True)),
            results=results,
            request_id=envelope.get("request_id"),
        )

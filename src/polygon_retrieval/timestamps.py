"""
Canonical timestamps for Polygon records.

Polygon reports timestamps as integers since the Unix epoch, in
milliseconds for aggregates and nanoseconds for ticks. Every record is
converted to signed 64-bit nanoseconds and, for equities, shifted by a
fixed exchange-timezone correction so that a trading day lands inside
[date 00:00, date + 1 day 00:00).

A batch whose timestamps leave the requested window is rejected as a whole:
a drifted response is never partially accepted. The offending payload is
dumped for investigation before the error is raised.
"""

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional, Tuple, Union

import pandas as pd

from .diagnostics import DiagnosticDumper
from .exceptions import DecodeError, EmptyResultError, TimestampRangeError

logger = logging.getLogger(__name__)

NANOS_PER_SECOND = 1_000_000_000
NANOS_PER_HOUR = 3600 * NANOS_PER_SECOND
INT64_MIN = -2 ** 63
INT64_MAX = 2 ** 63 - 1

# Fixed correction applied to equity timestamps, in hours. The sign differs
# between historical vendor schemas; see DESIGN.md.
DEFAULT_EQUITY_OFFSET_HOURS = -5.0

WindowBound = Union[int, str, date, datetime, pd.Timestamp]


class TimeUnit(Enum):
    """Unit of a raw vendor timestamp."""

    MILLISECONDS = "ms"
    NANOSECONDS = "ns"

    @property
    def nanos(self) -> int:
        return 1_000_000 if self is TimeUnit.MILLISECONDS else 1


def is_equity_symbol(symbol: str) -> bool:
    """Equities have bare tickers; other classes are prefixed, e.g. 'X:BTCUSD'."""
    return ":" not in symbol


def to_window_nanos(value: WindowBound) -> int:
    """
    Convert a window bound to UTC nanoseconds.

    Ints are taken as nanoseconds already. Naive dates and datetimes are
    interpreted as UTC.
    """
    if isinstance(value, bool):
        raise TypeError("window bound must not be a bool")
    if isinstance(value, int):
        return value
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return int(ts.value)


def day_window(day: date) -> Tuple[int, int]:
    """Half-open window covering one calendar day."""
    return to_window_nanos(day), to_window_nanos(day + timedelta(days=1))


class TimestampNormalizer:
    """
    Converts raw vendor timestamps to canonical nanoseconds and checks them.

    Attributes:
        equity_offset_ns: Correction added to equity timestamps.
        dumper: Collaborator that persists rejected payloads (optional).

    Example:
        >>> normalizer = TimestampNormalizer(equity_offset_hours=0)
        >>> normalizer.to_nanos(1_600_000_000_000, TimeUnit.MILLISECONDS, True)
        1600000000000000000
    """

    def __init__(
        self,
        equity_offset_hours: float = DEFAULT_EQUITY_OFFSET_HOURS,
        dumper: Optional[DiagnosticDumper] = None,
    ):
        self.equity_offset_ns = int(round(equity_offset_hours * NANOS_PER_HOUR))
        self.dumper = dumper

    def to_nanos(self, raw: Any, unit: TimeUnit, is_equity: bool) -> int:
        """
        Convert one raw timestamp to canonical nanoseconds.

        Raises:
            DecodeError: If raw is not an integral number or overflows int64.
        """
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise DecodeError("timestamp is not a number", value=raw)
        if isinstance(raw, float):
            if not raw.is_integer():
                raise DecodeError("timestamp is not integral", value=raw)
            raw = int(raw)

        nanos = raw * unit.nanos
        if is_equity:
            nanos += self.equity_offset_ns

        if not INT64_MIN <= nanos <= INT64_MAX:
            raise DecodeError("timestamp overflows 64 bits", value=raw)
        return nanos

    def validate_window(
        self,
        timestamps: Iterable[int],
        start: WindowBound,
        end: WindowBound,
        endpoint: str,
        payload: Any = None,
    ) -> None:
        """
        Check canonical timestamps against the half-open window [start, end).

        Args:
            timestamps: Canonical nanosecond timestamps of the batch.
            start: Inclusive window start.
            end: Exclusive window end.
            endpoint: Endpoint name used for the diagnostic dump.
            payload: Raw response to dump if the batch is rejected.

        Raises:
            EmptyResultError: If the batch is empty.
            TimestampRangeError: If any timestamp is outside the window.
        """
        timestamps = list(timestamps)
        if not timestamps:
            raise EmptyResultError("results is empty", endpoint=endpoint)

        lo = to_window_nanos(start)
        hi = to_window_nanos(end)
        min_ts = min(timestamps)
        max_ts = max(timestamps)

        if min_ts >= lo and max_ts < hi:
            return

        if min_ts < lo:
            message = f"ts {min_ts} is too small"
        else:
            message = f"ts {max_ts} is too big"

        dump_path = self._dump(endpoint, payload)
        logger.error(
            f"{endpoint}: {message} for window [{lo}, {hi}); "
            f"rejected payload at {dump_path}"
        )
        raise TimestampRangeError(
            message,
            dump_path=dump_path,
            endpoint=endpoint,
            window_start=lo,
            window_end=hi,
        )

    def _dump(self, endpoint: str, payload: Any) -> Optional[str]:
        if self.dumper is None or payload is None:
            return None
        try:
            return str(self.dumper.dump(endpoint, payload))
        except OSError:
            # A failed dump never replaces the range error
            logger.exception(f"Could not write diagnostic dump for {endpoint}")
            return None

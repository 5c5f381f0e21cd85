"""
Tests for timestamp normalization and window validation.
"""

import json
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest
import pytz

from src.polygon_retrieval.diagnostics import DiagnosticDumper
from src.polygon_retrieval.exceptions import DecodeError, EmptyResultError, TimestampRangeError
from src.polygon_retrieval.timestamps import (
    NANOS_PER_HOUR,
    TimestampNormalizer,
    TimeUnit,
    day_window,
    is_equity_symbol,
    to_window_nanos,
)

# 2020-11-05 00:00:00 UTC
DAY_START_NS = 1_604_534_400 * 10 ** 9
DAY_END_NS = DAY_START_NS + 24 * NANOS_PER_HOUR


class TestConversion:
    """Raw vendor values to canonical nanoseconds."""

    def test_milliseconds(self):
        normalizer = TimestampNormalizer(equity_offset_hours=0)
        assert normalizer.to_nanos(1_604_534_400_000, TimeUnit.MILLISECONDS, False) == DAY_START_NS

    def test_nanoseconds(self):
        normalizer = TimestampNormalizer()
        assert normalizer.to_nanos(DAY_START_NS, TimeUnit.NANOSECONDS, False) == DAY_START_NS

    def test_equity_offset_applied(self):
        normalizer = TimestampNormalizer(equity_offset_hours=-5)
        result = normalizer.to_nanos(DAY_START_NS, TimeUnit.NANOSECONDS, True)
        assert result == DAY_START_NS - 5 * NANOS_PER_HOUR

    def test_offset_skipped_for_non_equity(self):
        normalizer = TimestampNormalizer(equity_offset_hours=-5)
        assert normalizer.to_nanos(DAY_START_NS, TimeUnit.NANOSECONDS, False) == DAY_START_NS

    def test_positive_offset(self):
        normalizer = TimestampNormalizer(equity_offset_hours=5)
        result = normalizer.to_nanos(1000, TimeUnit.MILLISECONDS, True)
        assert result == 1000 * 10 ** 6 + 5 * NANOS_PER_HOUR

    def test_integral_float_accepted(self):
        normalizer = TimestampNormalizer(equity_offset_hours=0)
        assert normalizer.to_nanos(1000.0, TimeUnit.MILLISECONDS, False) == 10 ** 9

    @pytest.mark.parametrize("raw", ["1000", None, True, 1.5, [1]])
    def test_invalid_raw_value(self, raw):
        with pytest.raises(DecodeError):
            TimestampNormalizer().to_nanos(raw, TimeUnit.MILLISECONDS, False)

    def test_int64_overflow(self):
        with pytest.raises(DecodeError):
            TimestampNormalizer().to_nanos(2 ** 62, TimeUnit.MILLISECONDS, False)

    def test_equity_symbols(self):
        assert is_equity_symbol("AAPL")
        assert is_equity_symbol("BRK.A")
        assert not is_equity_symbol("X:BTCUSD")
        assert not is_equity_symbol("C:EURUSD")


class TestWindowBounds:
    """Window bound conversion."""

    def test_date(self):
        assert to_window_nanos(date(2020, 11, 5)) == DAY_START_NS

    def test_aware_datetime(self):
        eastern = pytz.timezone("US/Eastern").localize(datetime(2020, 11, 4, 19, 0))
        assert to_window_nanos(eastern) == DAY_START_NS

    def test_int_passthrough(self):
        assert to_window_nanos(123) == 123

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            to_window_nanos(True)

    def test_day_window(self):
        assert day_window(date(2020, 11, 5)) == (DAY_START_NS, DAY_END_NS)


class TestValidateWindow:
    """Half-open window checks."""

    def test_inside_window(self):
        TimestampNormalizer().validate_window(
            [DAY_START_NS, DAY_END_NS - 1], DAY_START_NS, DAY_END_NS, endpoint="aggs"
        )

    def test_empty_batch(self):
        with pytest.raises(EmptyResultError):
            TimestampNormalizer().validate_window([], DAY_START_NS, DAY_END_NS, endpoint="aggs")

    def test_end_is_exclusive(self):
        with pytest.raises(TimestampRangeError) as exc_info:
            TimestampNormalizer().validate_window(
                [DAY_START_NS, DAY_END_NS], DAY_START_NS, DAY_END_NS, endpoint="aggs"
            )
        assert "too big" in str(exc_info.value)

    def test_before_start(self):
        with pytest.raises(TimestampRangeError) as exc_info:
            TimestampNormalizer().validate_window(
                [DAY_START_NS - 1], date(2020, 11, 5), date(2020, 11, 6), endpoint="aggs"
            )
        assert "too small" in str(exc_info.value)
        assert exc_info.value.context["window_start"] == DAY_START_NS

    def test_rejected_payload_is_dumped(self, tmp_path):
        dumper = DiagnosticDumper(tmp_path)
        normalizer = TimestampNormalizer(dumper=dumper)
        payload = {"results": [{"t": 1}]}

        with pytest.raises(TimestampRangeError) as exc_info:
            normalizer.validate_window([0], DAY_START_NS, DAY_END_NS, endpoint="aggs", payload=payload)

        dumps = list((tmp_path / "aggs").glob("*.json"))
        assert len(dumps) == 1
        assert json.loads(dumps[0].read_text()) == payload
        assert exc_info.value.dump_path == str(dumps[0])

    def test_failed_dump_still_raises_range_error(self):
        dumper = MagicMock()
        dumper.dump.side_effect = OSError("disk full")
        normalizer = TimestampNormalizer(dumper=dumper)

        with pytest.raises(TimestampRangeError) as exc_info:
            normalizer.validate_window([0], DAY_START_NS, DAY_END_NS, endpoint="aggs", payload={})
        assert exc_info.value.dump_path is None


class TestDiagnosticDumper:
    """Dump file layout."""

    def test_path_layout(self, tmp_path):
        now = datetime(2020, 11, 5, 12, 30, tzinfo=pytz.UTC)
        path = DiagnosticDumper(tmp_path).dump("trades", {"a": 1}, now=now)
        assert path == tmp_path / "trades" / "2020-11-05T12:30:00+00:00.json"
        assert json.loads(path.read_text()) == {"a": 1}

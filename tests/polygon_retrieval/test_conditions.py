"""
Tests for condition, correction and trade ID codecs.
"""

import itertools

import pytest

from src.polygon_retrieval.conditions import (
    CORRECTION_CODES,
    QUOTE_CONDITION_MAX,
    TRADE_CONDITION_MAX,
    canonical_conditions,
    decode_conditions,
    decode_correction,
    decode_trade_id,
    encode_conditions,
    lane_width,
)
from src.polygon_retrieval.exceptions import CodecError, ErrorKind


# ============================================================================
# Condition codes
# ============================================================================


class TestConditionCodes:
    """Packing of up to four condition codes."""

    def test_lane_widths(self):
        assert lane_width(TRADE_CONDITION_MAX) == 8
        assert lane_width(QUOTE_CONDITION_MAX) == 9

    def test_empty_list_encodes_to_zero(self):
        assert encode_conditions([]) == 0

    def test_order_independent(self):
        codes = [12, 37, 4, 201]
        expected = encode_conditions(codes)
        for perm in itertools.permutations(codes):
            assert encode_conditions(list(perm)) == expected

    def test_decode_returns_sorted_padded_codes(self):
        packed = encode_conditions([37, 12])
        assert decode_conditions(packed) == (0, 0, 12, 37)

    def test_least_significant_lane_first(self):
        # Sorted lanes (0, 0, 1, 2) with 8-bit lanes
        assert encode_conditions([2, 1]) == (1 << 16) | (2 << 24)

    def test_quote_codes_use_wider_lanes(self):
        packed = encode_conditions([511, 300], QUOTE_CONDITION_MAX)
        assert decode_conditions(packed, QUOTE_CONDITION_MAX) == (0, 0, 300, 511)

    def test_canonical_form(self):
        assert canonical_conditions([9, 3]) == (0, 0, 3, 9)

    def test_too_many_codes(self):
        with pytest.raises(CodecError) as exc_info:
            encode_conditions([1, 2, 3, 4, 5])
        assert exc_info.value.kind is ErrorKind.PERMANENT

    @pytest.mark.parametrize("code", [-1, 256, 1000])
    def test_out_of_range_trade_code(self, code):
        with pytest.raises(CodecError):
            encode_conditions([code])

    def test_512_rejected_for_quotes(self):
        with pytest.raises(CodecError):
            encode_conditions([512], QUOTE_CONDITION_MAX)

    @pytest.mark.parametrize("code", ["12", 1.5, True, None])
    def test_non_integer_code(self, code):
        with pytest.raises(CodecError):
            encode_conditions([code])

    def test_decode_rejects_oversized_value(self):
        with pytest.raises(CodecError):
            decode_conditions(1 << 32)
        with pytest.raises(CodecError):
            decode_conditions(-1)


# ============================================================================
# Correction codes
# ============================================================================


class TestCorrectionCodes:
    """Sparse vendor correction codes to dense indices."""

    def test_valid_codes_map_densely(self):
        assert [decode_correction(c) for c in CORRECTION_CODES] == list(range(7))

    @pytest.mark.parametrize("code", [2, 3, 4, 5, 6, 9, 13, -1, 255])
    def test_invalid_codes(self, code):
        with pytest.raises(CodecError):
            decode_correction(code)

    def test_unhashable_code(self):
        with pytest.raises(CodecError):
            decode_correction([1])

    @pytest.mark.parametrize("code", [True, False, 1.0, "1"])
    def test_bool_and_non_integer_correction(self, code):
        with pytest.raises(CodecError):
            decode_correction(code)


# ============================================================================
# Trade IDs
# ============================================================================


class TestTradeIds:
    """Short strings and long decimal IDs."""

    def test_short_id_packed_big_endian(self):
        assert decode_trade_id("A") == 0x41 << 56
        assert decode_trade_id("AB") == (0x41 << 56) | (0x42 << 48)

    def test_eight_char_id(self):
        assert decode_trade_id("12345678") == int.from_bytes(b"12345678", "big")

    def test_empty_id(self):
        assert decode_trade_id("") == 0

    def test_short_ids_are_distinct(self):
        assert decode_trade_id("1") != decode_trade_id("10")

    def test_long_decimal_id(self):
        assert decode_trade_id("123456789") == 123456789
        assert decode_trade_id("52983525034008") == 52983525034008

    def test_max_uint64(self):
        assert decode_trade_id("18446744073709551615") == 2 ** 64 - 1

    def test_uint64_overflow(self):
        with pytest.raises(CodecError):
            decode_trade_id("18446744073709551616")

    def test_longer_than_twenty(self):
        with pytest.raises(CodecError):
            decode_trade_id("1" * 21)

    def test_long_non_numeric(self):
        with pytest.raises(CodecError):
            decode_trade_id("ABCDEFGHIJ")

    def test_non_ascii_short_id(self):
        with pytest.raises(CodecError):
            decode_trade_id("é")

    def test_non_string(self):
        with pytest.raises(CodecError):
            decode_trade_id(12345)

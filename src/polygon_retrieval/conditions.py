"""
Compact encodings for trade condition codes, correction codes and trade IDs.

Polygon annotates each trade with up to four small condition codes. They
are stored as one integer: the codes are zero-padded to four, sorted, and
packed into fixed-width lanes, least significant lane first. Sorting
makes the packed value independent of the order the vendor listed them in.

Trade IDs arrive either as short opaque strings (up to 8 characters) or as
decimal numbers (up to 20 digits). Both map onto an unsigned 64-bit int.
"""

from typing import Iterable, Tuple

from .exceptions import CodecError

MAX_CONDITIONS = 4

# Condition code ceilings used by the trade and quote schemas
TRADE_CONDITION_MAX = 256
QUOTE_CONDITION_MAX = 512

# Vendor correction codes, in dense order
CORRECTION_CODES = (0, 1, 7, 8, 10, 11, 12)
_CORRECTION_INDEX = {code: i for i, code in enumerate(CORRECTION_CODES)}

TRADE_ID_BYTES = 8
TRADE_ID_MAX_DIGITS = 20
_UINT64_MAX = 2 ** 64 - 1


def lane_width(maximum: int) -> int:
    """Bits needed to hold any value below maximum."""
    if maximum < 2:
        raise ValueError("maximum must be at least 2")
    return (maximum - 1).bit_length()


def canonical_conditions(codes: Iterable[int], maximum: int = TRADE_CONDITION_MAX) -> Tuple[int, ...]:
    """
    Validate codes and return their canonical form: four values, ascending.

    Raises:
        CodecError: If more than four codes are given or any is out of range.
    """
    codes = list(codes)
    if len(codes) > MAX_CONDITIONS:
        raise CodecError(
            f"at most {MAX_CONDITIONS} condition codes allowed",
            count=len(codes),
        )
    for code in codes:
        if isinstance(code, bool) or not isinstance(code, int):
            raise CodecError("condition code must be an integer", code=code)
        if not 0 <= code < maximum:
            raise CodecError(
                f"condition code out of range [0, {maximum})",
                code=code,
            )

    padded = codes + [0] * (MAX_CONDITIONS - len(codes))
    return tuple(sorted(padded))


def encode_conditions(codes: Iterable[int], maximum: int = TRADE_CONDITION_MAX) -> int:
    """
    Pack up to four condition codes into one integer.

    Args:
        codes: Zero to four ints, each in [0, maximum).
        maximum: Exclusive upper bound for each code (256 or 512).

    Returns:
        Packed integer; equal for any ordering of the same codes.

    Example:
        >>> encode_conditions([12, 37]) == encode_conditions([37, 12])
        True
    """
    width = lane_width(maximum)
    packed = 0
    for lane, code in enumerate(canonical_conditions(codes, maximum)):
        packed |= code << (lane * width)
    return packed


def decode_conditions(packed: int, maximum: int = TRADE_CONDITION_MAX) -> Tuple[int, ...]:
    """Unpack the four lanes of a packed condition integer."""
    width = lane_width(maximum)
    if packed < 0 or packed >> (width * MAX_CONDITIONS):
        raise CodecError("packed conditions out of range", packed=packed)
    mask = (1 << width) - 1
    return tuple((packed >> (lane * width)) & mask for lane in range(MAX_CONDITIONS))


def decode_correction(value: int) -> int:
    """
    Map a vendor correction code to its dense internal code.

    Only 0, 1, 7, 8, 10, 11 and 12 are valid.

    Raises:
        CodecError: For any other value.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise CodecError("unknown correction code", code=value)
    try:
        return _CORRECTION_INDEX[value]
    except KeyError:
        raise CodecError("unknown correction code", code=value) from None


def decode_trade_id(value: str) -> int:
    """
    Convert a vendor trade ID to an unsigned 64-bit integer.

    IDs of up to 8 characters are packed big-endian into 8 bytes, padded
    with zero bytes on the right. Longer IDs of up to 20 characters must be
    decimal numbers that fit in 64 bits.

    Raises:
        CodecError: If the ID is longer than 20 characters, not ASCII, or
            not a valid unsigned 64-bit number.
    """
    if not isinstance(value, str):
        raise CodecError("trade ID must be a string", value=value)

    if len(value) <= TRADE_ID_BYTES:
        try:
            raw = value.encode("ascii")
        except UnicodeEncodeError as e:
            raise CodecError("trade ID must be ASCII", cause=e, value=value) from e
        return int.from_bytes(raw.ljust(TRADE_ID_BYTES, b"\0"), "big")

    if len(value) <= TRADE_ID_MAX_DIGITS:
        if not (value.isascii() and value.isdigit()):
            raise CodecError("trade ID is not a decimal number", value=value)
        number = int(value)
        if number > _UINT64_MAX:
            raise CodecError("trade ID does not fit in 64 bits", value=value)
        return number

    raise CodecError(
        f"trade ID longer than {TRADE_ID_MAX_DIGITS} characters",
        length=len(value),
    )

# pricing.py
"""
Reserve resolution and pegged-value -> token conversion.

The pegged value is scaled to the reference token's decimals (it prices
against the reference reserve) and the result is in settlement-token base
units. Every ratio is applied as multiply-then-floor-divide on Python
ints, so the only precision loss is at the explicit floor points.
"""
import math
from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Any, Optional, Tuple

from .errors import EmptyPool, InvalidAmount, InvalidOffset, MalformedOracleReading

ORACLE_SCALE = 10 ** 8       # latestRoundData() answers carry 8 decimals
MAX_UINT256 = 2 ** 256 - 1
OFFSET_SCALE = 10_000        # offset multiplier resolution: 4 decimal digits
MIN_OFFSET_PERCENT = -100.0


def resolve_reserves(reserve0: int, reserve1: int, token0: str, settlement_token: str) -> Tuple[int, int]:
    """Return (settlement_reserve, reference_reserve) for a pair.

    token0 may come back checksummed or lowercase, so compare case-insensitively.
    """
    if str(token0).strip().lower() == str(settlement_token).strip().lower():
        settlement_reserve, reference_reserve = int(reserve0), int(reserve1)
    else:
        settlement_reserve, reference_reserve = int(reserve1), int(reserve0)

    if settlement_reserve == 0:
        raise EmptyPool("settlement token reserve is zero")
    if reference_reserve == 0:
        raise EmptyPool("reference token reserve is zero")
    return settlement_reserve, reference_reserve


def to_base_units(value: Any, decimals: int = 18) -> int:
    """Scale a human decimal amount (e.g. 100.5 or "100.5") to an integer.

    Goes through Decimal(str(x)) so floats keep their printed digits. Digits
    beyond `decimals` are truncated; the scaling itself is exact. Results that
    would not fit a uint256 are rejected.
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"bad amount: {value!r}")
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"bad amount: {value!r}")
    if not d.is_finite() or d <= 0:
        raise InvalidAmount(f"amount must be finite and positive: {value!r}")

    # bound the magnitude before building the integer
    if d.adjusted() + decimals > 77:
        raise InvalidAmount(f"amount too large: {value!r}")

    with localcontext() as ctx:
        ctx.prec = len(d.as_tuple().digits) + decimals + 2
        scaled = int(d.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))
    if scaled > MAX_UINT256:
        raise InvalidAmount(f"amount too large: {value!r}")
    if scaled <= 0:
        raise InvalidAmount(f"amount rounds to zero at {decimals} decimals: {value!r}")
    return scaled


def format_units(amount: int, decimals: int = 18) -> str:
    """Inverse of to_base_units for display: 200 * 10**18 -> "200"."""
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(int(amount)), 10 ** decimals)
    if decimals == 0 or frac == 0:
        return f"{sign}{whole}"
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_str}"


def parse_offset(raw: Any) -> float:
    """Parse an offset percentage such as 10, -5.5 or "+10.00"."""
    if raw is None or isinstance(raw, bool):
        raise InvalidOffset(f"bad offset: {raw!r}")
    try:
        offset = float(str(raw).strip()) if isinstance(raw, str) else float(raw)
    except (TypeError, ValueError, OverflowError):
        raise InvalidOffset(f"bad offset: {raw!r}")
    if not math.isfinite(offset):
        raise InvalidOffset(f"offset must be finite: {raw!r}")
    if offset < MIN_OFFSET_PERCENT:
        raise InvalidOffset(f"offset below -100%: {raw!r}")
    if not math.isfinite((1 + offset / 100) * OFFSET_SCALE):
        raise InvalidOffset(f"offset too large: {raw!r}")
    return offset


def offset_multiplier(offset_percent: float) -> int:
    """floor((1 + offset/100) * 10000), computed in floating point.

    The float step caps offset resolution at 4 decimal digits; existing
    settlements were computed this way, so keep it bit-for-bit.
    """
    if offset_percent < MIN_OFFSET_PERCENT:
        raise InvalidOffset(f"offset below -100%: {offset_percent}")
    scaled = (1 + offset_percent / 100) * OFFSET_SCALE
    if not math.isfinite(scaled):
        raise InvalidOffset(f"offset too large: {offset_percent}")
    return int(math.floor(scaled))


def convert_to_token_amount(
    requested_scaled: int,
    settlement_reserve: int,
    reference_reserve: int,
    offset_percent: float,
    external_rate: Optional[int] = None,
) -> int:
    """Convert a scaled pegged value into settlement-token base units.

    Direct mode (no external_rate) treats the reference token as a 1:1 proxy
    for the pegged unit. Oracle mode first converts the pegged value into the
    reference currency with an 8-decimal rate. The offset is applied last.
    """
    if reference_reserve <= 0 or settlement_reserve <= 0:
        raise EmptyPool(f"non-positive reserve: settlement={settlement_reserve} reference={reference_reserve}")

    value = int(requested_scaled)
    if external_rate is not None:
        if int(external_rate) <= 0:
            raise MalformedOracleReading(f"non-positive oracle rate: {external_rate}")
        value = value * int(external_rate) // ORACLE_SCALE

    amount = value * int(settlement_reserve) // int(reference_reserve)

    multiplier = offset_multiplier(offset_percent)
    return amount * multiplier // OFFSET_SCALE

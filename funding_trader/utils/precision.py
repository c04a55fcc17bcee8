"""
Decimal helpers for exchange payloads.

Every numeric field read from exchange JSON goes through to_decimal so a
malformed value fails loudly instead of turning into NaN. Outgoing prices and
sizes are rendered with format_decimal / format_price / format_size.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union

from funding_trader.core.errors import MalformedResponseError

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """
    Parse an exchange value into a finite Decimal.

    Floats are converted through str() so 0.1 stays 0.1.

    Raises:
        MalformedResponseError: value is missing, empty, non-numeric, NaN or infinite
    """
    if isinstance(value, bool) or value is None:
        raise MalformedResponseError(f"{field}: expected a number, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).strip()
        if not text:
            raise MalformedResponseError(f"{field}: empty numeric field")
        try:
            result = Decimal(text)
        except InvalidOperation as exc:
            raise MalformedResponseError(f"{field}: not a number: {value!r}") from exc
    if not result.is_finite():
        raise MalformedResponseError(f"{field}: non-finite number {value!r}")
    return result


def optional_decimal(value: Any, field: str = "value") -> Optional[Decimal]:
    """Like to_decimal, but None and "" map to None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_decimal(value, field)


def decimal_field(data: Mapping[str, Any], key: str, default: Optional[Number] = None) -> Decimal:
    """Read data[key] as Decimal. Missing keys use default, or fail if none given."""
    if key not in data or data[key] in (None, ""):
        if default is None:
            raise MalformedResponseError(f"missing field '{key}'")
        return to_decimal(default, key)
    return to_decimal(data[key], key)


def format_decimal(value: Number) -> str:
    """Plain (non-scientific) string without trailing zeros, as exchanges expect."""
    d = value if isinstance(value, Decimal) else Decimal(str(value))
    text = format(d.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def floor_to_decimals(value: Decimal, decimals: int) -> Decimal:
    """Round toward zero to a fixed number of decimal places."""
    quantum = Decimal(1).scaleb(-decimals)
    return value.quantize(quantum, rounding=ROUND_DOWN)


def floor_to_step(value: Decimal, step: Decimal) -> Decimal:
    """Round toward zero to a multiple of step (lot size, tick size)."""
    if step <= 0:
        return value
    return (value / step).to_integral_value(rounding=ROUND_DOWN) * step


def format_price(px: Number, sz_decimals: int, max_decimals: int = 6) -> str:
    """
    Format a price per Hyperliquid rules.

    Rules:
    - at most 5 significant figures
    - at most (max_decimals - sz_decimals) decimal places

    Args:
        px: Price
        sz_decimals: Asset szDecimals
        max_decimals: 6 for perps

    Returns:
        Formatted price string
    """
    price = to_decimal(px, "price")
    if price <= 0:
        raise ValueError(f"price must be > 0, got {px}")

    sig = Decimal(f"{price:.5g}")
    max_dp = max(0, max_decimals - sz_decimals)
    clamped = floor_to_decimals(sig, max_dp)
    return format_decimal(clamped)


def format_size(sz: Number, sz_decimals: int) -> str:
    """Floor a size to szDecimals and render it."""
    return format_decimal(floor_to_decimals(to_decimal(sz, "size"), sz_decimals))

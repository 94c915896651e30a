"""Money helpers: everything is a two-decimal ``Decimal``."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Any) -> Decimal:
    """Convert ``value`` to a Decimal rounded half-up to cents.

    Accepts Decimal, int, float and str. Raises ``ValueError`` when the value
    cannot be parsed.
    """

    if isinstance(value, Decimal):
        d = value
    else:
        try:
            # str() avoids binary float artefacts
            d = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as e:
            raise ValueError(f"Invalid money amount: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"Invalid money amount: {value!r}")
    return d.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Convert an amount to the smallest currency unit expected by gateways."""

    return int((to_decimal(amount) * 100).to_integral_value())


def from_cents(value: int | str) -> Decimal:
    return to_decimal(Decimal(str(value)) / Decimal("100"))


def format_currency(amount: Decimal, currency: str = "ZAR") -> str:
    """Human readable amount, e.g. ``R5,000.00``."""

    symbol = "R" if currency.upper() == "ZAR" else f"{currency.upper()} "
    return f"{symbol}{to_decimal(amount):,.2f}"


__all__ = ["CENTS", "ZERO", "to_decimal", "to_cents", "from_cents", "format_currency"]

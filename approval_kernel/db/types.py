"""
Module: approval_kernel.db.types
Responsibility: Annotated column types and the single money formatting /
    rounding helpers used by budget evaluation and notification text.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.

Invariants enforced:
    No floats for money.  All amounts are Decimal with explicit precision.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

ShortCode = Annotated[str, String(50)]
Name = Annotated[str, String(200)]
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 9
DISPLAY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_money(value: Decimal | int | str) -> Decimal:
    """
    Coerce a value to Decimal.

    Floats are refused: str(float) would silently carry binary noise.

    Raises:
        TypeError: value is a float.
        ValueError: value is not numeric.
    """
    if isinstance(value, float):
        raise TypeError("Money amounts must not be float")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid money amount: {value!r}") from exc


def round_money(amount: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round a Decimal amount with the canonical rounding mode."""
    quantizer = Decimal(10) ** -places
    return amount.quantize(quantizer, rounding=DEFAULT_ROUNDING)


def format_money(amount: Decimal, symbol: str = "₹") -> str:
    """Format an amount for display, e.g. ``₹6000.00``."""
    return f"{symbol}{round_money(amount, DISPLAY_DECIMAL_PLACES)}"

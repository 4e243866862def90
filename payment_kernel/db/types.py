"""
Module: payment_kernel.db.types
Responsibility: Annotated column types and the money rounding helper shared
    by models, services and validation.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from sqlalchemy import Numeric
from sqlalchemy.orm import mapped_column

MONEY_QUANTUM = Decimal("0.01")

# Two-decimal fixed point amount column
Money = Annotated[Decimal, mapped_column(Numeric(12, 2))]


def round_money(value: Any) -> Decimal:
    """
    Coerce ``value`` to a two-decimal ``Decimal`` (half-up).

    Strings and ints are accepted; floats go through ``str()`` so that
    ``0.1`` becomes ``Decimal("0.10")`` rather than its binary expansion.

    Raises:
        ValueError: if the value is not numeric.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a valid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a valid amount: {value!r}")
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)

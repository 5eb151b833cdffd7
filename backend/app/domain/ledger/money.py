"""
Money helpers.

All ledger arithmetic is done on ``Decimal`` values quantized to the
currency minor unit (two decimal places). Amounts are bounded by the
``Numeric(12, 2)`` columns they are stored in.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from backend.app.core.exceptions import InvalidAmountError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
MAX_AMOUNT = Decimal("9999999999.99")


def to_money(value: Any) -> Decimal:
    """Round a number to minor units. Floats go through ``str`` to avoid binary noise."""
    if isinstance(value, bool):
        raise InvalidAmountError("Amount must be a number", value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        if not amount.is_finite():
            raise InvalidAmountError("Amount must be a finite number", value)
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError("Amount must be a number", value)
    if abs(amount) > MAX_AMOUNT:
        raise InvalidAmountError(f"Amount must not exceed {MAX_AMOUNT}", value)
    return amount


def to_non_negative_money(value: Any) -> Decimal:
    amount = to_money(value)
    if amount < ZERO:
        raise InvalidAmountError(value=value)
    return amount

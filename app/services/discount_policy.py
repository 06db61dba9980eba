"""
Discount policy - pure functions turning discount inputs into currency amounts.

The same clamping rules apply at sale level (against the subtotal) and at
line level (against quantity * unit_price):

- percent: the rate is clamped to [0, 100]
- fixed: the amount is clamped to [0, base]

No rounding happens here; callers round when they store a total.
"""
from decimal import Decimal
from typing import Union

from app.exceptions import ValidationError
from app.models.sale import DiscountType
from app.utils.money import ZERO, HUNDRED, clamp, to_decimal


def parse_discount_type(value: Union[str, DiscountType, None]) -> DiscountType:
    """Accept 'percent' / 'fixed' (any case) or a DiscountType; None means fixed."""
    if value is None:
        return DiscountType.FIXED
    if isinstance(value, DiscountType):
        return value
    try:
        return DiscountType(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f'Invalid discount type: {value}',
            {'field': 'discount_type', 'allowed': [t.value for t in DiscountType]}
        )


def clamp_discount_input(amount, discount_type: DiscountType, base: Decimal = None) -> Decimal:
    """
    Normalize a requested discount before it is stored.

    Percent rates are clamped to [0, 100]. Fixed amounts are clamped to
    [0, base] when a base is given, otherwise only floored at 0.
    """
    value = to_decimal(amount, 'discount_amount')
    if discount_type == DiscountType.PERCENT:
        return clamp(value, ZERO, HUNDRED)
    if value < ZERO:
        return ZERO
    if base is not None and value > base:
        return base if base > ZERO else ZERO
    return value


def effective_discount(subtotal: Decimal, amount: Decimal, discount_type: DiscountType) -> Decimal:
    """Currency amount actually subtracted from ``subtotal``. Never exceeds it."""
    if subtotal <= ZERO:
        return ZERO
    amount = Decimal(amount or 0)
    if discount_type == DiscountType.PERCENT:
        rate = clamp(amount, ZERO, HUNDRED)
        return subtotal * rate / HUNDRED
    return clamp(amount, ZERO, subtotal)


def line_discount(gross: Decimal, amount: Decimal, discount_type: DiscountType) -> Decimal:
    """Per-line discount; same rules as the sale-level discount, against the line gross."""
    return effective_discount(gross, amount, discount_type)


def apply_discount(base: Decimal, amount: Decimal, discount_type: DiscountType) -> Decimal:
    """``max(0, base - effective_discount)``."""
    result = base - effective_discount(base, amount, discount_type)
    return result if result > ZERO else ZERO

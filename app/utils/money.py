"""Fixed-point money and quantity helpers."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from app.exceptions import ValidationError

ZERO = Decimal('0')
CENT = Decimal('0.01')
HUNDRED = Decimal('100')

MONEY_PLACES = 2
PRICE_PLACES = 4

Number = Union[int, str, Decimal, float]


def to_decimal(value: Number, field: str = 'amount') -> Decimal:
    """
    Parse an external numeric value into an exact Decimal.

    Floats go through ``str`` so 0.1 becomes Decimal('0.1') and not its
    binary expansion. Booleans, NaN and infinities are rejected.

    Raises:
        ValidationError: if the value is not a finite number.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required', {'field': field})

    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).strip() if isinstance(value, str) else str(value)
        if not text:
            raise ValidationError(f'{field} is required', {'field': field})
        try:
            result = Decimal(text)
        except (InvalidOperation, ValueError):
            raise ValidationError(f'{field} must be a number', {'field': field})

    if not result.is_finite():
        raise ValidationError(f'{field} must be a finite number', {'field': field})
    return result


def to_quantity(value, field: str = 'quantity') -> int:
    """Parse an integral quantity. 3, '3' and Decimal('3.0') are accepted; 2.5 is not."""
    number = to_decimal(value, field)
    if number != number.to_integral_value():
        raise ValidationError(f'{field} must be a whole number', {'field': field})
    return int(number)


def require_places(value: Decimal, places: int, field: str = 'amount') -> Decimal:
    """
    Reject values with more decimals than the column storing them keeps.

    Prices and line discounts are stored with 4 places, sale discounts and
    payments with 2.
    """
    if value != value.quantize(Decimal(1).scaleb(-places)):
        raise ValidationError(f'{field} cannot have more than {places} decimals', {'field': field})
    return value


def quantize_money(value: Decimal) -> Decimal:
    """Round to two decimal places (half up). Only used when storing or displaying."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value) -> str:
    """Serialize a money value for JSON responses, e.g. Decimal('120') -> '120.00'."""
    if value is None:
        return None
    return str(quantize_money(value))


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    """Clamp value into [low, high]."""
    if value < low:
        return low
    if value > high:
        return high
    return value

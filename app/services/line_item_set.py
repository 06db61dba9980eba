"""Line item set - ordered lines of one sale and their math."""
from decimal import Decimal
from typing import Optional

from app.database import new_id
from app.exceptions import NotFoundError, ValidationError
from app.models import SaleLine, DiscountType
from app.services.discount_policy import clamp_discount_input, line_discount
from app.utils.money import ZERO, quantize_money


def line_gross(line: SaleLine) -> Decimal:
    """quantity * unit_price, exact."""
    return Decimal(line.quantity) * Decimal(line.unit_price)


def line_amount(line: SaleLine) -> Decimal:
    """Exact line total: gross minus the clamped line discount, never negative."""
    gross = line_gross(line)
    result = gross - line_discount(gross, Decimal(line.line_discount_amount or 0), line.line_discount_type)
    return result if result > ZERO else ZERO


class LineItemSet:
    """
    Wraps the ``Sale.lines`` collection.

    Repeated adds of the same product merge into the existing line. A line
    has exactly one captured unit price, so adding the same product at a
    different price is rejected instead of silently re-pricing the line.
    Every line present has quantity >= 1; dropping a quantity below 1
    removes the line.
    """

    def __init__(self, lines):
        self._lines = lines

    def __iter__(self):
        return iter(self._lines)

    def __len__(self):
        return len(self._lines)

    def get(self, line_id: str) -> SaleLine:
        for line in self._lines:
            if line.id == line_id:
                return line
        raise NotFoundError(f'Line {line_id} not found in sale', {'line_id': line_id})

    def find_by_product(self, product_id: str) -> Optional[SaleLine]:
        for line in self._lines:
            if line.product_id == product_id:
                return line
        return None

    def add(
        self,
        product_id: str,
        quantity: int,
        unit_price: Decimal,
        discount_amount: Optional[Decimal] = None,
        discount_type: Optional[DiscountType] = None
    ) -> SaleLine:
        """Add product to the set or merge quantity into its existing line."""
        if quantity < 1:
            raise ValidationError('Quantity must be at least 1', {'field': 'quantity'})
        if unit_price < ZERO:
            raise ValidationError('Unit price cannot be negative', {'field': 'unit_price'})

        existing = self.find_by_product(product_id)
        if existing is not None:
            if Decimal(existing.unit_price) != unit_price:
                raise ValidationError(
                    'Product is already in the sale at a different unit price',
                    {'line_id': existing.id, 'unit_price': str(existing.unit_price)}
                )
            new_type = discount_type or existing.line_discount_type
            new_discount = None
            if discount_amount is not None:
                new_discount = clamp_discount_input(discount_amount, new_type)
            existing.quantity = existing.quantity + quantity
            if new_discount is not None:
                existing.line_discount_amount = new_discount
                existing.line_discount_type = new_type
            self._refresh(existing)
            return existing

        discount_type = discount_type or DiscountType.FIXED
        discount = clamp_discount_input(discount_amount or ZERO, discount_type)
        line = SaleLine(
            id=new_id(),
            product_id=product_id,
            position=self._next_position(),
            quantity=quantity,
            unit_price=unit_price,
            line_discount_amount=discount,
            line_discount_type=discount_type
        )
        self._refresh(line)
        self._lines.append(line)
        return line

    def update(
        self,
        line_id: str,
        quantity: Optional[int] = None,
        unit_price: Optional[Decimal] = None,
        discount_amount: Optional[Decimal] = None,
        discount_type: Optional[DiscountType] = None
    ) -> Optional[SaleLine]:
        """Update a line in place. Returns None when the quantity removed it."""
        line = self.get(line_id)

        if quantity is not None and quantity < 1:
            self._lines.remove(line)
            return None
        if unit_price is not None and unit_price < ZERO:
            raise ValidationError('Unit price cannot be negative', {'field': 'unit_price'})

        new_type = discount_type or line.line_discount_type
        new_discount = None
        if discount_amount is not None or discount_type is not None:
            raw = discount_amount if discount_amount is not None else line.line_discount_amount
            new_discount = clamp_discount_input(raw, new_type)

        if quantity is not None:
            line.quantity = quantity
        if unit_price is not None:
            line.unit_price = unit_price
        if new_discount is not None:
            line.line_discount_amount = new_discount
            line.line_discount_type = new_type
        self._refresh(line)
        return line

    def remove(self, line_id: str) -> None:
        self._lines.remove(self.get(line_id))

    def subtotal(self) -> Decimal:
        """Sum of exact line amounts (no per-line rounding)."""
        return sum((line_amount(line) for line in self._lines), ZERO)

    def quantities_by_product(self):
        """Total quantity per product across all lines."""
        totals = {}
        for line in self._lines:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
        return totals

    def summary(self):
        return [
            {
                'line_id': line.id,
                'product_id': line.product_id,
                'quantity': line.quantity,
                'unit_price': Decimal(line.unit_price),
                'line_total': quantize_money(line_amount(line)),
            }
            for line in self._lines
        ]

    def _next_position(self) -> int:
        return max((line.position or 0 for line in self._lines), default=0) + 1

    @staticmethod
    def _refresh(line: SaleLine) -> None:
        line.line_total = quantize_money(line_amount(line))

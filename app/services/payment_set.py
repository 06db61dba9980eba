"""Payment set - append-only tenders of one sale."""
from decimal import Decimal
from typing import Optional, Union

from app.database import new_id, utcnow
from app.exceptions import ValidationError
from app.models import SalePayment, PaymentMethod
from app.utils.money import ZERO, MONEY_PLACES, to_decimal, quantize_money, require_places


def parse_payment_method(value: Union[str, PaymentMethod]) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    if value is None or not str(value).strip():
        raise ValidationError('Payment method is required', {'field': 'method'})
    try:
        return PaymentMethod(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f'Invalid payment method: {value}',
            {'field': 'method', 'allowed': [m.value for m in PaymentMethod]}
        )


class PaymentSet:
    """
    Wraps the ``Sale.payments`` collection.

    Payments form the sale's audit trail: they are appended in
    chronological order and never edited or removed. Overpayment is left
    to the caller (enter a smaller amount, or do not complete).
    """

    def __init__(self, payments):
        self._payments = payments

    def __iter__(self):
        return iter(self._payments)

    def __len__(self):
        return len(self._payments)

    def add(self, method, amount, reference: Optional[str] = None) -> SalePayment:
        """Validate and append a payment."""
        method = parse_payment_method(method)
        value = to_decimal(amount, 'amount')
        if value <= ZERO:
            raise ValidationError('Payment amount must be greater than zero', {'field': 'amount'})
        require_places(value, MONEY_PLACES, 'amount')

        reference = (reference or '').strip() or None
        if method.requires_reference and not reference:
            raise ValidationError(
                f'Reference # is required for {method.value} payments',
                {'field': 'reference'}
            )

        payment = SalePayment(
            id=new_id(),
            position=len(self._payments) + 1,
            method=method,
            amount=quantize_money(value),
            reference=reference,
            created_at=utcnow()
        )
        self._payments.append(payment)
        return payment

    def total(self) -> Decimal:
        return sum((Decimal(p.amount) for p in self._payments), ZERO)

    def totals_by_method(self):
        totals = {}
        for payment in self._payments:
            totals[payment.method] = totals.get(payment.method, ZERO) + Decimal(payment.amount)
        return totals

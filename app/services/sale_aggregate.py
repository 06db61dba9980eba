"""
Sale aggregate - the authoritative state machine of a POS sale.

    draft --hold--> held --retrieve--> draft
    draft|held --complete--> completed --void--> voided

Only ``draft`` accepts line, discount and payment mutations. ``completed``
and ``voided`` are terminal. Every mutation validates its input and the
current status before touching the sale, so a rejected call leaves the
sale exactly as it was.

The aggregate never reads the catalog and is the only component that
calls the stock ledger, and only from ``complete`` and ``void``.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional

from app.database import new_id, utcnow
from app.exceptions import InvalidStateError, PosError, ValidationError
from app.models import Sale, SaleStatus, DiscountType
from app.services.discount_policy import (
    clamp_discount_input, effective_discount, parse_discount_type
)
from app.services.line_item_set import LineItemSet
from app.services.payment_set import PaymentSet
from app.services.stock_ledger import StockLedger
from app.utils.money import (
    MONEY_PLACES, PRICE_PLACES, ZERO, quantize_money, require_places, to_decimal, to_quantity
)

logger = logging.getLogger(__name__)


def sale_reference(sale_id: str) -> str:
    return f'sale:{sale_id}'


def void_reference(sale_id: str) -> str:
    return f'void:{sale_id}'


@dataclass
class DeliveryRequest:
    """Delivery-creation event emitted by ``complete(for_delivery=True)``."""
    sale_id: str
    lines: List[dict]
    customer_name: Optional[str] = None
    customer_address: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    notes: Optional[str] = None


DeliveryHook = Callable[[DeliveryRequest], Optional[str]]

_DELIVERY_FIELDS = ('customer_name', 'customer_address', 'customer_phone', 'customer_email', 'notes')


class SaleAggregate:
    """Root of the sale: owns the line set, payment set and discount inputs."""

    def __init__(self, sale: Sale, ledger: Optional[StockLedger] = None,
                 delivery_hook: Optional[DeliveryHook] = None):
        self.sale = sale
        self.lines = LineItemSet(sale.lines)
        self.payments = PaymentSet(sale.payments)
        self._ledger = ledger
        self._delivery_hook = delivery_hook

    @classmethod
    def create(cls, ledger: Optional[StockLedger] = None,
               delivery_hook: Optional[DeliveryHook] = None) -> 'SaleAggregate':
        """New empty draft sale with zero totals. No stock or payment side effects."""
        now = utcnow()
        sale = Sale(
            id=new_id(),
            status=SaleStatus.DRAFT,
            discount_amount=Decimal('0.00'),
            discount_type=DiscountType.FIXED,
            subtotal=Decimal('0.00'),
            total=Decimal('0.00'),
            payment_total=Decimal('0.00'),
            created_at=now,
            updated_at=now
        )
        return cls(sale, ledger=ledger, delivery_hook=delivery_hook)

    @property
    def id(self) -> str:
        return self.sale.id

    @property
    def status(self) -> SaleStatus:
        return self.sale.status

    # =====================================================
    # LINES
    # =====================================================

    def add_line(self, product_id: str, quantity, unit_price,
                 line_discount_amount=None, line_discount_type=None):
        """
        Add a product line (or merge into the product's existing line).

        ``unit_price`` is required: when the caller has no explicit price it
        must pass the catalog's current list price.
        """
        self._require_status(SaleStatus.DRAFT, action='add a line')
        if not product_id:
            raise ValidationError('product_id is required', {'field': 'product_id'})
        quantity = to_quantity(quantity)
        if quantity < 1:
            raise ValidationError('Quantity must be at least 1', {'field': 'quantity'})
        if unit_price is None:
            raise ValidationError('unit_price is required', {'field': 'unit_price'})
        price = require_places(to_decimal(unit_price, 'unit_price'), PRICE_PLACES, 'unit_price')
        discount = None
        if line_discount_amount is not None:
            discount = self._line_discount_input(line_discount_amount)
        discount_type = parse_discount_type(line_discount_type) if line_discount_type is not None else None

        line = self.lines.add(product_id, quantity, price, discount, discount_type)
        self._recompute()
        return line

    def update_line(self, line_id: str, quantity=None, unit_price=None,
                    line_discount_amount=None, line_discount_type=None):
        """Change a line in place; quantity <= 0 removes it. Returns the line or None."""
        self._require_status(SaleStatus.DRAFT, action='update a line')
        self.lines.get(line_id)
        quantity = to_quantity(quantity) if quantity is not None else None
        price = None
        if unit_price is not None:
            price = require_places(to_decimal(unit_price, 'unit_price'), PRICE_PLACES, 'unit_price')
        discount = None
        if line_discount_amount is not None:
            discount = self._line_discount_input(line_discount_amount)
        discount_type = parse_discount_type(line_discount_type) if line_discount_type is not None else None

        line = self.lines.update(line_id, quantity, price, discount, discount_type)
        self._recompute()
        return line

    def remove_line(self, line_id: str) -> None:
        self._require_status(SaleStatus.DRAFT, action='remove a line')
        self.lines.remove(line_id)
        self._recompute()

    # =====================================================
    # DISCOUNT / PAYMENTS
    # =====================================================

    def apply_discount(self, amount, discount_type) -> None:
        """
        Set the sale-level discount.

        Percent rates are stored clamped to [0, 100] and fixed amounts floored
        at 0. A fixed amount is kept as entered and only capped at the
        subtotal when totals are evaluated, so a discount given before the
        cart is filled still applies once lines are added.
        """
        self._require_status(SaleStatus.DRAFT, action='apply a discount')
        discount_type = parse_discount_type(discount_type)
        value = require_places(to_decimal(amount, 'discount_amount'), MONEY_PLACES, 'discount_amount')

        self.sale.discount_type = discount_type
        self.sale.discount_amount = clamp_discount_input(value, discount_type)
        self._recompute()

    def add_payment(self, method, amount, reference: Optional[str] = None):
        """Append a payment. A held sale must be retrieved first."""
        self._require_status(SaleStatus.DRAFT, action='add a payment')
        payment = self.payments.add(method, amount, reference)
        self._recompute()
        return payment

    # =====================================================
    # LIFECYCLE
    # =====================================================

    def hold(self) -> None:
        """Suspend the sale. Holding does not reserve stock."""
        self._require_status(SaleStatus.DRAFT, action='hold')
        if len(self.lines) == 0:
            raise InvalidStateError('An empty sale cannot be held', self.status)
        self.sale.status = SaleStatus.HELD
        self._touch()
        logger.info(f"Sale {self.id} held")

    def retrieve(self) -> None:
        """Resume a held sale exactly where it left off."""
        self._require_status(SaleStatus.HELD, action='retrieve')
        self.sale.status = SaleStatus.DRAFT
        self._touch()
        logger.info(f"Sale {self.id} retrieved")

    def complete(self, for_delivery: bool = False, delivery_details: Optional[dict] = None) -> Optional[str]:
        """
        Complete the sale: commit stock for every line, stamp completed_at,
        and emit the delivery event when requested.

        The stock commit is one all-or-nothing batch; if any product lacks
        stock nothing is committed and the sale is left untouched.

        Returns:
            the delivery id produced by the delivery hook, or None
        """
        self._require_status(SaleStatus.DRAFT, SaleStatus.HELD, action='complete')
        if len(self.lines) == 0:
            raise InvalidStateError('Sale has no line items', self.status)

        total = Decimal(self.sale.total)
        payment_total = Decimal(self.sale.payment_total)
        if total <= ZERO:
            raise InvalidStateError('Sale total must be greater than zero', self.status, {'total': str(total)})
        if payment_total < total:
            raise InvalidStateError(
                'Insufficient payment',
                self.status,
                {'payment_total': str(payment_total), 'total': str(total)}
            )

        ledger = self._require_ledger()
        deltas = [(pid, -qty) for pid, qty in self.lines.quantities_by_product().items()]
        ledger.commit_batch(deltas, reference=sale_reference(self.id), note='POS sale')

        now = utcnow()
        self.sale.status = SaleStatus.COMPLETED
        self.sale.completed_at = now
        self.sale.updated_at = now
        logger.info(f"Sale {self.id} completed: total={total} paid={payment_total}")

        if not for_delivery:
            return None
        request = self._delivery_request(delivery_details or {})
        if self._delivery_hook is None:
            logger.warning(f"Sale {self.id} completed for delivery but no delivery hook is configured")
            return None
        return self._delivery_hook(request)

    def void(self) -> None:
        """Reverse a completed sale's stock commit and mark it voided."""
        self._require_status(SaleStatus.COMPLETED, action='void')
        ledger = self._require_ledger()

        committed = ledger.committed_for(sale_reference(self.id))
        restore = [(pid, -delta) for pid, delta in committed.items()]
        ledger.commit_batch(restore, reference=void_reference(self.id), note='Void sale - stock restored')

        now = utcnow()
        self.sale.status = SaleStatus.VOIDED
        self.sale.voided_at = now
        self.sale.updated_at = now
        logger.info(f"Sale {self.id} voided, restored {dict(restore)}")

    def discard(self) -> None:
        """
        Check that the sale may be thrown away. Only draft and held sales
        qualify; they never touched stock. The caller deletes the record.
        """
        self._require_status(SaleStatus.DRAFT, SaleStatus.HELD, action='discard')
        logger.info(f"Sale {self.id} discarded with {len(self.lines)} line(s)")

    # =====================================================
    # TOTALS
    # =====================================================

    def subtotal(self) -> Decimal:
        return self.lines.subtotal()

    def effective_discount(self) -> Decimal:
        return effective_discount(
            self.lines.subtotal(),
            Decimal(self.sale.discount_amount or 0),
            self.sale.discount_type or DiscountType.FIXED
        )

    def _recompute(self) -> None:
        """total = max(0, subtotal - effective discount); rounded only when stored."""
        subtotal = self.lines.subtotal()
        discount = effective_discount(
            subtotal,
            Decimal(self.sale.discount_amount or 0),
            self.sale.discount_type or DiscountType.FIXED
        )
        total = subtotal - discount
        if total < ZERO:
            total = ZERO

        self.sale.subtotal = quantize_money(subtotal)
        self.sale.total = quantize_money(total)
        self.sale.payment_total = quantize_money(self.payments.total())
        self._touch()

    def _touch(self) -> None:
        # Every mutation writes the sale row so the version check always fires
        self.sale.updated_at = utcnow()

    def _require_status(self, *allowed: SaleStatus, action: str) -> None:
        if self.sale.status not in allowed:
            raise InvalidStateError(
                f'Cannot {action} on a {self.sale.status.value} sale',
                self.sale.status
            )

    @staticmethod
    def _line_discount_input(amount) -> Decimal:
        return require_places(to_decimal(amount, 'line_discount_amount'), PRICE_PLACES, 'line_discount_amount')

    def _require_ledger(self) -> StockLedger:
        if self._ledger is None:
            raise PosError('No stock ledger configured for this sale')
        return self._ledger

    def _delivery_request(self, details: dict) -> DeliveryRequest:
        values = {}
        for key in _DELIVERY_FIELDS:
            value = details.get(key)
            if isinstance(value, str):
                value = value.strip() or None
            values[key] = value
        return DeliveryRequest(sale_id=self.id, lines=self.lines.summary(), **values)

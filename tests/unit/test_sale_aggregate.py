"""
Unit tests for the sale aggregate state machine (in-memory ledger, no database).
"""

import pytest
from decimal import Decimal

from app.exceptions import InvalidStateError, InsufficientStockError, ValidationError, NotFoundError
from app.models import SaleStatus, DiscountType, PaymentMethod


def snapshot(aggregate):
    """Every persisted field of the sale and its children."""
    sale = aggregate.sale
    return (
        sale.status, sale.subtotal, sale.total, sale.payment_total,
        sale.discount_amount, sale.discount_type, sale.updated_at,
        sale.completed_at, sale.voided_at,
        tuple((l.id, l.product_id, l.quantity, l.unit_price, l.line_discount_amount, l.line_total) for l in sale.lines),
        tuple((p.id, p.method, p.amount, p.reference) for p in sale.payments),
    )


def paid_sale(aggregate):
    """Checkout scenario: 2 x 50.00 + 1 x 30.00, 10.00 off, paid 120.00 cash."""
    aggregate.add_line('prod-a', 2, '50.00')
    aggregate.add_line('prod-b', 1, '30.00')
    aggregate.apply_discount('10.00', 'fixed')
    aggregate.add_payment('cash', '120.00')
    return aggregate


class TestCreateAndTotals:
    """Tests for totals reconciliation."""

    def test_create_is_empty_draft(self, aggregate):
        sale = aggregate.sale
        assert sale.status == SaleStatus.DRAFT
        assert sale.subtotal == Decimal('0.00')
        assert sale.total == Decimal('0.00')
        assert sale.payment_total == Decimal('0.00')
        assert len(sale.lines) == 0 and len(sale.payments) == 0

    def test_checkout_scenario_totals(self, aggregate, ledger):
        aggregate.add_line('prod-a', 2, '50.00')
        aggregate.add_line('prod-b', 1, '30.00')
        assert aggregate.sale.subtotal == Decimal('130.00')

        aggregate.apply_discount('10.00', 'fixed')
        assert aggregate.sale.total == Decimal('120.00')

        aggregate.add_payment('cash', '120.00')
        assert aggregate.sale.payment_total == Decimal('120.00')

        aggregate.complete()
        assert aggregate.status == SaleStatus.COMPLETED
        assert aggregate.sale.completed_at is not None
        assert ledger.available('prod-a') == 8
        assert ledger.available('prod-b') == 4

    def test_subtotal_tracks_line_edits(self, aggregate):
        a = aggregate.add_line('prod-a', 2, '19.99')
        b = aggregate.add_line('prod-b', 3, '0.10', line_discount_amount='0.05')
        aggregate.update_line(a.id, quantity=5)
        aggregate.remove_line(b.id)
        aggregate.add_line('prod-b', 1, '7.35')
        expected = Decimal('5') * Decimal('19.99') + Decimal('7.35')
        assert aggregate.sale.subtotal == expected
        assert aggregate.subtotal() == expected

    def test_percent_discount_clamped(self, aggregate):
        aggregate.add_line('prod-a', 1, '80.00')
        aggregate.apply_discount('150', 'percent')
        assert aggregate.sale.discount_amount == Decimal('100.00')
        assert aggregate.effective_discount() == Decimal('80.00')
        assert aggregate.sale.total == Decimal('0.00')

    def test_fixed_discount_capped_at_subtotal(self, aggregate):
        aggregate.add_line('prod-a', 1, '40.00')
        aggregate.apply_discount('55.00', DiscountType.FIXED)
        assert aggregate.sale.discount_amount == Decimal('55.00')
        assert aggregate.effective_discount() == Decimal('40.00')
        assert aggregate.sale.total == Decimal('0.00')

    def test_fixed_discount_before_lines_is_kept(self, aggregate):
        aggregate.apply_discount('15.00', 'fixed')
        assert aggregate.sale.total == Decimal('0.00')

        aggregate.add_line('prod-a', 2, '50.00')
        assert aggregate.sale.discount_amount == Decimal('15.00')
        assert aggregate.sale.total == Decimal('85.00')

    def test_negative_fixed_discount_floored(self, aggregate):
        aggregate.add_line('prod-a', 1, '40.00')
        aggregate.apply_discount('-5', 'fixed')
        assert aggregate.sale.discount_amount == Decimal('0')
        assert aggregate.sale.total == Decimal('40.00')

    def test_total_follows_subtotal_after_discount(self, aggregate):
        line = aggregate.add_line('prod-a', 4, '25.00')
        aggregate.apply_discount('10', 'percent')
        assert aggregate.sale.total == Decimal('90.00')
        aggregate.update_line(line.id, quantity=2)
        assert aggregate.sale.total == Decimal('45.00')

    def test_update_quantity_zero_removes_line(self, aggregate):
        line = aggregate.add_line('prod-a', 2, '5.00')
        assert aggregate.update_line(line.id, quantity=0) is None
        assert len(aggregate.lines) == 0
        assert aggregate.sale.subtotal == Decimal('0.00')

    @pytest.mark.parametrize('action', [
        lambda agg: agg.add_line('prod-a', 100, '0.33335'),
        lambda agg: agg.add_line('prod-a', 1, '10.00', line_discount_amount='0.00001'),
        lambda agg: agg.apply_discount('12.345', 'percent'),
        lambda agg: agg.apply_discount('1.005', 'fixed'),
    ])
    def test_rejects_more_decimals_than_stored(self, aggregate, action):
        before = snapshot(aggregate)
        with pytest.raises(ValidationError):
            action(aggregate)
        assert snapshot(aggregate) == before

    def test_four_decimal_price_accepted(self, aggregate):
        line = aggregate.add_line('prod-a', 100, '0.3333')
        assert line.unit_price == Decimal('0.3333')
        assert aggregate.sale.subtotal == Decimal('33.33')
        with pytest.raises(ValidationError):
            aggregate.update_line(line.id, unit_price='0.33335')
        assert line.unit_price == Decimal('0.3333')

    def test_add_line_requires_price(self, aggregate):
        with pytest.raises(ValidationError):
            aggregate.add_line('prod-a', 1, None)

    def test_remove_unknown_line(self, aggregate):
        with pytest.raises(NotFoundError):
            aggregate.remove_line('nope')


class TestStateMachine:
    """Tests for allowed and forbidden transitions."""

    def test_hold_empty_sale_fails(self, aggregate):
        with pytest.raises(InvalidStateError):
            aggregate.hold()
        assert aggregate.status == SaleStatus.DRAFT

    def test_hold_and_retrieve_keeps_state(self, aggregate):
        aggregate.add_line('prod-a', 2, '50.00')
        aggregate.apply_discount('5', 'percent')
        aggregate.add_payment('card', '20.00')
        # Everything except updated_at
        before = snapshot(aggregate)[:6] + snapshot(aggregate)[7:]

        aggregate.hold()
        assert aggregate.status == SaleStatus.HELD
        aggregate.retrieve()
        assert aggregate.status == SaleStatus.DRAFT

        assert snapshot(aggregate)[:6] + snapshot(aggregate)[7:] == before

    def test_held_sale_rejects_mutations(self, aggregate):
        line = aggregate.add_line('prod-a', 1, '50.00')
        aggregate.hold()
        for action in (
            lambda: aggregate.add_payment('cash', '10.00'),
            lambda: aggregate.add_line('prod-b', 1, '30.00'),
            lambda: aggregate.update_line(line.id, quantity=3),
            lambda: aggregate.apply_discount('1', 'fixed'),
            lambda: aggregate.hold(),
        ):
            with pytest.raises(InvalidStateError):
                action()

    def test_retrieve_requires_held(self, aggregate):
        with pytest.raises(InvalidStateError):
            aggregate.retrieve()

    def test_complete_from_held(self, aggregate, ledger):
        paid_sale(aggregate)
        aggregate.hold()
        aggregate.complete()
        assert aggregate.status == SaleStatus.COMPLETED

    @pytest.mark.parametrize('status', [SaleStatus.COMPLETED, SaleStatus.VOIDED])
    def test_terminal_sale_unchanged_by_mutations(self, aggregate, status):
        paid_sale(aggregate)
        aggregate.complete()
        if status == SaleStatus.VOIDED:
            aggregate.void()
        line_id = aggregate.sale.lines[0].id
        before = snapshot(aggregate)

        for action in (
            lambda: aggregate.add_line('prod-a', 1, '50.00'),
            lambda: aggregate.update_line(line_id, quantity=1),
            lambda: aggregate.remove_line(line_id),
            lambda: aggregate.apply_discount('1', 'fixed'),
            lambda: aggregate.add_payment('cash', '1.00'),
            lambda: aggregate.hold(),
            lambda: aggregate.retrieve(),
            lambda: aggregate.complete(),
        ):
            with pytest.raises(InvalidStateError):
                action()
        assert snapshot(aggregate) == before


class TestCompletion:
    """Tests for completion preconditions and stock atomicity."""

    def test_complete_requires_lines(self, aggregate):
        with pytest.raises(InvalidStateError):
            aggregate.complete()

    def test_complete_requires_full_payment(self, aggregate, ledger):
        aggregate.add_line('prod-a', 2, '50.00')
        aggregate.add_payment('cash', '99.99')
        with pytest.raises(InvalidStateError):
            aggregate.complete()
        assert aggregate.status == SaleStatus.DRAFT
        assert ledger.available('prod-a') == 10

    def test_complete_requires_positive_total(self, aggregate):
        aggregate.add_line('prod-a', 1, '10.00')
        aggregate.apply_discount('100', 'percent')
        with pytest.raises(InvalidStateError):
            aggregate.complete()

    def test_overpayment_allowed(self, aggregate):
        aggregate.add_line('prod-a', 1, '10.00')
        aggregate.add_payment('cash', '20.00')
        aggregate.complete()
        assert aggregate.sale.change_due == Decimal('10.00')

    def test_insufficient_stock_is_all_or_nothing(self, aggregate, ledger):
        ledger.set_level('prod-b', 0)
        paid_sale(aggregate)
        before = snapshot(aggregate)

        with pytest.raises(InsufficientStockError) as exc:
            aggregate.complete()

        assert exc.value.product_id == 'prod-b'
        assert snapshot(aggregate) == before
        assert ledger.available('prod-a') == 10
        assert ledger.available('prod-b') == 0

    def test_delivery_event(self, aggregate, delivery_events):
        paid_sale(aggregate)
        delivery_id = aggregate.complete(for_delivery=True, delivery_details={'customer_name': ' Ana ', 'notes': ''})
        assert delivery_id == 'delivery-1'
        event = delivery_events[0]
        assert event.sale_id == aggregate.id
        assert event.customer_name == 'Ana'
        assert event.notes is None
        assert [(l['product_id'], l['quantity']) for l in event.lines] == [('prod-a', 2), ('prod-b', 1)]

    def test_no_delivery_event_by_default(self, aggregate, delivery_events):
        paid_sale(aggregate)
        assert aggregate.complete() is None
        assert delivery_events == []


class TestVoid:
    """Tests for voiding completed sales."""

    def test_void_restores_stock(self, aggregate, ledger):
        paid_sale(aggregate)
        aggregate.complete()
        # Catalog-level stock changes in between do not affect the restore amount
        ledger.commit('prod-a', 7, reference='purchase')
        aggregate.void()
        assert aggregate.status == SaleStatus.VOIDED
        assert aggregate.sale.voided_at is not None
        assert ledger.available('prod-a') == 17
        assert ledger.available('prod-b') == 5

    def test_void_draft_fails(self, aggregate):
        aggregate.add_line('prod-a', 1, '1.00')
        with pytest.raises(InvalidStateError):
            aggregate.void()

    def test_void_twice_fails(self, aggregate, ledger):
        paid_sale(aggregate)
        aggregate.complete()
        aggregate.void()
        with pytest.raises(InvalidStateError):
            aggregate.void()
        assert ledger.available('prod-a') == 10

    @pytest.mark.parametrize('hold', [False, True])
    def test_discard_open_sale(self, aggregate, ledger, hold):
        aggregate.add_line('prod-a', 1, '10.00')
        if hold:
            aggregate.hold()
        aggregate.discard()
        assert ledger.movements == []

    def test_discard_completed_fails(self, aggregate):
        paid_sale(aggregate)
        aggregate.complete()
        with pytest.raises(InvalidStateError):
            aggregate.discard()
        aggregate.void()
        with pytest.raises(InvalidStateError):
            aggregate.discard()

    def test_payments_are_audit_trail(self, aggregate):
        aggregate.add_line('prod-a', 1, '10.00')
        aggregate.add_payment('cash', '5.00')
        aggregate.add_payment('gcash', '5.00', 'REF-1')
        assert [p.method for p in aggregate.payments] == [PaymentMethod.CASH, PaymentMethod.GCASH]
        assert [p.position for p in aggregate.payments] == [1, 2]

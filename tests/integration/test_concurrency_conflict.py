"""
Integration tests for optimistic locking on the sale row.

A second session commits between load and commit of the first one; the
first session's versioned UPDATE then matches no row.
"""
import pytest
from decimal import Decimal
from sqlalchemy.orm import Session

from app.database import get_engine
from app.exceptions import ConcurrencyConflictError
from app.models import SaleStatus
from app.services import sale_service
from app.services.stock_ledger import SqlStockLedger


@pytest.fixture
def other_session(app):
    """Independent session on the same database, standing in for another terminal."""
    other = Session(bind=get_engine())
    yield other
    other.rollback()
    other.close()


def test_lost_update_is_rejected(session, other_session, product_a):
    sale_id = sale_service.create_sale(session).id
    sale_service.add_line(session, sale_id, product_a.id, 1)

    with pytest.raises(ConcurrencyConflictError):
        with sale_service.sale_unit_of_work(session, sale_id) as aggregate:
            sale_service.add_payment(other_session, sale_id, 'cash', '5.00')
            aggregate.add_payment('cash', '50.00')

    sale = sale_service.get_sale(session, sale_id)
    assert [p.amount for p in sale.payments] == [Decimal('5.00')]
    assert sale.payment_total == Decimal('5.00')
    assert sale.version == 3


def test_conflicting_completion_commits_stock_once(session, other_session, product_a):
    product_id = product_a.id
    sale_id = sale_service.create_sale(session).id
    sale_service.add_line(session, sale_id, product_id, 2)
    sale_service.add_payment(session, sale_id, 'cash', '100.00')

    with pytest.raises(ConcurrencyConflictError):
        with sale_service.sale_unit_of_work(session, sale_id) as aggregate:
            sale_service.complete_sale(other_session, sale_id)
            aggregate.complete()

    sale = sale_service.get_sale(session, sale_id)
    assert sale.status == SaleStatus.COMPLETED
    assert SqlStockLedger(session).available(product_id) == 8

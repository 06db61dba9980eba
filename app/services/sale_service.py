"""
Sale service - one unit of work per POS operation.

Every operation loads the sale, wraps it in a SaleAggregate, applies one
mutation and commits. Lost updates are prevented by the sale's version
column: a concurrent writer makes the versioned UPDATE match zero rows and
the operation fails with ConcurrencyConflictError. Callers holding an ETag
can pass it as ``expected_version`` to fail fast before any work is done.

All functions take the SQLAlchemy session first and roll it back on any
error, so a rejected operation never leaves partial state.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import asc, desc
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.blueprints.metrics import (
    payments_recorded_total, sales_completed_total, sales_voided_total,
    sale_conflicts_total, stock_rejections_total
)
from app.exceptions import (
    PosError, ValidationError, NotFoundError, InsufficientStockError, ConcurrencyConflictError
)
from app.models import Product, Sale, SaleStatus
from app.services import delivery_service
from app.services.sale_aggregate import SaleAggregate
from app.services.stock_ledger import SqlStockLedger, StockLedger

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    'created_at': Sale.created_at,
    'total': Sale.total,
    'status': Sale.status,
}
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


# =====================================================
# CATALOG / READS
# =====================================================

def get_product(session, product_id: str) -> Product:
    """Catalog lookup used to default a line's unit price to the list price."""
    product = session.get(Product, product_id) if product_id else None
    if not product:
        raise NotFoundError('Product not found', {'product_id': product_id})
    return product


def get_sale(session, sale_id: str) -> Sale:
    sale = session.query(Sale).options(
        selectinload(Sale.lines),
        selectinload(Sale.payments)
    ).filter(Sale.id == sale_id).first()
    if not sale:
        raise NotFoundError(f'Sale {sale_id} not found', {'sale_id': sale_id})
    return sale


def list_sales(
    session,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    status: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: str = 'created_at',
    sort_order: str = 'desc'
) -> Tuple[List[Sale], int]:
    """
    Paginated sale listing.

    Returns:
        (sales on the requested page, total matching count)
    """
    if page < 1:
        raise ValidationError('page must be >= 1', {'field': 'page'})
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f'limit must be between 1 and {MAX_PAGE_SIZE}', {'field': 'limit'})
    if sort_by not in SORTABLE_COLUMNS:
        raise ValidationError(f'Cannot sort by {sort_by}', {'field': 'sort_by', 'allowed': list(SORTABLE_COLUMNS)})
    if sort_order not in ('asc', 'desc'):
        raise ValidationError('sort_order must be asc or desc', {'field': 'sort_order'})

    query = session.query(Sale)
    if status:
        statuses = []
        for value in status.split(','):
            try:
                statuses.append(SaleStatus(value.strip().lower()))
            except ValueError:
                raise ValidationError(f'Invalid status: {value}', {'field': 'status'})
        query = query.filter(Sale.status.in_(statuses))
    if date_from:
        query = query.filter(Sale.created_at >= date_from)
    if date_to:
        query = query.filter(Sale.created_at <= date_to)

    total_count = query.count()
    order = desc if sort_order == 'desc' else asc
    sales = (query
             .order_by(order(SORTABLE_COLUMNS[sort_by]), order(Sale.id))
             .offset((page - 1) * limit)
             .limit(limit)
             .all())
    return sales, total_count


# =====================================================
# UNIT OF WORK
# =====================================================

@contextmanager
def sale_unit_of_work(session, sale_id: str, expected_version: Optional[int] = None,
                      ledger: Optional[StockLedger] = None):
    """
    Load -> validate -> mutate -> commit for a single sale.

    Yields the SaleAggregate. Commits when the block exits cleanly and rolls
    back on any exception.
    """
    try:
        sale = get_sale(session, sale_id)
        if expected_version is not None and sale.version != expected_version:
            raise ConcurrencyConflictError(sale_id, expected_version, sale.version)

        aggregate = SaleAggregate(
            sale,
            ledger=ledger if ledger is not None else SqlStockLedger(session),
            delivery_hook=lambda request: delivery_service.create_delivery(session, request)
        )
        yield aggregate
        session.commit()

    except StaleDataError:
        session.rollback()
        sale_conflicts_total.inc()
        logger.warning(f"Concurrent modification detected on sale {sale_id}")
        raise ConcurrencyConflictError(sale_id)

    except ConcurrencyConflictError:
        session.rollback()
        sale_conflicts_total.inc()
        logger.warning(f"Stale version for sale {sale_id} (expected {expected_version})")
        raise

    except PosError:
        session.rollback()
        raise

    except Exception as e:
        session.rollback()
        logger.error(f"Unexpected error on sale {sale_id}: {e}", exc_info=True)
        raise


# =====================================================
# OPERATIONS
# =====================================================

def create_sale(session) -> Sale:
    """Create an empty draft sale."""
    try:
        aggregate = SaleAggregate.create()
        session.add(aggregate.sale)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"Sale {aggregate.id} created")
    return aggregate.sale


def add_line(session, sale_id: str, product_id: str, quantity, unit_price=None,
             line_discount_amount=None, line_discount_type=None,
             expected_version: Optional[int] = None) -> Sale:
    """Add a product to a draft sale. Without unit_price the catalog list price is captured."""
    with sale_unit_of_work(session, sale_id, expected_version) as aggregate:
        product = get_product(session, product_id)
        if not product.active:
            raise ValidationError(f'Product "{product.name}" is not active', {'product_id': product_id})
        if unit_price is None:
            unit_price = product.list_price
        aggregate.add_line(product_id, quantity, unit_price, line_discount_amount, line_discount_type)
    return aggregate.sale


def update_line(session, sale_id: str, line_id: str, quantity=None, unit_price=None,
                line_discount_amount=None, line_discount_type=None,
                expected_version: Optional[int] = None) -> Sale:
    with sale_unit_of_work(session, sale_id, expected_version) as aggregate:
        aggregate.update_line(line_id, quantity, unit_price, line_discount_amount, line_discount_type)
    return aggregate.sale


def remove_line(session, sale_id: str, line_id: str, expected_version: Optional[int] = None) -> Sale:
    with sale_unit_of_work(session, sale_id, expected_version) as aggregate:
        aggregate.remove_line(line_id)
    return aggregate.sale


def apply_discount(session, sale_id: str, amount, discount_type,
                   expected_version: Optional[int] = None) -> Sale:
    with sale_unit_of_work(session, sale_id, expected_version) as aggregate:
        aggregate.apply_discount(amount, discount_type)
    return aggregate.sale


def add_payment(session, sale_id: str, method, amount, reference: Optional[str] = None,
                expected_version: Optional[int] = None) -> Sale:
    with sale_unit_of_work(session, sale_id, expected_version) as aggregate:
        payment = aggregate.add_payment(method, amount, reference)
        method_label = payment.method.value
    payments_recorded_total.labels(method_label).inc()
    return aggregate.sale


def hold_sale(session, sale_id: str, expected_version: Optional[int] = None) -> Sale:
    with sale_unit_of_work(session, sale_id, expected_version) as aggregate:
        aggregate.hold()
    return aggregate.sale


def retrieve_sale(session, sale_id: str, expected_version: Optional[int] = None) -> Sale:
    with sale_unit_of_work(session, sale_id, expected_version) as aggregate:
        aggregate.retrieve()
    return aggregate.sale


def update_sale(session, sale_id: str, discount_amount=None, discount_type=None,
                status: Optional[str] = None, expected_version: Optional[int] = None) -> Sale:
    """
    Sale-level edit in one transaction: retrieve (status='draft'), then the
    discount, then hold (status='held'). Any failing step rolls back all of them.

    A discount with only one of amount/type keeps the sale's current value
    for the other.
    """
    if status not in (None, SaleStatus.DRAFT.value, SaleStatus.HELD.value):
        raise ValidationError('status must be held or draft', {'field': 'status'})
    has_discount = discount_amount is not None or discount_type is not None
    if not has_discount and status is None:
        raise ValidationError('Nothing to update')

    with sale_unit_of_work(session, sale_id, expected_version) as aggregate:
        if status == SaleStatus.DRAFT.value:
            aggregate.retrieve()
        if has_discount:
            sale = aggregate.sale
            aggregate.apply_discount(
                discount_amount if discount_amount is not None else sale.discount_amount,
                discount_type if discount_type is not None else sale.discount_type
            )
        if status == SaleStatus.HELD.value:
            aggregate.hold()
    return aggregate.sale


def discard_sale(session, sale_id: str, expected_version: Optional[int] = None) -> None:
    """Delete a draft or held sale with its lines and payments."""
    with sale_unit_of_work(session, sale_id, expected_version) as aggregate:
        aggregate.discard()
        session.delete(aggregate.sale)


def complete_sale(session, sale_id: str, for_delivery: bool = False,
                  delivery_details: Optional[dict] = None,
                  expected_version: Optional[int] = None,
                  ledger: Optional[StockLedger] = None) -> Tuple[Sale, Optional[str]]:
    """
    Complete a sale: stock commit, completion stamp and optional delivery,
    all in one transaction.

    Returns:
        (sale, delivery_id or None)
    """
    try:
        with sale_unit_of_work(session, sale_id, expected_version, ledger) as aggregate:
            delivery_id = aggregate.complete(for_delivery=for_delivery, delivery_details=delivery_details)
    except InsufficientStockError as e:
        stock_rejections_total.inc()
        logger.warning(f"Completion of sale {sale_id} rejected: {e.message}")
        raise

    sales_completed_total.labels('delivery' if for_delivery else 'counter').inc()
    return aggregate.sale, delivery_id


def void_sale(session, sale_id: str, expected_version: Optional[int] = None,
              ledger: Optional[StockLedger] = None) -> Sale:
    """Void a completed sale and restore the stock it committed."""
    with sale_unit_of_work(session, sale_id, expected_version, ledger) as aggregate:
        aggregate.void()
    sales_voided_total.inc()
    return aggregate.sale

"""Models package - exports all SQLAlchemy models."""
# Catalog / inventory
from app.models.product import Product
from app.models.product_stock import ProductStock
from app.models.stock_move import StockMove, StockMoveType

# Point of sale
from app.models.sale import Sale, SaleStatus, DiscountType
from app.models.sale_line import SaleLine
from app.models.sale_payment import SalePayment, PaymentMethod, PAYMENT_METHODS_REQUIRING_REFERENCE
from app.models.delivery import Delivery

__all__ = [
    'Product', 'ProductStock', 'StockMove', 'StockMoveType',
    'Sale', 'SaleStatus', 'DiscountType', 'SaleLine',
    'SalePayment', 'PaymentMethod', 'PAYMENT_METHODS_REQUIRING_REFERENCE',
    'Delivery',
]

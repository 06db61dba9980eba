"""
Flask CLI commands for database and stock management.

Commands:
- flask init-db: Create all tables
- flask add-product: Register a catalog product with initial stock
- flask set-stock: Set a product's on-hand quantity through the stock ledger
"""

import click
from decimal import Decimal, InvalidOperation
from app.database import get_session, create_tables
from app.exceptions import PosError
from app.models import Product, ProductStock, StockMoveType
from app.services.stock_ledger import SqlStockLedger


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables."""
        create_tables()
        click.echo(click.style('Tables created.', fg='green'))

    @app.cli.command('add-product')
    @click.option('--sku', required=True, help='Unique SKU')
    @click.option('--name', required=True, help='Product name')
    @click.option('--price', required=True, help='List price, e.g. 50.00')
    @click.option('--unit', default='pcs', show_default=True, help='Unit of measure')
    @click.option('--qty', default=0, type=int, show_default=True, help='Initial on-hand quantity')
    def add_product(sku, name, price, unit, qty):
        """Create a catalog product with its stock row."""
        try:
            list_price = Decimal(price)
        except InvalidOperation:
            click.echo(click.style(f'Invalid price: {price}', fg='red'))
            return

        db_session = get_session()
        if db_session.query(Product).filter_by(sku=sku).first():
            click.echo(click.style(f'A product with SKU {sku} already exists.', fg='red'))
            return

        try:
            product = Product(sku=sku, name=name, unit=unit, list_price=list_price, active=True)
            db_session.add(product)
            db_session.flush()
            db_session.add(ProductStock(product_id=product.id, on_hand_qty=0))
            db_session.flush()
            if qty:
                SqlStockLedger(db_session).commit(product.id, qty, reference='initial', note='Initial stock')
            db_session.commit()
            click.echo(click.style(f'Product created: {product.id}', fg='green'))
        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'Error creating product: {str(e)}', fg='red'))

    @app.cli.command('set-stock')
    @click.option('--product-id', required=True, help='Product id')
    @click.option('--qty', required=True, type=int, help='New on-hand quantity')
    @click.option('--note', default='Manual adjustment', help='Stock move note')
    def set_stock(product_id, qty, note):
        """Adjust on-hand quantity to an absolute value."""
        if qty < 0:
            click.echo(click.style('Quantity cannot be negative.', fg='red'))
            return

        db_session = get_session()
        ledger = SqlStockLedger(db_session)
        try:
            delta = qty - ledger.available(product_id)
            if delta:
                ledger.commit(product_id, delta, reference='manual', note=note, move_type=StockMoveType.ADJUST)
            db_session.commit()
            click.echo(f'On hand for {product_id}: {ledger.available(product_id)}')
        except PosError as e:
            db_session.rollback()
            click.echo(click.style(e.message, fg='red'))

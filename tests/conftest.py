import pytest
from decimal import Decimal
import uuid

from config import Config
from app import create_app
from app.database import get_session, create_tables
from app.models import Product, ProductStock
from app.services.sale_aggregate import SaleAggregate
from app.services.stock_ledger import InMemoryStockLedger


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application instance for testing on a temporary SQLite database."""
    db_path = tmp_path_factory.mktemp('db') / 'pos_test.sqlite'

    class TestConfig(Config):
        TESTING = True
        ENV = 'testing'
        SQLALCHEMY_DATABASE_URI = f'sqlite:///{db_path}'
        SQLALCHEMY_ECHO = False
        SENTRY_DSN = None

    app = create_app(TestConfig)
    with app.app_context():
        create_tables()
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope='function')
def product_factory(session):
    """Create catalog products with a stock row; SKUs are unique per call."""
    def _create(list_price='50.00', on_hand=10, name='Test Product', active=True):
        suffix = str(uuid.uuid4())[:8]
        product = Product(
            sku=f'SKU-{suffix}',
            name=f'{name} {suffix}',
            unit='pcs',
            list_price=Decimal(list_price),
            active=active
        )
        session.add(product)
        session.flush()
        session.add(ProductStock(product_id=product.id, on_hand_qty=on_hand))
        session.commit()
        return product
    return _create


@pytest.fixture(scope='function')
def product_a(product_factory):
    return product_factory(list_price='50.00', on_hand=10, name='Product A')


@pytest.fixture(scope='function')
def product_b(product_factory):
    return product_factory(list_price='30.00', on_hand=5, name='Product B')


@pytest.fixture
def ledger():
    """In-memory ledger stocked with two products for aggregate tests."""
    return InMemoryStockLedger({'prod-a': 10, 'prod-b': 5})


@pytest.fixture
def delivery_events():
    return []


@pytest.fixture
def aggregate(ledger, delivery_events):
    """A fresh draft sale wired to the in-memory ledger and a recording delivery hook."""
    def hook(request):
        delivery_events.append(request)
        return f'delivery-{len(delivery_events)}'
    return SaleAggregate.create(ledger=ledger, delivery_hook=hook)

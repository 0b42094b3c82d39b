import pytest
from decimal import Decimal
import uuid

from nota import create_app
from nota.database import db_session, get_session, create_schema, drop_schema
from nota.models import (
    Product, ProductUnit, StockEntry, DiscountTier, Customer, Setting, TRANSACTION_COUNTER_KEY
)


@pytest.fixture(scope='function')
def app():
    """Application on an in-memory database with a fresh schema per test."""
    app = create_app('config.TestConfig')
    ctx = app.app_context()
    ctx.push()
    create_schema()
    yield app
    db_session.remove()
    drop_schema()
    ctx.pop()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def actor_client(client):
    """Test client with a logged-in cashier."""
    with client.session_transaction() as sess:
        sess['user_id'] = 'kasir-1'
    return client


@pytest.fixture(scope='function')
def session(app):
    """Database session bound to the test app."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def customer(session):
    """Customer selectable on a nota."""
    customer = Customer(name='Toko Sinar Jaya', address='Jl. Merdeka 12, Bandung')
    session.add(customer)
    session.commit()
    return customer


def make_product(session, name='Pensil 2B', base_price='1000', stock=None, units=None, tiers=()):
    """Persist a product with stock entries, units and discount tiers."""
    product = Product(
        name=name,
        category='Alat Tulis',
        sku=f'SKU-{uuid.uuid4().hex[:8]}',
        base_price=Decimal(base_price),
        price=Decimal(base_price),
    )
    for unit_name, quantity in (units or [('buah', 1), ('box', 12), ('karton', 144)]):
        product.units.append(ProductUnit(name=unit_name, quantity=quantity))
    for unit_name, quantity in (stock or [('buah', 100), ('box', 10), ('karton', 2)]):
        product.stock_entries.append(StockEntry(unit=unit_name, quantity=quantity))
    for tier in tiers:
        product.discount_tiers.append(DiscountTier(**tier))
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product(session):
    """Pensil 2B: 1000/buah, 10% at 10+ buah, 10%+5% at 5+ box, 15% at exactly 12 buah."""
    return make_product(session, tiers=[
        {'min_quantity': 10, 'discount': Decimal('10'), 'unit': 'buah', 'is_exact': False},
        {'min_quantity': 5, 'discount': Decimal('10'), 'discount2': Decimal('5'), 'unit': 'box', 'is_exact': False},
        {'min_quantity': 12, 'discount': Decimal('15'), 'unit': 'buah', 'is_exact': True},
    ])


@pytest.fixture(scope='function')
def plain_product(session):
    """Product without any discount tier."""
    return make_product(session, name='Buku Tulis 38', base_price='3500',
                        stock=[('buah', 40)], units=[('buah', 1)])


@pytest.fixture(scope='function')
def counter(session):
    """Counter row at a known value."""
    setting = Setting(key=TRANSACTION_COUNTER_KEY, value='2504040159')
    session.add(setting)
    session.commit()
    return setting

"""
Pytest fixtures for order engine tests.

Provides the in-memory app, per-test table wipe, test client, identities and
a small catalog.
"""

import pytest

from orderengine import create_app
from orderengine.extensions import db, notifier
from orderengine.models import Product, ProductVariant, DiningTable, OrderSequence
from orderengine.services.identity_service import (
    SessionContext,
    ROLE_ADMIN,
    ROLE_CASHIER,
    HEADER_EMPLOYEE_ID,
    HEADER_ROLE,
    HEADER_TERMINAL_ID,
)
from orderengine.services.terminal_service import TerminalRegistry, get_terminal


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'COMMIT_COOLDOWN_SECONDS': 0.0,
        'AUDIT_LEGACY_CANCEL_SYNC': False,
        'NOTIFIER_DISPATCH_ENABLED': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database and terminal state for each test."""
    app.extensions["terminal_registry"] = TerminalRegistry(app.config["COMMIT_COOLDOWN_SECONDS"])
    app.config["AUDIT_LEGACY_CANCEL_SYNC"] = False
    notifier.init_app(app)

    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture
def cashier():
    return SessionContext(employee_id="emp-cashier", role=ROLE_CASHIER, terminal_id="T1")


@pytest.fixture
def admin():
    return SessionContext(employee_id="emp-admin", role=ROLE_ADMIN, terminal_id="T1")


@pytest.fixture
def terminal(db_session):
    return get_terminal("T1")


@pytest.fixture
def cashier_headers():
    return {
        HEADER_EMPLOYEE_ID: "emp-cashier",
        HEADER_ROLE: ROLE_CASHIER,
        HEADER_TERMINAL_ID: "T1",
    }


@pytest.fixture
def admin_headers():
    return {
        HEADER_EMPLOYEE_ID: "emp-admin",
        HEADER_ROLE: ROLE_ADMIN,
        HEADER_TERMINAL_ID: "T1",
    }


@pytest.fixture
def product_a(db_session):
    """Plain product counted by its own stock: 10.00, 10 in stock."""
    product = Product(sku="A-1", name="Product A", base_price_cents=1000, stock_quantity=10)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def product_b(db_session):
    product = Product(sku="B-1", name="Product B", base_price_cents=2500, stock_quantity=4)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def sized_product(db_session):
    """Product sold by size; variants carry the stock."""
    product = Product(sku="LATTE", name="Latte", base_price_cents=400, stock_quantity=0)
    db_session.add(product)
    db_session.flush()
    small = ProductVariant(product_id=product.id, name="Small", price_modifier_cents=0, stock_quantity=5)
    large = ProductVariant(product_id=product.id, name="Large", price_modifier_cents=150, stock_quantity=3)
    db_session.add_all([small, large])
    db_session.commit()
    return product, small, large


@pytest.fixture
def dining_table(db_session):
    table = DiningTable(label="T-01")
    db_session.add(table)
    db_session.commit()
    return table


@pytest.fixture
def order_sequence(db_session):
    seq = OrderSequence(name="orders", next_number=1)
    db_session.add(seq)
    db_session.commit()
    return seq

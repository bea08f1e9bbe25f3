"""
Pytest fixtures for back-office tests.

Provides the test database, sequence counters, entity factories and test client.
"""

import pytest
from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Product, Customer, Supplier
from backoffice.services import account_service, sequence_service, stock_service

ADMIN_ID = 1
CASHIER_ID = 2


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOCK_RETRY_BACKOFF': 0.01,
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
    """Create fresh database with sequence counters for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        sequence_service.ensure_sequences(app.config["DEFAULT_SEQUENCE_PREFIXES"])
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: product whose opening stock is posted through the stock ledger."""
    counter = {"n": 0}

    def _make(stock=0, price_cents=100, cost_cents=60, is_active=True, code=None, name=None):
        counter["n"] += 1
        product = Product(
            code=code or f"P-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            price_cents=price_cents,
            cost_cents=cost_cents,
            stock=0,
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            stock_service.post_manual_movement(
                product_id=product.id,
                kind=stock_service.KIND_IN,
                quantity=stock,
                reason="Opening stock",
                actor_id=ADMIN_ID,
            )
        if not is_active:
            product.is_active = False
            db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory: customer, optionally with a running account and opening debt."""
    counter = {"n": 0}

    def _make(has_credit_account=True, credit_limit_cents=None, balance_cents=0, is_active=True, name=None):
        counter["n"] += 1
        customer = Customer(
            name=name or f"Customer {counter['n']}",
            has_credit_account=has_credit_account,
            credit_limit_cents=credit_limit_cents,
            balance_cents=0,
            is_active=is_active,
        )
        db_session.add(customer)
        db_session.commit()
        if balance_cents:
            account_service.post_adjustment(
                customer_id=customer.id,
                direction=account_service.DIRECTION_DEBIT,
                amount_cents=balance_cents,
                concept="Opening balance",
                actor_id=ADMIN_ID,
            )
        return customer

    return _make


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Main Supplier", tax_id="30-00000000-1")
    db_session.add(supplier)
    db_session.commit()
    return supplier


def actor_headers(role: str = "admin", actor_id: int = ADMIN_ID) -> dict:
    """Helper to create the gateway identity headers."""
    return {'X-Actor-Id': str(actor_id), 'X-Actor-Role': role}

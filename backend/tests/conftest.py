"""
Pytest fixtures for RestoPOS backend tests.

Provides the application over in-memory SQLite, a per-test clean database,
actor headers for the API, and factories for promo codes, orders and POS
sessions.
"""

import pytest

from restopos import create_app
from restopos.config import TestConfig
from restopos.extensions import db
from restopos.services import delivery_service, discount_service, order_service, session_service


BRANCH_ID = 1
CASHIER_ID = 10
CUSTOMER_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch_id():
    return BRANCH_ID


@pytest.fixture(scope='function')
def staff_headers():
    return {'X-Actor-Id': str(CASHIER_ID), 'X-Actor-Role': 'staff'}


@pytest.fixture(scope='function')
def admin_headers():
    return {'X-Actor-Id': '1', 'X-Actor-Role': 'admin'}


@pytest.fixture(scope='function')
def customer_headers():
    return {'X-Actor-Id': str(CUSTOMER_ID), 'X-Actor-Role': 'customer'}


@pytest.fixture(scope='function')
def make_promo(db_session):
    """Factory: create a promo code, 10% off by default."""
    def _make(code='SAVE10', **fields):
        data = {'discount_type': 'percentage', 'discount_value': '10'}
        data.update(fields)
        return discount_service.create_promo_code(code, data)
    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory: a single-line pickup order priced at `amount`."""
    def _make(amount='1000.00', order_type='pickup', **kwargs):
        items = [{'item_id': 'meal', 'name': 'Meal deal', 'quantity': 1, 'unit_price': amount}]
        if order_type == 'delivery':
            kwargs.setdefault('customer_info', {'address': '12 Canal Road'})
            kwargs.setdefault(
                'fee_result',
                delivery_service.calculate_delivery_fee(BRANCH_ID, amount),
            )
        return order_service.create_order(BRANCH_ID, items, order_type, **kwargs)
    return _make


@pytest.fixture(scope='function')
def pos_session(db_session):
    """Open session on the MAIN till with a 1000.00 float."""
    return session_service.open_session(BRANCH_ID, CASHIER_ID, '1000.00')

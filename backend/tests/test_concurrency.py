"""
Concurrency tests over a file-backed SQLite database.

Each worker thread runs in its own app context (and therefore its own
database session), so the guards under test are the conditional UPDATE on
promo usage, the unique index on open sessions and the sequence counter.
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from restopos import create_app
from restopos.config import TestConfig
from restopos.errors import PromoUsageLimitReached, SessionAlreadyOpen
from restopos.extensions import db
from restopos.models import POSSession, PromoCode, PromoCodeRedemption, SessionStatus
from restopos.services import discount_service, order_service, session_service


WORKERS = 8


@pytest.fixture
def file_app(tmp_path):
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'concurrency.db'}"

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_workers(app, target):
    """Start WORKERS threads at once; return (results, errors)."""
    barrier = threading.Barrier(WORKERS)
    results, errors = [], []
    lock = threading.Lock()

    def worker(n):
        with app.app_context():
            barrier.wait()
            try:
                value = target(n)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            else:
                with lock:
                    results.append(value)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def test_promo_usage_limit_under_contention(file_app):
    with file_app.app_context():
        discount_service.create_promo_code("RUSH", {
            "discount_type": "fixed",
            "discount_value": "100",
            "usage_limit": 3,
        })

    results, errors = _run_workers(
        file_app,
        lambda n: discount_service.redeem_promo_code("RUSH", "1000.00", 1, user_id=n + 1),
    )

    assert all(isinstance(e, (PromoUsageLimitReached, OperationalError)) for e in errors)
    assert 1 <= len(results) <= 3

    with file_app.app_context():
        promo = db.session.query(PromoCode).filter_by(code="RUSH").one()
        assert promo.usage_count == len(results)
        assert db.session.query(PromoCodeRedemption).count() == len(results)


def test_single_open_session_per_till_under_contention(file_app):
    results, errors = _run_workers(
        file_app,
        lambda n: session_service.open_session(1, n + 1, "100.00").id,
    )

    assert all(isinstance(e, (SessionAlreadyOpen, OperationalError)) for e in errors)
    assert len(results) == 1

    with file_app.app_context():
        assert db.session.query(POSSession).filter_by(status=SessionStatus.OPEN).count() == 1


def test_order_numbers_unique_under_contention(file_app):
    cart = [{"item_id": "tea", "quantity": 1, "unit_price": "80.00"}]
    results, errors = _run_workers(
        file_app,
        lambda n: order_service.create_order(1, cart, "pickup").order_number,
    )

    assert all(isinstance(e, OperationalError) for e in errors)
    assert len(results) >= 1
    assert len(set(results)) == len(results)

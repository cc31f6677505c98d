# Overview: Threaded stress tests for concurrent stock decrements and voids.

"""
Concurrency tests against a file-backed SQLite database.

Each worker thread pushes its own app context and therefore gets its own
session and connection; the in-memory database used by the rest of the
suite cannot be shared across threads.
"""

import threading

import pytest

from stockcore import create_app
from stockcore.errors import AlreadyVoidedError, InsufficientStockError
from stockcore.extensions import db
from stockcore.models import Product, Tenant
from stockcore.services import adjustment_service, order_service, stock_service
from stockcore.services.movement_service import ledger_balances


@pytest.fixture
def stress_app(tmp_path):
    db_path = tmp_path / "concurrency.db"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
        'STOCK_RETRY_ATTEMPTS': 15,
        'STOCK_RETRY_BACKOFF': 0.005,
    })
    with app.app_context():
        db.create_all()
        tenant = Tenant(name="Concurrency Tenant", code="CONC")
        db.session.add(tenant)
        db.session.commit()
        product = stock_service.create_product(
            tenant_id=tenant.id, sku="CONCUR-1", name="Concurrent Product", price_cents=1000, quantity=10,
        )
        app.config['TEST_TENANT_ID'] = tenant.id
        app.config['TEST_PRODUCT_ID'] = product.id
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_threads(app, targets):
    results = []
    lock = threading.Lock()

    def wrap(target):
        def worker():
            with app.app_context():
                try:
                    outcome = target()
                except Exception as exc:
                    outcome = exc
                finally:
                    db.session.remove()
                with lock:
                    results.append(outcome)
        return worker

    threads = [threading.Thread(target=wrap(t)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_decrements_never_oversell(stress_app):
    """Twenty one-unit decrements race for ten units: exactly ten succeed."""
    tenant_id = stress_app.config['TEST_TENANT_ID']
    product_id = stress_app.config['TEST_PRODUCT_ID']

    def order_one(user_id):
        return lambda: order_service.create_order(
            tenant_id=tenant_id, user_id=user_id, lines=[{'product_id': product_id, 'quantity': 1}],
        ).id

    def adjust_one():
        return adjustment_service.create_adjustment(
            tenant_id=tenant_id, product_id=product_id, adjustment_type='decrease', quantity=1, reason='Shrinkage',
        ).id

    targets = [order_one(100 + i) for i in range(14)] + [adjust_one for _ in range(6)]
    results = _run_threads(stress_app, targets)

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 10
    assert len(failures) == 10
    assert all(isinstance(f, InsufficientStockError) for f in failures), failures

    with stress_app.app_context():
        product = db.session.get(Product, product_id)
        assert product.quantity == 0
        assert product.stock_status == 'out_of_stock'
        assert ledger_balances(tenant_id) == {product_id: 0}


def test_concurrent_voids_restore_once(stress_app):
    tenant_id = stress_app.config['TEST_TENANT_ID']
    product_id = stress_app.config['TEST_PRODUCT_ID']

    with stress_app.app_context():
        order_id = order_service.create_order(
            tenant_id=tenant_id, user_id=1, lines=[{'product_id': product_id, 'quantity': 4}],
        ).id
        db.session.remove()

    def void():
        return order_service.void_order(tenant_id=tenant_id, order_id=order_id).id

    results = _run_threads(stress_app, [void for _ in range(5)])

    assert results.count(order_id) == 1
    assert all(isinstance(r, AlreadyVoidedError) for r in results if r != order_id), results

    with stress_app.app_context():
        assert db.session.get(Product, product_id).quantity == 10
        assert ledger_balances(tenant_id) == {product_id: 10}

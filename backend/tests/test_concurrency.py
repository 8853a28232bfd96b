# Overview: Threaded races against a file-backed database.

"""
Each worker runs in its own app context, so it gets its own session and
connection. SQLite serializes the writers; the busy timeout makes them
queue instead of failing.
"""

import threading

import pytest

from shopledger import create_app
from shopledger.errors import AlreadyDecided, AlreadyVoided, InsufficientStock
from shopledger.extensions import db
from shopledger.models import Department, Product, ReceiptSequence, Sale, StockMovement
from shopledger.models.inventory import TRACKING_QUANTITY
from shopledger.services import credit_service, sales_service, stock_service

from conftest import RecordingNotifier


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"timeout": 30}},
        'DB_RETRY_ATTEMPTS': 10,
    })
    with app.app_context():
        db.create_all()
        db.session.add(ReceiptSequence(name="receipt", next_number=1))
        db.session.commit()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """Two departments and a product with 5 units; returns their ids."""
    with file_app.app_context():
        shop = Department(name="General Store", kind="general")
        bar = Department(name="Perfume Bar", kind="perfume")
        db.session.add_all([shop, bar])
        db.session.commit()
        product = Product(
            department_id=shop.id,
            name="Bottled Water",
            tracking_type=TRACKING_QUANTITY,
            stock=5,
            price_cents=1000,
            cost_price_cents=600,
        )
        db.session.add(product)
        db.session.commit()
        return {"shop": shop.id, "bar": bar.id, "product": product.id}


def _run(file_app, target, count):
    """Run target() in count threads; collect its return values or exceptions."""
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def worker():
        with file_app.app_context():
            try:
                barrier.wait()
                outcome = target()
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_decrements_never_oversell(file_app, seeded):
    results = _run(file_app, lambda: stock_service.decrement(seeded["product"], 4, "quantity"), 6)

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert all(isinstance(f, InsufficientStock) for f in failures)

    with file_app.app_context():
        assert db.session.get(Product, seeded["product"]).stock == 1
        assert db.session.query(StockMovement).count() == 1


def test_concurrent_sales_get_unique_receipts(file_app, seeded):
    line = {"name": "Bottled Water", "product_id": seeded["product"], "quantity": 1, "unit_price_cents": 1000}

    def sell():
        receipt = sales_service.complete_sale(
            [dict(line)], {"department_id": seeded["shop"], "cashier_name": "Grace"},
            notifier=RecordingNotifier(),
        )
        return receipt.receipt_number

    results = _run(file_app, sell, 8)

    numbers = [r for r in results if isinstance(r, str)]
    failures = [r for r in results if not isinstance(r, str)]
    assert len(numbers) == 5
    assert len(set(numbers)) == 5
    assert all(isinstance(f, InsufficientStock) for f in failures)

    with file_app.app_context():
        assert db.session.get(Product, seeded["product"]).stock == 0
        assert db.session.query(Sale).count() == 5
        assert sorted(numbers) == [f"RCP-{n:06d}" for n in range(1, 6)]


def test_concurrent_voids_restore_once(file_app, seeded):
    with file_app.app_context():
        receipt = sales_service.complete_sale(
            [{"name": "Bottled Water", "product_id": seeded["product"], "quantity": 3, "unit_price_cents": 1000}],
            {"department_id": seeded["shop"], "cashier_name": "Grace"},
            notifier=RecordingNotifier(),
        )
        sale_id = receipt.sale_id

    results = _run(file_app, lambda: sales_service.void_sale(sale_id, "Mistake", "Manager").id, 4)

    assert sum(1 for r in results if r == sale_id) == 1
    assert all(isinstance(r, AlreadyVoided) for r in results if r != sale_id)

    with file_app.app_context():
        assert db.session.get(Product, seeded["product"]).stock == 5
        assert db.session.query(StockMovement).filter_by(reason="SALE_VOID").count() == 1


def test_concurrent_credit_decisions(file_app, seeded):
    with file_app.app_context():
        credit_id = credit_service.create_credit(seeded["shop"], seeded["bar"], 500, "Float").id

    def decide():
        return credit_service.approve(credit_id, "Admin").status

    results = _run(file_app, decide, 4)

    assert results.count("approved") == 1
    assert all(isinstance(r, AlreadyDecided) for r in results if r != "approved")

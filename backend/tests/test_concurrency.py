"""
Concurrent sale attempts against one medicine.

Runs on a file-backed SQLite database so worker threads get their own
connections and really contend for the write lock.
"""

import threading

import pytest

from pharmapos import create_app
from pharmapos.extensions import db
from pharmapos.models import Medicine, Sale, StockMovement, User
from pharmapos.services import sales_service
from pharmapos.services import stock_ledger_service as ledger
from pharmapos.services.inventory_service import InsufficientStockError
from pharmapos.validation import SaleLineRequest, SaleRequest


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"timeout": 30}},
        'IDEMPOTENCY_SWEEPER_ENABLED': False,
        'BCRYPT_ROUNDS': 4,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    with file_app.app_context():
        user = User(username="concurrent", name="Concurrent Cashier", password_hash="dummy", role="CASHIER")
        medicine = Medicine(name="Amoxicillin 250mg", unit_price_cents=30, cost_price_cents=10, stock_quantity=10)
        db.session.add_all([user, medicine])
        db.session.commit()
        return ledger.Actor.from_user(user), medicine.id


def test_concurrent_sales_never_oversell(file_app, seeded):
    actor, medicine_id = seeded
    results = []
    lock = threading.Lock()

    def worker(n):
        request = SaleRequest(
            lines=(SaleLineRequest(medicine_id=medicine_id, quantity=3),),
            idempotency_key=f"worker-{n}",
        )
        with file_app.app_context():
            try:
                sales_service.create_sale(request, actor)
                with lock:
                    results.append("sold")
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    sold = results.count("sold")
    failures = [r for r in results if r != "sold"]
    assert len(results) == 8
    assert sold == 3
    assert all(isinstance(f, InsufficientStockError) for f in failures)

    with file_app.app_context():
        stock = db.session.get(Medicine, medicine_id).stock_quantity
        assert stock == 10 - 3 * sold
        assert stock >= 0
        assert db.session.query(Sale).count() == sold
        assert db.session.query(StockMovement).filter_by(type="SALE").count() == sold

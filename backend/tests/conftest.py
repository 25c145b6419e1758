"""
Pytest fixtures for the pharmacy POS backend tests.

Provides test database setup, seeded users/medicines and a test client.
"""

import pytest

from pharmapos import create_app
from pharmapos.extensions import db
from pharmapos.models import Medicine, User
from pharmapos.services import idempotency_service, session_service
from pharmapos.services.auth_service import hash_password
from pharmapos.services.idempotency_service import InMemoryIdempotencyStore
from pharmapos.services.stock_ledger_service import Actor


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'IDEMPOTENCY_SWEEPER_ENABLED': False,
        'BCRYPT_ROUNDS': 4,
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
    """Fresh database and idempotency store for each test."""
    with app.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        idempotency_service.init_app(app, InMemoryIdempotencyStore(ttl_seconds=60))

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def idempotency_store(app, db_session):
    return idempotency_service.get_store()


@pytest.fixture(scope='function')
def make_user(db_session):
    def _make(username: str, role: str = "CASHIER", name: str | None = None) -> User:
        user = User(
            username=username,
            name=name or username.title(),
            password_hash=hash_password(PASSWORD),
            role=role,
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def cashier(make_user):
    return make_user("cashier", role="CASHIER", name="Casey Cashier")


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("admin", role="ADMIN", name="Avery Admin")


@pytest.fixture(scope='function')
def manager(make_user):
    return make_user("manager", role="MANAGER", name="Morgan Manager")


@pytest.fixture(scope='function')
def actor(cashier):
    return Actor.from_user(cashier)


@pytest.fixture(scope='function')
def make_medicine(db_session):
    def _make(name: str = "Paracetamol 500mg", *, price: int = 20, cost: int = 12, stock: int = 50, units=None) -> Medicine:
        medicine = Medicine(
            name=name,
            unit_price_cents=price,
            cost_price_cents=cost,
            stock_quantity=stock,
            units=units,
        )
        db_session.add(medicine)
        db_session.commit()
        return medicine
    return _make


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Bearer headers for a user (real session token)."""
    def _headers(user: User) -> dict:
        _, token = session_service.create_session(user.id)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture(scope='function')
def stock_of(db_session):
    """Stock as currently committed, bypassing the identity map."""
    def _stock(medicine_id: int) -> int:
        db_session.expire_all()
        return db_session.get(Medicine, medicine_id).stock_quantity
    return _stock

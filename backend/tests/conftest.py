"""
Pytest fixtures for AssetLend backend tests.

Provides test database setup, one user per role, stores, an item factory
and the test client.
"""

from datetime import timedelta

import pytest
from assetlend import create_app
from assetlend.extensions import db
from assetlend.models import Item, Store, User
from assetlend.models.inventory import ITEM_STATUS_AVAILABLE, ITEM_STATUS_RESERVED
from assetlend.time_utils import to_utc_z, utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_SECONDS': 0,
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
def store(db_session):
    """Create the main store."""
    store = Store(name="Main Store", code="MAIN", location="Ground floor")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    """Create a second store for transfers."""
    store = Store(name="Branch Store", code="BRANCH", location="Site office")
    db_session.add(store)
    db_session.commit()
    return store


def _make_user(db_session, username: str, role: str, store_id=None) -> User:
    user = User(
        username=username,
        email=f"{username}@assetlend.test",
        full_name=username.replace("_", " ").title(),
        role=role,
        store_id=store_id,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session, store):
    return _make_user(db_session, "admin", "admin", store.id)


@pytest.fixture(scope='function')
def manager(db_session, store):
    return _make_user(db_session, "manager", "manager", store.id)


@pytest.fixture(scope='function')
def keeper(db_session, store):
    return _make_user(db_session, "keeper", "store_keeper", store.id)


@pytest.fixture(scope='function')
def employee(db_session, store):
    return _make_user(db_session, "employee", "employee", store.id)


@pytest.fixture(scope='function')
def other_employee(db_session, store):
    return _make_user(db_session, "other_employee", "employee", store.id)


@pytest.fixture(scope='function')
def driver(db_session, store):
    return _make_user(db_session, "driver", "delivery_staff", store.id)


@pytest.fixture(scope='function')
def make_item(db_session, store):
    """Factory: make_item(quantity=5, sku=None, status=None, store_id=None)."""
    counter = {"n": 0}

    def _make(quantity=5, sku=None, status=None, store_id=None, min_stock_level=1):
        counter["n"] += 1
        if status is None:
            status = ITEM_STATUS_AVAILABLE if quantity > 0 else ITEM_STATUS_RESERVED
        item = Item(
            store_id=store_id or store.id,
            sku=sku or f"SKU-{counter['n']:03d}",
            name=f"Test Item {counter['n']}",
            quantity=quantity,
            min_stock_level=min_stock_level,
            max_stock_level=100,
            status=status,
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make


def due_in(days: int = 7):
    """Naive-UTC due date `days` from now."""
    return utcnow() + timedelta(days=days)


def due_in_iso(days: int = 7) -> str:
    return to_utc_z(due_in(days))


def actor_headers(user: User) -> dict:
    """Helper to create the upstream identity header."""
    return {'X-Actor-Id': str(user.id)}

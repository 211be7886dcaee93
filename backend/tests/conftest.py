"""
Pytest fixtures for the ledger backend tests.

Provides an in-memory application, a clean database per test, a test
client, and a file-backed application for multi-threaded tests.
"""

import pytest
from liquorpos import create_app
from liquorpos.extensions import db
from liquorpos.models import Product, SchemaMigration
from liquorpos.services.ledger_service import Actor


BASE_CONFIG = {
    'TESTING': True,
    'TAX_RATE_BPS': 0,
    'LEDGER_FORBID_NEGATIVE': False,
    'LEDGER_IMPLICIT_CREATE_REASONS': ('purchase', 'initial'),
    'AUTO_MIGRATE': True,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({**BASE_CONFIG, 'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:'})

    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table (schema and migration history kept) before each test."""
    # Fresh session so no instance from an earlier test is still in the identity map
    db.session.remove()
    for table in reversed(db.metadata.sorted_tables):
        if table.name == SchemaMigration.__tablename__:
            continue
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.remove()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """Application on a SQLite file so several connections can contend for it."""
    app = create_app({
        **BASE_CONFIG,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.sqlite3'}",
        'SQLITE_BUSY_TIMEOUT': 30,
    })
    yield app
    with app.app_context():
        db.engine.dispose()


@pytest.fixture(scope='function')
def product(db_session):
    """A catalog product with no ledger history."""
    p = Product(
        upc="012345",
        description="Tito's Handmade Vodka 750ml",
        category="Vodka",
        cost_cents=1650,
        price_cents=2499,
        taxable=True,
    )
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def second_product(db_session):
    p = Product(
        upc="087000",
        description="Bulleit Bourbon 750ml",
        category="Whiskey",
        cost_cents=2100,
        price_cents=3299,
        taxable=True,
    )
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture
def clerk():
    return Actor(user_id=7, name="Kelly")

@pytest.fixture
def failing_commit(monkeypatch):
    """Every COMMIT fails as if the database file were unwritable. Retries do not sleep."""
    from sqlalchemy.exc import OperationalError
    from sqlalchemy.orm import Session
    from liquorpos.services import concurrency

    calls = {"n": 0}

    def commit(self):
        calls["n"] += 1
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(Session, "commit", commit)
    monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)
    return calls

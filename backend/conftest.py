"""Shared fixtures: a throwaway SQLite database per test, seeded stock, HTTP client."""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from pharmapos.api.deps import get_db
from pharmapos.db.init_db import init_db
from pharmapos.db.session import build_engine, build_sessionmaker
from pharmapos.main import app
from pharmapos.models.invoice import Invoice
from pharmapos.models.medicine import Medicine


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'pharmapos_test.db'}", timeout=10)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seed_stock(session_factory):
    """seed_stock({"Paracetamol": (50, "10.00")}) -> inserts stock entries."""

    def _seed(entries):
        session = session_factory()
        try:
            for name, (quantity, price) in entries.items():
                session.add(Medicine(name=name, quantity=quantity, price=Decimal(price)))
            session.commit()
        finally:
            session.close()

    return _seed


@pytest.fixture
def stock_snapshot(session_factory):
    """Current {name: quantity} read through a fresh session."""

    def _snapshot():
        session = session_factory()
        try:
            return {m.name: m.quantity for m in session.query(Medicine).all()}
        finally:
            session.close()

    return _snapshot


@pytest.fixture
def invoice_numbers(session_factory):
    def _numbers():
        session = session_factory()
        try:
            return sorted(n for (n,) in session.query(Invoice.invoice_number).all())
        finally:
            session.close()

    return _numbers


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)
    test_client.headers.update({"Authorization": "Bearer cashier-1"})
    yield test_client
    app.dependency_overrides.clear()

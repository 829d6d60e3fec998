"""Pytest fixtures for the Verity Gem API tests."""

import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
from accounts import create_access_token, get_password_hash
from currency import get_rate_client
from database import create_document, ensure_indexes, get_db
from errors import DependencyError
from notifications import get_mailer
from schemas import ProductIn, User


class FakeMailer:
    """Records outgoing mail instead of talking to SMTP."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html):
        if self.fail:
            raise DependencyError("mail", "connection refused")
        self.sent.append({"to": to, "subject": subject, "html": html})


class FakeRateClient:
    def __init__(self, table=None):
        self.table = table or {"USD": {"USD": 1.0, "EUR": 0.5, "NGN": 1500.0}}

    def rates(self, base="USD"):
        if base.upper() not in self.table:
            raise DependencyError("currency", "unknown base")
        return self.table[base.upper()]

    def convert(self, amount, from_currency, to_currency):
        try:
            rate = self.rates(from_currency).get(to_currency.upper())
        except DependencyError:
            return amount
        return round(amount * rate, 2) if rate else amount


@pytest.fixture
def db():
    """A fresh in-memory MongoDB database with production indexes."""
    database = mongomock.MongoClient()["veritygem_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def make_product(db):
    """Factory inserting active catalog products."""
    counter = itertools.count(1)

    def _make(price=100.0, discount=None, **fields):
        n = next(counter)
        data = {
            "name": f"Solitaire Ring {n}",
            "images": [{"url": f"https://img.example.com/{n}.jpg", "is_primary": True}],
            "price": price,
            "category": "ring",
        }
        if discount is not None:
            data["discount"] = discount
        data.update(fields)
        return catalog.create_product(db, ProductIn(**data))

    return _make


@pytest.fixture
def make_user(db):
    """Factory inserting a user and returning (user_id, auth headers)."""
    counter = itertools.count(1)

    def _make(role="customer", email=None, password="secret123"):
        n = next(counter)
        user = User(
            name=f"Customer {n}",
            email=email or f"customer{n}@example.com",
            password_hash=get_password_hash(password),
            role=role,
        )
        uid = create_document(db, "user", user)
        token = create_access_token({"sub": uid})
        return uid, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def client(db, mailer):
    """TestClient wired to the in-memory database and fake mailer."""
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_rate_client] = lambda: FakeRateClient()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

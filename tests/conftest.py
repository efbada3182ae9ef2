import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import catalog
import main
from database import ensure_indexes, get_db
from schemas import Product

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass"


@pytest.fixture(autouse=True)
def no_admin_env(monkeypatch):
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)


@pytest.fixture
def db():
    database = mongomock.MongoClient().storefront
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def product(db):
    return catalog.create_product(db, Product(
        name="Boys Athletic T-Shirt",
        description="Moisture-wicking tee",
        price=25.0,
        category="T-Shirts",
        sizes=["S", "M", "L"],
        colors=["Red", "Blue"],
        stock=10,
        brand="SportMax",
    ))


@pytest.fixture
def other_product(db):
    return catalog.create_product(db, Product(
        name="Boys Basketball Shorts",
        price=19.5,
        category="Shorts",
        sizes=["M"],
        colors=["Black"],
        stock=2,
    ))


@pytest.fixture
def alice(db):
    return auth.signup(db, "Alice", "alice@example.com", "secret123", "+15550001")


@pytest.fixture
def bob(db):
    return auth.signup(db, "Bob", "bob@example.com", "hunter22")


@pytest.fixture
def admin(db):
    auth.bootstrap_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD, "Admin")
    return auth.admin_login(db, ADMIN_EMAIL, ADMIN_PASSWORD)


def bearer(token_response):
    return {"Authorization": f"Bearer {token_response['access_token']}"}

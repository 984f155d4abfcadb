import os
import sys
import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

ROOT_DIR = os.path.dirname(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# startup hooks run against this throwaway database instead of ./expense.db
os.environ.setdefault("DATABASE_URL", "sqlite://")

from main import app, get_session, seed_default_categories  # noqa: E402


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
DBSession = Session


@pytest.fixture(scope="function")
def client():
    """Return a TestClient wired to a fresh in-memory database for each test."""
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    with DBSession(test_engine) as session:
        seed_default_categories(session)

    def override_get_session():
        with DBSession(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def db_session(client):
    """A session on the same in-memory database the app is using."""
    with DBSession(test_engine) as session:
        yield session


@pytest.fixture
def auth_helpers(client):
    """
    Common auth utilities shared across test modules.
    Provides register/login helpers and a token helper.
    """

    def register_user(username: str, password: str):
        return client.post("/auth/register", json={"username": username, "password": password})

    def login_user(username: str, password: str):
        res = client.post("/auth/login", json={"username": username, "password": password})
        # tests authenticate with explicit headers, not the login cookie
        client.cookies.clear()
        return res

    def get_token(username: str, password: str) -> str:
        res_reg = register_user(username, password)
        assert res_reg.status_code in (200, 201, 400)
        res_login = login_user(username, password)
        assert res_login.status_code == 200
        data = res_login.json()
        assert "access_token" in data
        return data["access_token"]

    def auth_headers(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def headers_for(username: str, password: str = "Passw0rd!") -> dict:
        return auth_headers(get_token(username, password))

    return {
        "register_user": register_user,
        "login_user": login_user,
        "get_token": get_token,
        "auth_headers": auth_headers,
        "headers_for": headers_for,
    }


@pytest.fixture
def headers(auth_helpers):
    """Auth headers for a freshly registered default user."""
    return auth_helpers["headers_for"]("alice")


def default_category_id(client, headers, name="Food & Dining") -> int:
    cats = client.get("/api/categories", headers=headers).json()
    return next(c["id"] for c in cats if c["name"] == name)


def create_expense(client, headers, amount, expense_date="2025-01-10", category="Food & Dining", **extra):
    payload = {
        "amount": amount,
        "expense_date": expense_date,
        "category_id": default_category_id(client, headers, category),
    }
    payload.update(extra)
    res = client.post("/api/expenses", json=payload, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()

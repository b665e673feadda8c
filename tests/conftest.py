from datetime import date

import pytest
from fastapi.testclient import TestClient

import models
from database import Base, make_engine, make_session_factory
from gate import ConsistencyGate
from ledger import LedgerStore
from main import create_app


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return LedgerStore(make_session_factory(engine))


@pytest.fixture
def gate(store):
    return ConsistencyGate(store)


@pytest.fixture
def user(gate):
    return gate.register_user("ann@fastmail.com", "not-a-real-hash", first_name="Ann")


@pytest.fixture
def other_user(gate):
    return gate.register_user("bob@fastmail.com", "not-a-real-hash", first_name="Bob")


def category(store, user, name):
    return store.find_first(models.Category, where={"user_id": user.id, "name": name})


@pytest.fixture
def budget(gate, user):
    return gate.create_budget(
        user.id, name="May", amount=500,
        start_date=date(2024, 5, 1), end_date=date(2024, 5, 31),
    )


# ── API ──

@pytest.fixture
def client(tmp_path):
    app = create_app(database_url=f"sqlite:///{tmp_path / 'api.db'}")
    with TestClient(app) as c:
        yield c


def register(client, email="ann@fastmail.com", password="secret123"):
    r = client.post("/api/auth/register", json={"email": email, "password": password, "first_name": "Ann"})
    assert r.status_code == 201, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def headers(client):
    return register(client)

from datetime import date

import pytest
from fastapi.testclient import TestClient

import main
from availability import AvailabilityEngine
from database import MemoryStore, seed_store
from schemas import ParkingSpot, User

TODAY = date(2024, 6, 1)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def engine(store):
    return AvailabilityEngine(store, today=lambda: TODAY)


@pytest.fixture
def spot(store):
    return store.create("spot", ParkingSpot(spot_number="A1", level=1, type="STANDARD", price_per_hour=3.0))


@pytest.fixture
def user(store):
    return store.create("user", User(name="Alice", email="alice@example.com", password_hash="x"))


@pytest.fixture
def other_user(store):
    return store.create("user", User(name="Bob", email="bob@example.com", password_hash="x"))


@pytest.fixture
def admin(store):
    return store.create("user", User(name="Root", email="root@example.com", password_hash="x", is_admin=True))


@pytest.fixture
def seeded_store():
    return seed_store(MemoryStore())


@pytest.fixture
def client(seeded_store):
    main.app.dependency_overrides[main.get_store] = lambda: seeded_store
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


def auth_headers(client, email, password):
    resp = client.post("/auth/login", data={"username": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def admin_headers(client):
    return auth_headers(client, "admin@parksmart.com", "admin123")


@pytest.fixture
def user_headers(client):
    resp = client.post("/auth/register", json={"name": "Alice", "email": "alice@example.com", "password": "secret1"})
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}

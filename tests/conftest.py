import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import ensure_indexes, get_db

PASSWORD = "Secret123!"

CAR = {
    "brand": "Toyota",
    "model": "Corolla",
    "image": "https://example.com/corolla.jpg",
    "year": 2022,
    "category": "sedan",
    "seatingCapacity": 5,
    "fuelType": "petrol",
    "transmission": "automatic",
    "pricePerDay": 100,
    "location": "Lisbon",
    "description": "Reliable compact sedan, great for the city.",
    "features": ["AC", "GPS"],
}


@pytest.fixture
def db():
    database = mongomock.MongoClient().carrental
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, email, role="user", name="Test User"):
    response = client.post("/api/user/register", json={
        "name": name, "email": email, "password": PASSWORD, "role": role,
    })
    assert response.status_code == 201, response.json()
    body = response.json()
    return body["token"], body["user"]


def add_car(client, token, **overrides):
    response = client.post("/api/owner/add-car", json={**CAR, **overrides}, headers=auth(token))
    assert response.status_code == 201, response.json()
    return response.json()["car"]


@pytest.fixture
def owner(client):
    return register(client, "owner@example.com", role="owner", name="Olivia Owner")


@pytest.fixture
def renter(client):
    return register(client, "renter@example.com", name="Rick Renter")


@pytest.fixture
def car(client, owner):
    return add_car(client, owner[0])


def book(client, token, car_id, pickup, ret):
    return client.post("/api/bookings", json={
        "carId": car_id, "pickupDate": pickup, "returnDate": ret,
    }, headers=auth(token))

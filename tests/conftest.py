"""
Shared pytest fixtures.

MongoDB is replaced by mongomock through FastAPI's dependency overrides,
and helpers sign up patients and doctors through the public API.
"""

import itertools
import os
from datetime import date, timedelta

# Configure before the application modules read the environment
os.environ["ENABLE_MCP"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MAX_RECORD_BYTES"] = str(64 * 1024)
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import mongomock
import pytest
from fastapi.testclient import TestClient

from main import create_app
from mongo import ensure_indexes, get_db

_emails = itertools.count(1)


@pytest.fixture
def mock_db():
    """A fresh in-memory database per test."""
    database = mongomock.MongoClient()["MediConnectTest"]
    ensure_indexes(database)
    return database


@pytest.fixture
def app(mock_db):
    application = create_app(enable_mcp=False)
    application.dependency_overrides[get_db] = lambda: mock_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def register(client):
    """Sign up a user and return its uid, name and auth headers."""

    def _register(role="patient", name=None, **extra):
        number = next(_emails)
        name = name or f"{role.capitalize()} Number{number}"
        payload = {
            "name": name,
            "email": f"{role}{number}@example.com",
            "password": "secret123",
            "role": role,
        }
        if role == "doctor":
            payload.setdefault("specialization", "General Practitioner")
            payload.setdefault("clinicAddress", "1 Main Street")
        payload.update(extra)

        response = client.post("/auth/signup", json=payload)
        assert response.status_code == 201, response.text
        body = response.json()
        return {
            "uid": body["profile"]["uid"],
            "name": name,
            "email": payload["email"],
            "token": body["access_token"],
            "headers": {"Authorization": f"Bearer {body['access_token']}"},
        }

    return _register


@pytest.fixture
def doctor(register):
    return register("doctor", name="Emily Carter", specialization="Cardiologist")


@pytest.fixture
def patient(register):
    return register("patient", name="Alice Smith")


@pytest.fixture
def future_day():
    return (date.today() + timedelta(days=7)).isoformat()


@pytest.fixture
def book(client):
    """Book an appointment as ``patient`` and return the stored appointment."""

    def _book(patient, doctor, day, time="09:00 AM", reason="Checkup"):
        response = client.post(
            "/appointments",
            json={"doctorId": doctor["uid"], "date": day, "time": time, "reason": reason},
            headers=patient["headers"],
        )
        assert response.status_code == 201, response.text
        return response.json()["appointment"]

    return _book

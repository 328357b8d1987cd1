"""
Shared fixtures: an in-memory MongoDB standing in for the real store,
a TestClient over the app, and factories for users, services and orders.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
from auth import create_access_token, get_password_hash

PASSWORD = "correct-horse-9"
_PASSWORD_HASH = None


def password_hash():
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = get_password_hash(PASSWORD)
    return _PASSWORD_HASH


@pytest.fixture(autouse=True)
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["tailorspace_test"]
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(config, "CRON_SECRET", "test-cron-secret")
    monkeypatch.setattr(config, "RESEND_API_KEY", None)
    return mock_db


@pytest.fixture
def client():
    from main import app
    return TestClient(app)


@pytest.fixture
def make_user():
    counter = {"n": 0}

    def _make(role="customer", active=True, email_preferences=None, **extra):
        counter["n"] += 1
        doc = {
            "email": f"{role}{counter['n']}@tailorspace.co.uk",
            "password_hash": password_hash(),
            "full_name": f"{role.title()} {counter['n']}",
            "phone": "07700900123",
            "role": role,
            "active": active,
            "email_preferences": email_preferences if email_preferences is not None else {"cart_reminders": True},
        }
        doc.update(extra)
        user_id = database.create_document("users", doc)
        return database.get_document_by_id("users", user_id)

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user['_id'])}"}


@pytest.fixture
def make_service():
    def _make(name="Trouser hem", base_price=1500, active=True, **extra):
        doc = {"name": name, "category": "trousers", "base_price": base_price, "active": active,
               "estimated_days": 3, "popular": False, "sort_order": 0}
        doc.update(extra)
        return database.get_document_by_id("services", database.create_document("services", doc))

    return _make


@pytest.fixture
def make_order(make_user):
    def _make(status="booked", customer=None, runner_id=None, tailor_id=None, service_id="svc1"):
        customer = customer or make_user()
        doc = {
            "order_number": "TS-261019-ABCD",
            "customer_id": customer["_id"],
            "runner_id": runner_id,
            "tailor_id": tailor_id,
            "status": status,
            "items": [{
                "service_id": service_id,
                "service_name": "Trouser hem",
                "garment_description": "Navy chinos",
                "quantity": 1,
                "price": 1500,
                "photos": [],
                "notes": None,
                "status": "pending",
            }],
            "subtotal": 1500,
            "delivery_fee": 700,
            "total": 2200,
            "customer_address": {"line1": "1 Market St", "line2": None, "city": "Nottingham", "postcode": "NG1 6HL"},
            "customer_phone": "07700900123",
            "customer_notes": None,
            "pickup_date": "2026-10-21",
            "pickup_slot": "morning",
        }
        return database.get_document_by_id("orders", database.create_document("orders", doc))

    return _make

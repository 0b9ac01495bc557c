import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("STRIPE_WEBHOOK_SECRET", None)

import itertools
from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, hash_password
from database import create_document, ensure_indexes, get_db, parse_object_id, utcnow
from main import app
from payments import get_gateway

TEST_CARD = {"brand": "visa", "last4": "4242", "exp_month": 12, "exp_year": 2030, "country": "US",
             "funding": "credit"}


class FakeGateway:
    """In-memory stand-in for StripeGateway."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.sessions = {}
        self.checkout_params = []
        self.intent_params = []
        self.attached = {}
        self.defaults = {}
        self.intent_status = "succeeded"
        self.intent_error = None
        self.checkout_error = None

    def _next(self, prefix):
        return f"{prefix}_test_{next(self._ids)}"

    def create_customer(self, name, email, metadata):
        return {"id": self._next("cus"), "name": name, "email": email, "metadata": metadata}

    def set_default_payment_method(self, customer_id, payment_method_id):
        self.defaults[customer_id] = payment_method_id
        return {"id": customer_id}

    def create_checkout_session(self, params):
        self.checkout_params.append(params)
        if self.checkout_error is not None:
            raise self.checkout_error
        session_id = self._next("cs")
        self.sessions[session_id] = {
            "id": session_id,
            "url": f"https://checkout.test/{session_id}",
            "payment_status": "unpaid",
            "payment_intent": None,
            "amount_total": params["line_items"][0]["price_data"]["unit_amount"],
            "currency": "usd",
        }
        return self.sessions[session_id]

    def retrieve_checkout_session(self, session_id):
        return self.sessions[session_id]

    def pay_session(self, session_id):
        self.sessions[session_id].update(payment_status="paid", payment_intent=self._next("pi"))

    def create_payment_intent(self, params):
        self.intent_params.append(params)
        if self.intent_error is not None:
            raise self.intent_error
        return {"id": self._next("pi"), "status": self.intent_status, "amount": params["amount"]}

    def create_setup_intent(self, customer_id):
        return {"id": self._next("seti"), "client_secret": "seti_secret_test", "customer": customer_id}

    def attach_payment_method(self, payment_method_id, customer_id):
        pm = {"id": payment_method_id, "customer": customer_id, "card": dict(TEST_CARD)}
        self.attached[payment_method_id] = pm
        return pm

    def detach_payment_method(self, payment_method_id):
        return self.attached.pop(payment_method_id)

    def list_payment_methods(self, customer_id):
        return [pm for pm in self.attached.values() if pm["customer"] == customer_id]


@pytest.fixture
def db():
    database = mongomock.MongoClient()["rental_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


ROLE_FIELDS = {
    "customer": {"license_number": "DL-1001"},
    "seller": {},
    "branch-manager": {"branch_location": "Downtown"},
    "admin": {},
}


@pytest.fixture
def make_user(db):
    """Insert a user of `role` and return (document, auth headers)."""
    counter = itertools.count(1)

    def _make(role="customer", password=None, **fields):
        n = next(counter)
        data = {
            "name": f"{role.title()} {n}",
            "email": f"{role}{n}@rental.io",
            "phone": f"555-010{n}",
            "role": role,
            "is_active": True,
            **ROLE_FIELDS[role],
            **fields,
        }
        if password:
            data["password_hash"] = hash_password(password)
        user_id = create_document(db, "user", data)
        user = db["user"].find_one({"_id": parse_object_id(user_id)})
        headers = {"Authorization": f"Bearer {create_access_token(user_id, role)}"}
        return user, headers

    return _make


@pytest.fixture
def make_vehicle(db):
    counter = itertools.count(1)

    def _make(seller_id=None, **fields):
        n = next(counter)
        data = {
            "make": "Toyota",
            "model": "Corolla",
            "year": 2022,
            "license_plate": f"TST-{n:04d}",
            "type": "car",
            "fuel_type": "petrol",
            "transmission": "automatic",
            "seats": 5,
            "price_per_day": 50.0,
            "location": "Berlin",
            "is_available": True,
            "images": [],
            "features": [],
            "seller_id": seller_id,
            **fields,
        }
        vehicle_id = create_document(db, "vehicle", data)
        return db["vehicle"].find_one({"_id": parse_object_id(vehicle_id)})

    return _make


@pytest.fixture
def make_booking(db):
    def _make(customer, vehicle, **fields):
        start = utcnow() + timedelta(days=3)
        data = {
            "customer_id": customer["_id"],
            "vehicle_id": vehicle["_id"],
            "start_date": start,
            "end_date": start + timedelta(days=2),
            "total_days": 2,
            "price_per_day": vehicle["price_per_day"],
            "total_amount": vehicle["price_per_day"] * 2 * 1.1,
            "status": "pending",
            "payment_status": "pending",
            "payment_intent_id": None,
            "stripe_session_id": None,
            "customer_details": {"name": customer["name"], "email": customer["email"], "phone": ""},
            "pickup_location": "Berlin",
            "dropoff_location": "Berlin",
            **fields,
        }
        booking_id = create_document(db, "booking", data)
        return db["booking"].find_one({"_id": parse_object_id(booking_id)})

    return _make

"""
Pytest configuration and fixtures
"""
import base64

import mongomock
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from auth import AuthService, get_password_hash
from config import Settings
from database import DocumentStore
from inventory import InventoryRepository
from main import create_app
from notifications import NotificationRepository
from products import ProductRepository
from quantity_requests import QuantityRequestRepository

GOOGLE_SECRET = b"google-test-signing-secret-0123456789"
CLIENT_ID = "warehouse-test.apps.googleusercontent.com"


@pytest.fixture
def settings():
    return Settings(
        secret_key="test-secret",
        google_client_id=CLIENT_ID,
        admin_email="boss@warehouse.io",
    )


@pytest.fixture
def store():
    return DocumentStore(mongomock.MongoClient().db)


@pytest.fixture
def inventory(store):
    return InventoryRepository(store)


@pytest.fixture
def notifications(store):
    return NotificationRepository(store)


@pytest.fixture
def quantity_requests(store, inventory, notifications):
    return QuantityRequestRepository(store, inventory, ProductRepository(store), notifications)


@pytest.fixture
def google_jwks():
    k = base64.urlsafe_b64encode(GOOGLE_SECRET).rstrip(b"=").decode()
    return {"keys": [{"kty": "oct", "k": k, "alg": "HS256"}]}


def google_token(email, name="Test User", aud=CLIENT_ID, iss="https://accounts.google.com"):
    claims = {"email": email, "name": name, "aud": aud, "iss": iss, "sub": email, "email_verified": True}
    return jwt.encode(claims, GOOGLE_SECRET.decode(), algorithm="HS256")


@pytest.fixture
def auth(store, settings, google_jwks):
    return AuthService(store, settings, jwks=google_jwks, algorithms=["HS256"])


@pytest.fixture
def client(store, settings, auth):
    return TestClient(create_app(store=store, settings=settings, auth=auth))


def make_user(store, email, role, name=None, password="password123", status="approved"):
    return store.add("users", {
        "email": email,
        "name": name or email.split("@")[0],
        "role": role,
        "status": status,
        "password": get_password_hash(password),
    })


def bearer(auth, user_id):
    return {"Authorization": f"Bearer {auth.create_access_token({'sub': user_id})}"}


@pytest.fixture
def staff_headers(store, auth):
    return bearer(auth, make_user(store, "staff@warehouse.io", "warehouse_staff", name="Jane Warehouse"))


@pytest.fixture
def supplier_id(store):
    return make_user(store, "supplier@warehouse.io", "supplier", name="Bob Supplier")


@pytest.fixture
def supplier_headers(auth, supplier_id):
    return bearer(auth, supplier_id)

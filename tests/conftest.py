"""Shared fixtures: in-memory database, stubbed payment provider, users and tokens."""
import json
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "development"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["OTEL_ENABLED"] = "false"
os.environ["PROFILING_ENABLED"] = "false"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_webhook_secret"
os.environ["FRONTEND_URL"] = "http://shop.example.com"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="store-uploads-")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from store_service.database import get_db
from store_service.main import app
from store_service.models import Base, Order, OrderItem, Product, User
from store_service.security import create_access_token, hash_password

SHIPPING_ADDRESS = {
    "street": "123 Test St",
    "city": "Test City",
    "state": "Test State",
    "zip_code": "12345",
    "country": "Test Country",
}


class PaystackStub:
    """httpx.MockTransport handler imitating the provider's transaction API."""

    def __init__(self):
        self.requests = []
        self.verify_status = "success"
        self.transaction_id = 4099260516
        self.fail_initialize = False
        self.malformed_body = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if self.malformed_body:
            return httpx.Response(200, content=b"<html>upstream gateway</html>")

        if path == "/transaction/initialize":
            if self.fail_initialize:
                return httpx.Response(503, json={"status": False, "message": "unavailable"})
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": f"https://checkout.paystack.com/{body['reference']}",
                    "access_code": "access_code_test",
                    "reference": body["reference"],
                },
            })

        if path.startswith("/transaction/verify/"):
            return httpx.Response(200, json={
                "status": True,
                "message": "Verification successful",
                "data": {
                    "id": self.transaction_id,
                    "status": self.verify_status,
                    "reference": path.rsplit("/", 1)[-1],
                },
            })

        return httpx.Response(404, json={"status": False})

    def requests_to(self, path: str):
        return [r for r in self.requests if r.url.path == path]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def paystack():
    return PaystackStub()


@pytest.fixture
def client(session_factory, paystack):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(paystack))
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def create_user(db, name, email, role="user", password="password123"):
    user = User(name=name, email=email, password_hash=hash_password(password), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_header(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def admin_user(db):
    return create_user(db, "Admin User", "admin@example.com", role="admin")


@pytest.fixture
def regular_user(db):
    return create_user(db, "Regular User", "user@example.com")


@pytest.fixture
def other_user(db):
    return create_user(db, "Other User", "other@example.com")


@pytest.fixture
def admin_headers(admin_user):
    return auth_header(admin_user)


@pytest.fixture
def user_headers(regular_user):
    return auth_header(regular_user)


@pytest.fixture
def product(db, admin_user):
    product = Product(
        name="Test Product",
        description="Test description for product",
        price=99.99,
        quantity=10,
        category="Electronics",
        created_by_id=admin_user.id,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def make_order(db, user, product, quantity=2, status="pending", payment_status="pending", reference=None):
    order = Order(
        user_id=user.id,
        items=[OrderItem(product_id=product.id, name=product.name, price=product.price, quantity=quantity)],
        shipping_address=dict(SHIPPING_ADDRESS),
        status=status,
        payment_status=payment_status,
        payment_reference=reference,
    )
    order.recalculate_total()
    db.add(order)
    db.commit()
    db.refresh(order)
    return order

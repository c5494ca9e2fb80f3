import os

# Must be set before storefront is imported: settings are cached at first use
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RUN_MIGRATIONS"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["VAPID_PUBLIC_KEY"] = ""
os.environ["VAPID_PRIVATE_KEY"] = ""

import json
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.api import dependencies
from storefront.api.auth import create_access_token
from storefront.core_settings import get_settings
from storefront.domain.models import Base
from storefront.errors import DeliveryFailure, SubscriptionExpired
from storefront.infrastructure.catalog import ProductSnapshot
from storefront.infrastructure.db import get_db
from storefront.infrastructure.gateway import RazorpayGateway, compute_signature
from storefront.infrastructure.order_store import LineItem, OrderStore, Pricing
from storefront.infrastructure.registry import AdminConnectionRegistry, PushSubscriptionRegistry
from storefront.main import app

ADDRESS = {
    "full_name": "Asha Rao",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
    "country": "India",
    "phone": "+919999999999",
}


class FakeProvider:
    """In-memory payment provider served through httpx.MockTransport."""

    def __init__(self, secret: str):
        self.secret = secret
        self.orders = {}
        self.payments = {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path == "/v1/orders":
            body = json.loads(request.content)
            if any(o["receipt"] == body["receipt"] for o in self.orders.values()):
                return httpx.Response(400, json={"error": {
                    "code": "BAD_REQUEST_ERROR",
                    "description": "Order receipt should be unique.",
                }})
            order_ref = f"order_{len(self.orders) + 1}"
            self.orders[order_ref] = {
                "id": order_ref,
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "notes": body.get("notes") or [],
                "status": "created",
            }
            return httpx.Response(200, json=self.orders[order_ref])
        if request.method == "GET" and path.startswith("/v1/orders/"):
            order = self.orders.get(path.rsplit("/", 1)[-1])
            if order is None:
                return httpx.Response(400, json={"error": {"description": "The id provided does not exist"}})
            return httpx.Response(200, json=order)
        if request.method == "GET" and path.startswith("/v1/payments/"):
            payment = self.payments.get(path.rsplit("/", 1)[-1])
            if payment is None:
                return httpx.Response(404, json={"error": {"description": "The id provided does not exist"}})
            return httpx.Response(200, json=payment)
        return httpx.Response(404)

    def pay(self, order_ref: str, amount: int) -> dict:
        """Simulate the customer completing checkout; returns the client callback payload."""
        payment_id = f"pay_{len(self.payments) + 1}"
        self.payments[payment_id] = {"id": payment_id, "order_id": order_ref, "amount": amount, "status": "captured"}
        return {
            "razorpay_order_id": order_ref,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": compute_signature(self.secret, order_ref, payment_id),
        }


class FakeCatalog:
    def __init__(self, products):
        self.products = {p.product_id: p for p in products}

    def fetch(self, product_id):
        return self.products.get(product_id)


class FakePushSender:
    enabled = True

    def __init__(self, failing=(), expired=()):
        self.failing = set(failing)
        self.expired = set(expired)
        self.sent = []

    def send(self, subscription, payload):
        endpoint = subscription["endpoint"]
        if endpoint in self.expired:
            raise SubscriptionExpired("gone", target=endpoint)
        if endpoint in self.failing:
            raise DeliveryFailure("push service unavailable", target=endpoint)
        self.sent.append((endpoint, json.loads(payload)))


def subscription(endpoint):
    return {"endpoint": endpoint, "keys": {"p256dh": "BNc-key", "auth": "auth-secret"}}


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orders.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return OrderStore(db)


@pytest.fixture
def make_order(store):
    def _make(user_id="user-1", unit_price="1000", quantity=1, shipping="50", tax="50"):
        items = [LineItem(product_id="p-1", title="Air Zoom", quantity=quantity, unit_price=Decimal(unit_price), size="9", color="black")]
        items_price = Decimal(unit_price) * quantity
        return store.create_pending_order(
            user_id=user_id,
            user_email=f"{user_id}@example.com",
            items=items,
            shipping_address=ADDRESS,
            pricing=Pricing(
                items_price=items_price,
                shipping_price=Decimal(shipping),
                tax_price=Decimal(tax),
                total_price=items_price + Decimal(shipping) + Decimal(tax),
            ),
        )
    return _make


@pytest.fixture
def provider(settings):
    return FakeProvider(settings.RAZORPAY_KEY_SECRET)


@pytest.fixture
def gateway(provider, settings):
    return RazorpayGateway(settings, transport=httpx.MockTransport(provider.handler))


@pytest.fixture
def catalog():
    return FakeCatalog([
        ProductSnapshot(product_id="p-1", title="Air Zoom", price=Decimal("1000"), image="/img/air-zoom.png"),
        ProductSnapshot(product_id="p-2", title="Court Vision", price=Decimal("250")),
        ProductSnapshot(product_id="p-retired", title="Old Model", price=Decimal("10"), is_active=False),
    ])


@pytest.fixture
def push_sender():
    return FakePushSender()


@pytest.fixture
def subscriptions():
    return PushSubscriptionRegistry()


@pytest.fixture
def connections():
    return AdminConnectionRegistry()


@pytest.fixture
def client(session_factory, gateway, catalog, push_sender, subscriptions, connections):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[dependencies.get_gateway] = lambda: gateway
    app.dependency_overrides[dependencies.get_catalog] = lambda: catalog
    app.dependency_overrides[dependencies.get_push_sender] = lambda: push_sender
    app.dependency_overrides[dependencies.get_subscriptions] = lambda: subscriptions
    app.dependency_overrides[dependencies.get_connections] = lambda: connections
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user_id="user-1", role="user"):
    token = create_access_token(user_id, role=role, email=f"{user_id}@example.com")
    return {"Authorization": f"Bearer {token}"}

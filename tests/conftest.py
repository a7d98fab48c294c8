"""Pytest fixtures for checkout tests."""

import hashlib
import hmac
import json
import os
import time
from decimal import Decimal

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
import models.users, models.store, models.product, models.cart  # noqa: F401,E401
import models.order, models.checkout_session  # noqa: F401,E401
from models.cart import Cart, CartItem
from models.product import Product
from models.store import Store
from models.users import User
from services.cart_snapshot import build_snapshot
from services.checkout_sessions import create_session
from utils.payment_providers import PaymentInitiation
from utils.payu_client import PayUProvider
from utils.stripe_client import StripeProvider
from utils.tokenJWT import create_access_token

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
PAYU_SECOND_KEY = "payu_second_key"
ADDRESS = "Jan Kowalski, Main St 1, 00-001 Warsaw, PL"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
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
    yield session
    session.close()


@pytest.fixture
def store(db):
    store = Store(name="Main Store", code="main", is_default=True)
    db.add(store)
    db.commit()
    return store


@pytest.fixture
def user(db):
    user = User(email="customer@example.com", password_hash="!", first_name="Anna")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def other_user(db):
    user = User(email="someone@example.com", password_hash="!")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def products(db, store):
    """Catalog used by the checkout scenarios; tax-free so totals are subtotal + shipping."""
    items = {
        "mug": Product(store_id=store.id, vendor_id=7, name="Mug", sku="MUG-1",
                       price=Decimal("30.00"), tax_rate=Decimal("0"), stock_quantity=10),
        "bag": Product(store_id=store.id, vendor_id=8, name="Bag", sku="BAG-1",
                       price=Decimal("20.00"), tax_rate=Decimal("0"), stock_quantity=10),
        "lamp": Product(store_id=store.id, vendor_id=7, name="Lamp", sku="LMP-1",
                        price=Decimal("40.00"), tax_rate=Decimal("0"), stock_quantity=5),
    }
    db.add_all(items.values())
    db.commit()
    return items


def fill_cart(db, user, lines):
    """Put (product, qty) pairs into the user's open cart at the current catalog price."""
    cart = db.query(Cart).filter(Cart.user_id == user.id, Cart.status == "open").first()
    if cart is None:
        cart = Cart(user_id=user.id, status="open")
        db.add(cart)
        db.flush()
    for product, qty in lines:
        db.add(CartItem(cart_id=cart.id, product_id=product.id, qty=qty, unit_price_snapshot=product.price))
    db.commit()
    return cart


@pytest.fixture
def start_checkout(db, store):
    """Fill the cart and open a checkout session from it."""
    def _start(user, lines, now=None):
        fill_cart(db, user, lines)
        snapshot = build_snapshot(db, user.id)
        return create_session(db, user.id, store.id, snapshot, ADDRESS, now=now)
    return _start


@pytest.fixture
def auth_headers(user):
    token = create_access_token({"sub": user.email})
    return {"Authorization": f"Bearer {token}"}


class FakeStripeProvider(StripeProvider):
    """Real Stripe signature checks; payment creation answered locally."""

    def __init__(self):
        super().__init__(secret_key="sk_test", webhook_secret=STRIPE_WEBHOOK_SECRET, tolerance=300)
        self.created = []

    async def create_payment(self, checkout_session_id, amount, customer_email, customer_ip):
        self.created.append((checkout_session_id, amount, customer_email))
        reference = f"cs_test_{checkout_session_id}"
        return PaymentInitiation(reference=reference, redirect_url=f"https://checkout.stripe.test/{reference}")


@pytest.fixture
def stripe_provider():
    return FakeStripeProvider()


@pytest.fixture
def payu_provider():
    return PayUProvider(second_key=PAYU_SECOND_KEY)


@pytest.fixture
def client(db, stripe_provider):
    from main import app
    from services.payment_gateway import current_payment_provider

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[current_payment_provider] = lambda: stripe_provider
    yield TestClient(app)
    app.dependency_overrides.clear()


def stripe_event(reference, payment_status="paid", event_type="checkout.session.completed"):
    event = {
        "id": "evt_test_1",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": reference,
                "object": "checkout.session",
                "payment_status": payment_status,
                "payment_intent": "pi_test_1",
            }
        },
    }
    return json.dumps(event).encode("utf-8")


def stripe_signature(payload, secret=STRIPE_WEBHOOK_SECRET, timestamp=None):
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def payu_notification(order_id, status="COMPLETED"):
    event = {
        "order": {"orderId": order_id, "extOrderId": "1_1700000000", "status": status},
        "properties": [{"name": "PAYMENT_ID", "value": "5000001"}],
    }
    return json.dumps(event).encode("utf-8")


def payu_signature(payload, key=PAYU_SECOND_KEY):
    digest = hashlib.sha256(payload + key.encode("utf-8")).hexdigest()
    return f"sender=checkout;signature={digest};algorithm=SHA-256;content=DOCUMENT"

import hashlib
import hmac
import json
import time
from unittest.mock import AsyncMock
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from storefront.config import Settings
from storefront.database import create_engine, create_session_factory, init_db
from storefront.exceptions import PaymentProviderError
from storefront.gateway import CheckoutSession, PaymentGateway, PaymentIntent, order_metadata
from storefront.main import create_app
from storefront.messaging import EventPublisher
from storefront.store import OrderStore

WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway(PaymentGateway):
    """In-process stand-in for Stripe.

    Session and intent creation are simulated; webhook verification is the
    real Stripe signature check inherited from PaymentGateway.
    """

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET) -> None:
        super().__init__(webhook_secret)
        self.should_succeed = True
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool) -> None:
        self.should_succeed = should_succeed

    def _check(self) -> None:
        if not self.should_succeed:
            raise PaymentProviderError("Your card was declined.", code="card_declined")

    async def create_checkout_session(self, order_id, product, success_url, cancel_url):
        self.calls.append({
            "method": "create_checkout_session",
            "metadata": order_metadata(order_id, product),
            "success_url": success_url,
            "cancel_url": cancel_url,
        })
        self._check()
        session_id = f"cs_test_{uuid4().hex[:12]}"
        return CheckoutSession(session_id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")

    async def create_payment_intent(self, order_id, product):
        self.calls.append({
            "method": "create_payment_intent",
            "metadata": order_metadata(order_id, product),
        })
        self._check()
        intent_id = f"pi_test_{uuid4().hex[:12]}"
        return PaymentIntent(payment_intent_id=intent_id, client_secret=f"{intent_id}_secret_abc")


@pytest.fixture
def settings():
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        frontend_url="http://localhost:5173",
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def publisher():
    return AsyncMock(spec=EventPublisher)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return OrderStore(session_factory)


@pytest_asyncio.fixture
async def client(settings, gateway, session_factory, publisher):
    app = create_app(settings=settings, gateway=gateway, session_factory=session_factory, publisher=publisher)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def sign():
    """Build a Stripe-Signature header (t=<timestamp>,v1=<hmac-sha256>) for a payload."""
    def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
        if timestamp is None:
            timestamp = int(time.time())
        signed_payload = f"{timestamp}.".encode("utf-8") + payload
        digest = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign


@pytest.fixture
def make_event():
    def _make_event(event_type: str, data_object: dict) -> bytes:
        return json.dumps({
            "id": f"evt_{uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "data": {"object": data_object},
        }).encode("utf-8")

    return _make_event

"""Payment gateway port and its Stripe adapter.

The port keeps checkout and reconciliation code independent of the Stripe SDK,
so tests can substitute a gateway that never leaves the process. Webhook
authentication is never reimplemented here: it is delegated to
``stripe.WebhookSignature``, which performs the HMAC check with a constant-time
comparison and enforces the timestamp tolerance.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import stripe
import structlog

from storefront.config import Product, Settings
from storefront.exceptions import PaymentProviderError, WebhookPayloadError, WebhookSignatureError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str | None


@dataclass(frozen=True)
class PaymentIntent:
    payment_intent_id: str
    client_secret: str | None


def order_metadata(order_id: str, product: Product) -> dict[str, str]:
    """Metadata echoed back by Stripe in every event about this order."""
    return {
        "orderId": order_id,
        "productName": product.name,
        "amount": str(product.amount),
    }


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    def __init__(self, webhook_secret: str, tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE) -> None:
        self._webhook_secret = webhook_secret
        self._tolerance = tolerance

    @abstractmethod
    async def create_checkout_session(
        self,
        order_id: str,
        product: Product,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """Create a hosted checkout session for one unit of ``product``."""
        ...

    @abstractmethod
    async def create_payment_intent(self, order_id: str, product: Product) -> PaymentIntent:
        """Create a payment intent to be confirmed client-side."""
        ...

    def construct_event(self, payload: bytes | str, signature: str | None) -> dict[str, Any]:
        """Authenticate a webhook delivery and return the decoded event.

        Raises WebhookSignatureError when the header is absent or does not match
        the payload, and WebhookPayloadError when an authentic payload is not a
        JSON object.
        """
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise WebhookSignatureError("Webhook payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(payload, signature, self._webhook_secret, self._tolerance)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(str(e)) from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookPayloadError("Webhook payload is not valid JSON") from e
        if not isinstance(event, dict):
            raise WebhookPayloadError("Webhook payload is not a JSON object")
        return event


class StripeGateway(PaymentGateway):
    """Stripe adapter built on an explicit ``StripeClient``.

    The API key lives on the client instance rather than in ``stripe.api_key``,
    so several gateways (or tests) never share hidden global state.
    """

    def __init__(self, api_key: str, webhook_secret: str, client: stripe.StripeClient | None = None) -> None:
        super().__init__(webhook_secret)
        self._client = client or stripe.StripeClient(api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(settings.stripe_secret_key, settings.stripe_webhook_secret)

    async def create_checkout_session(
        self,
        order_id: str,
        product: Product,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        metadata = order_metadata(order_id, product)
        params = {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": product.currency,
                        "unit_amount": product.amount,
                        "product_data": {
                            "name": product.name,
                            "description": product.description,
                        },
                    },
                }
            ],
            # Copy the metadata onto the underlying PaymentIntent so that
            # payment_intent.* events can be matched to the order as well.
            "payment_intent_data": {"metadata": metadata},
        }
        session = await self._call(self._client.checkout.sessions.create, params)
        return CheckoutSession(session_id=session.id, url=session.url)

    async def create_payment_intent(self, order_id: str, product: Product) -> PaymentIntent:
        params = {
            "amount": product.amount,
            "currency": product.currency,
            "capture_method": "automatic",
            "description": product.name,
            "metadata": order_metadata(order_id, product),
            "automatic_payment_methods": {"enabled": True},
        }
        intent = await self._call(self._client.payment_intents.create, params)
        return PaymentIntent(payment_intent_id=intent.id, client_secret=intent.client_secret)

    async def _call(self, method, params: dict[str, Any]):
        # stripe-python is synchronous; keep the event loop free while it waits on the network.
        try:
            return await asyncio.to_thread(method, params=params)
        except stripe.StripeError as e:
            logger.error(
                "stripe_request_failed",
                error_type=type(e).__name__,
                code=e.code,
                http_status=e.http_status,
                request_id=e.request_id,
            )
            raise PaymentProviderError(
                e.user_message or "Payment provider request failed",
                code=e.code,
            ) from e

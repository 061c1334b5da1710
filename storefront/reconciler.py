"""Webhook-driven order reconciliation.

Stripe reports payment outcomes asynchronously. Each authenticated event is
mapped to a status transition on the order whose id was stored in the
payment's metadata when checkout started:

    payment_intent.succeeded                  -> PAID
    payment_intent.payment_failed             -> FAILED
    checkout.session.completed (paid)         -> PAID
    checkout.session.async_payment_succeeded  -> PAID
    checkout.session.async_payment_failed     -> FAILED

Any other event type is acknowledged without touching state. Transitions are
last-write-wins: a later event for the same order overwrites status and
payment reference even when the order already reached PAID or FAILED.
"""

from dataclasses import dataclass
from typing import Any, Callable

import structlog

from storefront.gateway import PaymentGateway
from storefront.messaging import EventPublisher, order_event
from storefront.models import MAX_AMOUNT, Order, OrderStatus
from storefront.store import OrderStore
from storefront.exceptions import WebhookPayloadError

logger = structlog.get_logger(__name__)

MAX_ORDER_ID_LENGTH = 36


@dataclass(frozen=True)
class PaymentOutcome:
    status: OrderStatus
    payment_reference: str | None
    amount: int | None = None


@dataclass(frozen=True)
class ReconcileResult:
    event_type: str
    applied: bool
    order_id: str | None = None
    status: OrderStatus | None = None


def _stripe_int(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _session_payment_reference(session: dict) -> str | None:
    payment_intent = session.get("payment_intent")
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")
    return payment_intent or session.get("id")


def _payment_intent_succeeded(intent: dict) -> PaymentOutcome:
    amount = _stripe_int(intent.get("amount_received"))
    if amount is None:
        amount = _stripe_int(intent.get("amount"))
    return PaymentOutcome(OrderStatus.PAID, intent.get("id"), amount)


def _payment_intent_failed(intent: dict) -> PaymentOutcome:
    return PaymentOutcome(OrderStatus.FAILED, intent.get("id"))


def _session_completed(session: dict) -> PaymentOutcome | None:
    # Delayed payment methods complete the session before the money arrives;
    # async_payment_succeeded follows for those.
    if session.get("payment_status") != "paid":
        return None
    return _session_paid(session)


def _session_paid(session: dict) -> PaymentOutcome:
    return PaymentOutcome(OrderStatus.PAID, _session_payment_reference(session), _stripe_int(session.get("amount_total")))


def _session_failed(session: dict) -> PaymentOutcome:
    return PaymentOutcome(OrderStatus.FAILED, _session_payment_reference(session))


EVENT_HANDLERS: dict[str, Callable[[dict], PaymentOutcome | None]] = {
    "payment_intent.succeeded": _payment_intent_succeeded,
    "payment_intent.payment_failed": _payment_intent_failed,
    "checkout.session.completed": _session_completed,
    "checkout.session.async_payment_succeeded": _session_paid,
    "checkout.session.async_payment_failed": _session_failed,
}


def parse_metadata_amount(raw: Any, default: int = 0) -> int:
    """Read the amount Stripe echoes back in metadata (always a string there).

    Absent or empty values fall back to ``default``. Anything else that is not
    a non-negative integer means the metadata was corrupted on the way, so the
    event is rejected rather than recorded with a made-up amount.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        amount = int(str(raw).strip())
    except ValueError:
        logger.error("webhook_metadata_amount_invalid", raw_amount=raw)
        raise WebhookPayloadError(f"Metadata amount {raw!r} is not an integer") from None
    if amount < 0 or amount > MAX_AMOUNT:
        logger.error("webhook_metadata_amount_invalid", raw_amount=raw)
        raise WebhookPayloadError(f"Metadata amount {raw!r} is out of range")
    return amount


async def find_or_create_order(
    store: OrderStore,
    order_id: str,
    metadata: dict,
    default_product_name: str,
    default_amount: int = 0,
) -> Order:
    """Return the stored order, or a new PENDING one built from event metadata.

    The new order is not persisted here; the caller applies its transition and
    upserts the result in one write.
    """
    order = await store.find_by_id(order_id)
    if order is not None:
        return order

    logger.info("webhook_order_synthesized", order_id=order_id)
    return Order(
        id=order_id,
        product_name=metadata.get("productName") or default_product_name,
        amount=parse_metadata_amount(metadata.get("amount"), default_amount),
        status=OrderStatus.PENDING,
    )


class WebhookReconciler:
    def __init__(
        self,
        gateway: PaymentGateway,
        store: OrderStore,
        publisher: EventPublisher,
        default_product_name: str,
    ):
        self.gateway = gateway
        self.store = store
        self.publisher = publisher
        self.default_product_name = default_product_name

    async def reconcile(self, payload: bytes, signature: str | None) -> ReconcileResult:
        # Raises WebhookSignatureError before anything in the payload is trusted.
        event = self.gateway.construct_event(payload, signature)
        event_type = str(event.get("type") or "")
        log = logger.bind(event_type=event_type, event_id=event.get("id"))
        log.info("webhook_received")

        handler = EVENT_HANDLERS.get(event_type)
        if handler is None:
            log.info("webhook_event_ignored", reason="unhandled event type")
            return ReconcileResult(event_type=event_type, applied=False)

        data = event.get("data")
        data_object = data.get("object") if isinstance(data, dict) else None
        if not isinstance(data_object, dict):
            # Acknowledged without a state change, like an unhandled type.
            log.warning("webhook_payload_invalid", reason="data.object missing")
            return ReconcileResult(event_type=event_type, applied=False)

        outcome = handler(data_object)
        if outcome is None:
            log.info("webhook_event_ignored", reason="payment not completed", object_id=data_object.get("id"))
            return ReconcileResult(event_type=event_type, applied=False)

        metadata = data_object.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        order_id = str(metadata.get("orderId") or "").strip()
        if not order_id:
            log.warning("webhook_missing_order_id", object_id=data_object.get("id"))
            return ReconcileResult(event_type=event_type, applied=False)
        if len(order_id) > MAX_ORDER_ID_LENGTH:
            log.error("webhook_order_id_invalid", order_id=order_id[:64])
            raise WebhookPayloadError("Metadata orderId is too long")

        async with self.store.lock(order_id):
            order = await find_or_create_order(self.store, order_id, metadata, self.default_product_name)
            order.status = outcome.status
            order.payment_reference = outcome.payment_reference
            if outcome.amount is not None:
                order.amount = outcome.amount
            order = await self.store.upsert(order)

        log.info(
            "order_reconciled",
            order_id=order.id,
            status=order.status.value,
            payment_reference=order.payment_reference,
            amount=order.amount,
        )
        if order.status is OrderStatus.PAID:
            await self.publisher.publish("order.paid", order_event("OrderPaid", order))
        else:
            await self.publisher.publish("order.failed", order_event("OrderFailed", order))

        return ReconcileResult(event_type=event_type, applied=True, order_id=order.id, status=order.status)

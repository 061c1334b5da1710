from uuid import uuid4

import structlog

from storefront.config import Settings
from storefront.gateway import PaymentGateway
from storefront.messaging import EventPublisher, order_event
from storefront.models import Order, OrderStatus
from storefront.schemas import CheckoutSessionResponse, PaymentIntentResponse
from storefront.store import OrderStore

logger = structlog.get_logger(__name__)


class CheckoutService:
    """Starts payments for the storefront's single product.

    The gateway call always comes first. A PENDING order is stored only once
    Stripe has returned its session or intent, so a provider failure never
    leaves behind an order with nothing to pay.
    """

    def __init__(self, settings: Settings, gateway: PaymentGateway, store: OrderStore, publisher: EventPublisher):
        self.settings = settings
        self.gateway = gateway
        self.store = store
        self.publisher = publisher

    async def create_session(self) -> CheckoutSessionResponse:
        order_id = str(uuid4())
        product = self.settings.product
        frontend_url = self.settings.frontend_url

        session = await self.gateway.create_checkout_session(
            order_id,
            product,
            success_url=f"{frontend_url}/success?session_id={{CHECKOUT_SESSION_ID}}&orderId={order_id}",
            cancel_url=f"{frontend_url}/cancel?orderId={order_id}",
        )
        logger.info("checkout_session_created", session_id=session.session_id, order_id=order_id)

        await self._create_pending_order(order_id, payment_reference=None)
        return CheckoutSessionResponse(session_id=session.session_id, url=session.url, order_id=order_id)

    async def create_payment_intent(self) -> PaymentIntentResponse:
        order_id = str(uuid4())

        intent = await self.gateway.create_payment_intent(order_id, self.settings.product)
        logger.info("payment_intent_created", payment_intent_id=intent.payment_intent_id, order_id=order_id)

        await self._create_pending_order(order_id, payment_reference=intent.payment_intent_id)
        return PaymentIntentResponse(
            client_secret=intent.client_secret,
            order_id=order_id,
            payment_intent_id=intent.payment_intent_id,
        )

    async def _create_pending_order(self, order_id: str, payment_reference: str | None) -> Order:
        product = self.settings.product
        order = await self.store.upsert(
            Order(
                id=order_id,
                product_name=product.name,
                amount=product.amount,
                payment_reference=payment_reference,
                status=OrderStatus.PENDING,
            )
        )
        await self.publisher.publish("order.created", order_event("OrderCreated", order))
        return order

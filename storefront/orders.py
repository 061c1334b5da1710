import structlog

from storefront.exceptions import OrderNotFoundError
from storefront.models import Order
from storefront.schemas import OrderRecordRequest
from storefront.store import OrderStore

logger = structlog.get_logger(__name__)


async def record_order(store: OrderStore, request: OrderRecordRequest) -> Order:
    """Store a client-reported outcome, overwriting every mutable field.

    Shares the per-order lock with webhook reconciliation; whichever of the two
    writes last determines the stored status.
    """
    order_id = str(request.order_id)

    async with store.lock(order_id):
        order = await store.find_by_id(order_id)
        if order is None:
            order = Order(id=order_id)
        order.product_name = request.product_name
        order.amount = request.amount
        order.payment_reference = request.payment_intent_id
        order.status = request.status
        saved = await store.upsert(order)

    logger.info(
        "order_recorded",
        order_id=saved.id,
        status=saved.status.value,
        payment_reference=saved.payment_reference,
    )
    return saved


async def get_order(store: OrderStore, order_id: str) -> Order:
    order = await store.find_by_id(order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order

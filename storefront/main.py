from contextlib import asynccontextmanager

import uvicorn
import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.checkout import CheckoutService
from storefront.config import Settings, load_settings
from storefront.database import create_engine, create_session_factory, init_db
from storefront.exceptions import (
    OrderNotFoundError,
    PaymentProviderError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from storefront.gateway import PaymentGateway, StripeGateway
from storefront.logging_config import configure_logging
from storefront.messaging import EventPublisher
from storefront.orders import get_order, record_order
from storefront.reconciler import WebhookReconciler
from storefront.schemas import CheckoutSessionResponse, OrderRead, OrderRecordRequest, PaymentIntentResponse
from storefront.store import OrderStore

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_store(request: Request) -> OrderStore:
    return request.app.state.store


def get_checkout_service(request: Request) -> CheckoutService:
    return request.app.state.checkout


def get_reconciler(request: Request) -> WebhookReconciler:
    return request.app.state.reconciler


@router.post("/api/checkout/create-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(checkout: CheckoutService = Depends(get_checkout_service)):
    return await checkout.create_session()


@router.post("/api/payments/create-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(checkout: CheckoutService = Depends(get_checkout_service)):
    return await checkout.create_payment_intent()


@router.get("/api/orders", response_model=list[OrderRead])
async def list_orders(store: OrderStore = Depends(get_store)):
    orders = await store.list_all()
    return [OrderRead.model_validate(order) for order in orders]


@router.get("/api/orders/{order_id}", response_model=OrderRead)
async def read_order(order_id: str, store: OrderStore = Depends(get_store)):
    return OrderRead.model_validate(await get_order(store, order_id))


@router.post("/api/orders", response_model=OrderRead)
async def create_order_record(body: OrderRecordRequest, store: OrderStore = Depends(get_store)):
    order = await record_order(store, body)
    return OrderRead.model_validate(order)


@router.post("/webhook", response_class=PlainTextResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    payload = await request.body()
    await reconciler.reconcile(payload, stripe_signature)
    return PlainTextResponse("received")


@router.get("/health")
async def health():
    return {"status": "ok"}


async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("request_rejected", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


async def payment_provider_error_handler(request: Request, exc: PaymentProviderError):
    return JSONResponse(status_code=502, content={"detail": exc.message, "code": exc.code})


async def webhook_signature_error_handler(request: Request, exc: WebhookSignatureError):
    logger.warning("webhook_signature_rejected", error=str(exc))
    return JSONResponse(status_code=401, content={"detail": "Invalid webhook signature"})


async def webhook_payload_error_handler(request: Request, exc: WebhookPayloadError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def order_not_found_handler(request: Request, exc: OrderNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Order not found"})


def create_app(
    settings: Settings | None = None,
    gateway: PaymentGateway | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    publisher: EventPublisher | None = None,
) -> FastAPI:
    """Wire the service together.

    Without explicit settings they are read from the environment, and a
    missing Stripe secret raises ConfigurationError here, before any request
    can be served.
    """
    if settings is None:
        settings = load_settings()
    configure_logging(settings.log_level, settings.log_format)

    engine = None
    if session_factory is None:
        engine = create_engine(settings.database_url)
        session_factory = create_session_factory(engine)

    store = OrderStore(session_factory)
    if gateway is None:
        gateway = StripeGateway.from_settings(settings)
    if publisher is None:
        publisher = EventPublisher(settings.rabbitmq_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            await init_db(engine)
        await publisher.connect()
        logger.info("storefront_started", product=settings.product.name, frontend_url=settings.frontend_url)
        yield
        await publisher.close()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title="Storefront Order Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.publisher = publisher
    app.state.checkout = CheckoutService(settings, gateway, store, publisher)
    app.state.reconciler = WebhookReconciler(gateway, store, publisher, settings.product.name)

    app.include_router(router)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(PaymentProviderError, payment_provider_error_handler)
    app.add_exception_handler(WebhookSignatureError, webhook_signature_error_handler)
    app.add_exception_handler(WebhookPayloadError, webhook_payload_error_handler)
    app.add_exception_handler(OrderNotFoundError, order_not_found_handler)

    return app


if __name__ == "__main__":
    uvicorn.run("storefront.main:create_app", factory=True, host="0.0.0.0", port=8000)

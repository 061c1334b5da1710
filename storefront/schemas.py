from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime
from uuid import UUID
from storefront.models import MAX_AMOUNT, OrderStatus


class OrderRead(BaseModel):
    id: str
    product_name: str
    amount: int
    payment_reference: str | None = None
    status: OrderStatus
    created_at: datetime
    updated_at: datetime | None = None

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


class OrderRecordRequest(BaseModel):
    """Client-reported payment outcome for an order."""

    order_id: UUID = Field(..., alias="orderId", examples=["0b9f6a52-3f1e-4f3c-9a0e-4d6c2a3e9b11"])
    payment_intent_id: str = Field(..., alias="paymentIntentId", min_length=1, examples=["pi_3Nx..."])
    product_name: str = Field(..., alias="productName", min_length=1)
    amount: int = Field(..., ge=1, le=MAX_AMOUNT, strict=True)
    status: OrderStatus

    @field_validator("payment_intent_id", "product_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v):
        if isinstance(v, str):
            try:
                return OrderStatus[v.strip().upper()]
            except KeyError:
                allowed = ", ".join(s.value for s in OrderStatus)
                raise ValueError(f"unknown status {v!r}; expected one of {allowed}") from None
        return v

    class Config:
        populate_by_name = True


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str | None
    order_id: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class PaymentIntentResponse(BaseModel):
    client_secret: str | None
    order_id: str
    payment_intent_id: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True

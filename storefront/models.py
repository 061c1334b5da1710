from sqlalchemy import Column, String, Integer, DateTime, Enum
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import enum

Base = declarative_base()

# Order.amount is a 4-byte INTEGER in PostgreSQL.
MAX_AMOUNT = 2**31 - 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    product_name = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)  # minor currency units
    payment_reference = Column(String, nullable=True)
    status = Column(Enum(OrderStatus, name="order_status"), default=OrderStatus.PENDING, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.status.value if self.status else None} amount={self.amount}>"

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.models import Order, utcnow

logger = structlog.get_logger(__name__)

# Dialects with INSERT ... ON CONFLICT DO UPDATE.
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

_REPLACED_COLUMNS = ("product_name", "amount", "payment_reference", "status", "updated_at")


class OrderStore:
    """Order persistence keyed by order id.

    ``upsert`` is a single ``INSERT ... ON CONFLICT DO UPDATE`` statement, so
    concurrent writers to the same id never collide on the primary key: one of
    them lands last and its fields win, in this process or any other.
    Read-modify-write sequences spanning several calls are not atomic; callers
    that need them hold ``lock(order_id)``, which serialises writers to the same
    order inside this process only.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def upsert(self, order: Order) -> Order:
        now = utcnow()
        values = {
            "id": order.id,
            "product_name": order.product_name,
            "amount": order.amount,
            "payment_reference": order.payment_reference,
            "status": order.status,
            "created_at": order.created_at or now,
            "updated_at": now,
        }

        async with self._session_factory() as session:
            async with session.begin():
                insert = _UPSERT_INSERTS[session.get_bind().dialect.name]
                stmt = insert(Order).values(**values)
                # created_at stays whatever the first insert wrote.
                stmt = stmt.on_conflict_do_update(
                    index_elements=[Order.id],
                    set_={name: stmt.excluded[name] for name in _REPLACED_COLUMNS},
                ).returning(Order)
                result = await session.scalars(stmt, execution_options={"populate_existing": True})
                persisted = result.one()

        logger.debug("order_upserted", order_id=persisted.id, status=persisted.status.value)
        return persisted

    async def find_by_id(self, order_id: str) -> Order | None:
        async with self._session_factory() as session:
            return await session.get(Order, order_id)

    async def list_all(self) -> list[Order]:
        async with self._session_factory() as session:
            result = await session.execute(select(Order).order_by(Order.created_at.desc()))
            return list(result.scalars().all())

    @asynccontextmanager
    async def lock(self, order_id: str) -> AsyncIterator[None]:
        order_lock = self._locks.get(order_id)
        if order_lock is None:
            order_lock = asyncio.Lock()
            self._locks[order_id] = order_lock
        async with order_lock:
            yield

"""Order store backed by a relational database through SQLAlchemy."""

from __future__ import annotations

import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import JSON, Integer, String, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from .errors import NotFoundError, PersistenceError
from .logger import logger
from .schemas import Order, OrderPage, Pagination
from .store import IMMUTABLE_FIELDS, check_page, new_order_id, validate_order_id


class Base(DeclarativeBase):
    pass


class OrderRow(Base):
    """One order, stored as its full document next to the indexed lookup keys."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(24), primary_key=True)
    order_number: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    client_id: Mapped[str] = mapped_column(String(64), index=True)
    document: Mapped[dict] = mapped_column(JSON)


class OrderNumberRow(Base):
    """Issued order numbers. Rows are never deleted, so numbers never repeat."""

    __tablename__ = "order_numbers"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.endswith("://"))


class SqlOrderStore:
    """Order store persisted in a SQL database.

    Attributes:
        url: SQLAlchemy async database URL, e.g.
            ``postgresql+asyncpg://user:pass@db/orders`` or ``sqlite+aiosqlite:///orders.db``.
    """

    def __init__(self, url: str):
        self.url = url
        kwargs = {}
        if _is_memory_sqlite(url):
            # Every session must see the same in-memory database.
            kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
        self._engine = create_async_engine(url, **kwargs)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)

    async def open(self) -> None:
        """Create the tables that do not exist yet."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Order store ready | backend={self._engine.dialect.name}")

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as e:
            logger.exception("Order store operation failed")
            raise PersistenceError("Order store unavailable") from e

    @staticmethod
    def _load(document: dict) -> Order:
        return Order.model_validate(document)

    async def _get_row(self, session: AsyncSession, order_id: str) -> OrderRow:
        validate_order_id(order_id)
        row = await session.get(OrderRow, order_id)
        if row is None:
            raise NotFoundError("Order not found")
        return row

    async def create(self, order: Order) -> Order:
        """Persist a new order and return it with its assigned id."""
        stored = order.model_copy(update={"id": order.id or new_order_id()})
        document = stored.model_dump(mode="json")
        async with self._transaction() as session:
            session.add(
                OrderRow(
                    id=stored.id,
                    order_number=int(stored.order_number),
                    client_id=stored.client.id,
                    document=document,
                )
            )
        logger.debug(f"Order stored | order_id={stored.id} | order_number={stored.order_number}")
        return self._load(document)

    async def find_by_id(self, order_id: str) -> Order:
        async with self._transaction() as session:
            row = await self._get_row(session, order_id)
            return self._load(row.document)

    async def update(self, order_id: str, patch: dict) -> Order:
        """Apply a patch to a stored order, ignoring immutable fields."""
        async with self._transaction() as session:
            row = await self._get_row(session, order_id)
            changes = {key: value for key, value in patch.items() if key not in IMMUTABLE_FIELDS}
            changes["updated_at"] = datetime.now(timezone.utc)
            updated = self._load(row.document).model_copy(update=changes)
            row.document = updated.model_dump(mode="json")
            return self._load(row.document)

    async def delete(self, order_id: str) -> Order:
        async with self._transaction() as session:
            row = await self._get_row(session, order_id)
            order = self._load(row.document)
            await session.delete(row)
        logger.info(f"Order deleted | order_id={order_id}")
        return order

    async def count(self) -> int:
        async with self._transaction() as session:
            return await session.scalar(select(func.count()).select_from(OrderRow))

    async def list(self, page: int, limit: int) -> OrderPage:
        """Return one page of orders, oldest first."""
        check_page(page, limit)
        async with self._transaction() as session:
            total = await session.scalar(select(func.count()).select_from(OrderRow))
            rows = await session.scalars(
                select(OrderRow).order_by(OrderRow.order_number).offset((page - 1) * limit).limit(limit)
            )
            items = [self._load(row.document) for row in rows]
        return OrderPage(
            items=items,
            pagination=Pagination(current_page=page, total_pages=math.ceil(total / limit), total_orders=total),
        )

    async def find_by_client(self, client_id: str) -> list[Order]:
        async with self._transaction() as session:
            rows = await session.scalars(
                select(OrderRow).where(OrderRow.client_id == client_id).order_by(OrderRow.order_number)
            )
            return [self._load(row.document) for row in rows]

    async def next_order_number(self) -> str:
        """Reserve the next order number.

        Numbers come from an autoincrement key, so concurrent requests,
        even from several processes, are never handed the same number.
        """
        async with self._transaction() as session:
            issued = OrderNumberRow()
            session.add(issued)
            await session.flush()
            return str(issued.id)

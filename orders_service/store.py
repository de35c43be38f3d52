"""Persistence of order aggregates."""

from __future__ import annotations

import math
import re
import secrets
from datetime import datetime, timezone
from typing import Protocol

from .errors import NotFoundError, ValidationError
from .logger import logger
from .schemas import Order, OrderPage, Pagination

MAX_PAGE_LIMIT = 100

# Fields fixed at creation; an update patch never touches them.
IMMUTABLE_FIELDS = frozenset({"id", "order_number", "client", "store", "created_at"})

_ORDER_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


def validate_order_id(order_id: str) -> str:
    """Check that an order id is well-formed before any lookup.

    Args:
        order_id: Identifier received from the caller.

    Returns:
        str: The identifier, unchanged.

    Raises:
        ValidationError: If the identifier is not a 24-character hex string.
    """
    if not order_id or not _ORDER_ID_PATTERN.match(order_id):
        raise ValidationError("Invalid order ID")
    return order_id


def new_order_id() -> str:
    return secrets.token_hex(12)


def check_page(page: int, limit: int) -> None:
    """Reject page requests outside the allowed range.

    Raises:
        ValidationError: If ``limit`` exceeds the cap or either value is below one.
    """
    if limit > MAX_PAGE_LIMIT:
        raise ValidationError(f"Limit cannot exceed {MAX_PAGE_LIMIT}")
    if limit < 1 or page < 1:
        raise ValidationError("Page and limit must be positive")


class OrderStore(Protocol):
    """Protocol for the storage backing orders."""

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def create(self, order: Order) -> Order: ...

    async def find_by_id(self, order_id: str) -> Order: ...

    async def update(self, order_id: str, patch: dict) -> Order: ...

    async def delete(self, order_id: str) -> Order: ...

    async def count(self) -> int: ...

    async def list(self, page: int, limit: int) -> OrderPage: ...

    async def find_by_client(self, client_id: str) -> list[Order]: ...

    async def next_order_number(self) -> str: ...


class InMemoryOrderStore:
    """Order store kept in process memory, in insertion order.

    Every method is a coroutine so callers treat it like a remote store.
    Stored orders are copied on the way in and out, so callers never share
    state with the store.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._sequence = 0

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def create(self, order: Order) -> Order:
        """Persist a new order and return it with its assigned id."""
        order_id = order.id or new_order_id()
        stored = order.model_copy(update={"id": order_id}, deep=True)
        self._orders[order_id] = stored
        logger.debug(f"Order stored | order_id={order_id} | order_number={stored.order_number}")
        return stored.model_copy(deep=True)

    async def find_by_id(self, order_id: str) -> Order:
        validate_order_id(order_id)
        order = self._orders.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order.model_copy(deep=True)

    async def update(self, order_id: str, patch: dict) -> Order:
        """Apply a patch to a stored order.

        Args:
            order_id: Identifier of the order.
            patch: Attribute names mapped to their new values. Immutable
                fields are ignored.

        Returns:
            Order: The updated order.
        """
        validate_order_id(order_id)
        existing = self._orders.get(order_id)
        if existing is None:
            raise NotFoundError("Order not found")
        changes = {key: value for key, value in patch.items() if key not in IMMUTABLE_FIELDS}
        changes["updated_at"] = datetime.now(timezone.utc)
        updated = existing.model_copy(update=changes, deep=True)
        self._orders[order_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, order_id: str) -> Order:
        validate_order_id(order_id)
        order = self._orders.pop(order_id, None)
        if order is None:
            raise NotFoundError("Order not found")
        logger.info(f"Order deleted | order_id={order_id}")
        return order

    async def count(self) -> int:
        return len(self._orders)

    async def list(self, page: int, limit: int) -> OrderPage:
        """Return one page of orders, oldest first."""
        check_page(page, limit)

        orders = list(self._orders.values())
        start = (page - 1) * limit
        total = len(orders)
        return OrderPage(
            items=[order.model_copy(deep=True) for order in orders[start : start + limit]],
            pagination=Pagination(
                current_page=page,
                total_pages=math.ceil(total / limit),
                total_orders=total,
            ),
        )

    async def find_by_client(self, client_id: str) -> list[Order]:
        return [order.model_copy(deep=True) for order in self._orders.values() if order.client.id == client_id]

    async def next_order_number(self) -> str:
        """Reserve the next order number.

        The read and the increment happen without a suspension point, so
        concurrent requests can never be handed the same number.
        """
        self._sequence = max(self._sequence, len(self._orders)) + 1
        return str(self._sequence)

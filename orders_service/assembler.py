"""Builds the order aggregate and hands it to the order store."""

from typing import Optional

from .errors import EmptyOrder, OrderServiceError, PersistenceError, ValidationError
from .logger import logger
from .pricer import PricedItems
from .schemas import ClientSnapshot, CreateOrderRequest, Order, OrderStatus, StoreSnapshot
from .store import OrderStore


class OrderAssembler:
    """Assembles priced items and snapshots into a persisted order."""

    def __init__(self, store: OrderStore):
        self.store = store

    async def assemble(
        self,
        request: CreateOrderRequest,
        client: Optional[ClientSnapshot],
        store: Optional[StoreSnapshot],
        priced: PricedItems,
    ) -> Order:
        """Build the order and persist it in ``pending`` status.

        Args:
            request: The creation request.
            client: Snapshot of the ordering client.
            store: Snapshot of the store, if the order belongs to one.
            priced: Priced line items and total.

        Returns:
            Order: The persisted order, carrying its store-assigned id.

        Raises:
            EmptyOrder: If there are no line items.
            ValidationError: If the client snapshot is missing.
            PersistenceError: If the order store fails.
        """
        if not request.items or not priced.items:
            raise EmptyOrder("Order must contain at least one item")
        if client is None:
            raise ValidationError("clientId is required")

        order_number = await self.store.next_order_number()
        order = Order(
            order_number=order_number,
            items=priced.items,
            total=priced.total,
            client=client,
            store=store,
            payment_type=request.payment_type,
            status=OrderStatus.PENDING,
        )

        try:
            saved = await self.store.create(order)
        except OrderServiceError:
            raise
        except Exception as e:
            logger.exception(f"Failed to persist order | order_number={order_number}")
            raise PersistenceError("Error creating order") from e

        logger.info(
            f"Order assembled | order_id={saved.id} | order_number={saved.order_number} | "
            f"items={len(saved.items)} | total={saved.total} | client_id={client.id}"
        )
        return saved

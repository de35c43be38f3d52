"""Order creation and edit workflows.

An order moves through resolve, price, persist and reconcile, strictly in
that order. It is persisted as ``pending`` and moves to ``confirmed`` or
``reconciliation_failed`` once the stock effects are known, so a failed
reconciliation stays visible on the order itself.
"""

from typing import Optional

from .assembler import OrderAssembler
from .errors import EmptyOrder, ReconciliationError, ValidationError
from .fanout import gather_or_cancel
from .logger import logger
from .pricer import CatalogEntry, check_item, price_items
from .producer import ORDER_CONFIRMED_TOPIC, ORDER_RECONCILIATION_FAILED_TOPIC, OrderEventProducer
from .reconciler import StockReconciler
from .resolver import RemoteResolver
from .schemas import (
    ClientSnapshot,
    CreateOrderRequest,
    EditOrderRequest,
    LineItemRequest,
    Order,
    OrderLineItem,
    OrderPage,
    OrderStatus,
    ReconcileResult,
    StoreSnapshot,
)
from .store import OrderStore


def consumed_quantities(items: list[OrderLineItem]) -> dict[str, int]:
    """Units of each product consumed by a list of line items."""
    consumed: dict[str, int] = {}
    for item in items:
        if item.kind == "product":
            consumed[item.product_id] = consumed.get(item.product_id, 0) + item.quantity
    return consumed


def credit_consumed(consumed: dict[str, int], results: list[ReconcileResult]) -> dict[str, int]:
    """Add the units of every successful product decrement to ``consumed``."""
    credited = dict(consumed)
    for result in results:
        if result.ok and result.kind == "product":
            credited[result.reference_id] = credited.get(result.reference_id, 0) + result.quantity
    return credited


def stock_delta(previous: dict[str, int], items: list[OrderLineItem]) -> list[OrderLineItem]:
    """Line items still to be reconciled after an edit.

    Products contribute only the units added on top of what the order had
    already consumed. Services are always re-confirmed.
    """
    wanted = consumed_quantities(items)
    delta = []
    seen = set()
    for item in items:
        if item.kind == "service":
            delta.append(item)
            continue
        if item.product_id in seen:
            continue
        seen.add(item.product_id)
        extra = wanted[item.product_id] - previous.get(item.product_id, 0)
        if extra > 0:
            delta.append(item.model_copy(update={"quantity": extra}))
    return delta


class OrderWorkflow:
    """Entry point for every order operation.

    Attributes:
        store: Order persistence.
        resolver: Client for the sibling services.
        producer: Optional publisher of order events.
    """

    def __init__(
        self,
        store: OrderStore,
        resolver: RemoteResolver,
        producer: Optional[OrderEventProducer] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.producer = producer
        self.assembler = OrderAssembler(store)
        self.reconciler = StockReconciler(resolver)

    @staticmethod
    def _check_items(items: Optional[list[LineItemRequest]]) -> None:
        if not items:
            raise EmptyOrder("Order must contain at least one item")
        for item in items:
            check_item(item)

    async def _resolve_entry(self, item: LineItemRequest, credential: Optional[str]) -> CatalogEntry:
        if item.product_id is not None:
            return await self.resolver.resolve_product(item.product_id, credential)
        return await self.resolver.resolve_service(item.service_id, credential)

    async def _resolve_store(self, store_id: Optional[str], credential: Optional[str]) -> Optional[StoreSnapshot]:
        if not store_id:
            return None
        return await self.resolver.resolve_store(store_id, credential)

    async def _resolve(
        self, request: CreateOrderRequest, credential: Optional[str]
    ) -> tuple[list[CatalogEntry], ClientSnapshot, Optional[StoreSnapshot]]:
        count = len(request.items)
        results = await gather_or_cancel(
            *(self._resolve_entry(item, credential) for item in request.items),
            self.resolver.resolve_client(request.client_id, credential),
            self._resolve_store(request.store_id, credential),
        )
        return results[:count], results[count], results[count + 1]

    def _publish(self, topic: str, order: Order) -> None:
        if self.producer is None:
            return
        try:
            self.producer.publish_order(topic, order)
        except Exception:
            logger.exception(f"Failed to publish order event | topic={topic} | order_id={order.id}")

    async def _reconcile(
        self, order: Order, items: list[OrderLineItem], credential: Optional[str]
    ) -> tuple[Order, list[ReconcileResult]]:
        try:
            stocks = await self.reconciler.reconcile(order, items, credential)
        except ReconciliationError as e:
            failed = await self.store.update(
                order.id,
                {
                    "status": OrderStatus.RECONCILIATION_FAILED,
                    "reconciliation_error": e.message,
                    "consumed_stock": credit_consumed(order.consumed_stock, e.results),
                },
            )
            self._publish(ORDER_RECONCILIATION_FAILED_TOPIC, failed)
            raise

        confirmed = await self.store.update(
            order.id,
            {
                "status": OrderStatus.CONFIRMED,
                "reconciliation_error": None,
                "consumed_stock": credit_consumed(order.consumed_stock, stocks),
            },
        )
        self._publish(ORDER_CONFIRMED_TOPIC, confirmed)
        return confirmed, stocks

    async def create_order(
        self, request: CreateOrderRequest, credential: Optional[str]
    ) -> tuple[Order, list[ReconcileResult]]:
        """Create an order and propagate its stock effects.

        Args:
            request: The creation request.
            credential: Caller's ``Authorization`` header, forwarded downstream.

        Returns:
            tuple: The confirmed order and one reconcile result per item.
        """
        self._check_items(request.items)
        if not request.client_id:
            raise ValidationError("clientId is required")

        entries, client, store = await self._resolve(request, credential)
        priced = price_items(request.items, entries)
        order = await self.assembler.assemble(request, client, store, priced)
        logger.info(f"Order created | order_id={order.id} | order_number={order.order_number} | total={order.total}")
        return await self._reconcile(order, order.items, credential)

    async def edit_order(
        self, order_id: str, request: EditOrderRequest, credential: Optional[str]
    ) -> tuple[Order, list[ReconcileResult]]:
        """Edit an order's items and payment type.

        A new item list is re-resolved and re-priced, including services.
        Only units beyond those already decremented for the order are
        decremented, so an order whose reconciliation failed is charged for
        what never went through. Client and store are left untouched.
        """
        existing = await self.store.find_by_id(order_id)

        if request.items is None:
            patch = {}
            if request.payment_type is not None:
                patch["payment_type"] = request.payment_type
            updated = await self.store.update(order_id, patch)
            logger.info(f"Order updated | order_id={order_id} | fields={sorted(patch)}")
            return updated, []

        self._check_items(request.items)
        entries = await gather_or_cancel(*(self._resolve_entry(item, credential) for item in request.items))
        previous = existing.consumed_stock
        priced = price_items(request.items, entries, reserved=previous)

        patch = {
            "items": priced.items,
            "total": priced.total,
            "status": OrderStatus.PENDING,
            "reconciliation_error": None,
        }
        if request.payment_type is not None:
            patch["payment_type"] = request.payment_type
        updated = await self.store.update(order_id, patch)
        logger.info(f"Order updated | order_id={order_id} | items={len(priced.items)} | total={priced.total}")
        return await self._reconcile(updated, stock_delta(previous, priced.items), credential)

    async def get_order(self, order_id: str) -> Order:
        return await self.store.find_by_id(order_id)

    async def delete_order(self, order_id: str) -> Order:
        return await self.store.delete(order_id)

    async def list_orders(self, page: int, limit: int) -> OrderPage:
        return await self.store.list(page, limit)

    async def client_orders(self, client_id: str) -> list[Order]:
        return await self.store.find_by_client(client_id)

    async def count_orders(self) -> int:
        return await self.store.count()

"""Propagates the stock effects of a persisted order to the owning services."""

import asyncio
from typing import Optional

from .errors import OrderServiceError, ReconciliationError
from .logger import logger
from .resolver import RemoteResolver
from .schemas import Order, OrderLineItem, ReconcileResult


class StockReconciler:
    """Decrements product stock and re-confirms services for an order.

    Calls are not transactional: a failure does not undo stock already
    decremented by sibling calls.
    """

    def __init__(self, resolver: RemoteResolver):
        self.resolver = resolver

    async def reconcile(
        self, order: Order, items: list[OrderLineItem], credential: Optional[str]
    ) -> list[ReconcileResult]:
        """Issue one call per item concurrently and join them all.

        Args:
            order: The persisted order.
            items: Items whose effects must be propagated.
            credential: Caller's bearer credential, forwarded as is.

        Returns:
            list[ReconcileResult]: One result per item, in item order.

        Raises:
            ReconciliationError: If any call failed. Carries every result.
        """
        results = await asyncio.gather(*(self._reconcile_item(item, credential) for item in items))
        failures = [result for result in results if not result.ok]
        if failures:
            first = failures[0]
            logger.error(
                f"Stock reconciliation failed | order_id={order.id} | failed={len(failures)}/{len(results)} | "
                f"first={first.kind}:{first.reference_id} | error={first.error}"
            )
            raise ReconciliationError(
                f"Error updating products stock: {first.error}", order_id=order.id, results=list(results)
            )
        logger.info(f"Stock reconciled | order_id={order.id} | calls={len(results)}")
        return list(results)

    @staticmethod
    def _failed(item: OrderLineItem, error: str) -> ReconcileResult:
        return ReconcileResult(
            kind=item.kind, reference_id=item.reference_id, quantity=item.quantity, ok=False, error=error
        )

    async def _reconcile_item(self, item: OrderLineItem, credential: Optional[str]) -> ReconcileResult:
        try:
            if item.kind == "product":
                detail = await self.resolver.decrement_stock(item.product_id, item.quantity, credential)
            else:
                detail = await self.resolver.confirm_service(item.service_id, credential)
        except OrderServiceError as e:
            logger.warning(f"Reconciliation call failed | {item.kind}={item.reference_id} | error={e.message}")
            return self._failed(item, e.message)
        except Exception as e:
            logger.exception(f"Unexpected reconciliation failure | {item.kind}={item.reference_id}")
            return self._failed(item, f"{type(e).__name__}: {e}")
        return ReconcileResult(kind=item.kind, reference_id=item.reference_id, quantity=item.quantity, detail=detail)

"""Exceptions raised by the orders service.

Every error carries the HTTP status it maps to, so the server can render
them uniformly with a single exception handler.
"""

from typing import Any, Optional


class OrderServiceError(Exception):
    """Base class for all orders service errors."""

    status_code = 500

    def __init__(self, message: str, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.data = data if data is not None else {}


class ValidationError(OrderServiceError):
    """Bad, missing or malformed input."""

    status_code = 400


class EmptyOrder(ValidationError):
    """An order was submitted without line items."""


class InvalidItemKind(ValidationError):
    """A line item names neither or both of a product and a service."""


class InvalidQuantity(ValidationError):
    """A product line item has an absent, non-numeric or non-positive quantity."""


class InvalidPrice(ValidationError):
    """A catalog entry carries a price that is not a finite non-negative number."""


class InsufficientStock(ValidationError):
    """A product does not have enough stock for the requested quantity."""


class NotFoundError(OrderServiceError):
    """An order or a referenced remote record does not exist."""

    status_code = 404


class AuthenticationError(OrderServiceError):
    """The request carries no usable bearer credential."""

    status_code = 401


class UpstreamError(OrderServiceError):
    """A collaborator service failed or returned a malformed payload."""


class ReconciliationError(UpstreamError):
    """Stock reconciliation failed after the order was persisted.

    Attributes:
        order_id: Identifier of the persisted order.
        results: Outcome of every reconciliation call.
    """

    def __init__(self, message: str, order_id: str, results: list):
        super().__init__(message)
        self.order_id = order_id
        self.results = results
        self.data = {
            "orderId": order_id,
            "status": "reconciliation_failed",
            "stocks": [result.model_dump(by_alias=True, mode="json") for result in results],
        }


class PersistenceError(OrderServiceError):
    """The order store could not complete an operation."""

"""Pydantic models for orders, line items, snapshots and remote records."""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model exposing camelCase field names on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderStatus(str, Enum):
    """Saga states of a persisted order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    RECONCILIATION_FAILED = "reconciliation_failed"


class LineItemRequest(CamelModel):
    """A line item as submitted by the caller.

    Kind and quantity are checked by the pricer rather than here, so that
    each failure surfaces as its own error type.

    Attributes:
        product_id (str | None): Identifier of a product in the products service.
        service_id (str | None): Identifier of a service in the services catalog.
        quantity (Any): Requested units, required for products only.
    """

    product_id: Optional[str] = None
    service_id: Optional[str] = None
    quantity: Any = None


class CreateOrderRequest(CamelModel):
    """Body of an order creation request.

    Attributes:
        items (list[LineItemRequest]): Requested line items.
        client_id (str | None): Identifier of the ordering client.
        store_id (str | None): Identifier of the store, when the order belongs to one.
        payment_type (str): How the client pays, e.g. ``card``.
    """

    items: list[LineItemRequest] = Field(default_factory=list)
    client_id: Optional[str] = None
    store_id: Optional[str] = None
    payment_type: str = Field(..., min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": [{"productId": "P1", "quantity": 2}, {"serviceId": "SV1"}],
                "clientId": "C1",
                "storeId": "S1",
                "paymentType": "card",
            }
        }
    )


class EditOrderRequest(CamelModel):
    """Body of an order edit request. Client and store cannot be changed."""

    items: Optional[list[LineItemRequest]] = None
    payment_type: Optional[str] = Field(None, min_length=1)


class ProductRecord(BaseModel):
    """Product as returned by the products service."""

    name: str
    price: float
    stock: int


class ServiceRecord(BaseModel):
    """Service as returned by the services catalog."""

    name: str
    price: float


class ClientSnapshot(CamelModel):
    """Copy of the client record taken when the order was created."""

    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class StoreSnapshot(CamelModel):
    """Copy of the store record taken when the order was created."""

    id: str
    name: str
    address: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class OrderLineItem(CamelModel):
    """A resolved line item with its name and unit price locked in.

    Attributes:
        product_id (str | None): Product reference, set for product items.
        service_id (str | None): Service reference, set for service items.
        name (str): Name of the product or service at resolution time.
        price (float): Unit price at resolution time.
        quantity (int | None): Units ordered, products only.
    """

    product_id: Optional[str] = None
    service_id: Optional[str] = None
    name: str
    price: float = Field(..., ge=0)
    quantity: Optional[int] = Field(None, gt=0)

    @field_validator("price")
    def validate_price(cls, v):
        if not math.isfinite(v):
            raise ValueError("price must be finite")
        return v

    @property
    def kind(self) -> Literal["product", "service"]:
        return "product" if self.product_id is not None else "service"

    @property
    def reference_id(self) -> str:
        return self.product_id if self.product_id is not None else self.service_id

    @property
    def subtotal(self) -> float:
        if self.kind == "product":
            return self.price * self.quantity
        return self.price


class Order(CamelModel):
    """Order aggregate root.

    Attributes:
        id (str | None): Identifier assigned by the order store.
        order_number (str): Human-readable sequential number.
        items (list[OrderLineItem]): Resolved line items, at least one.
        total (float): Sum of item subtotals, always computed server-side.
        client (ClientSnapshot): Client copy taken at creation.
        store (StoreSnapshot | None): Store copy taken at creation.
        payment_type (str): Payment method.
        status (OrderStatus): Saga state.
        reconciliation_error (str | None): Failure recorded when reconciliation fails.
        consumed_stock (dict[str, int]): Units of each product whose decrement succeeded.
        created_at (datetime): Creation time, never changed afterwards.
        updated_at (datetime | None): Time of the last edit or status change.
    """

    id: Optional[str] = None
    order_number: str
    items: list[OrderLineItem] = Field(..., min_length=1)
    total: float
    client: ClientSnapshot
    store: Optional[StoreSnapshot] = None
    payment_type: str
    status: OrderStatus = OrderStatus.PENDING
    reconciliation_error: Optional[str] = None
    consumed_stock: dict[str, int] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    def to_document(self) -> dict:
        """Serialize the order into its external JSON shape."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class ReconcileResult(CamelModel):
    """Outcome of one reconciliation call."""

    kind: Literal["product", "service"]
    reference_id: str
    quantity: Optional[int] = None
    ok: bool = True
    detail: Any = None
    error: Optional[str] = None


class Pagination(CamelModel):
    """Pagination block of an order listing."""

    current_page: int
    total_pages: int
    total_orders: int


class OrderPage(BaseModel):
    """One page of orders."""

    items: list[Order]
    pagination: Pagination

"""Line item validation and pricing."""

import math
from dataclasses import dataclass
from typing import Any, Optional, Union

from .errors import InsufficientStock, InvalidItemKind, InvalidPrice, InvalidQuantity
from .schemas import LineItemRequest, OrderLineItem, ProductRecord, ServiceRecord

CatalogEntry = Union[ProductRecord, ServiceRecord]


@dataclass
class PricedItems:
    """Priced line items and their total."""

    items: list[OrderLineItem]
    total: float


def parse_quantity(value: Any, product_id: str) -> int:
    """Turn a requested quantity into a positive integer.

    Accepts integers, integral floats and strings holding an integer.

    Raises:
        InvalidQuantity: If the value is absent, non-numeric, fractional or not positive.
    """
    quantity = None
    if isinstance(value, int) and not isinstance(value, bool):
        quantity = value
    elif isinstance(value, float) and value.is_integer():
        quantity = int(value)
    elif isinstance(value, str):
        try:
            quantity = int(value.strip())
        except ValueError:
            quantity = None

    if quantity is None or quantity <= 0:
        raise InvalidQuantity(f"Invalid quantity for product {product_id}: {value!r}")
    return quantity


def check_item(item: LineItemRequest) -> None:
    """Validate the shape of a requested line item without any remote call.

    Raises:
        InvalidItemKind: If neither or both of productId and serviceId are set.
        InvalidQuantity: If a product item has no usable quantity.
    """
    if (item.product_id is None) == (item.service_id is None):
        raise InvalidItemKind("Each item must reference exactly one of productId or serviceId")
    if item.product_id is not None:
        parse_quantity(item.quantity, item.product_id)


def _check_price(price: Any, reference_id: str) -> float:
    if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price) or price < 0:
        raise InvalidPrice(f"Invalid price for {reference_id}: {price!r}")
    return float(price)


def requested_units(items: list[LineItemRequest]) -> dict[str, int]:
    """Total units requested per product id, across every line of an order.

    Raises:
        InvalidItemKind: If an item is malformed.
        InvalidQuantity: If a product item has no usable quantity.
    """
    wanted: dict[str, int] = {}
    for item in items:
        check_item(item)
        if item.product_id is not None:
            wanted[item.product_id] = wanted.get(item.product_id, 0) + parse_quantity(item.quantity, item.product_id)
    return wanted


def price_item(
    item: LineItemRequest, entry: CatalogEntry, reserved: int = 0, requested: Optional[int] = None
) -> OrderLineItem:
    """Price one line item against its resolved catalog entry.

    Args:
        item: The requested line item.
        entry: Product or service record resolved for the item.
        reserved: Units of this product already consumed by the order being
            edited, which do not need to be in stock again.
        requested: Units of this product asked for by the whole order,
            when several lines share it. Defaults to the item's quantity.

    Returns:
        OrderLineItem: The item with name and unit price locked in.
    """
    check_item(item)
    if item.product_id is not None:
        quantity = parse_quantity(item.quantity, item.product_id)
        price = _check_price(entry.price, item.product_id)
        units = quantity if requested is None else requested
        if entry.stock < units - reserved:
            raise InsufficientStock(
                f"Insufficient stock for product {item.product_id}: "
                f"requested {units}, available {entry.stock}"
            )
        return OrderLineItem(product_id=item.product_id, name=entry.name, price=price, quantity=quantity)

    price = _check_price(entry.price, item.service_id)
    return OrderLineItem(service_id=item.service_id, name=entry.name, price=price)


def price_items(
    items: list[LineItemRequest],
    entries: list[CatalogEntry],
    reserved: Optional[dict[str, int]] = None,
) -> PricedItems:
    """Price every item in order, stopping at the first failure.

    Stock is checked against the units requested for each product across
    all of its lines, less what the order already consumed.

    Args:
        items: Requested line items.
        entries: Resolved catalog entries, aligned with ``items``.
        reserved: Units already consumed per product id.

    Returns:
        PricedItems: Priced items and the order total.
    """
    reserved = reserved or {}
    wanted = requested_units(items)
    priced = []
    for item, entry in zip(items, entries):
        if item.product_id is None:
            priced.append(price_item(item, entry))
            continue
        priced.append(price_item(item, entry, reserved.get(item.product_id, 0), wanted[item.product_id]))
    return PricedItems(items=priced, total=math.fsum(line.subtotal for line in priced))

"""Tests for the order creation and edit workflows."""

import pytest

from orders_service.errors import (
    EmptyOrder,
    InsufficientStock,
    NotFoundError,
    ReconciliationError,
    UpstreamError,
    ValidationError,
)
from orders_service.schemas import CreateOrderRequest, EditOrderRequest, LineItemRequest, OrderLineItem, OrderStatus
from orders_service.workflow import stock_delta

from .conftest import TOKEN


def create_request(*items, client_id="C1", store_id="S1") -> CreateOrderRequest:
    return CreateOrderRequest(items=list(items), client_id=client_id, store_id=store_id, payment_type="card")


@pytest.mark.asyncio
async def test_concrete_order(workflow, siblings):
    order, stocks = await workflow.create_order(create_request(LineItemRequest(product_id="P1", quantity=2)), TOKEN)

    assert order.total == 10
    assert order.to_document()["items"][0] == {"productId": "P1", "name": "Widget", "price": 5, "quantity": 2}
    assert order.client.name == "Ann"
    assert order.store.address == "1 Main St"
    assert order.status == OrderStatus.CONFIRMED
    assert siblings.calls("PUT") == [("PUT", "/stock/P1", TOKEN, {"newQuantity": 2})]
    assert [(stock.reference_id, stock.ok) for stock in stocks] == [("P1", True)]


@pytest.mark.asyncio
async def test_total_includes_services(workflow, siblings):
    order, stocks = await workflow.create_order(
        create_request(LineItemRequest(product_id="P1", quantity=3), LineItemRequest(service_id="SV1")), TOKEN
    )

    assert order.total == 5 * 3 + 20
    assert [stock.kind for stock in stocks] == ["product", "service"]
    assert ("GET", "/service/SV1", TOKEN, None) in siblings.requests


@pytest.mark.asyncio
async def test_empty_order_touches_nothing(workflow, siblings, store, mocker):
    create = mocker.spy(store, "create")
    next_number = mocker.spy(store, "next_order_number")

    with pytest.raises(EmptyOrder):
        await workflow.create_order(create_request(), TOKEN)

    assert siblings.requests == []
    create.assert_not_called()
    next_number.assert_not_called()


@pytest.mark.asyncio
async def test_missing_client_is_a_validation_error(workflow, siblings):
    with pytest.raises(ValidationError):
        await workflow.create_order(create_request(LineItemRequest(product_id="P1", quantity=1), client_id=None), TOKEN)

    assert siblings.requests == []


@pytest.mark.asyncio
async def test_insufficient_stock_persists_nothing(workflow, siblings, store):
    with pytest.raises(InsufficientStock):
        await workflow.create_order(create_request(LineItemRequest(product_id="P1", quantity=11)), TOKEN)

    assert await store.count() == 0
    assert siblings.calls("PUT") == []


@pytest.mark.asyncio
async def test_unknown_product_aborts_before_persistence(workflow, store):
    with pytest.raises(NotFoundError):
        await workflow.create_order(create_request(LineItemRequest(product_id="nope", quantity=1)), TOKEN)

    assert await store.count() == 0


@pytest.mark.asyncio
async def test_order_number_is_count_plus_one(workflow, store):
    first, _ = await workflow.create_order(create_request(LineItemRequest(product_id="P1", quantity=1)), TOKEN)
    count = await store.count()

    second, _ = await workflow.create_order(create_request(LineItemRequest(service_id="SV1")), TOKEN)

    assert first.order_number == "1"
    assert second.order_number == str(count + 1)


@pytest.mark.asyncio
async def test_store_is_optional(workflow):
    order, _ = await workflow.create_order(create_request(LineItemRequest(service_id="SV1"), store_id=None), TOKEN)

    assert order.store is None


@pytest.mark.asyncio
async def test_failed_reconciliation_is_recorded_on_the_order(workflow, siblings, store):
    siblings.products["P2"] = {"name": "Gadget", "price": 1, "stock": 5}
    siblings.failing_stock.add("P2")

    with pytest.raises(ReconciliationError) as excinfo:
        await workflow.create_order(
            create_request(LineItemRequest(product_id="P1", quantity=1), LineItemRequest(product_id="P2", quantity=1)),
            TOKEN,
        )

    saved = await store.find_by_id(excinfo.value.order_id)
    assert saved.status == OrderStatus.RECONCILIATION_FAILED
    assert "status 500" in saved.reconciliation_error
    assert [result.ok for result in excinfo.value.results] == [True, False]
    assert siblings.products["P1"]["stock"] == 9


@pytest.mark.asyncio
async def test_events_follow_the_saga_outcome(workflow, siblings, mocker):
    workflow.producer = mocker.Mock()
    siblings.failing_stock.add("P1")

    with pytest.raises(ReconciliationError):
        await workflow.create_order(create_request(LineItemRequest(product_id="P1", quantity=1)), TOKEN)

    topic, order = workflow.producer.publish_order.call_args.args
    assert topic == "orders.reconciliation_failed"
    assert order.status == OrderStatus.RECONCILIATION_FAILED


@pytest.mark.asyncio
async def test_event_failures_do_not_fail_the_order(workflow, mocker):
    workflow.producer = mocker.Mock()
    workflow.producer.publish_order.side_effect = BufferError("full")

    order, _ = await workflow.create_order(create_request(LineItemRequest(service_id="SV1")), TOKEN)

    assert order.status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_edit_unknown_order_reconciles_nothing(workflow, siblings):
    with pytest.raises(NotFoundError):
        await workflow.edit_order(
            "0123456789abcdef01234567",
            EditOrderRequest(items=[LineItemRequest(product_id="P1", quantity=1)]),
            TOKEN,
        )

    assert siblings.requests == []


@pytest.mark.asyncio
async def test_edit_malformed_id(workflow):
    with pytest.raises(ValidationError):
        await workflow.edit_order("not-an-id", EditOrderRequest(payment_type="cash"), TOKEN)


@pytest.mark.asyncio
async def test_edit_decrements_only_added_units(workflow, siblings):
    order, _ = await workflow.create_order(create_request(LineItemRequest(product_id="P1", quantity=2)), TOKEN)
    siblings.requests.clear()

    edited, stocks = await workflow.edit_order(
        order.id,
        EditOrderRequest(items=[LineItemRequest(product_id="P1", quantity=5), LineItemRequest(service_id="SV1")]),
        TOKEN,
    )

    assert edited.total == 5 * 5 + 20
    assert edited.client == order.client
    assert edited.status == OrderStatus.CONFIRMED
    assert siblings.calls("PUT") == [("PUT", "/stock/P1", TOKEN, {"newQuantity": 3})]
    assert [stock.kind for stock in stocks] == ["product", "service"]


@pytest.mark.asyncio
async def test_edit_payment_type_only(workflow, siblings):
    order, _ = await workflow.create_order(create_request(LineItemRequest(service_id="SV1")), TOKEN)
    siblings.requests.clear()

    edited, stocks = await workflow.edit_order(order.id, EditOrderRequest(payment_type="cash"), TOKEN)

    assert edited.payment_type == "cash"
    assert stocks == []
    assert siblings.requests == []


@pytest.mark.asyncio
async def test_edit_with_empty_items_is_rejected(workflow):
    order, _ = await workflow.create_order(create_request(LineItemRequest(service_id="SV1")), TOKEN)

    with pytest.raises(EmptyOrder):
        await workflow.edit_order(order.id, EditOrderRequest(items=[]), TOKEN)


@pytest.mark.asyncio
async def test_upstream_failure_during_resolution(workflow, siblings, store):
    siblings.users.clear()
    siblings.users["C1"] = {"email": "a@x.com"}

    with pytest.raises(UpstreamError):
        await workflow.create_order(create_request(LineItemRequest(service_id="SV1")), TOKEN)

    assert await store.count() == 0


def test_stock_delta_skips_reduced_quantities():
    items = [
        OrderLineItem(product_id="P1", name="Widget", price=5, quantity=1),
        OrderLineItem(product_id="P2", name="Gadget", price=1, quantity=4),
    ]

    delta = stock_delta({"P1": 3, "P2": 1}, items)

    assert [(item.product_id, item.quantity) for item in delta] == [("P2", 3)]


@pytest.mark.asyncio
async def test_repeated_product_lines_cannot_oversell(workflow, siblings, store):
    with pytest.raises(InsufficientStock):
        await workflow.create_order(
            create_request(LineItemRequest(product_id="P1", quantity=6), LineItemRequest(product_id="P1", quantity=6)),
            TOKEN,
        )

    assert await store.count() == 0
    assert siblings.calls("PUT") == []
    assert siblings.products["P1"]["stock"] == 10


@pytest.mark.asyncio
async def test_edit_splitting_a_product_checks_the_combined_quantity(workflow, siblings):
    order, _ = await workflow.create_order(create_request(LineItemRequest(product_id="P1", quantity=5)), TOKEN)
    siblings.products["P1"]["stock"] = 0
    siblings.requests.clear()

    with pytest.raises(InsufficientStock):
        await workflow.edit_order(
            order.id,
            EditOrderRequest(
                items=[LineItemRequest(product_id="P1", quantity=5), LineItemRequest(product_id="P1", quantity=5)]
            ),
            TOKEN,
        )

    assert siblings.calls("PUT") == []
    assert siblings.products["P1"]["stock"] == 0


@pytest.mark.asyncio
async def test_edit_after_failed_reconciliation_decrements_again(workflow, siblings, store):
    siblings.failing_stock.add("P1")
    with pytest.raises(ReconciliationError) as excinfo:
        await workflow.create_order(create_request(LineItemRequest(product_id="P1", quantity=2)), TOKEN)
    order_id = excinfo.value.order_id
    assert (await store.find_by_id(order_id)).consumed_stock == {}

    siblings.failing_stock.clear()
    siblings.requests.clear()
    edited, _ = await workflow.edit_order(
        order_id, EditOrderRequest(items=[LineItemRequest(product_id="P1", quantity=2)]), TOKEN
    )

    assert edited.status == OrderStatus.CONFIRMED
    assert edited.reconciliation_error is None
    assert edited.consumed_stock == {"P1": 2}
    assert siblings.calls("PUT") == [("PUT", "/stock/P1", TOKEN, {"newQuantity": 2})]
    assert siblings.products["P1"]["stock"] == 8


@pytest.mark.asyncio
async def test_edit_after_partial_failure_only_retries_failed_products(workflow, siblings):
    siblings.products["P2"] = {"name": "Gadget", "price": 1, "stock": 5}
    siblings.failing_stock.add("P2")
    items = [LineItemRequest(product_id="P1", quantity=1), LineItemRequest(product_id="P2", quantity=3)]
    with pytest.raises(ReconciliationError) as excinfo:
        await workflow.create_order(create_request(*items), TOKEN)

    siblings.failing_stock.clear()
    siblings.requests.clear()
    edited, _ = await workflow.edit_order(excinfo.value.order_id, EditOrderRequest(items=items), TOKEN)

    assert edited.status == OrderStatus.CONFIRMED
    assert edited.consumed_stock == {"P1": 1, "P2": 3}
    assert siblings.calls("PUT") == [("PUT", "/stock/P2", TOKEN, {"newQuantity": 3})]
    assert siblings.products["P1"]["stock"] == 9

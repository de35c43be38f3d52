"""Test fixtures for the orders service tests."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from orders_service.config import Settings
from orders_service.resolver import RemoteResolver
from orders_service.server import create_app
from orders_service.store import InMemoryOrderStore
from orders_service.workflow import OrderWorkflow

TOKEN = "Bearer test-token"


class FakeSiblings:
    """In-process stand-in for the products, services, auth and stores services.

    Every request is recorded as ``(method, path, authorization, json)``.
    """

    def __init__(self):
        self.products = {"P1": {"name": "Widget", "price": 5, "stock": 10}}
        self.services = {"SV1": {"name": "Installation", "price": 20}}
        self.users = {"C1": {"name": "Ann", "email": "a@x.com", "phone": "555"}}
        self.stores = {"S1": {"name": "Shop", "address": "1 Main St"}}
        self.failing_stock = set()
        self.requests = []

    def calls(self, method: str, prefix: str = "") -> list:
        return [call for call in self.requests if call[0] == method and call[1].startswith(prefix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = request.read()
        payload = json.loads(body) if body else None
        self.requests.append((request.method, request.url.path, request.headers.get("authorization"), payload))

        port = request.url.port
        _, resource, ref = request.url.path.split("/", 2)
        tables = {
            (8083, "product"): ("product", self.products),
            (8084, "service"): ("service", self.services),
            (8081, "user"): ("user", self.users),
            (8082, "store"): ("store", self.stores),
        }

        if request.method == "PUT" and (port, resource) == (8083, "stock"):
            if ref in self.failing_stock:
                return httpx.Response(500, json={"message": "stock service down"})
            product = self.products.get(ref)
            if product is None:
                return httpx.Response(404, json={"message": "Product not found"})
            product["stock"] -= payload["newQuantity"]
            return httpx.Response(200, json={"productId": ref, "stock": product["stock"]})

        if request.method == "GET" and (port, resource) in tables:
            key, table = tables[(port, resource)]
            record = table.get(ref)
            if record is None:
                return httpx.Response(404, json={"message": "Not found"})
            return httpx.Response(200, json={key: dict(record)})

        return httpx.Response(404, json={"message": "No route"})


@pytest.fixture
def siblings():
    return FakeSiblings()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def transport(siblings):
    return httpx.MockTransport(siblings.handler)


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def resolver(transport, settings):
    return RemoteResolver(httpx.AsyncClient(transport=transport), settings)


@pytest.fixture
def workflow(store, resolver):
    return OrderWorkflow(store, resolver)


@pytest.fixture
def test_client(settings, store, transport):
    """Create a test client for the FastAPI app wired to the fake siblings."""
    return TestClient(create_app(settings=settings, store=store, transport=transport))


@pytest.fixture
def auth_headers():
    return {"Authorization": TOKEN}


@pytest.fixture
def order_payload():
    """A valid creation body ordering two units of P1."""
    return {"items": [{"productId": "P1", "quantity": 2}], "clientId": "C1", "storeId": "S1", "paymentType": "card"}

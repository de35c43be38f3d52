"""Orders Service Server."""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from confluent_kafka.admin import AdminClient
from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import AuthenticationError, OrderServiceError
from .logger import logger
from .producer import OrderEventProducer
from .resolver import RemoteResolver
from .schemas import CreateOrderRequest, EditOrderRequest, Order, ReconcileResult
from .sql_store import SqlOrderStore
from .store import InMemoryOrderStore, OrderStore
from .workflow import OrderWorkflow

router = APIRouter()


def envelope(status: int, message: str, data) -> dict:
    return {"status": status, "message": message, "data": data}


def _order_with_stocks(order: Order, stocks: list[ReconcileResult]) -> dict:
    return {
        "order": order.to_document(),
        "stocks": [stock.model_dump(by_alias=True, mode="json") for stock in stocks],
    }


def get_workflow(request: Request) -> OrderWorkflow:
    return request.app.state.workflow


def require_credential(authorization: Optional[str] = Header(None)) -> str:
    """Demand a bearer credential and return the header verbatim.

    The token is not inspected here; it is forwarded to the sibling
    services as received.

    Raises:
        AuthenticationError: If the header is missing or not a bearer credential.
    """
    if not authorization:
        raise AuthenticationError("Missing bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid bearer token")
    return authorization


async def handle_service_error(request: Request, exc: OrderServiceError) -> JSONResponse:
    """Render an orders service error into the response envelope."""
    if exc.status_code >= 500:
        logger.error(f"Request failed | method={request.method} | path={request.url.path} | error={exc.message}")
    else:
        logger.warning(
            f"Request rejected | method={request.method} | path={request.url.path} | "
            f"status={exc.status_code} | error={exc.message}"
        )
    return JSONResponse(status_code=exc.status_code, content=envelope(exc.status_code, exc.message, exc.data))


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies and parameters as 400."""
    errors = [{"loc": list(error["loc"]), "msg": error["msg"]} for error in exc.errors()]
    logger.warning(f"Invalid request | method={request.method} | path={request.url.path} | errors={errors}")
    return JSONResponse(status_code=400, content=envelope(400, "Invalid request", {"errors": errors}))


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Check if the service is ready to accept traffic.

    Returns:
        dict: Service readiness status and Kafka connection status.
    """
    settings: Settings = request.app.state.settings
    if not settings.kafka_bootstrap_servers:
        return {"status": "ready", "kafka": "disabled"}
    kafka_ok = _check_kafka_connection(settings.kafka_bootstrap_servers)
    return {"status": "ready" if kafka_ok else "not_ready", "kafka": "connected" if kafka_ok else "disconnected"}


def _check_kafka_connection(bootstrap_servers: str) -> bool:
    """Check if Kafka connection is available.

    Returns:
        bool: True if Kafka is accessible, False otherwise.
    """
    try:
        admin = AdminClient({"bootstrap.servers": bootstrap_servers})
        return bool(admin.list_topics(timeout=5))
    except Exception as e:
        logger.error(f"Kafka connection failed: {e}")
        return False


@router.get("/orders/count")
async def count_orders(
    credential: str = Depends(require_credential),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    total = await workflow.count_orders()
    return envelope(200, "Orders count", {"totalOrders": total})


@router.get("/orders/client/{client_id}")
async def read_client_orders(
    client_id: str,
    credential: str = Depends(require_credential),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    orders = await workflow.client_orders(client_id)
    return envelope(200, "Client orders", [order.to_document() for order in orders])


@router.get("/orders")
async def read_orders(
    page: int = 1,
    limit: int = 20,
    credential: str = Depends(require_credential),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """List orders one page at a time. ``limit`` may not exceed 100."""
    result = await workflow.list_orders(page, limit)
    return envelope(
        200,
        "Orders",
        {
            "orders": [order.to_document() for order in result.items],
            "pagination": result.pagination.model_dump(by_alias=True),
        },
    )


@router.post("/orders")
async def create_order(
    body: CreateOrderRequest,
    credential: str = Depends(require_credential),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """Create an order, price it and decrement the stock of its products.

    Args:
        body (CreateOrderRequest): Items, client, store and payment type.

    Returns:
        dict: The confirmed order and the outcome of every stock call.
    """
    logger.info(f"Received new order | client_id={body.client_id} | store_id={body.store_id} | items={len(body.items)}")
    order, stocks = await workflow.create_order(body, credential)
    return envelope(200, "Order created", _order_with_stocks(order, stocks))


@router.put("/orders/{order_id}")
async def edit_order(
    order_id: str,
    body: EditOrderRequest,
    credential: str = Depends(require_credential),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    order, stocks = await workflow.edit_order(order_id, body, credential)
    return envelope(200, "Order updated", _order_with_stocks(order, stocks))


@router.delete("/orders/{order_id}")
async def remove_order(
    order_id: str,
    credential: str = Depends(require_credential),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    order = await workflow.delete_order(order_id)
    return envelope(200, "Order deleted", {"order": order.to_document()})


@router.get("/orders/{order_id}")
async def read_order(
    order_id: str,
    credential: str = Depends(require_credential),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    order = await workflow.get_order(order_id)
    return envelope(200, "Order", {"order": order.to_document()})


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[OrderStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Wire the orders service together.

    Args:
        settings: Service configuration, read from the environment when omitted.
        store: Order store. When omitted, a SQL store if ``settings.database_url``
            is set and an in-memory one otherwise.
        transport: HTTP transport for the sibling services, the network when omitted.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or Settings.from_env()
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.remote_timeout), transport=transport)
    producer = OrderEventProducer(settings.kafka_bootstrap_servers) if settings.kafka_bootstrap_servers else None
    if store is None:
        store = SqlOrderStore(settings.database_url) if settings.database_url else InMemoryOrderStore()
    workflow = OrderWorkflow(store, RemoteResolver(http_client, settings), producer)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Orders service starting | products={settings.products_url} | services={settings.services_url} | "
            f"auth={settings.auth_url} | stores={settings.stores_url} | events={'on' if producer else 'off'}"
        )
        await store.open()
        yield
        logger.info("Shutting down orders service...")
        await http_client.aclose()
        await store.close()
        if producer:
            producer.close()
        logger.info("Shutdown complete")

    app = FastAPI(title="Orders Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.workflow = workflow
    app.add_exception_handler(OrderServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.include_router(router)
    logger.info("API router mounted.")
    return app


app = create_app()

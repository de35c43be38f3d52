"""Outbound calls to the sibling services.

Every call forwards the caller's ``Authorization`` header unmodified and is
attempted exactly once.
"""

from typing import Any, Optional

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import Settings
from .errors import NotFoundError, UpstreamError
from .logger import logger
from .schemas import ClientSnapshot, ProductRecord, ServiceRecord, StoreSnapshot


class RemoteResolver:
    """Fetches products, services, clients and stores by id.

    Attributes:
        client: Shared HTTP client.
        settings: Addresses of the sibling services.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Settings):
        self.client = client
        self.settings = settings

    async def _request(self, method: str, url: str, credential: Optional[str], label: str, **kwargs) -> Any:
        """Issue a single request and decode its JSON body.

        Raises:
            NotFoundError: If the collaborator answers 404.
            UpstreamError: On transport errors, timeouts, other error statuses
                or a body that is not JSON.
        """
        headers = {"Authorization": credential} if credential else {}
        try:
            response = await self.client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{label} request failed | method={method} | url={url} | error={e!r}")
            raise UpstreamError(f"{label} request failed") from e

        if response.status_code == 404:
            raise NotFoundError(f"{label} not found")
        if response.is_error:
            logger.error(f"{label} request rejected | method={method} | url={url} | status={response.status_code}")
            raise UpstreamError(f"{label} request failed with status {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"{label} returned a non-JSON body | url={url}")
            raise UpstreamError(f"{label} returned a malformed response") from e

    @staticmethod
    def _unwrap(body: Any, key: str, label: str) -> dict:
        record = body.get(key) if isinstance(body, dict) else None
        if not isinstance(record, dict):
            raise UpstreamError(f"{label} response is missing '{key}'")
        return record

    @staticmethod
    def _parse(model: type[BaseModel], record: dict, label: str) -> Any:
        try:
            return model.model_validate(record)
        except PydanticValidationError as e:
            logger.error(f"{label} payload is malformed | errors={e.errors()}")
            raise UpstreamError(f"{label} returned a malformed response") from e

    async def resolve_product(self, product_id: str, credential: Optional[str]) -> ProductRecord:
        """Fetch a product with its current price and stock."""
        body = await self._request(
            "GET", f"{self.settings.products_url}/product/{product_id}", credential, "Product"
        )
        return self._parse(ProductRecord, self._unwrap(body, "product", "Product"), "Product")

    async def resolve_service(self, service_id: str, credential: Optional[str]) -> ServiceRecord:
        """Fetch a service with its current price."""
        body = await self._request(
            "GET", f"{self.settings.services_url}/service/{service_id}", credential, "Service"
        )
        return self._parse(ServiceRecord, self._unwrap(body, "service", "Service"), "Service")

    async def resolve_client(self, client_id: str, credential: Optional[str]) -> ClientSnapshot:
        """Fetch the client record and copy it into a snapshot."""
        body = await self._request("GET", f"{self.settings.auth_url}/user/{client_id}", credential, "Client")
        record = self._unwrap(body, "user", "Client")
        phone = record.get("phone")
        return self._parse(
            ClientSnapshot,
            {
                "id": client_id,
                "name": record.get("name"),
                "email": record.get("email"),
                "phone": str(phone) if phone is not None else None,
            },
            "Client",
        )

    async def resolve_store(self, store_id: str, credential: Optional[str]) -> StoreSnapshot:
        """Fetch the store record and copy it into a snapshot."""
        body = await self._request("GET", f"{self.settings.stores_url}/store/{store_id}", credential, "Store")
        record = self._unwrap(body, "store", "Store")
        return self._parse(
            StoreSnapshot,
            {"id": store_id, "name": record.get("name"), "address": record.get("address")},
            "Store",
        )

    async def decrement_stock(self, product_id: str, quantity: int, credential: Optional[str]) -> Any:
        """Ask the products service to consume ``quantity`` units of a product.

        Returns:
            The products service response body.
        """
        return await self._request(
            "PUT",
            f"{self.settings.products_url}/stock/{product_id}",
            credential,
            "Stock update",
            json={"newQuantity": quantity},
        )

    async def confirm_service(self, service_id: str, credential: Optional[str]) -> dict:
        """Re-read a service to confirm it is still offered."""
        body = await self._request(
            "GET",
            f"{self.settings.services_url}/service/{service_id}",
            credential,
            "Service",
            params={"serviceID": service_id},
        )
        return self._unwrap(body, "service", "Service")

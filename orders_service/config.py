"""Environment-driven configuration for the orders service."""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Settings:
    """Addresses of the sibling services and runtime knobs.

    Attributes:
        products_uri: Hostname of the products service.
        products_port: Port of the products service.
        services_uri: Hostname of the services catalog.
        services_port: Port of the services catalog.
        auth_uri: Hostname of the auth/users service.
        auth_port: Port of the auth/users service.
        stores_uri: Hostname of the stores service.
        stores_port: Port of the stores service.
        remote_timeout: Seconds before an outbound call is abandoned.
        kafka_bootstrap_servers: Kafka brokers for order events, ``None`` disables them.
        database_url: SQLAlchemy async URL of the order database, ``None`` keeps orders in memory.
        port: Port the HTTP server listens on.
    """

    products_uri: str = "localhost"
    products_port: int = 8083
    services_uri: str = "localhost"
    services_port: int = 8084
    auth_uri: str = "localhost"
    auth_port: int = 8081
    stores_uri: str = "localhost"
    stores_port: int = 8082
    remote_timeout: float = 10.0
    kafka_bootstrap_servers: Optional[str] = None
    database_url: Optional[str] = None
    port: int = 8085

    @property
    def products_url(self) -> str:
        return f"http://{self.products_uri}:{self.products_port}"

    @property
    def services_url(self) -> str:
        return f"http://{self.services_uri}:{self.services_port}"

    @property
    def auth_url(self) -> str:
        return f"http://{self.auth_uri}:{self.auth_port}"

    @property
    def stores_url(self) -> str:
        return f"http://{self.stores_uri}:{self.stores_port}"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        return cls(
            products_uri=os.getenv("PRODUCTS_URI", "localhost"),
            products_port=int(os.getenv("PRODUCTS_PORT", "8083")),
            services_uri=os.getenv("SERVICES_URI", "localhost"),
            services_port=int(os.getenv("SERVICES_PORT", "8084")),
            auth_uri=os.getenv("AUTH_URI", "localhost"),
            auth_port=int(os.getenv("AUTH_PORT", "8081")),
            stores_uri=os.getenv("STORES_URI", "localhost"),
            stores_port=int(os.getenv("STORES_PORT", "8082")),
            remote_timeout=float(os.getenv("REMOTE_TIMEOUT", "10")),
            kafka_bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS") or None,
            database_url=os.getenv("DATABASE_URL") or None,
            port=int(os.getenv("PORT", "8085")),
        )

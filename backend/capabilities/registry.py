"""Integration registry.

Integrations are registered explicitly under an id with a factory; nothing
is discovered implicitly. ``initialize`` builds an integration with
credentials and keeps it so its tools can be handed to the capability
agents. The ``erp`` integration is the built-in one: it owns the shared
ErpClient and the inventory, order and customer handlers.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import ClassVar, TypeVar

import httpx
import structlog

from capabilities.base import CapabilityHandler
from capabilities.customer import CustomerHandler
from capabilities.erp_client import ErpClient
from capabilities.inventory import InventoryHandler
from capabilities.order import OrderHandler
from errors import NotFoundError, ValidationError
from models.schemas import IntegrationMetadata

logger = structlog.get_logger(__name__)

IntegrationT = TypeVar("IntegrationT", bound="Integration")


class Integration(ABC):
    """An external system that contributes capability handlers."""

    metadata: ClassVar[IntegrationMetadata]

    @abstractmethod
    async def initialize(self, credentials: dict[str, str]) -> None:
        """Connect using ``credentials``.

        Raises:
            ValidationError: If the credentials are incomplete or malformed.
        """

    @abstractmethod
    def get_tools(self) -> list[CapabilityHandler]:
        """Handlers provided by this integration (after initialize)."""

    @abstractmethod
    def validate_credentials(self, credentials: dict[str, str]) -> bool:
        """Cheap structural check of credentials, no network I/O."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Return True if the remote system answers."""

    async def aclose(self) -> None:
        return None


class ErpIntegration(Integration):
    """REST ERP exposing inventory, orders and customers."""

    metadata = IntegrationMetadata(
        id="erp",
        name="ERP System",
        description="Inventory, order and customer management over the ERP REST API",
        category="erp",
        required_credentials=["base_url", "api_key"],
    )

    def __init__(
        self,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._client: ErpClient | None = None
        self._inventory: InventoryHandler | None = None
        self._orders: OrderHandler | None = None
        self._customers: CustomerHandler | None = None

    def validate_credentials(self, credentials: dict[str, str]) -> bool:
        base_url = credentials.get("base_url", "")
        return base_url.startswith(("http://", "https://"))

    async def initialize(self, credentials: dict[str, str]) -> None:
        if not self.validate_credentials(credentials):
            raise ValidationError("ERP credentials require an http(s) 'base_url'")

        if self._client is not None:
            await self._client.aclose()

        self._client = ErpClient(
            base_url=credentials["base_url"],
            api_key=credentials.get("api_key", ""),
            timeout=self._timeout,
            transport=self._transport,
        )
        self._inventory = InventoryHandler(self._client)
        self._orders = OrderHandler(self._client)
        self._customers = CustomerHandler(self._client)
        logger.info("erp_integration_initialized", base_url=self._client.base_url)

    def _initialized(self) -> None:
        if self._client is None:
            raise RuntimeError("ERP integration used before initialize()")

    @property
    def inventory(self) -> InventoryHandler:
        self._initialized()
        assert self._inventory is not None
        return self._inventory

    @property
    def orders(self) -> OrderHandler:
        self._initialized()
        assert self._orders is not None
        return self._orders

    @property
    def customers(self) -> CustomerHandler:
        self._initialized()
        assert self._customers is not None
        return self._customers

    def get_tools(self) -> list[CapabilityHandler]:
        return [self.inventory, self.orders, self.customers]

    async def test_connection(self) -> bool:
        if self._client is None:
            return False
        return await self._client.health()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class IntegrationRegistry:
    """Explicit id -> factory mapping plus the initialized instances."""

    def __init__(self) -> None:
        self._factories: dict[str, Callable[[], Integration]] = {}
        self._initialized: dict[str, Integration] = {}

    def register(self, integration_id: str, factory: Callable[[], Integration]) -> None:
        self._factories[integration_id] = factory
        logger.debug("integration_registered", integration_id=integration_id)

    def available(self) -> list[IntegrationMetadata]:
        return [factory().metadata for factory in self._factories.values()]

    async def initialize(self, integration_id: str, credentials: dict[str, str]) -> Integration:
        """Build and connect an integration, replacing any previous instance.

        Raises:
            NotFoundError: If no integration is registered under this id.
            ValidationError: If the credentials are rejected.
        """
        factory = self._factories.get(integration_id)
        if factory is None:
            raise NotFoundError(f"Integration '{integration_id}' not found")

        integration = factory()
        await integration.initialize(credentials)

        previous = self._initialized.pop(integration_id, None)
        if previous is not None:
            await previous.aclose()
        self._initialized[integration_id] = integration
        return integration

    def get(self, integration_id: str) -> Integration | None:
        return self._initialized.get(integration_id)

    def require(self, integration_id: str, kind: type[IntegrationT]) -> IntegrationT:
        """Initialized integration of the expected class.

        Raises:
            NotFoundError: If it is not initialized or is of another class.
        """
        integration = self._initialized.get(integration_id)
        if not isinstance(integration, kind):
            raise NotFoundError(
                f"Integration '{integration_id}' is not initialized as {kind.__name__}"
            )
        return integration

    def all_tools(self) -> list[CapabilityHandler]:
        tools: list[CapabilityHandler] = []
        for integration in self._initialized.values():
            tools.extend(integration.get_tools())
        return tools

    async def aclose(self) -> None:
        for integration in self._initialized.values():
            await integration.aclose()
        self._initialized.clear()


def create_default_registry(
    timeout: float = 15.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> IntegrationRegistry:
    """Registry with the built-in integrations registered (not initialized)."""
    registry = IntegrationRegistry()
    registry.register("erp", lambda: ErpIntegration(timeout=timeout, transport=transport))
    return registry

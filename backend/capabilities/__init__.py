"""ERP capability handlers, the shared HTTP client and the integration registry."""

from capabilities.base import Action, CapabilityHandler, CapabilityResult
from capabilities.customer import CustomerHandler
from capabilities.erp_client import ErpClient
from capabilities.inventory import InventoryHandler
from capabilities.order import OrderHandler
from capabilities.registry import (
    ErpIntegration,
    Integration,
    IntegrationRegistry,
    create_default_registry,
)

__all__ = [
    "Action",
    "CapabilityHandler",
    "CapabilityResult",
    "CustomerHandler",
    "ErpClient",
    "ErpIntegration",
    "InventoryHandler",
    "Integration",
    "IntegrationRegistry",
    "OrderHandler",
    "create_default_registry",
]

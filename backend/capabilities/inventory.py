"""Inventory capability: stock levels per product and location."""

from typing import Any

from pydantic import Field

from capabilities.base import Action, CamelModel, CapabilityHandler
from errors import ValidationError


class InventoryParams(CamelModel):
    product_id: str = Field(min_length=1, description="The ID of the product")
    quantity: int | None = Field(
        default=None,
        description="The quantity to add (negative to remove), for 'update' only",
    )
    location_id: str | None = Field(default=None, description="The warehouse location ID")


class InventoryHandler(CapabilityHandler):
    """Query and adjust stock in the ERP inventory system.

    ``update`` sends a signed quantity delta; a zero delta is rejected.
    """

    name = "inventory_system"
    system = "inventory system"
    description = "Query and update inventory in the ERP system"
    actions = (Action.QUERY, Action.UPDATE)
    params_model = InventoryParams

    def _check(self, action: Action, params: InventoryParams) -> None:
        if action is Action.UPDATE and not params.quantity:
            raise ValidationError("Quantity is required for update actions")

    async def _perform(self, action: Action, params: InventoryParams) -> Any:
        path = f"/inventory/{params.product_id}"
        if action is Action.QUERY:
            return await self.client.get(path)
        return await self.client.put(
            path,
            {"quantity": params.quantity, "locationId": params.location_id or "DEFAULT"},
        )

"""Order capability: create, look up and update customer orders."""

import datetime
from typing import Any

from pydantic import Field

from capabilities.base import Action, CamelModel, CapabilityHandler


class OrderItem(CamelModel):
    product_id: str = Field(min_length=1)
    quantity: int
    unit_price: float | None = None


class OrderParams(CamelModel):
    order_id: str | None = Field(default=None, description="The order ID (for query/update)")
    customer_id: str | None = Field(default=None, description="The customer ID (for create)")
    order_items: list[OrderItem] | None = Field(
        default=None, description="Items in the order (for create/update)"
    )
    status: str | None = Field(default=None, description="Order status (for update)")


class OrderHandler(CapabilityHandler):
    name = "order_system"
    system = "order system"
    description = "Create, query, and update customer orders"
    actions = (Action.CREATE, Action.QUERY, Action.UPDATE)
    params_model = OrderParams

    def _check(self, action: Action, params: OrderParams) -> None:
        if action is Action.CREATE:
            self._require(action, customerId=params.customer_id, orderItems=params.order_items)
        else:
            self._require(action, orderId=params.order_id)

    async def _perform(self, action: Action, params: OrderParams) -> Any:
        if action is Action.CREATE:
            return await self.client.post(
                "/orders",
                {
                    "customerId": params.customer_id,
                    "items": _dump_items(params.order_items),
                    "createdAt": datetime.datetime.now(datetime.UTC).isoformat(),
                },
            )

        path = f"/orders/{params.order_id}"
        if action is Action.QUERY:
            return await self.client.get(path)

        update: dict[str, Any] = {}
        if params.status:
            update["status"] = params.status
        if params.order_items:
            update["items"] = _dump_items(params.order_items)
        return await self.client.put(path, update)


def _dump_items(items: list[OrderItem] | None) -> list[dict[str, Any]]:
    return [item.model_dump(by_alias=True, exclude_none=True) for item in items or []]

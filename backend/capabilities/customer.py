"""Customer capability: customer master data."""

from typing import Any

from pydantic import Field

from capabilities.base import Action, CamelModel, CapabilityHandler


class CustomerData(CamelModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    type: str | None = None


class CustomerParams(CamelModel):
    customer_id: str | None = Field(default=None, description="The customer ID")
    customer_data: CustomerData | None = Field(
        default=None, description="Customer data for create/update operations"
    )


class CustomerHandler(CapabilityHandler):
    name = "customer_system"
    system = "customer system"
    description = "Query and update customer information"
    actions = (Action.QUERY, Action.UPDATE, Action.CREATE)
    params_model = CustomerParams

    def _check(self, action: Action, params: CustomerParams) -> None:
        if action is Action.QUERY:
            self._require(action, customerId=params.customer_id)
        elif action is Action.UPDATE:
            self._require(action, customerId=params.customer_id, customerData=params.customer_data)
        else:
            self._require(action, customerData=params.customer_data)

    async def _perform(self, action: Action, params: CustomerParams) -> Any:
        if action is Action.QUERY:
            return await self.client.get(f"/customers/{params.customer_id}")

        body = params.customer_data.model_dump(exclude_none=True) if params.customer_data else {}
        if action is Action.UPDATE:
            return await self.client.put(f"/customers/{params.customer_id}", body)
        return await self.client.post("/customers", body)

"""Tests for capabilities/ -- the ERP client and the capability handlers.

The ERP API is replaced by ``FakeErp`` behind ``httpx.MockTransport``, so
these tests exercise the real HTTP encoding without any network access.
"""

import httpx
import pytest

from capabilities.base import CapabilityResult
from capabilities.customer import CustomerHandler
from capabilities.erp_client import ErpClient
from capabilities.inventory import InventoryHandler
from capabilities.order import OrderHandler
from errors import TransportError, ValidationError
from tests.conftest import FakeErp

# =========================================================================
# ErpClient
# =========================================================================


class TestErpClient:
    async def test_get_decodes_json_and_sends_auth(
        self, fake_erp: FakeErp, erp_client: ErpClient
    ) -> None:
        fake_erp.add("GET", "/inventory/P1", {"productId": "P1", "quantity": 12})

        body = await erp_client.get("/inventory/P1")

        assert body == {"productId": "P1", "quantity": 12}
        request = fake_erp.requests[0]
        assert request.headers["Authorization"] == "Bearer secret"

    async def test_path_without_leading_slash(
        self, fake_erp: FakeErp, erp_client: ErpClient
    ) -> None:
        fake_erp.add("GET", "/orders/1", {"id": "1"})
        assert await erp_client.get("orders/1") == {"id": "1"}

    async def test_http_error_status(self, fake_erp: FakeErp, erp_client: ErpClient) -> None:
        fake_erp.add("GET", "/orders/404", {"error": "missing"}, status_code=404)

        with pytest.raises(TransportError) as exc_info:
            await erp_client.get("/orders/404")

        assert exc_info.value.status_code == 404
        assert str(exc_info.value) == "Request failed with status code 404"

    async def test_connection_error(self, fake_erp: FakeErp, erp_client: ErpClient) -> None:
        fake_erp.fail("GET", "/health")

        with pytest.raises(TransportError, match="connection refused"):
            await erp_client.get("/health")

    async def test_empty_body(self, fake_erp: FakeErp, erp_client: ErpClient) -> None:
        fake_erp.add("PUT", "/orders/1", None, status_code=204)
        assert await erp_client.put("/orders/1", {"status": "x"}) is None

    async def test_invalid_json(self, fake_erp: FakeErp, erp_client: ErpClient) -> None:
        fake_erp.routes[("GET", "/broken")] = lambda request: httpx.Response(200, text="<html>")

        with pytest.raises(TransportError, match="Invalid JSON"):
            await erp_client.get("/broken")

    async def test_health(self, fake_erp: FakeErp, erp_client: ErpClient) -> None:
        assert await erp_client.health() is False
        fake_erp.add("GET", "/health", {"status": "ok"})
        assert await erp_client.health() is True


# =========================================================================
# CapabilityResult
# =========================================================================


class TestCapabilityResult:
    def test_success_text_is_json(self) -> None:
        assert CapabilityResult.success({"a": 1}).as_text() == '{"a": 1}'

    def test_failure_text_is_error(self) -> None:
        result = CapabilityResult.failure("boom")
        assert result.ok is False
        assert result.as_text() == "boom"


# =========================================================================
# InventoryHandler
# =========================================================================


class TestInventoryHandler:
    async def test_query(self, fake_erp: FakeErp, erp_client: ErpClient) -> None:
        fake_erp.add("GET", "/inventory/P1", {"quantity": 5})
        handler = InventoryHandler(erp_client)

        result = await handler.invoke("query", {"productId": "P1"})

        assert result.ok
        assert result.payload == {"quantity": 5}

    async def test_update_sends_delta_and_default_location(
        self, fake_erp: FakeErp, erp_client: ErpClient
    ) -> None:
        fake_erp.add("PUT", "/inventory/P1", {"quantity": 3})
        handler = InventoryHandler(erp_client)

        result = await handler.invoke("update", {"product_id": "P1", "quantity": -2})

        assert result.ok
        assert fake_erp.bodies("PUT", "/inventory/P1") == [
            {"quantity": -2, "locationId": "DEFAULT"}
        ]

    async def test_update_requires_quantity(self, erp_client: ErpClient) -> None:
        handler = InventoryHandler(erp_client)
        with pytest.raises(ValidationError, match="Quantity is required"):
            await handler.invoke("update", {"productId": "P1"})

    async def test_zero_quantity_is_rejected(self, erp_client: ErpClient) -> None:
        handler = InventoryHandler(erp_client)
        with pytest.raises(ValidationError, match="Quantity is required"):
            await handler.invoke("update", {"productId": "P1", "quantity": 0})

    async def test_missing_product_id(self, erp_client: ErpClient) -> None:
        handler = InventoryHandler(erp_client)
        with pytest.raises(ValidationError, match="Invalid parameters"):
            await handler.invoke("query", {})

    async def test_unsupported_action(self, erp_client: ErpClient) -> None:
        handler = InventoryHandler(erp_client)
        with pytest.raises(ValidationError, match="Unsupported action 'create'"):
            await handler.invoke("create", {"productId": "P1"})

    async def test_transport_failure_becomes_result(
        self, fake_erp: FakeErp, erp_client: ErpClient
    ) -> None:
        fake_erp.add("GET", "/inventory/P1", {"error": "down"}, status_code=503)
        handler = InventoryHandler(erp_client)

        result = await handler.invoke("query", {"productId": "P1"})

        assert not result.ok
        assert result.error == (
            "Error connecting to inventory system: Request failed with status code 503"
        )

    async def test_call_tool(self, fake_erp: FakeErp, erp_client: ErpClient) -> None:
        fake_erp.add("GET", "/inventory/P1", {"quantity": 5})
        handler = InventoryHandler(erp_client)

        text = await handler.call_tool({"action": "query", "productId": "P1"})

        assert text == '{"quantity": 5}'

    async def test_call_tool_without_action(self, erp_client: ErpClient) -> None:
        with pytest.raises(ValidationError, match="Missing required parameter 'action'"):
            await InventoryHandler(erp_client).call_tool({"productId": "P1"})

    def test_tool_definition(self, erp_client: ErpClient) -> None:
        definition = InventoryHandler(erp_client).tool_definition()

        function = definition["function"]
        assert function["name"] == "inventory_system"
        properties = function["parameters"]["properties"]
        assert properties["action"]["enum"] == ["query", "update"]
        assert "productId" in properties
        assert function["parameters"]["required"] == ["action"]


# =========================================================================
# OrderHandler
# =========================================================================


class TestOrderHandler:
    async def test_create(self, fake_erp: FakeErp, erp_client: ErpClient) -> None:
        fake_erp.add("POST", "/orders", {"id": "ORD-9"})
        handler = OrderHandler(erp_client)

        result = await handler.invoke(
            "create",
            {
                "customerId": "C1",
                "orderItems": [{"productId": "P1", "quantity": 2, "unitPrice": 9.5}],
            },
        )

        assert result.payload == {"id": "ORD-9"}
        body = fake_erp.bodies("POST", "/orders")[0]
        assert body["customerId"] == "C1"
        assert body["items"] == [{"productId": "P1", "quantity": 2, "unitPrice": 9.5}]
        assert "createdAt" in body

    async def test_create_requires_customer_and_items(self, erp_client: ErpClient) -> None:
        with pytest.raises(ValidationError, match="customerId and orderItems required"):
            await OrderHandler(erp_client).invoke("create", {})

    async def test_query_requires_order_id(self, erp_client: ErpClient) -> None:
        with pytest.raises(ValidationError, match="orderId required for order_system.query"):
            await OrderHandler(erp_client).invoke("query", {})

    async def test_update_sends_only_given_fields(
        self, fake_erp: FakeErp, erp_client: ErpClient
    ) -> None:
        fake_erp.add("PUT", "/orders/ORD-1", {"ok": True})

        await OrderHandler(erp_client).invoke(
            "update", {"orderId": "ORD-1", "status": "shipped"}
        )

        assert fake_erp.bodies("PUT", "/orders/ORD-1") == [{"status": "shipped"}]


# =========================================================================
# CustomerHandler
# =========================================================================


class TestCustomerHandler:
    async def test_query(self, fake_erp: FakeErp, erp_client: ErpClient) -> None:
        fake_erp.add("GET", "/customers/C1", {"name": "Ada"})
        result = await CustomerHandler(erp_client).invoke("query", {"customerId": "C1"})
        assert result.payload == {"name": "Ada"}

    async def test_update_requires_data(self, erp_client: ErpClient) -> None:
        with pytest.raises(ValidationError, match="customerData required"):
            await CustomerHandler(erp_client).invoke("update", {"customerId": "C1"})

    async def test_create_posts_data(self, fake_erp: FakeErp, erp_client: ErpClient) -> None:
        fake_erp.add("POST", "/customers", {"id": "C2"})

        await CustomerHandler(erp_client).invoke(
            "create", {"customerData": {"name": "Grace", "email": "g@example.com"}}
        )

        assert fake_erp.bodies("POST", "/customers") == [
            {"name": "Grace", "email": "g@example.com"}
        ]

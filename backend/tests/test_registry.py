"""Tests for capabilities/registry.py -- integrations and their lifecycle."""

import pytest

from capabilities.registry import ErpIntegration, IntegrationRegistry, create_default_registry
from errors import NotFoundError, ValidationError
from tests.conftest import ERP_BASE_URL, FakeErp


class TestErpIntegration:
    def test_validate_credentials(self) -> None:
        integration = ErpIntegration()
        assert integration.validate_credentials({"base_url": "https://erp.example.com"})
        assert not integration.validate_credentials({"base_url": "erp.example.com"})
        assert not integration.validate_credentials({})

    async def test_initialize_rejects_bad_credentials(self) -> None:
        with pytest.raises(ValidationError, match="base_url"):
            await ErpIntegration().initialize({"api_key": "x"})

    def test_handlers_require_initialize(self) -> None:
        with pytest.raises(RuntimeError):
            _ = ErpIntegration().inventory

    async def test_tools(self, erp: ErpIntegration) -> None:
        names = [tool.name for tool in erp.get_tools()]
        assert names == ["inventory_system", "order_system", "customer_system"]

    async def test_test_connection(self, fake_erp: FakeErp, erp: ErpIntegration) -> None:
        fake_erp.add("GET", "/health", {"status": "ok"})
        assert await erp.test_connection() is True

    async def test_test_connection_uninitialized(self) -> None:
        assert await ErpIntegration().test_connection() is False


class TestIntegrationRegistry:
    def test_available_lists_metadata(self) -> None:
        registry = create_default_registry()

        available = registry.available()

        assert [m.id for m in available] == ["erp"]
        assert available[0].required_credentials == ["base_url", "api_key"]

    async def test_initialize_unknown(self) -> None:
        with pytest.raises(NotFoundError):
            await IntegrationRegistry().initialize("slack", {})

    async def test_initialize_and_tools(self, fake_erp: FakeErp) -> None:
        registry = create_default_registry(transport=fake_erp.transport)

        integration = await registry.initialize("erp", {"base_url": ERP_BASE_URL})

        assert registry.get("erp") is integration
        assert len(registry.all_tools()) == 3
        await registry.aclose()
        assert registry.get("erp") is None

    async def test_failed_initialize_keeps_previous(self, fake_erp: FakeErp) -> None:
        registry = create_default_registry(transport=fake_erp.transport)
        first = await registry.initialize("erp", {"base_url": ERP_BASE_URL})

        with pytest.raises(ValidationError):
            await registry.initialize("erp", {"base_url": "not-a-url"})

        assert registry.get("erp") is first
        await registry.aclose()

    async def test_require_returns_typed_integration(self, fake_erp: FakeErp) -> None:
        registry = create_default_registry(transport=fake_erp.transport)
        integration = await registry.initialize("erp", {"base_url": ERP_BASE_URL})

        assert registry.require("erp", ErpIntegration) is integration
        await registry.aclose()

    def test_require_uninitialized(self) -> None:
        with pytest.raises(NotFoundError, match="not initialized"):
            create_default_registry().require("erp", ErpIntegration)

    async def test_require_wrong_class(self, fake_erp: FakeErp) -> None:
        class SandboxErp(ErpIntegration):
            pass

        registry = create_default_registry(transport=fake_erp.transport)
        await registry.initialize("erp", {"base_url": ERP_BASE_URL})

        with pytest.raises(NotFoundError, match="SandboxErp"):
            registry.require("erp", SandboxErp)
        await registry.aclose()

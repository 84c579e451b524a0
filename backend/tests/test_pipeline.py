"""Tests for pipeline.py -- order fulfillment over the ERP handlers."""

import pytest

from capabilities.registry import ErpIntegration
from errors import TransportError, ValidationError
from models.schemas import FulfillmentStatus
from pipeline import (
    AWAITING_MESSAGE,
    READY_MESSAGE,
    FulfillmentPipeline,
    is_in_stock,
    parse_order_lines,
)
from tests.conftest import FakeErp

ORDER = {
    "id": "ORD-1",
    "items": [
        {"productId": "P1", "quantity": 5},
        {"productId": "P2", "quantity": 2},
    ],
}


@pytest.fixture()
def pipeline(erp: ErpIntegration) -> FulfillmentPipeline:
    return FulfillmentPipeline(erp.orders, erp.inventory)


@pytest.fixture()
def stocked_erp(fake_erp: FakeErp) -> FakeErp:
    fake_erp.add("GET", "/orders/ORD-1", ORDER)
    fake_erp.add("PUT", "/orders/ORD-1", {"id": "ORD-1", "updated": True})
    fake_erp.add("GET", "/inventory/P1", {"productId": "P1", "quantity": 40})
    fake_erp.add("GET", "/inventory/P2", {"productId": "P2", "quantity": 3})
    fake_erp.add("PUT", "/inventory/P1", {"productId": "P1", "quantity": 35})
    fake_erp.add("PUT", "/inventory/P2", {"productId": "P2", "quantity": 1})
    return fake_erp


# =========================================================================
# Helpers
# =========================================================================


class TestIsInStock:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ('{"quantity": 40}', True),
            ("Insufficient stock for P2", False),
            ('{"status": "OUT OF STOCK"}', False),
        ],
    )
    def test_markers(self, text: str, expected: bool) -> None:
        assert is_in_stock(text) is expected


class TestParseOrderLines:
    def test_items_key(self) -> None:
        lines = parse_order_lines("ORD-1", ORDER)
        assert [(line.product_id, line.quantity) for line in lines] == [("P1", 5), ("P2", 2)]

    def test_order_items_key_in_json_text(self) -> None:
        lines = parse_order_lines("ORD-2", '{"orderItems": [{"productId": "P9", "quantity": 1}]}')
        assert lines[0].product_id == "P9"

    def test_missing_items(self) -> None:
        with pytest.raises(ValidationError, match="malformed line items"):
            parse_order_lines("ORD-3", {"id": "ORD-3"})

    def test_non_positive_quantity(self) -> None:
        with pytest.raises(ValidationError):
            parse_order_lines("ORD-4", {"items": [{"productId": "P1", "quantity": 0}]})

    def test_not_json(self) -> None:
        with pytest.raises(ValidationError, match="not valid JSON"):
            parse_order_lines("ORD-5", "order ORD-5")

    def test_not_an_object(self) -> None:
        with pytest.raises(ValidationError, match="not an object"):
            parse_order_lines("ORD-6", [1, 2])


# =========================================================================
# process_order_fulfillment
# =========================================================================


class TestFulfillment:
    async def test_ready_for_shipment(
        self, stocked_erp: FakeErp, pipeline: FulfillmentPipeline
    ) -> None:
        report = await pipeline.process_order_fulfillment("ORD-1")

        assert report.status == FulfillmentStatus.READY_FOR_SHIPMENT
        assert report.message == READY_MESSAGE
        assert [c.product_id for c in report.inventory_checks] == ["P1", "P2"]
        assert all(c.in_stock and c.reachable for c in report.inventory_checks)
        assert report.processing_result == '{"id": "ORD-1", "updated": true}'

        assert stocked_erp.bodies("PUT", "/orders/ORD-1") == [{"status": "ready_for_shipment"}]
        assert stocked_erp.bodies("PUT", "/inventory/P1") == [
            {"quantity": -5, "locationId": "DEFAULT"}
        ]
        assert stocked_erp.bodies("PUT", "/inventory/P2") == [
            {"quantity": -2, "locationId": "DEFAULT"}
        ]
        assert [(u.product_id, u.quantity_delta, u.success) for u in report.inventory_updates] == [
            ("P1", -5, True),
            ("P2", -2, True),
        ]

    async def test_insufficient_stock_awaits(
        self, stocked_erp: FakeErp, pipeline: FulfillmentPipeline
    ) -> None:
        stocked_erp.add("GET", "/inventory/P2", {"message": "Insufficient stock for P2"})

        report = await pipeline.process_order_fulfillment("ORD-1")

        assert report.status == FulfillmentStatus.AWAITING_STOCK
        assert report.message == AWAITING_MESSAGE
        checks = {c.product_id: c for c in report.inventory_checks}
        assert checks["P1"].in_stock is True
        assert checks["P2"].in_stock is False
        assert checks["P2"].reachable is True
        assert report.inventory_updates == []
        assert stocked_erp.bodies("PUT", "/orders/ORD-1") == [{"status": "awaiting_stock"}]
        assert stocked_erp.calls("PUT", "/inventory/P1") == []

    async def test_unreachable_inventory_counts_as_out_of_stock(
        self, stocked_erp: FakeErp, pipeline: FulfillmentPipeline
    ) -> None:
        stocked_erp.fail("GET", "/inventory/P2")

        report = await pipeline.process_order_fulfillment("ORD-1")

        assert report.status == FulfillmentStatus.AWAITING_STOCK
        p2 = report.inventory_checks[1]
        assert p2.reachable is False
        assert p2.in_stock is False
        assert p2.result.startswith("Error connecting to inventory system")

    async def test_order_fetch_failure_is_fatal(
        self, fake_erp: FakeErp, pipeline: FulfillmentPipeline
    ) -> None:
        with pytest.raises(TransportError, match="Failed to fetch order 'ORD-404'"):
            await pipeline.process_order_fulfillment("ORD-404")
        assert fake_erp.calls("PUT", "/orders/ORD-404") == []

    async def test_status_update_failure_is_reported(
        self, stocked_erp: FakeErp, pipeline: FulfillmentPipeline
    ) -> None:
        stocked_erp.add("PUT", "/orders/ORD-1", {"error": "locked"}, status_code=409)

        report = await pipeline.process_order_fulfillment("ORD-1")

        assert report.status == FulfillmentStatus.READY_FOR_SHIPMENT
        assert report.processing_result == (
            "Error connecting to order system: Request failed with status code 409"
        )
        assert len(report.inventory_updates) == 2

    async def test_failed_decrement_is_not_rolled_back(
        self, stocked_erp: FakeErp, pipeline: FulfillmentPipeline
    ) -> None:
        stocked_erp.fail("PUT", "/inventory/P2")

        report = await pipeline.process_order_fulfillment("ORD-1")

        updates = {u.product_id: u for u in report.inventory_updates}
        assert updates["P1"].success is True
        assert updates["P2"].success is False
        assert len(stocked_erp.calls("PUT", "/inventory/P1")) == 1

    async def test_empty_order_is_ready(
        self, fake_erp: FakeErp, pipeline: FulfillmentPipeline
    ) -> None:
        fake_erp.add("GET", "/orders/ORD-0", {"items": []})
        fake_erp.add("PUT", "/orders/ORD-0", {"ok": True})

        report = await pipeline.process_order_fulfillment("ORD-0")

        assert report.status == FulfillmentStatus.READY_FOR_SHIPMENT
        assert report.inventory_checks == []
        assert report.inventory_updates == []

    async def test_empty_order_id(self, pipeline: FulfillmentPipeline) -> None:
        with pytest.raises(ValidationError, match="Order ID is required"):
            await pipeline.process_order_fulfillment("")

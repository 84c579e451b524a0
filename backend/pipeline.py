"""Order fulfillment pipeline.

A fixed orchestration over the Order and Inventory handlers:

1. fetch the order (the only fatal step);
2. parse its line items;
3. check stock for every item concurrently, then wait for all checks;
4. decide ready_for_shipment (every item in stock) or awaiting_stock;
5. write that status back to the order;
6. if ready, decrement stock for every item concurrently (no rollback);
7. report.

A failed stock check counts as "not in stock" and is reported with
``reachable=False``. A failed status update is reported, not raised.
"""

import asyncio
import json
from typing import Any

import pydantic
import structlog
from pydantic import AliasChoices, BaseModel, Field

from capabilities.base import CamelModel, CapabilityHandler, CapabilityResult
from errors import TransportError, ValidationError
from models.schemas import (
    FulfillmentReport,
    FulfillmentStatus,
    InventoryAdjustment,
    InventoryCheck,
)

logger = structlog.get_logger(__name__)

OUT_OF_STOCK_MARKERS = ("insufficient", "out of stock")

READY_MESSAGE = "Order is ready for shipment, inventory updated"
AWAITING_MESSAGE = "Order awaiting stock, inventory check failed"


class OrderLine(CamelModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)


class _OrderPayload(BaseModel):
    items: list[OrderLine] = Field(validation_alias=AliasChoices("items", "orderItems"))


def is_in_stock(result_text: str) -> bool:
    """Stock decision on the inventory system's answer text."""
    lowered = result_text.lower()
    return not any(marker in lowered for marker in OUT_OF_STOCK_MARKERS)


def parse_order_lines(order_id: str, payload: Any) -> list[OrderLine]:
    """Extract ``(productId, quantity)`` lines from an order payload.

    The payload may be a dict or JSON text, with lines under ``items`` or
    ``orderItems``.

    Raises:
        ValidationError: If the payload has no parseable line items.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Order '{order_id}' payload is not valid JSON") from e

    if not isinstance(payload, dict):
        raise ValidationError(f"Order '{order_id}' payload is not an object")

    try:
        return _OrderPayload.model_validate(payload).items
    except pydantic.ValidationError as e:
        raise ValidationError(f"Order '{order_id}' has malformed line items: {e}") from e


class FulfillmentPipeline:
    """Runs order fulfillment against an order and an inventory handler."""

    def __init__(self, orders: CapabilityHandler, inventory: CapabilityHandler) -> None:
        self.orders = orders
        self.inventory = inventory

    async def process_order_fulfillment(self, order_id: str) -> FulfillmentReport:
        """Fulfill one order.

        Raises:
            ValidationError: If ``order_id`` is empty or the order has no
                parseable line items.
            TransportError: If the order itself could not be fetched.
        """
        if not order_id:
            raise ValidationError("Order ID is required")

        log = logger.bind(order_id=order_id)
        log.info("fulfillment_started")

        order = await self.orders.invoke("query", {"orderId": order_id})
        if not order.ok:
            log.error("fulfillment_order_fetch_failed", error=order.error)
            raise TransportError(f"Failed to fetch order '{order_id}': {order.error}")

        lines = parse_order_lines(order_id, order.payload)

        checks = list(await asyncio.gather(*(self._check_line(line) for line in lines)))
        ready = all(check.in_stock for check in checks)
        status = FulfillmentStatus.READY_FOR_SHIPMENT if ready else FulfillmentStatus.AWAITING_STOCK
        log.info(
            "fulfillment_inventory_checked",
            items=len(checks),
            in_stock=sum(check.in_stock for check in checks),
            unreachable=sum(not check.reachable for check in checks),
            status=status.value,
        )

        status_update = await self.orders.invoke(
            "update", {"orderId": order_id, "status": status.value}
        )
        if not status_update.ok:
            log.warning("fulfillment_status_update_failed", error=status_update.error)

        updates: list[InventoryAdjustment] = []
        if ready:
            updates = list(await asyncio.gather(*(self._decrement(line) for line in lines)))
            failed = [u.product_id for u in updates if not u.success]
            if failed:
                log.warning("fulfillment_inventory_update_failed", product_ids=failed)

        log.info("fulfillment_completed", status=status.value)
        return FulfillmentReport(
            order_id=order_id,
            status=status,
            inventory_checks=checks,
            inventory_updates=updates,
            processing_result=status_update.as_text(),
            message=READY_MESSAGE if ready else AWAITING_MESSAGE,
        )

    async def _check_line(self, line: OrderLine) -> InventoryCheck:
        result: CapabilityResult = await self.inventory.invoke(
            "query", {"productId": line.product_id}
        )
        text = result.as_text()
        return InventoryCheck(
            product_id=line.product_id,
            quantity=line.quantity,
            result=text,
            in_stock=result.ok and is_in_stock(text),
            reachable=result.ok,
        )

    async def _decrement(self, line: OrderLine) -> InventoryAdjustment:
        result = await self.inventory.invoke(
            "update", {"productId": line.product_id, "quantity": -line.quantity}
        )
        return InventoryAdjustment(
            product_id=line.product_id,
            quantity_delta=-line.quantity,
            success=result.ok,
            result=result.as_text(),
        )

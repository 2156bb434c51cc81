from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Protocol

from .audit import AuditTrail
from .clock import Clock
from .domain import (
    AutoReorderOutcome,
    EventType,
    Order,
    OrderCreate,
    OrderItem,
    OrderState,
    RetailerStock,
    Vendor,
)
from .errors import DomainError
from .lifecycle import TERMINAL_DELIVERY_STATES
from .logging import ServiceLogger
from .repositories import Directory, OrderRepository, RetailerStockRepository, SkuCatalog


class OrderPlacer(Protocol):
    def place(self, payload: OrderCreate) -> Order: ...


@dataclass(frozen=True)
class DeliveryLocation:
    area: str
    street: str


class DeliveryLocationPolicy(Protocol):
    def resolve(self, vendor: Optional[Vendor]) -> Optional[DeliveryLocation]: ...


class VendorAddressPolicy:
    """Deliver to the vendor's own address, falling back to a configured area."""

    def __init__(self, default_area: str) -> None:
        self._default_area = default_area

    def resolve(self, vendor: Optional[Vendor]) -> Optional[DeliveryLocation]:
        if not vendor or not vendor.address or not vendor.address.street:
            return None
        address = vendor.address
        return DeliveryLocation(area=address.area or address.city or self._default_area, street=address.street)


class AutoReorderTrigger:
    def __init__(
        self,
        *,
        placer: OrderPlacer,
        orders: OrderRepository,
        stock: RetailerStockRepository,
        directory: Directory,
        catalog: SkuCatalog,
        audit: AuditTrail,
        clock: Clock,
        policy: DeliveryLocationPolicy,
        default_quantity: int = 50,
        lead_time: timedelta = timedelta(hours=24),
        suppress_outstanding: bool = True,
    ) -> None:
        self._placer = placer
        self._orders = orders
        self._stock = stock
        self._directory = directory
        self._catalog = catalog
        self._audit = audit
        self._clock = clock
        self._policy = policy
        self._default_quantity = default_quantity
        self._lead_time = lead_time
        self._suppress_outstanding = suppress_outstanding
        self._log = ServiceLogger("auto_reorder")

    def evaluate(self, stock: RetailerStock) -> AutoReorderOutcome:
        """Run after a committed stock write; never raises back into the caller."""
        if not stock.auto_reorder_enabled:
            return AutoReorderOutcome(triggered=False, success=False, message="Auto-reorder disabled")
        if stock.quantity > stock.reorder_threshold:
            return AutoReorderOutcome(triggered=False, success=False, message="Stock above reorder threshold")

        outstanding = self._outstanding_order(stock)
        if outstanding:
            self._log.info(
                "Auto-reorder suppressed",
                vendor_id=stock.vendor_id,
                sku=stock.sku,
                outstanding=outstanding.order_number,
            )
            return AutoReorderOutcome(
                triggered=False,
                success=False,
                message=f"Auto-reorder suppressed: {outstanding.order_number} still outstanding",
            )

        location = self._policy.resolve(self._directory.get_vendor(stock.vendor_id))
        if not location:
            self._log.warning("Auto-reorder without delivery address", vendor_id=stock.vendor_id, sku=stock.sku)
            return AutoReorderOutcome(
                triggered=True,
                success=False,
                message="No delivery address on file for vendor; auto-reorder not placed",
            )

        quantity = stock.reorder_quantity or self._default_quantity
        try:
            order = self._place(stock, location, quantity)
        except Exception as exc:
            detail = getattr(exc, "detail", None) if isinstance(exc, DomainError) else None
            detail = detail or str(exc) or exc.__class__.__name__
            self._log.exception("Auto-reorder failed", vendor_id=stock.vendor_id, sku=stock.sku)
            return AutoReorderOutcome(triggered=True, success=False, message=f"Auto-reorder failed: {detail}")

        message = f"Auto-reorder placed {order.order_number} for {quantity} x {stock.sku}"
        try:
            self._link(stock, order, quantity)
        except Exception:
            # The order stands; only the stock link or the audit entry is missing.
            self._log.exception("Auto-reorder bookkeeping failed", vendor_id=stock.vendor_id, order_id=order.id)
            message += " (bookkeeping incomplete)"
        self._log.info("Auto-reorder placed", vendor_id=stock.vendor_id, sku=stock.sku, order_id=order.id)
        return AutoReorderOutcome(triggered=True, success=True, message=message, order=order)

    def _place(self, stock: RetailerStock, location: DeliveryLocation, quantity: int) -> Order:
        sku = self._catalog.get(stock.sku)
        return self._placer.place(
            OrderCreate(
                vendor_id=stock.vendor_id,
                items=[OrderItem(sku=stock.sku, quantity=quantity, name=sku.name if sku else None)],
                partial_allowed=False,
                delivery_location=location.area,
                delivery_address=location.street,
                required_delivery_date=self._clock.now() + self._lead_time,
            )
        )

    def _link(self, stock: RetailerStock, order: Order, quantity: int) -> None:
        self._stock.update(
            stock.vendor_id,
            stock.sku,
            {"last_ordered_at": order.created_at, "last_auto_order_id": order.id},
        )
        self._audit.record(
            EventType.AUTO_REORDER_TRIGGERED,
            order.id,
            {
                "vendor_id": stock.vendor_id,
                "sku": stock.sku,
                "quantity": quantity,
                "stock_quantity": stock.quantity,
                "reorder_threshold": stock.reorder_threshold,
                "order_number": order.order_number,
            },
        )

    def _outstanding_order(self, stock: RetailerStock) -> Optional[Order]:
        if not self._suppress_outstanding or not stock.last_auto_order_id:
            return None
        previous = self._orders.get(stock.last_auto_order_id)
        if not previous:
            return None
        if previous.order_state == OrderState.CANCELLED or previous.delivery_state in TERMINAL_DELIVERY_STATES:
            return None
        return previous

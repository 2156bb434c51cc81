from __future__ import annotations

from typing import List, Optional

from .audit import AuditTrail
from .clock import Clock
from .distribution import EligibilityResolver, VisibilityFanout
from .domain import (
    DelayReport,
    DelayReportResult,
    DeliveryState,
    DeliveryStatusUpdate,
    DeliveryUpdateResult,
    Event,
    EventType,
    Notification,
    Order,
    OrderCreate,
    OrderItem,
    OrderState,
    OrderView,
    OrderVisibility,
    Rating,
    RatingCreate,
    RetailerStock,
    RetailerStockResult,
    RetailerStockUpdate,
    StockStatus,
    SupplierRatingSummary,
    SupplierStock,
    SupplierStockUpdate,
    VisibilityStatus,
)
from .errors import ConflictError, NotFoundError, ValidationError
from .id_provider import IdProvider
from .lifecycle import (
    TERMINAL_DELIVERY_STATES,
    canonical_delivery_state,
    check_cancellation,
    check_delivery_transition,
)
from .logging import ServiceLogger
from .notifications import EmailSender, NotificationSender, format_eta
from .reorder import AutoReorderTrigger
from .repositories import (
    NotificationRepository,
    OrderRepository,
    RatingRepository,
    RetailerStockRepository,
    SkuCatalog,
    SupplierStockRepository,
)
from .risk import assess

DEFAULT_REORDER_THRESHOLD = 10
DEFAULT_REORDER_QUANTITY = 50
NOTIFICATION_PAGE_SIZE = 20


class OrderService:
    """Owns order and delivery state; the only mutation entry point for orders and offers."""

    def __init__(
        self,
        orders: OrderRepository,
        catalog: SkuCatalog,
        resolver: EligibilityResolver,
        fanout: VisibilityFanout,
        audit: AuditTrail,
        notifier: NotificationSender,
        email: EmailSender,
        clock: Clock,
        ids: IdProvider,
        escalate_on_all_declined: bool = True,
    ) -> None:
        self._orders = orders
        self._catalog = catalog
        self._resolver = resolver
        self._fanout = fanout
        self._audit = audit
        self._notifier = notifier
        self._email = email
        self._clock = clock
        self._ids = ids
        self._escalate_on_all_declined = escalate_on_all_declined
        self._log = ServiceLogger("orders")

    def place(self, payload: OrderCreate) -> Order:
        self._validate_skus(payload.items)
        order = self._build_order(payload)

        # Resolved before the order is stored so a resolver failure leaves nothing behind.
        eligible = self._resolver.resolve_eligible_suppliers(order)
        if not eligible:
            order = self._orders.add(order.model_copy(update={"delivery_state": DeliveryState.AT_RISK}))
            self._audit.record(
                EventType.NO_SUPPLIERS_FOUND,
                order.id,
                {"message": "No eligible suppliers; order at risk."},
            )
            self._log.warning("Order placed without eligible suppliers", order_id=order.id, vendor_id=order.vendor_id)
            return order

        self._orders.add(order)
        rows = self._fanout.distribute(order, eligible, self._clock.now())
        self._audit.record(
            EventType.ORDER_DISTRIBUTED,
            order.id,
            {"eligible_count": len(rows), "supplier_ids": [row.supplier_id for row in rows]},
        )
        self._log.info("Order distributed", order_id=order.id, eligible=len(rows))
        return order

    def accept(self, order_id: str, supplier_id: str) -> Order:
        order = self._orders.accept(order_id, supplier_id, self._clock.now())
        self._audit.record(EventType.ORDER_ACCEPTED, order.id, {"supplier_id": supplier_id})
        self._log.info("Order accepted", order_id=order.id, supplier_id=supplier_id)
        return order

    def decline(self, order_id: str, supplier_id: str) -> OrderVisibility:
        row = self._orders.decline(order_id, supplier_id, self._clock.now())
        self._audit.record(EventType.ORDER_DECLINED, order_id, {"supplier_id": supplier_id})
        if self._escalate_on_all_declined:
            self._escalate_if_all_declined(order_id)
        return row

    def cancel(self, order_id: str) -> Order:
        now = self._clock.now()

        def to_cancelled(order: Order) -> dict:
            if order.order_state == OrderState.CANCELLED:
                return {}
            check_cancellation(order.order_state)
            return {"order_state": OrderState.CANCELLED, "updated_at": now}

        before, cancelled = self._orders.transition(order_id, to_cancelled)
        if before.order_state == OrderState.CANCELLED:
            return cancelled
        self._audit.record(EventType.ORDER_CANCELLED, order_id, {"previous_state": before.order_state.value})
        self._log.info("Order cancelled", order_id=order_id)
        return cancelled

    def advance_delivery(self, order_id: str, payload: DeliveryStatusUpdate) -> DeliveryUpdateResult:
        raw_status = payload.status.strip()
        target = canonical_delivery_state(raw_status)
        now = self._clock.now()

        def to_target(order: Order) -> dict:
            _refuse_terminal(order)
            # Timeline-only statuses (OUT_FOR_DELIVERY, IN_TRANSIT, ...) leave the state machine alone.
            if target is None or target == order.delivery_state:
                return {}
            check_delivery_transition(order.delivery_state, target)
            changes = {"delivery_state": target, "updated_at": now}
            if target == DeliveryState.DELIVERED:
                changes["actual_delivered_at"] = now
            return changes

        before, updated = self._orders.transition(order_id, to_target)
        state_changed = updated.delivery_state != before.delivery_state
        if target is None:
            self._log.info("Non-canonical delivery status", order_id=order_id, status=raw_status)
        self._audit.record(
            raw_status,
            order_id,
            {"status": raw_status, "previous_state": before.delivery_state.value, "state_changed": state_changed},
        )
        return DeliveryUpdateResult(order=updated, event_type=raw_status, state_changed=state_changed)

    def report_delay(self, order_id: str, payload: DelayReport) -> DelayReportResult:
        now = self._clock.now()

        def to_delayed(order: Order) -> dict:
            _refuse_terminal(order)
            return {
                "delivery_state": DeliveryState.AT_RISK,
                "predicted_delivery_at": payload.revised_eta,
                "updated_at": now,
            }

        before, updated = self._orders.transition(order_id, to_delayed)
        self._audit.record(
            EventType.DELAY_REPORTED,
            order_id,
            {
                "reason": payload.reason,
                "revised_eta": payload.revised_eta.isoformat(),
                "previous_state": before.delivery_state.value,
            },
        )
        self._log.info("Delay reported", order_id=order_id, eta=payload.revised_eta.isoformat())

        return DelayReportResult(
            order=updated,
            notification_sent=self._send_delay_notification(updated, payload),
            email_sent=self._send_delay_email(updated, payload),
        )

    def get_order(self, order_id: str) -> Order:
        return self._require(order_id)

    def view(self, order: Order) -> OrderView:
        return assess(order, self._clock.now())

    def list_orders(self, vendor_id: Optional[str] = None, limit: int = 50) -> List[Order]:
        if vendor_id:
            return self._orders.list_by_vendor(vendor_id)[:limit]
        return self._orders.list_all(limit)

    def new_requests(self, supplier_id: str) -> List[Order]:
        orders = self._orders.list_for_supplier(supplier_id, VisibilityStatus.VISIBLE)
        return [order for order in orders if order.order_state == OrderState.PENDING]

    def supplier_orders(self, supplier_id: str) -> List[Order]:
        return self._orders.list_for_supplier(supplier_id, VisibilityStatus.ACCEPTED)

    def active_supplier_orders(self, supplier_id: str) -> List[Order]:
        active = [
            order
            for order in self._orders.list_for_supplier(supplier_id, VisibilityStatus.ACCEPTED)
            if order.order_state == OrderState.ACCEPTED
            and order.delivery_state in (DeliveryState.ON_TRACK, DeliveryState.AT_RISK)
        ]
        active.sort(key=lambda order: order.created_at, reverse=True)
        active.sort(key=lambda order: order.required_delivery_date)
        return active

    def timeline(self, order_id: str) -> List[Event]:
        self._require(order_id)
        return self._audit.timeline(order_id)

    def visibility(self, order_id: str) -> List[OrderVisibility]:
        self._require(order_id)
        return self._orders.list_visibilities(order_id)

    def _require(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def _validate_skus(self, items: List[OrderItem]) -> None:
        codes = [item.sku for item in items]
        known = self._catalog.existing_codes(codes)
        missing = [code for code in dict.fromkeys(codes) if code not in known]
        if missing:
            raise ValidationError(
                {
                    "message": f"Invalid SKU codes: {', '.join(missing)}. Please use valid SKU codes from the catalog.",
                    "invalid_skus": missing,
                }
            )

    def _build_order(self, payload: OrderCreate) -> Order:
        now = self._clock.now()
        return Order(
            id=self._ids.new_id(),
            vendor_id=payload.vendor_id,
            order_number=self._ids.new_order_number(now),
            items=[self._with_catalog_details(item) for item in payload.items],
            partial_allowed=payload.partial_allowed,
            delivery_location=payload.delivery_location,
            delivery_address=payload.delivery_address,
            required_delivery_date=payload.required_delivery_date,
            promised_delivery_at=payload.promised_delivery_at,
            order_state=OrderState.PENDING,
            delivery_state=DeliveryState.ON_TRACK,
            subtotal=payload.subtotal,
            created_at=now,
            updated_at=now,
        )

    def _with_catalog_details(self, item: OrderItem) -> OrderItem:
        sku = self._catalog.get(item.sku)
        if not sku:
            return item
        update = {}
        if item.name is None:
            update["name"] = sku.name
        if item.unit_price is None and sku.unit_price is not None:
            update["unit_price"] = sku.unit_price
        return item.model_copy(update=update) if update else item

    def _escalate_if_all_declined(self, order_id: str) -> None:
        rows = self._orders.list_visibilities(order_id)
        if not rows or any(row.status != VisibilityStatus.DECLINED for row in rows):
            return
        now = self._clock.now()

        def to_escalated(order: Order) -> dict:
            if order.order_state != OrderState.PENDING or order.delivery_state != DeliveryState.ON_TRACK:
                return {}
            return {"delivery_state": DeliveryState.AT_RISK, "updated_at": now}

        before, after = self._orders.transition(order_id, to_escalated)
        if after.delivery_state == before.delivery_state:
            return
        self._audit.record(EventType.ALL_SUPPLIERS_DECLINED, order_id, {"declined_count": len(rows)})
        self._log.warning("All suppliers declined", order_id=order_id, declined=len(rows))

    def _send_delay_notification(self, order: Order, payload: DelayReport) -> bool:
        try:
            self._notifier.notify_delay(order.vendor_id, order.order_number, payload.revised_eta, payload.reason)
        except Exception as exc:
            self._log.warning("Delay notification failed", order_id=order.id, error=str(exc))
            return False
        return True

    def _send_delay_email(self, order: Order, payload: DelayReport) -> bool:
        try:
            self._email.send_delay_email(order.order_number, format_eta(payload.revised_eta), payload.reason)
        except Exception as exc:
            self._log.warning("Delay email failed", order_id=order.id, error=str(exc))
            return False
        return True


class InventoryService:
    def __init__(
        self,
        catalog: SkuCatalog,
        supplier_stock: SupplierStockRepository,
        retailer_stock: RetailerStockRepository,
        trigger: AutoReorderTrigger,
        clock: Clock,
        default_reorder_quantity: int = DEFAULT_REORDER_QUANTITY,
    ) -> None:
        self._catalog = catalog
        self._supplier_stock = supplier_stock
        self._retailer_stock = retailer_stock
        self._trigger = trigger
        self._clock = clock
        self._default_reorder_quantity = default_reorder_quantity
        self._log = ServiceLogger("inventory")

    def update_retailer_stock(self, payload: RetailerStockUpdate) -> RetailerStockResult:
        self._require_sku(payload.sku)
        now = self._clock.now()
        existing = self._retailer_stock.get(payload.vendor_id, payload.sku)
        if existing:
            changes = payload.model_dump(exclude_none=True, exclude={"vendor_id", "sku"})
            stock = self._retailer_stock.update(payload.vendor_id, payload.sku, {**changes, "updated_at": now})
        else:
            stock = self._retailer_stock.add(
                RetailerStock(
                    vendor_id=payload.vendor_id,
                    sku=payload.sku,
                    quantity=payload.quantity or 0,
                    reorder_threshold=_or_default(payload.reorder_threshold, DEFAULT_REORDER_THRESHOLD),
                    reorder_quantity=_or_default(payload.reorder_quantity, self._default_reorder_quantity),
                    auto_reorder_enabled=bool(payload.auto_reorder_enabled),
                    updated_at=now,
                )
            )
        self._log.info("Retailer stock updated", vendor_id=stock.vendor_id, sku=stock.sku, quantity=stock.quantity)

        # The stock write above is committed; the reorder path reports, it never unwinds it.
        outcome = self._trigger.evaluate(stock)
        current = self._retailer_stock.get(stock.vendor_id, stock.sku) or stock
        return RetailerStockResult(stock=current, auto_reorder=outcome)

    def update_supplier_stock(self, payload: SupplierStockUpdate) -> SupplierStock:
        self._require_sku(payload.sku)
        now = self._clock.now()
        existing = self._supplier_stock.get(payload.supplier_id, payload.sku)
        threshold = _or_default(
            payload.reorder_threshold,
            existing.reorder_threshold if existing else DEFAULT_REORDER_THRESHOLD,
        )
        status = payload.status or derive_stock_status(payload.quantity, threshold)
        if existing:
            stock = self._supplier_stock.update(
                payload.supplier_id,
                payload.sku,
                {"quantity": payload.quantity, "status": status, "reorder_threshold": threshold, "updated_at": now},
            )
        else:
            stock = self._supplier_stock.add(
                SupplierStock(
                    supplier_id=payload.supplier_id,
                    sku=payload.sku,
                    quantity=payload.quantity,
                    status=status,
                    reorder_threshold=threshold,
                    updated_at=now,
                )
            )
        self._log.info("Supplier stock updated", supplier_id=stock.supplier_id, sku=stock.sku, status=stock.status.value)
        return stock

    def retailer_stock(self, vendor_id: str) -> List[RetailerStock]:
        return self._retailer_stock.list_for_vendor(vendor_id)

    def supplier_stock(self, supplier_id: str) -> List[SupplierStock]:
        return self._supplier_stock.list_for_supplier(supplier_id)

    def _require_sku(self, code: str) -> None:
        if not self._catalog.get(code):
            raise ValidationError({"message": f"Unknown SKU code: {code}", "invalid_skus": [code]})


def _refuse_terminal(order: Order) -> None:
    if order.delivery_state in TERMINAL_DELIVERY_STATES:
        raise ConflictError(f"Delivery already {order.delivery_state.value}")


def derive_stock_status(quantity: int, threshold: int) -> StockStatus:
    if quantity <= 0:
        return StockStatus.UNAVAILABLE
    if quantity <= threshold:
        return StockStatus.LOW
    return StockStatus.AVAILABLE


def _or_default(value, default):
    return default if value is None else value


class RatingService:
    def __init__(
        self,
        orders: OrderRepository,
        ratings: RatingRepository,
        audit: AuditTrail,
        clock: Clock,
        ids: IdProvider,
    ) -> None:
        self._orders = orders
        self._ratings = ratings
        self._audit = audit
        self._clock = clock
        self._ids = ids

    def rate(self, payload: RatingCreate) -> Rating:
        order = self._orders.get(payload.order_id)
        if not order:
            raise NotFoundError("Order not found")
        if order.vendor_id != payload.vendor_id:
            raise ValidationError("Only the ordering vendor can rate this order")
        if order.delivery_state != DeliveryState.DELIVERED:
            raise ValidationError("Only delivered orders can be rated")

        accepted = [row for row in self._orders.list_visibilities(order.id) if row.status == VisibilityStatus.ACCEPTED]
        if not accepted:
            raise ValidationError("Cannot rate an order with no accepted supplier")
        if self._ratings.get_for_order(order.id):
            raise ConflictError("You have already rated this order")

        rating = self._ratings.add(
            Rating(
                id=self._ids.new_id(),
                order_id=order.id,
                vendor_id=payload.vendor_id,
                supplier_id=accepted[0].supplier_id,
                score=payload.score,
                comment=payload.comment,
                is_accurate=payload.is_accurate,
                created_at=self._clock.now(),
            )
        )
        self._audit.record(EventType.ORDER_RATED, order.id, {"score": rating.score, "supplier_id": rating.supplier_id})
        return rating

    def supplier_summary(self, supplier_id: str) -> SupplierRatingSummary:
        ratings = self._ratings.list_for_supplier(supplier_id)
        total = len(ratings)
        if not total:
            return SupplierRatingSummary(supplier_id=supplier_id, average_score=0, total_ratings=0, accuracy_percentage=0)
        accurate = len([rating for rating in ratings if rating.is_accurate])
        return SupplierRatingSummary(
            supplier_id=supplier_id,
            average_score=round(sum(rating.score for rating in ratings) / total, 2),
            total_ratings=total,
            accuracy_percentage=round(accurate / total * 100),
        )


class NotificationService:
    def __init__(self, notifications: NotificationRepository) -> None:
        self._notifications = notifications

    def inbox(self, user_id: str) -> List[Notification]:
        return self._notifications.list_for_user(user_id, NOTIFICATION_PAGE_SIZE)

    def mark_read(self, notification_id: str) -> Notification:
        notification = self._notifications.mark_read(notification_id)
        if not notification:
            raise NotFoundError("Notification not found")
        return notification

    def mark_all_read(self, user_id: str) -> int:
        return self._notifications.mark_all_read(user_id)

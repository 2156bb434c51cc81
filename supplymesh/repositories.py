from __future__ import annotations

import asyncio
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from .domain import (
    Event,
    Notification,
    Order,
    OrderState,
    OrderVisibility,
    Rating,
    RetailerStock,
    Sku,
    StockStatus,
    Supplier,
    SupplierStock,
    Vendor,
    VisibilityStatus,
)
from .errors import ConflictError, NotFoundError
from .lifecycle import check_acceptance, check_visibility_change

# Inspects the current order, raises to refuse, returns only the fields it sets.
OrderChange = Callable[[Order], Dict[str, Any]]


class OrderRepository(Protocol):
    def add(self, order: Order) -> Order: ...

    def get(self, order_id: str) -> Optional[Order]: ...

    def transition(self, order_id: str, change: OrderChange) -> Tuple[Order, Order]:
        """Apply `change` to the current order as one atomic read-modify-write; returns (before, after)."""
        ...

    def list_all(self, limit: int) -> List[Order]: ...

    def list_by_vendor(self, vendor_id: str) -> List[Order]: ...

    def list_by_state(self, state: OrderState) -> List[Order]: ...

    def list_for_supplier(self, supplier_id: str, status: VisibilityStatus) -> List[Order]: ...

    def add_visibilities(self, rows: Iterable[OrderVisibility]) -> List[OrderVisibility]: ...

    def list_visibilities(self, order_id: str) -> List[OrderVisibility]: ...

    def accept(self, order_id: str, supplier_id: str, now: datetime) -> Order:
        """Flip one VISIBLE row and the order to ACCEPTED as a single atomic unit."""
        ...

    def decline(self, order_id: str, supplier_id: str, now: datetime) -> OrderVisibility: ...


class EventLog(Protocol):
    def append(self, event: Event) -> Event: ...

    def list_for_order(self, order_id: str) -> List[Event]: ...

    def list_between(self, start: datetime, end: datetime, event_type: Optional[str] = None) -> List[Event]: ...


class RatingRepository(Protocol):
    def add(self, rating: Rating) -> Rating: ...

    def get_for_order(self, order_id: str) -> Optional[Rating]: ...

    def list_for_supplier(self, supplier_id: str) -> List[Rating]: ...


class SkuCatalog(Protocol):
    def get(self, code: str) -> Optional[Sku]: ...

    def list_all(self) -> List[Sku]: ...

    def existing_codes(self, codes: Iterable[str]) -> Set[str]: ...


class Directory(Protocol):
    def get_vendor(self, vendor_id: str) -> Optional[Vendor]: ...

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]: ...

    def list_suppliers(self) -> List[Supplier]: ...


class SupplierStockRepository(Protocol):
    def get(self, supplier_id: str, sku: str) -> Optional[SupplierStock]: ...

    def add(self, stock: SupplierStock) -> SupplierStock: ...

    def update(self, supplier_id: str, sku: str, changes: Dict[str, Any]) -> SupplierStock: ...

    def list_for_supplier(self, supplier_id: str) -> List[SupplierStock]: ...

    def list_by_status(self, statuses: Iterable[StockStatus]) -> List[SupplierStock]: ...


class RetailerStockRepository(Protocol):
    def get(self, vendor_id: str, sku: str) -> Optional[RetailerStock]: ...

    def add(self, stock: RetailerStock) -> RetailerStock: ...

    def update(self, vendor_id: str, sku: str, changes: Dict[str, Any]) -> RetailerStock:
        """Write only the given fields of one position."""
        ...

    def list_for_vendor(self, vendor_id: str) -> List[RetailerStock]: ...


class NotificationRepository(Protocol):
    def add(self, notification: Notification) -> Notification: ...

    def list_for_user(self, user_id: str, limit: int) -> List[Notification]: ...

    def mark_read(self, notification_id: str) -> Optional[Notification]: ...

    def mark_all_read(self, user_id: str) -> int: ...


class EventBus(Protocol):
    def publish(self, event: Event) -> None: ...

    def subscribe(self) -> asyncio.Queue: ...

    def unsubscribe(self, queue: asyncio.Queue) -> None: ...


class InMemoryOrderRepository(OrderRepository):
    def __init__(self) -> None:
        self._orders: Dict[str, Order] = {}
        self._visibility: Dict[Tuple[str, str], OrderVisibility] = {}
        self._lock = threading.RLock()

    def add(self, order: Order) -> Order:
        with self._lock:
            self._orders[order.id] = order
        return order

    def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def transition(self, order_id: str, change: OrderChange) -> Tuple[Order, Order]:
        with self._lock:
            order = self._orders.get(order_id)
            if not order:
                raise NotFoundError("Order not found")
            fields = change(order)
            if not fields:
                return order, order
            updated = order.model_copy(update=fields)
            self._orders[order_id] = updated
            return order, updated

    def list_all(self, limit: int) -> List[Order]:
        orders = sorted(self._orders.values(), key=lambda order: order.created_at, reverse=True)
        return orders[:limit]

    def list_by_vendor(self, vendor_id: str) -> List[Order]:
        orders = [order for order in self._orders.values() if order.vendor_id == vendor_id]
        return sorted(orders, key=lambda order: order.created_at, reverse=True)

    def list_by_state(self, state: OrderState) -> List[Order]:
        orders = [order for order in list(self._orders.values()) if order.order_state == state]
        return sorted(orders, key=lambda order: order.created_at)

    def list_for_supplier(self, supplier_id: str, status: VisibilityStatus) -> List[Order]:
        order_ids = [
            row.order_id
            for row in list(self._visibility.values())
            if row.supplier_id == supplier_id and row.status == status
        ]
        orders = [self._orders[order_id] for order_id in order_ids if order_id in self._orders]
        return sorted(orders, key=lambda order: order.created_at, reverse=True)

    def add_visibilities(self, rows: Iterable[OrderVisibility]) -> List[OrderVisibility]:
        created: List[OrderVisibility] = []
        with self._lock:
            for row in rows:
                key = (row.order_id, row.supplier_id)
                if key in self._visibility:
                    continue
                self._visibility[key] = row
                created.append(row)
        return created

    def list_visibilities(self, order_id: str) -> List[OrderVisibility]:
        return [row for (row_order_id, _), row in list(self._visibility.items()) if row_order_id == order_id]

    def accept(self, order_id: str, supplier_id: str, now: datetime) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
            row = self._visibility.get((order_id, supplier_id))
            if not order or not row:
                raise NotFoundError("No offer for this order and supplier")
            check_acceptance(order.order_state, row.status, self._accepted_by(order_id), supplier_id)
            self._visibility[(order_id, supplier_id)] = row.model_copy(
                update={"status": VisibilityStatus.ACCEPTED, "updated_at": now}
            )
            accepted = order.model_copy(update={"order_state": OrderState.ACCEPTED, "updated_at": now})
            self._orders[order_id] = accepted
            return accepted

    def decline(self, order_id: str, supplier_id: str, now: datetime) -> OrderVisibility:
        with self._lock:
            row = self._visibility.get((order_id, supplier_id))
            if not row:
                raise NotFoundError("No offer for this order and supplier")
            check_visibility_change(row.status)
            declined = row.model_copy(update={"status": VisibilityStatus.DECLINED, "updated_at": now})
            self._visibility[(order_id, supplier_id)] = declined
            return declined

    def _accepted_by(self, order_id: str) -> Optional[str]:
        for (row_order_id, supplier_id), row in self._visibility.items():
            if row_order_id == order_id and row.status == VisibilityStatus.ACCEPTED:
                return supplier_id
        return None


class InMemoryEventLog(EventLog):
    def __init__(self) -> None:
        self._events: List[Event] = []
        self._lock = threading.Lock()

    def append(self, event: Event) -> Event:
        with self._lock:
            self._events.append(event)
        return event

    def list_for_order(self, order_id: str) -> List[Event]:
        events = [event for event in list(self._events) if event.order_id == order_id]
        return sorted(events, key=lambda event: event.timestamp)

    def list_between(self, start: datetime, end: datetime, event_type: Optional[str] = None) -> List[Event]:
        events = [event for event in list(self._events) if start <= event.timestamp <= end]
        if event_type:
            events = [event for event in events if event.type == event_type]
        return sorted(events, key=lambda event: event.timestamp)


class InMemoryRatingRepository(RatingRepository):
    def __init__(self) -> None:
        self._ratings: Dict[str, Rating] = {}
        self._lock = threading.Lock()

    def add(self, rating: Rating) -> Rating:
        with self._lock:
            if rating.order_id in self._ratings:
                raise ConflictError("Order already rated")
            self._ratings[rating.order_id] = rating
        return rating

    def get_for_order(self, order_id: str) -> Optional[Rating]:
        return self._ratings.get(order_id)

    def list_for_supplier(self, supplier_id: str) -> List[Rating]:
        return [rating for rating in self._ratings.values() if rating.supplier_id == supplier_id]


class InMemorySkuCatalog(SkuCatalog):
    def __init__(self, skus: Iterable[Sku]) -> None:
        self._skus: Dict[str, Sku] = {sku.code: sku for sku in skus}

    def get(self, code: str) -> Optional[Sku]:
        return self._skus.get(code)

    def list_all(self) -> List[Sku]:
        return sorted(self._skus.values(), key=lambda sku: sku.code)

    def existing_codes(self, codes: Iterable[str]) -> Set[str]:
        return {code for code in codes if code in self._skus}


class InMemoryDirectory(Directory):
    def __init__(self, vendors: Iterable[Vendor], suppliers: Iterable[Supplier]) -> None:
        self._vendors: Dict[str, Vendor] = {vendor.id: vendor for vendor in vendors}
        self._suppliers: Dict[str, Supplier] = {supplier.id: supplier for supplier in suppliers}

    def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        return self._vendors.get(vendor_id)

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        return self._suppliers.get(supplier_id)

    def list_suppliers(self) -> List[Supplier]:
        return list(self._suppliers.values())


class InMemorySupplierStockRepository(SupplierStockRepository):
    def __init__(self, items: Iterable[SupplierStock] = ()) -> None:
        self._stock: Dict[Tuple[str, str], SupplierStock] = {(item.supplier_id, item.sku): item for item in items}
        self._lock = threading.Lock()

    def get(self, supplier_id: str, sku: str) -> Optional[SupplierStock]:
        return self._stock.get((supplier_id, sku))

    def add(self, stock: SupplierStock) -> SupplierStock:
        key = (stock.supplier_id, stock.sku)
        with self._lock:
            if key in self._stock:
                raise ConflictError("Stock position already exists")
            self._stock[key] = stock
        return stock

    def update(self, supplier_id: str, sku: str, changes: Dict[str, Any]) -> SupplierStock:
        key = (supplier_id, sku)
        with self._lock:
            current = self._stock.get(key)
            if not current:
                raise NotFoundError("Stock position not found")
            updated = current.model_copy(update=changes)
            self._stock[key] = updated
            return updated

    def list_for_supplier(self, supplier_id: str) -> List[SupplierStock]:
        items = [item for item in self._stock.values() if item.supplier_id == supplier_id]
        return sorted(items, key=lambda item: item.sku)

    def list_by_status(self, statuses: Iterable[StockStatus]) -> List[SupplierStock]:
        wanted = set(statuses)
        items = [item for item in list(self._stock.values()) if item.status in wanted]
        return sorted(items, key=lambda item: (item.supplier_id, item.sku))


class InMemoryRetailerStockRepository(RetailerStockRepository):
    def __init__(self, items: Iterable[RetailerStock] = ()) -> None:
        self._stock: Dict[Tuple[str, str], RetailerStock] = {(item.vendor_id, item.sku): item for item in items}
        self._lock = threading.Lock()

    def get(self, vendor_id: str, sku: str) -> Optional[RetailerStock]:
        return self._stock.get((vendor_id, sku))

    def add(self, stock: RetailerStock) -> RetailerStock:
        key = (stock.vendor_id, stock.sku)
        with self._lock:
            if key in self._stock:
                raise ConflictError("Stock position already exists")
            self._stock[key] = stock
        return stock

    def update(self, vendor_id: str, sku: str, changes: Dict[str, Any]) -> RetailerStock:
        key = (vendor_id, sku)
        with self._lock:
            current = self._stock.get(key)
            if not current:
                raise NotFoundError("Stock position not found")
            updated = current.model_copy(update=changes)
            self._stock[key] = updated
            return updated

    def list_for_vendor(self, vendor_id: str) -> List[RetailerStock]:
        items = [item for item in self._stock.values() if item.vendor_id == vendor_id]
        return sorted(items, key=lambda item: item.sku)


class InMemoryNotificationRepository(NotificationRepository):
    def __init__(self) -> None:
        self._notifications: Dict[str, Notification] = {}

    def add(self, notification: Notification) -> Notification:
        self._notifications[notification.id] = notification
        return notification

    def list_for_user(self, user_id: str, limit: int) -> List[Notification]:
        items = [item for item in self._notifications.values() if item.user_id == user_id]
        return sorted(items, key=lambda item: item.created_at, reverse=True)[:limit]

    def mark_read(self, notification_id: str) -> Optional[Notification]:
        current = self._notifications.get(notification_id)
        if not current:
            return None
        updated = current.model_copy(update={"read": True})
        self._notifications[notification_id] = updated
        return updated

    def mark_all_read(self, user_id: str) -> int:
        count = 0
        for notification_id, item in list(self._notifications.items()):
            if item.user_id == user_id and not item.read:
                self._notifications[notification_id] = item.model_copy(update={"read": True})
                count += 1
        return count


class InMemoryEventBus(EventBus):
    def __init__(self) -> None:
        self._subscribers: List[asyncio.Queue] = []

    def publish(self, event: Event) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                continue

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

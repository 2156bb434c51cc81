from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..clock import ensure_utc
from ..domain import (
    Address,
    DeliveryState,
    Event,
    Notification,
    Order,
    OrderItem,
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
from ..errors import ConflictError, NotFoundError
from ..lifecycle import check_acceptance, check_visibility_change
from ..repositories import OrderChange
from .db import Database
from .models import (
    EventRecord,
    NotificationRecord,
    OrderItemRecord,
    OrderRecord,
    OrderVisibilityRecord,
    RatingRecord,
    RetailerStockRecord,
    SkuRecord,
    SupplierRecord,
    SupplierStockRecord,
    VendorRecord,
)


def order_from_record(record: OrderRecord) -> Order:
    return Order(
        id=record.id,
        vendor_id=record.vendor_id,
        order_number=record.order_number,
        items=[
            OrderItem(sku=item.sku, quantity=item.quantity, unit_price=item.unit_price, name=item.name)
            for item in record.items
        ],
        partial_allowed=record.partial_allowed,
        delivery_location=record.delivery_location,
        delivery_address=record.delivery_address,
        required_delivery_date=ensure_utc(record.required_delivery_date),
        promised_delivery_at=ensure_utc(record.promised_delivery_at),
        predicted_delivery_at=ensure_utc(record.predicted_delivery_at),
        actual_delivered_at=ensure_utc(record.actual_delivered_at),
        order_state=OrderState(record.order_state),
        delivery_state=DeliveryState(record.delivery_state),
        subtotal=record.subtotal,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


def visibility_from_record(record: OrderVisibilityRecord) -> OrderVisibility:
    return OrderVisibility(
        order_id=record.order_id,
        supplier_id=record.supplier_id,
        status=VisibilityStatus(record.status),
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


def event_from_record(record: EventRecord) -> Event:
    return Event(
        id=record.id,
        type=record.type,
        order_id=record.order_id,
        details=record.details or {},
        timestamp=ensure_utc(record.timestamp),
    )


def rating_from_record(record: RatingRecord) -> Rating:
    return Rating(
        id=record.id,
        order_id=record.order_id,
        vendor_id=record.vendor_id,
        supplier_id=record.supplier_id,
        score=record.score,
        comment=record.comment,
        is_accurate=record.is_accurate,
        created_at=ensure_utc(record.created_at),
    )


def _column_values(changes: Dict[str, Any]) -> Dict[str, Any]:
    return {name: value.value if isinstance(value, Enum) else value for name, value in changes.items()}


def _address(street: Optional[str], area: Optional[str], city: Optional[str]) -> Optional[Address]:
    if not street:
        return None
    return Address(street=street, area=area or "", city=city)


class SqlAlchemyOrderRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, order: Order) -> Order:
        with self._db.session() as session:
            session.add(
                OrderRecord(
                    id=order.id,
                    vendor_id=order.vendor_id,
                    order_number=order.order_number,
                    partial_allowed=order.partial_allowed,
                    delivery_location=order.delivery_location,
                    delivery_address=order.delivery_address,
                    required_delivery_date=order.required_delivery_date,
                    promised_delivery_at=order.promised_delivery_at,
                    predicted_delivery_at=order.predicted_delivery_at,
                    actual_delivered_at=order.actual_delivered_at,
                    order_state=order.order_state.value,
                    delivery_state=order.delivery_state.value,
                    subtotal=order.subtotal,
                    created_at=order.created_at,
                    updated_at=order.updated_at,
                    items=[
                        OrderItemRecord(
                            position=position,
                            sku=item.sku,
                            quantity=item.quantity,
                            unit_price=item.unit_price,
                            name=item.name,
                        )
                        for position, item in enumerate(order.items)
                    ],
                )
            )
        return order

    def get(self, order_id: str) -> Optional[Order]:
        with self._db.session() as session:
            record = session.get(OrderRecord, order_id)
            return order_from_record(record) if record else None

    def transition(self, order_id: str, change: OrderChange) -> Tuple[Order, Order]:
        with self._db.session() as session:
            record = session.execute(
                select(OrderRecord).where(OrderRecord.id == order_id).with_for_update()
            ).scalars().first()
            if not record:
                raise NotFoundError("Order not found")
            before = order_from_record(record)
            fields = change(before)
            if not fields:
                return before, before

            # Guarded on both state axes: zero rows means another writer committed since the read.
            changed = session.execute(
                update(OrderRecord)
                .where(OrderRecord.id == order_id)
                .where(OrderRecord.order_state == before.order_state.value)
                .where(OrderRecord.delivery_state == before.delivery_state.value)
                .values(**_column_values(fields))
                .execution_options(synchronize_session=False)
            ).rowcount
            if changed != 1:
                raise ConflictError("Order changed concurrently; reload and retry")
            return before, before.model_copy(update=fields)

    def list_all(self, limit: int) -> List[Order]:
        with self._db.session() as session:
            stmt = select(OrderRecord).order_by(OrderRecord.created_at.desc()).limit(limit)
            return [order_from_record(record) for record in session.execute(stmt).scalars().all()]

    def list_by_vendor(self, vendor_id: str) -> List[Order]:
        with self._db.session() as session:
            stmt = (
                select(OrderRecord)
                .where(OrderRecord.vendor_id == vendor_id)
                .order_by(OrderRecord.created_at.desc())
            )
            return [order_from_record(record) for record in session.execute(stmt).scalars().all()]

    def list_by_state(self, state: OrderState) -> List[Order]:
        with self._db.session() as session:
            stmt = (
                select(OrderRecord)
                .where(OrderRecord.order_state == state.value)
                .order_by(OrderRecord.created_at.asc())
            )
            return [order_from_record(record) for record in session.execute(stmt).scalars().all()]

    def list_for_supplier(self, supplier_id: str, status: VisibilityStatus) -> List[Order]:
        with self._db.session() as session:
            stmt = (
                select(OrderRecord)
                .join(OrderVisibilityRecord, OrderVisibilityRecord.order_id == OrderRecord.id)
                .where(OrderVisibilityRecord.supplier_id == supplier_id)
                .where(OrderVisibilityRecord.status == status.value)
                .order_by(OrderRecord.created_at.desc())
            )
            return [order_from_record(record) for record in session.execute(stmt).scalars().all()]

    def add_visibilities(self, rows: Iterable[OrderVisibility]) -> List[OrderVisibility]:
        pending = list(rows)
        if not pending:
            return []
        with self._db.session() as session:
            order_ids = {row.order_id for row in pending}
            existing = {
                (record.order_id, record.supplier_id)
                for record in session.execute(
                    select(OrderVisibilityRecord).where(OrderVisibilityRecord.order_id.in_(order_ids))
                ).scalars()
            }
            created = [row for row in pending if (row.order_id, row.supplier_id) not in existing]
            session.add_all(
                [
                    OrderVisibilityRecord(
                        order_id=row.order_id,
                        supplier_id=row.supplier_id,
                        status=row.status.value,
                        created_at=row.created_at,
                        updated_at=row.updated_at,
                    )
                    for row in created
                ]
            )
        return created

    def list_visibilities(self, order_id: str) -> List[OrderVisibility]:
        with self._db.session() as session:
            stmt = (
                select(OrderVisibilityRecord)
                .where(OrderVisibilityRecord.order_id == order_id)
                .order_by(OrderVisibilityRecord.supplier_id.asc())
            )
            return [visibility_from_record(record) for record in session.execute(stmt).scalars().all()]

    def accept(self, order_id: str, supplier_id: str, now: datetime) -> Order:
        with self._db.session() as session:
            order = session.execute(
                select(OrderRecord).where(OrderRecord.id == order_id).with_for_update()
            ).scalars().first()
            row = session.execute(
                select(OrderVisibilityRecord)
                .where(OrderVisibilityRecord.order_id == order_id)
                .where(OrderVisibilityRecord.supplier_id == supplier_id)
                .with_for_update()
            ).scalars().first()
            if not order or not row:
                raise NotFoundError("No offer for this order and supplier")

            accepted_by = session.execute(
                select(OrderVisibilityRecord.supplier_id)
                .where(OrderVisibilityRecord.order_id == order_id)
                .where(OrderVisibilityRecord.status == VisibilityStatus.ACCEPTED.value)
            ).scalars().first()
            check_acceptance(OrderState(order.order_state), VisibilityStatus(row.status), accepted_by, supplier_id)

            # Conditional writes: a concurrent acceptor that slipped past the lock matches zero rows.
            claimed = session.execute(
                update(OrderRecord)
                .where(OrderRecord.id == order_id)
                .where(OrderRecord.order_state == OrderState.PENDING.value)
                .values(order_state=OrderState.ACCEPTED.value, updated_at=now)
            ).rowcount
            if claimed != 1:
                raise ConflictError("Order already accepted by another supplier")
            row.status = VisibilityStatus.ACCEPTED.value
            row.updated_at = now
            session.flush()
            session.refresh(order)
            return order_from_record(order)

    def decline(self, order_id: str, supplier_id: str, now: datetime) -> OrderVisibility:
        with self._db.session() as session:
            row = session.execute(
                select(OrderVisibilityRecord)
                .where(OrderVisibilityRecord.order_id == order_id)
                .where(OrderVisibilityRecord.supplier_id == supplier_id)
                .with_for_update()
            ).scalars().first()
            if not row:
                raise NotFoundError("No offer for this order and supplier")
            check_visibility_change(VisibilityStatus(row.status))
            row.status = VisibilityStatus.DECLINED.value
            row.updated_at = now
            session.flush()
            return visibility_from_record(row)


class SqlAlchemyEventLog:
    def __init__(self, db: Database) -> None:
        self._db = db

    def append(self, event: Event) -> Event:
        with self._db.session() as session:
            session.add(
                EventRecord(
                    id=event.id,
                    type=event.type,
                    order_id=event.order_id,
                    details=event.details,
                    timestamp=event.timestamp,
                )
            )
        return event

    def list_for_order(self, order_id: str) -> List[Event]:
        with self._db.session() as session:
            stmt = select(EventRecord).where(EventRecord.order_id == order_id).order_by(EventRecord.timestamp.asc())
            return [event_from_record(record) for record in session.execute(stmt).scalars().all()]

    def list_between(self, start: datetime, end: datetime, event_type: Optional[str] = None) -> List[Event]:
        with self._db.session() as session:
            stmt = (
                select(EventRecord)
                .where(EventRecord.timestamp >= ensure_utc(start))
                .where(EventRecord.timestamp <= ensure_utc(end))
                .order_by(EventRecord.timestamp.asc())
            )
            if event_type:
                stmt = stmt.where(EventRecord.type == event_type)
            return [event_from_record(record) for record in session.execute(stmt).scalars().all()]


class SqlAlchemyRatingRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, rating: Rating) -> Rating:
        try:
            with self._db.session() as session:
                session.add(
                    RatingRecord(
                        id=rating.id,
                        order_id=rating.order_id,
                        vendor_id=rating.vendor_id,
                        supplier_id=rating.supplier_id,
                        score=rating.score,
                        comment=rating.comment,
                        is_accurate=rating.is_accurate,
                        created_at=rating.created_at,
                    )
                )
        except IntegrityError as exc:
            raise ConflictError("Order already rated") from exc
        return rating

    def get_for_order(self, order_id: str) -> Optional[Rating]:
        with self._db.session() as session:
            record = session.execute(select(RatingRecord).where(RatingRecord.order_id == order_id)).scalars().first()
            return rating_from_record(record) if record else None

    def list_for_supplier(self, supplier_id: str) -> List[Rating]:
        with self._db.session() as session:
            stmt = select(RatingRecord).where(RatingRecord.supplier_id == supplier_id)
            return [rating_from_record(record) for record in session.execute(stmt).scalars().all()]


class SqlAlchemySkuCatalog:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, code: str) -> Optional[Sku]:
        with self._db.session() as session:
            record = session.get(SkuRecord, code)
            return Sku(code=record.code, name=record.name, unit_price=record.unit_price) if record else None

    def list_all(self) -> List[Sku]:
        with self._db.session() as session:
            records = session.execute(select(SkuRecord).order_by(SkuRecord.code.asc())).scalars().all()
            return [Sku(code=record.code, name=record.name, unit_price=record.unit_price) for record in records]

    def existing_codes(self, codes: Iterable[str]) -> Set[str]:
        wanted = list(set(codes))
        if not wanted:
            return set()
        with self._db.session() as session:
            return set(session.execute(select(SkuRecord.code).where(SkuRecord.code.in_(wanted))).scalars().all())


class SqlAlchemyDirectory:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        with self._db.session() as session:
            record = session.get(VendorRecord, vendor_id)
            if not record:
                return None
            return Vendor(
                id=record.id,
                name=record.name,
                email=record.email,
                address=_address(record.street, record.area, record.city),
            )

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        with self._db.session() as session:
            record = session.get(SupplierRecord, supplier_id)
            return _supplier(record) if record else None

    def list_suppliers(self) -> List[Supplier]:
        with self._db.session() as session:
            records = session.execute(select(SupplierRecord).order_by(SupplierRecord.id.asc())).scalars().all()
            return [_supplier(record) for record in records]


def _supplier(record: SupplierRecord) -> Supplier:
    return Supplier(
        id=record.id,
        name=record.name,
        email=record.email,
        address=_address(record.street, record.area, record.city),
        service_areas=list(record.service_areas or []),
    )


def _supplier_stock(record: SupplierStockRecord) -> SupplierStock:
    return SupplierStock(
        supplier_id=record.supplier_id,
        sku=record.sku,
        quantity=record.quantity,
        status=StockStatus(record.status),
        reorder_threshold=record.reorder_threshold,
        updated_at=ensure_utc(record.updated_at),
    )


def _retailer_stock(record: RetailerStockRecord) -> RetailerStock:
    return RetailerStock(
        vendor_id=record.vendor_id,
        sku=record.sku,
        quantity=record.quantity,
        reorder_threshold=record.reorder_threshold,
        reorder_quantity=record.reorder_quantity,
        auto_reorder_enabled=record.auto_reorder_enabled,
        last_ordered_at=ensure_utc(record.last_ordered_at),
        last_auto_order_id=record.last_auto_order_id,
        updated_at=ensure_utc(record.updated_at),
    )


class SqlAlchemySupplierStockRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, supplier_id: str, sku: str) -> Optional[SupplierStock]:
        with self._db.session() as session:
            record = session.get(SupplierStockRecord, (supplier_id, sku))
            return _supplier_stock(record) if record else None

    def add(self, stock: SupplierStock) -> SupplierStock:
        try:
            with self._db.session() as session:
                session.add(
                    SupplierStockRecord(
                        supplier_id=stock.supplier_id,
                        sku=stock.sku,
                        quantity=stock.quantity,
                        status=stock.status.value,
                        reorder_threshold=stock.reorder_threshold,
                        updated_at=stock.updated_at,
                    )
                )
        except IntegrityError as exc:
            raise ConflictError("Stock position already exists") from exc
        return stock

    def update(self, supplier_id: str, sku: str, changes: Dict[str, Any]) -> SupplierStock:
        with self._db.session() as session:
            record = session.get(SupplierStockRecord, (supplier_id, sku), with_for_update=True)
            if not record:
                raise NotFoundError("Stock position not found")
            for name, value in _column_values(changes).items():
                setattr(record, name, value)
            session.flush()
            return _supplier_stock(record)

    def list_for_supplier(self, supplier_id: str) -> List[SupplierStock]:
        with self._db.session() as session:
            stmt = (
                select(SupplierStockRecord)
                .where(SupplierStockRecord.supplier_id == supplier_id)
                .order_by(SupplierStockRecord.sku.asc())
            )
            return [_supplier_stock(record) for record in session.execute(stmt).scalars().all()]

    def list_by_status(self, statuses: Iterable[StockStatus]) -> List[SupplierStock]:
        with self._db.session() as session:
            stmt = (
                select(SupplierStockRecord)
                .where(SupplierStockRecord.status.in_([status.value for status in statuses]))
                .order_by(SupplierStockRecord.supplier_id.asc(), SupplierStockRecord.sku.asc())
            )
            return [_supplier_stock(record) for record in session.execute(stmt).scalars().all()]


class SqlAlchemyRetailerStockRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, vendor_id: str, sku: str) -> Optional[RetailerStock]:
        with self._db.session() as session:
            record = session.get(RetailerStockRecord, (vendor_id, sku))
            return _retailer_stock(record) if record else None

    def add(self, stock: RetailerStock) -> RetailerStock:
        try:
            with self._db.session() as session:
                session.add(
                    RetailerStockRecord(
                        vendor_id=stock.vendor_id,
                        sku=stock.sku,
                        quantity=stock.quantity,
                        reorder_threshold=stock.reorder_threshold,
                        reorder_quantity=stock.reorder_quantity,
                        auto_reorder_enabled=stock.auto_reorder_enabled,
                        last_ordered_at=stock.last_ordered_at,
                        last_auto_order_id=stock.last_auto_order_id,
                        updated_at=stock.updated_at,
                    )
                )
        except IntegrityError as exc:
            raise ConflictError("Stock position already exists") from exc
        return stock

    def update(self, vendor_id: str, sku: str, changes: Dict[str, Any]) -> RetailerStock:
        with self._db.session() as session:
            record = session.get(RetailerStockRecord, (vendor_id, sku), with_for_update=True)
            if not record:
                raise NotFoundError("Stock position not found")
            for name, value in changes.items():
                setattr(record, name, value)
            session.flush()
            return _retailer_stock(record)

    def list_for_vendor(self, vendor_id: str) -> List[RetailerStock]:
        with self._db.session() as session:
            stmt = (
                select(RetailerStockRecord)
                .where(RetailerStockRecord.vendor_id == vendor_id)
                .order_by(RetailerStockRecord.sku.asc())
            )
            return [_retailer_stock(record) for record in session.execute(stmt).scalars().all()]


class SqlAlchemyNotificationRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, notification: Notification) -> Notification:
        with self._db.session() as session:
            session.add(NotificationRecord(**notification.model_dump()))
        return notification

    def list_for_user(self, user_id: str, limit: int) -> List[Notification]:
        with self._db.session() as session:
            stmt = (
                select(NotificationRecord)
                .where(NotificationRecord.user_id == user_id)
                .order_by(NotificationRecord.created_at.desc())
                .limit(limit)
            )
            return [_notification(record) for record in session.execute(stmt).scalars().all()]

    def mark_read(self, notification_id: str) -> Optional[Notification]:
        with self._db.session() as session:
            record = session.get(NotificationRecord, notification_id)
            if not record:
                return None
            record.read = True
            return _notification(record)

    def mark_all_read(self, user_id: str) -> int:
        with self._db.session() as session:
            result = session.execute(
                update(NotificationRecord)
                .where(NotificationRecord.user_id == user_id)
                .where(NotificationRecord.read.is_(False))
                .values(read=True)
            )
            return int(result.rowcount or 0)


def _notification(record: NotificationRecord) -> Notification:
    return Notification(
        id=record.id,
        user_id=record.user_id,
        title=record.title,
        message=record.message,
        type=record.type,
        order_id=record.order_id,
        read=record.read,
        created_at=ensure_utc(record.created_at),
    )

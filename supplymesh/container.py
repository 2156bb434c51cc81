from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .analytics import AnalyticsService
from .audit import AuditTrail
from .clock import Clock, SystemClock
from .distribution import CatalogEligibilityResolver, VisibilityFanout
from .id_provider import IdProvider, UUIDProvider
from .notifications import InboxNotificationSender, LoggingEmailSender
from .persistence.db import Database
from .persistence.repositories import (
    SqlAlchemyDirectory,
    SqlAlchemyEventLog,
    SqlAlchemyNotificationRepository,
    SqlAlchemyOrderRepository,
    SqlAlchemyRatingRepository,
    SqlAlchemyRetailerStockRepository,
    SqlAlchemySkuCatalog,
    SqlAlchemySupplierStockRepository,
)
from .persistence.seed import seed_if_empty
from .recommendations import RecommendationService
from .reorder import AutoReorderTrigger, VendorAddressPolicy
from .repositories import (
    InMemoryDirectory,
    InMemoryEventBus,
    InMemoryEventLog,
    InMemoryNotificationRepository,
    InMemoryOrderRepository,
    InMemoryRatingRepository,
    InMemoryRetailerStockRepository,
    InMemorySkuCatalog,
    InMemorySupplierStockRepository,
    SkuCatalog,
)
from .seed import load_seed
from .services import InventoryService, NotificationService, OrderService, RatingService
from .settings import Settings


@dataclass
class Container:
    settings: Settings
    order_service: OrderService
    inventory_service: InventoryService
    rating_service: RatingService
    notification_service: NotificationService
    analytics_service: AnalyticsService
    recommendation_service: RecommendationService
    catalog: SkuCatalog
    event_bus: InMemoryEventBus
    clock: Clock
    id_provider: IdProvider
    db: Optional[Database] = None


def build_container(
    settings: Settings,
    clock: Optional[Clock] = None,
    ids: Optional[IdProvider] = None,
) -> Container:
    clock = clock or SystemClock()
    ids = ids or UUIDProvider()

    event_bus = InMemoryEventBus()
    db: Optional[Database] = None

    if settings.database_url:
        db = Database(settings.database_url, echo=settings.db_echo)
        db.create_tables()
        seed_if_empty(db, settings.seed_path, clock.now())
        orders = SqlAlchemyOrderRepository(db)
        events = SqlAlchemyEventLog(db)
        ratings = SqlAlchemyRatingRepository(db)
        catalog = SqlAlchemySkuCatalog(db)
        directory = SqlAlchemyDirectory(db)
        supplier_stock = SqlAlchemySupplierStockRepository(db)
        retailer_stock = SqlAlchemyRetailerStockRepository(db)
        notifications = SqlAlchemyNotificationRepository(db)
    else:
        seed = load_seed(settings.seed_path, clock.now())
        orders = InMemoryOrderRepository()
        events = InMemoryEventLog()
        ratings = InMemoryRatingRepository()
        catalog = InMemorySkuCatalog(seed.skus)
        directory = InMemoryDirectory(seed.vendors, seed.suppliers)
        supplier_stock = InMemorySupplierStockRepository(seed.supplier_stock)
        retailer_stock = InMemoryRetailerStockRepository(seed.retailer_stock)
        notifications = InMemoryNotificationRepository()

    audit = AuditTrail(events, event_bus, clock, ids)
    order_service = OrderService(
        orders,
        catalog,
        CatalogEligibilityResolver(directory, supplier_stock),
        VisibilityFanout(orders),
        audit,
        InboxNotificationSender(notifications, clock, ids),
        LoggingEmailSender(settings.delay_email_recipient),
        clock,
        ids,
        escalate_on_all_declined=settings.escalate_on_all_declined,
    )
    trigger = AutoReorderTrigger(
        placer=order_service,
        orders=orders,
        stock=retailer_stock,
        directory=directory,
        catalog=catalog,
        audit=audit,
        clock=clock,
        policy=VendorAddressPolicy(settings.auto_reorder_default_area),
        default_quantity=settings.auto_reorder_default_quantity,
        lead_time=timedelta(hours=settings.auto_reorder_lead_hours),
        suppress_outstanding=settings.auto_reorder_suppress_outstanding,
    )
    inventory_service = InventoryService(
        catalog,
        supplier_stock,
        retailer_stock,
        trigger,
        clock,
        default_reorder_quantity=settings.auto_reorder_default_quantity,
    )
    rating_service = RatingService(orders, ratings, audit, clock, ids)
    notification_service = NotificationService(notifications)
    analytics_service = AnalyticsService(
        orders=orders,
        events=events,
        ratings=ratings,
        directory=directory,
        clock=clock,
        currency_symbol=settings.currency_symbol,
    )
    recommendation_service = RecommendationService(
        orders=orders,
        supplier_stock=supplier_stock,
        catalog=catalog,
        directory=directory,
    )

    return Container(
        settings=settings,
        order_service=order_service,
        inventory_service=inventory_service,
        rating_service=rating_service,
        notification_service=notification_service,
        analytics_service=analytics_service,
        recommendation_service=recommendation_service,
        catalog=catalog,
        event_bus=event_bus,
        clock=clock,
        id_provider=ids,
        db=db,
    )

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..analytics import AnalyticsService
from ..container import Container
from ..deps import (
    get_analytics_service,
    get_catalog,
    get_container,
    get_inventory_service,
    get_notification_service,
    get_order_service,
    get_rating_service,
    get_recommendation_service,
)
from ..domain import (
    DelayReport,
    DelayReportResult,
    DeliveryStatusUpdate,
    DeliveryUpdateResult,
    Event,
    HealthStatus,
    Notification,
    Order,
    OrderCreate,
    OrderView,
    OrderVisibility,
    Rating,
    RatingCreate,
    Recommendation,
    RetailerStock,
    RetailerStockResult,
    RetailerStockUpdate,
    Sku,
    SupplierAction,
    SupplierAnalytics,
    SupplierRatingSummary,
    SupplierStock,
    SupplierStockUpdate,
    VendorAnalytics,
)
from ..recommendations import RecommendationService
from ..repositories import SkuCatalog
from ..services import InventoryService, NotificationService, OrderService, RatingService

router = APIRouter()


@router.get("/health", response_model=HealthStatus)
async def health(container: Container = Depends(get_container)):
    return HealthStatus(status="ok", time=container.clock.now())


@router.get("/skus", response_model=list[Sku])
async def list_skus(catalog: SkuCatalog = Depends(get_catalog)):
    return catalog.list_all()


@router.post("/orders", response_model=Order)
async def place_order(payload: OrderCreate, service: OrderService = Depends(get_order_service)):
    return service.place(payload)


@router.get("/orders", response_model=list[OrderView])
async def list_orders(
    vendor_id: Optional[str] = None,
    limit: int = 50,
    service: OrderService = Depends(get_order_service),
):
    if limit < 1:
        raise HTTPException(status_code=400, detail="limit must be positive")
    return [service.view(order) for order in service.list_orders(vendor_id, limit)]


@router.get("/orders/{order_id}", response_model=OrderView)
async def get_order(order_id: str, service: OrderService = Depends(get_order_service)):
    return service.view(service.get_order(order_id))


@router.get("/orders/{order_id}/events", response_model=list[Event])
async def order_events(order_id: str, service: OrderService = Depends(get_order_service)):
    return service.timeline(order_id)


@router.get("/orders/{order_id}/visibility", response_model=list[OrderVisibility])
async def order_visibility(order_id: str, service: OrderService = Depends(get_order_service)):
    return service.visibility(order_id)


@router.post("/orders/{order_id}/accept", response_model=Order)
async def accept_order(
    order_id: str,
    payload: SupplierAction,
    service: OrderService = Depends(get_order_service),
):
    return service.accept(order_id, payload.supplier_id)


@router.post("/orders/{order_id}/decline", response_model=OrderVisibility)
async def decline_order(
    order_id: str,
    payload: SupplierAction,
    service: OrderService = Depends(get_order_service),
):
    return service.decline(order_id, payload.supplier_id)


@router.post("/orders/{order_id}/cancel", response_model=Order)
async def cancel_order(order_id: str, service: OrderService = Depends(get_order_service)):
    return service.cancel(order_id)


@router.post("/orders/{order_id}/delivery-status", response_model=DeliveryUpdateResult)
async def update_delivery_status(
    order_id: str,
    payload: DeliveryStatusUpdate,
    service: OrderService = Depends(get_order_service),
):
    return service.advance_delivery(order_id, payload)


@router.post("/orders/{order_id}/report-delay", response_model=DelayReportResult)
async def report_delay(
    order_id: str,
    payload: DelayReport,
    service: OrderService = Depends(get_order_service),
):
    return service.report_delay(order_id, payload)


@router.get("/suppliers/{supplier_id}/requests", response_model=list[OrderView])
async def supplier_requests(supplier_id: str, service: OrderService = Depends(get_order_service)):
    return [service.view(order) for order in service.new_requests(supplier_id)]


@router.get("/suppliers/{supplier_id}/orders", response_model=list[OrderView])
async def supplier_orders(supplier_id: str, service: OrderService = Depends(get_order_service)):
    return [service.view(order) for order in service.supplier_orders(supplier_id)]


@router.get("/suppliers/{supplier_id}/orders/active", response_model=list[OrderView])
async def supplier_active_orders(supplier_id: str, service: OrderService = Depends(get_order_service)):
    return [service.view(order) for order in service.active_supplier_orders(supplier_id)]


@router.get("/suppliers/{supplier_id}/rating", response_model=SupplierRatingSummary)
async def supplier_rating(supplier_id: str, service: RatingService = Depends(get_rating_service)):
    return service.supplier_summary(supplier_id)


@router.get("/suppliers/{supplier_id}/inventory", response_model=list[SupplierStock])
async def supplier_inventory(supplier_id: str, service: InventoryService = Depends(get_inventory_service)):
    return service.supplier_stock(supplier_id)


@router.put("/inventory/supplier", response_model=SupplierStock)
async def update_supplier_inventory(
    payload: SupplierStockUpdate,
    service: InventoryService = Depends(get_inventory_service),
):
    return service.update_supplier_stock(payload)


@router.get("/vendors/{vendor_id}/inventory", response_model=list[RetailerStock])
async def vendor_inventory(vendor_id: str, service: InventoryService = Depends(get_inventory_service)):
    return service.retailer_stock(vendor_id)


@router.put("/inventory/retailer", response_model=RetailerStockResult)
async def update_retailer_inventory(
    payload: RetailerStockUpdate,
    service: InventoryService = Depends(get_inventory_service),
):
    return service.update_retailer_stock(payload)


@router.get("/vendors/{vendor_id}/recommendations", response_model=list[Recommendation])
async def vendor_recommendations(
    vendor_id: str,
    service: RecommendationService = Depends(get_recommendation_service),
):
    return service.for_vendor(vendor_id)


@router.post("/ratings", response_model=Rating)
async def rate_order(payload: RatingCreate, service: RatingService = Depends(get_rating_service)):
    return service.rate(payload)


@router.get("/analytics/vendors/{vendor_id}", response_model=VendorAnalytics)
async def vendor_analytics(vendor_id: str, service: AnalyticsService = Depends(get_analytics_service)):
    return service.vendor_analytics(vendor_id)


@router.get("/analytics/suppliers/{supplier_id}", response_model=SupplierAnalytics)
async def supplier_analytics(supplier_id: str, service: AnalyticsService = Depends(get_analytics_service)):
    return service.supplier_analytics(supplier_id)


@router.get("/notifications/{user_id}", response_model=list[Notification])
async def list_notifications(user_id: str, service: NotificationService = Depends(get_notification_service)):
    return service.inbox(user_id)


@router.post("/notifications/{notification_id}/read", response_model=Notification)
async def mark_notification_read(
    notification_id: str,
    service: NotificationService = Depends(get_notification_service),
):
    return service.mark_read(notification_id)


@router.post("/notifications/{user_id}/read-all")
async def mark_all_notifications_read(
    user_id: str,
    service: NotificationService = Depends(get_notification_service),
):
    return {"updated": service.mark_all_read(user_id)}

from __future__ import annotations

from fastapi import Depends, Request

from .analytics import AnalyticsService
from .container import Container
from .recommendations import RecommendationService
from .repositories import SkuCatalog
from .services import InventoryService, NotificationService, OrderService, RatingService


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_settings(container: Container = Depends(get_container)):
    return container.settings


def get_order_service(container: Container = Depends(get_container)) -> OrderService:
    return container.order_service


def get_inventory_service(container: Container = Depends(get_container)) -> InventoryService:
    return container.inventory_service


def get_rating_service(container: Container = Depends(get_container)) -> RatingService:
    return container.rating_service


def get_notification_service(container: Container = Depends(get_container)) -> NotificationService:
    return container.notification_service


def get_analytics_service(container: Container = Depends(get_container)) -> AnalyticsService:
    return container.analytics_service


def get_recommendation_service(container: Container = Depends(get_container)) -> RecommendationService:
    return container.recommendation_service


def get_catalog(container: Container = Depends(get_container)) -> SkuCatalog:
    return container.catalog

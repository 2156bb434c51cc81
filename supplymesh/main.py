from __future__ import annotations

import asyncio
import json
from typing import Optional

import strawberry
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from strawberry.fastapi import GraphQLRouter

from .analytics import AnalyticsService
from .api.rest import router as rest_router
from .container import Container, build_container
from .domain import OrderView
from .errors import ConflictError, DomainError, ExternalCollaboratorError, NotFoundError, ValidationError
from .logging import ServiceLogger, setup_logging
from .middleware.rate_limit import configure_rate_limiting
from .observability import configure_observability
from .recommendations import RecommendationService
from .services import OrderService
from .settings import Settings, load_settings

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    ExternalCollaboratorError: 502,
}


@strawberry.type
class GraphQLOrderItem:
    sku: str
    quantity: int
    name: Optional[str]


@strawberry.type
class GraphQLOrder:
    id: str
    vendor_id: str
    order_number: str
    order_state: str
    delivery_state: str
    at_risk: bool
    delivery_location: str
    required_delivery_date: str
    predicted_delivery_at: Optional[str]
    items: list[GraphQLOrderItem]
    created_at: str


@strawberry.type
class GraphQLSupplierPerformance:
    supplier_id: str
    name: str
    spend: float
    score: int


@strawberry.type
class GraphQLVendorAnalytics:
    vendor_id: str
    total_spend: float
    total_spend_formatted: str
    reliability_percentage: int
    stockouts_avoided: int
    most_stable_supplier: str
    spend_trend: str
    reliability_trend: str
    supplier_performance: list[GraphQLSupplierPerformance]
    generated_at: str


@strawberry.type
class GraphQLRecommendation:
    sku: str
    name: str
    supplier_id: str
    supplier_name: str
    price: float
    total_sold: int


def to_graphql_order(order: OrderView) -> GraphQLOrder:
    return GraphQLOrder(
        id=order.id,
        vendor_id=order.vendor_id,
        order_number=order.order_number,
        order_state=order.order_state.value,
        delivery_state=order.delivery_state.value,
        at_risk=order.at_risk,
        delivery_location=order.delivery_location,
        required_delivery_date=order.required_delivery_date.isoformat(),
        predicted_delivery_at=order.predicted_delivery_at.isoformat() if order.predicted_delivery_at else None,
        items=[GraphQLOrderItem(sku=item.sku, quantity=item.quantity, name=item.name) for item in order.items],
        created_at=order.created_at.isoformat(),
    )


def graphql_schema() -> strawberry.Schema:
    @strawberry.type
    class Query:
        @strawberry.field
        def order(self, info: strawberry.Info, id: str) -> Optional[GraphQLOrder]:
            service: OrderService = info.context["container"].order_service
            try:
                order = service.get_order(id)
            except NotFoundError:
                return None
            return to_graphql_order(service.view(order))

        @strawberry.field
        def orders(
            self, info: strawberry.Info, vendor_id: Optional[str] = None, limit: int = 50
        ) -> list[GraphQLOrder]:
            service: OrderService = info.context["container"].order_service
            return [to_graphql_order(service.view(order)) for order in service.list_orders(vendor_id, max(limit, 1))]

        @strawberry.field
        def vendor_analytics(self, info: strawberry.Info, vendor_id: str) -> GraphQLVendorAnalytics:
            service: AnalyticsService = info.context["container"].analytics_service
            result = service.vendor_analytics(vendor_id)
            return GraphQLVendorAnalytics(
                vendor_id=result.vendor_id,
                total_spend=result.total_spend,
                total_spend_formatted=result.total_spend_formatted,
                reliability_percentage=result.reliability_percentage,
                stockouts_avoided=result.stockouts_avoided,
                most_stable_supplier=result.most_stable_supplier.name,
                spend_trend=result.trends.spend_trend,
                reliability_trend=result.trends.reliability_trend,
                supplier_performance=[
                    GraphQLSupplierPerformance(
                        supplier_id=item.supplier_id,
                        name=item.name,
                        spend=item.spend,
                        score=item.score,
                    )
                    for item in result.supplier_performance
                ],
                generated_at=result.generated_at.isoformat(),
            )

        @strawberry.field
        def recommendations(self, info: strawberry.Info, vendor_id: str) -> list[GraphQLRecommendation]:
            service: RecommendationService = info.context["container"].recommendation_service
            return [
                GraphQLRecommendation(
                    sku=item.sku,
                    name=item.name,
                    supplier_id=item.supplier_id,
                    supplier_name=item.supplier_name,
                    price=item.price,
                    total_sold=item.total_sold,
                )
                for item in service.for_vendor(vendor_id)
            ]

    return strawberry.Schema(query=Query)


def create_app(settings: Settings, container: Optional[Container] = None) -> FastAPI:
    setup_logging(settings.log_level, settings.log_format)
    log = ServiceLogger("app")

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        description="Order distribution, delivery lifecycle, risk and auto-reorder engine for retail supply.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    configure_rate_limiting(app, settings)

    container = container or build_container(settings)
    app.state.container = container

    configure_observability(app, settings, engine=container.db.engine if container.db else None)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if container.db:
            container.db.dispose()

    @app.exception_handler(DomainError)
    async def handle_domain_error(request: Request, exc: DomainError):
        status_code = ERROR_STATUS.get(type(exc), 400)
        if status_code >= 500:
            log.error("Collaborator failure", path=request.url.path, detail=exc.detail)
        return JSONResponse(status_code=status_code, content={"detail": exc.detail})

    async def graphql_context(request: Request):
        return {"container": request.app.state.container}

    schema = graphql_schema()
    app.include_router(GraphQLRouter(schema, context_getter=graphql_context), prefix="/graphql")

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get(settings.request_id_header, "") or container.id_provider.new_id()
        response = await call_next(request)
        response.headers[settings.request_id_header] = request_id
        return response

    app.include_router(rest_router)
    app.include_router(rest_router, prefix="/v1")

    @app.get("/")
    async def root():
        return RedirectResponse(url="/docs")

    async def event_stream(order_id: Optional[str]):
        queue = container.event_bus.subscribe()
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=15)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if order_id and event.order_id != order_id:
                    continue
                yield f"event: {event.type}\ndata: {json.dumps(event.model_dump(mode='json'))}\n\n"
        finally:
            container.event_bus.unsubscribe(queue)

    @app.get("/stream/orders")
    async def stream_orders(order_id: Optional[str] = None):
        return StreamingResponse(event_stream(order_id), media_type="text/event-stream")

    log.info("Application configured", storage="sql" if container.db else "memory")
    return app


app = create_app(load_settings())

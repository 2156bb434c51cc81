from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, conint, confloat, field_validator

from .clock import ensure_utc


class OrderState(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"


class DeliveryState(str, Enum):
    ON_TRACK = "ON_TRACK"
    AT_RISK = "AT_RISK"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class VisibilityStatus(str, Enum):
    VISIBLE = "VISIBLE"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"


class StockStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    LOW = "LOW"
    UNAVAILABLE = "UNAVAILABLE"


class EventType(str, Enum):
    ORDER_DISTRIBUTED = "order_distributed"
    NO_SUPPLIERS_FOUND = "no_suppliers_found"
    ORDER_ACCEPTED = "order_accepted"
    ORDER_DECLINED = "order_declined"
    ALL_SUPPLIERS_DECLINED = "all_suppliers_declined"
    ORDER_CANCELLED = "order_cancelled"
    DELAY_REPORTED = "delay_reported"
    AUTO_REORDER_TRIGGERED = "auto_reorder_triggered"
    ORDER_RATED = "order_rated"


class Sku(BaseModel):
    code: str
    name: str
    unit_price: Optional[float] = None


class Address(BaseModel):
    street: str
    area: str = ""
    city: Optional[str] = None

    @classmethod
    def from_text(cls, text: Optional[str]) -> Optional["Address"]:
        """Split a free-text address into street and area at capture time.

        The last comma-separated segment is the area, everything before it the street.
        """
        if not text or not text.strip():
            return None
        parts = [part.strip() for part in text.split(",") if part.strip()]
        if len(parts) == 1:
            return cls(street=parts[0])
        return cls(street=", ".join(parts[:-1]), area=parts[-1])

    def as_text(self) -> str:
        return ", ".join(part for part in (self.street, self.area, self.city) if part)


class Vendor(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    address: Optional[Address] = None


class Supplier(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    address: Optional[Address] = None
    service_areas: List[str] = Field(default_factory=list)


class OrderItem(BaseModel):
    sku: str
    quantity: conint(gt=0)
    unit_price: Optional[confloat(ge=0)] = None
    name: Optional[str] = None


class OrderCreate(BaseModel):
    vendor_id: str
    items: List[OrderItem] = Field(min_length=1)
    partial_allowed: bool = False
    delivery_location: str = Field(min_length=1)
    delivery_address: str = ""
    required_delivery_date: datetime
    promised_delivery_at: Optional[datetime] = None
    subtotal: Optional[confloat(ge=0)] = None

    @field_validator("required_delivery_date", "promised_delivery_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class Order(BaseModel):
    id: str
    vendor_id: str
    order_number: str
    items: List[OrderItem]
    partial_allowed: bool = False
    delivery_location: str
    delivery_address: str = ""
    required_delivery_date: datetime
    promised_delivery_at: Optional[datetime] = None
    predicted_delivery_at: Optional[datetime] = None
    actual_delivered_at: Optional[datetime] = None
    order_state: OrderState = OrderState.PENDING
    delivery_state: DeliveryState = DeliveryState.ON_TRACK
    subtotal: Optional[float] = None
    created_at: datetime
    updated_at: datetime


class OrderView(Order):
    at_risk: bool


class OrderVisibility(BaseModel):
    order_id: str
    supplier_id: str
    status: VisibilityStatus = VisibilityStatus.VISIBLE
    created_at: datetime
    updated_at: datetime


class SupplierAction(BaseModel):
    supplier_id: str


class DeliveryStatusUpdate(BaseModel):
    status: str = Field(min_length=1)


class DeliveryUpdateResult(BaseModel):
    order: Order
    event_type: str
    state_changed: bool


class DelayReport(BaseModel):
    revised_eta: datetime
    reason: str = Field(min_length=1)

    @field_validator("revised_eta")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class DelayReportResult(BaseModel):
    order: Order
    notification_sent: bool
    email_sent: bool


class Event(BaseModel):
    id: str
    type: str
    order_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class RatingCreate(BaseModel):
    order_id: str
    vendor_id: str
    score: conint(ge=1, le=5)
    comment: Optional[str] = None
    is_accurate: bool = True


class Rating(BaseModel):
    id: str
    order_id: str
    vendor_id: str
    supplier_id: str
    score: int
    comment: Optional[str] = None
    is_accurate: bool = True
    created_at: datetime


class SupplierRatingSummary(BaseModel):
    supplier_id: str
    average_score: float
    total_ratings: int
    accuracy_percentage: int


class SupplierStock(BaseModel):
    supplier_id: str
    sku: str
    quantity: int
    status: StockStatus
    reorder_threshold: int = 10
    updated_at: datetime


class SupplierStockUpdate(BaseModel):
    supplier_id: str
    sku: str
    quantity: conint(ge=0)
    status: Optional[StockStatus] = None
    reorder_threshold: Optional[conint(ge=0)] = None


class RetailerStock(BaseModel):
    vendor_id: str
    sku: str
    quantity: int
    reorder_threshold: int = 10
    reorder_quantity: Optional[int] = None
    auto_reorder_enabled: bool = False
    last_ordered_at: Optional[datetime] = None
    last_auto_order_id: Optional[str] = None
    updated_at: datetime


class RetailerStockUpdate(BaseModel):
    vendor_id: str
    sku: str
    quantity: Optional[conint(ge=0)] = None
    reorder_threshold: Optional[conint(ge=0)] = None
    reorder_quantity: Optional[conint(gt=0)] = None
    auto_reorder_enabled: Optional[bool] = None


class AutoReorderOutcome(BaseModel):
    triggered: bool
    success: bool
    message: str
    order: Optional[Order] = None


class RetailerStockResult(BaseModel):
    stock: RetailerStock
    auto_reorder: AutoReorderOutcome


class Notification(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    type: str
    order_id: Optional[str] = None
    read: bool = False
    created_at: datetime


class SupplierPerformance(BaseModel):
    supplier_id: str
    name: str
    spend: float
    spend_percent: int
    score: int
    score_val: str
    spend_val: str


class MostStableSupplier(BaseModel):
    name: str = "N/A"
    rating: float = 0


class VendorDeliveredOrder(BaseModel):
    id: str
    order_number: str
    supplier: str
    date: str
    value: str
    stars: int


class AnalyticsTrends(BaseModel):
    spend_trend: str
    reliability_trend: str


class VendorAnalytics(BaseModel):
    vendor_id: str
    total_spend: float
    total_spend_formatted: str
    reliability_percentage: int
    most_stable_supplier: MostStableSupplier
    stockouts_avoided: int
    supplier_performance: List[SupplierPerformance]
    disruption_heatmap: List[List[int]]
    delivered_orders: List[VendorDeliveredOrder]
    trends: AnalyticsTrends
    generated_at: datetime


class SupplierDeliveredOrder(BaseModel):
    id: str
    order_number: str
    retailer: str
    date: str
    value: str
    value_with_tax: float
    lead_time_days: Optional[float] = None
    lead_time: str
    stars: int
    placed_at: datetime


class SupplierAnalytics(BaseModel):
    supplier_id: str
    delivered_orders: List[SupplierDeliveredOrder]
    generated_at: datetime


class Recommendation(BaseModel):
    sku: str
    name: str
    supplier_id: str
    supplier_name: str
    price: float
    total_sold: int


class HealthStatus(BaseModel):
    status: str
    time: datetime

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from .clock import Clock, ensure_utc
from .domain import (
    AnalyticsTrends,
    DeliveryState,
    Event,
    EventType,
    MostStableSupplier,
    Order,
    Rating,
    SupplierAnalytics,
    SupplierDeliveredOrder,
    SupplierPerformance,
    VendorAnalytics,
    VendorDeliveredOrder,
    VisibilityStatus,
)
from .pricing import order_total_with_tax
from .repositories import Directory, EventLog, OrderRepository, RatingRepository

MAX_RATING = 5
TOP_SUPPLIERS = 5
HEATMAP_WEEKS = 4
HEATMAP_BASELINE = 10
HEATMAP_STEP = 30
HEATMAP_CAP = 90
TREND_WINDOW = timedelta(days=30)
ZERO_TREND = "+0.0%"


@dataclass
class _DeliveredRecord:
    order: Order
    events: List[Event]
    supplier_id: Optional[str]
    rating: Optional[Rating]
    value: float


@dataclass
class _SupplierTally:
    name: str
    spend: float = 0.0
    scores: List[int] = field(default_factory=list)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def has_at_risk_event(events: Iterable[Event]) -> bool:
    return any("AT_RISK" in event.type.upper() for event in events)


def has_disruption_event(events: Iterable[Event]) -> bool:
    return any(event.type == EventType.DELAY_REPORTED.value or "AT_RISK" in event.type.upper() for event in events)


def format_trend(recent: float, previous: float, relative: bool) -> str:
    if previous <= 0:
        return ZERO_TREND
    delta = (recent - previous) / previous * 100 if relative else recent - previous
    return f"{delta:+.1f}%"


def format_day(value: Optional[datetime]) -> str:
    return value.strftime("%d %b %Y") if value else "N/A"


class AnalyticsService:
    """Read-only dashboards derived from orders, offers, events and ratings at query time."""

    def __init__(
        self,
        *,
        orders: OrderRepository,
        events: EventLog,
        ratings: RatingRepository,
        directory: Directory,
        clock: Clock,
        currency_symbol: str = "R",
    ) -> None:
        self._orders = orders
        self._events = events
        self._ratings = ratings
        self._directory = directory
        self._clock = clock
        self._currency = currency_symbol

    def vendor_analytics(self, vendor_id: str) -> VendorAnalytics:
        now = self._clock.now()
        all_orders = self._orders.list_by_vendor(vendor_id)
        delivered = [self._delivered_record(order) for order in all_orders if order.delivery_state == DeliveryState.DELIVERED]

        total_spend = sum(record.value for record in delivered)
        recent, previous = self._split_periods(delivered, now)

        return VendorAnalytics(
            vendor_id=vendor_id,
            total_spend=round(total_spend, 2),
            total_spend_formatted=self._money(total_spend),
            reliability_percentage=round_half_up(_reliability(delivered)),
            most_stable_supplier=self._most_stable_supplier(delivered),
            stockouts_avoided=len([record for record in delivered if has_disruption_event(record.events)]),
            supplier_performance=self._supplier_performance(delivered),
            disruption_heatmap=self._disruption_heatmap({order.id for order in all_orders}, now),
            delivered_orders=[
                VendorDeliveredOrder(
                    id=record.order.order_number,
                    order_number=record.order.order_number,
                    supplier=self._supplier_name(record.supplier_id),
                    date=format_day(record.order.actual_delivered_at),
                    value=self._money(record.value),
                    stars=record.rating.score if record.rating else 0,
                )
                for record in delivered
            ],
            trends=AnalyticsTrends(
                spend_trend=format_trend(
                    sum(record.value for record in recent),
                    sum(record.value for record in previous),
                    relative=True,
                ),
                reliability_trend=format_trend(_reliability(recent), _reliability(previous), relative=False),
            ),
            generated_at=now,
        )

    def supplier_analytics(self, supplier_id: str) -> SupplierAnalytics:
        delivered = [
            order
            for order in self._orders.list_for_supplier(supplier_id, VisibilityStatus.ACCEPTED)
            if order.delivery_state == DeliveryState.DELIVERED
        ]
        delivered.sort(key=lambda order: ensure_utc(order.actual_delivered_at or order.created_at), reverse=True)

        rows: List[SupplierDeliveredOrder] = []
        for order in delivered:
            lead_days = None
            lead_label = "-"
            if order.actual_delivered_at:
                elapsed = ensure_utc(order.actual_delivered_at) - ensure_utc(order.created_at)
                lead_days = round(elapsed.total_seconds() / 86400, 1)
                lead_label = f"{lead_days:.1f} Days"
            vendor = self._directory.get_vendor(order.vendor_id)
            rating = self._ratings.get_for_order(order.id)
            value = order_total_with_tax(order)
            rows.append(
                SupplierDeliveredOrder(
                    id=order.id,
                    order_number=order.order_number,
                    retailer=vendor.name if vendor and vendor.name else "Unknown Retailer",
                    date=format_day(order.actual_delivered_at),
                    value=self._money(value),
                    value_with_tax=round(value, 2),
                    lead_time_days=lead_days,
                    lead_time=lead_label,
                    stars=rating.score if rating else 0,
                    placed_at=order.created_at,
                )
            )
        return SupplierAnalytics(supplier_id=supplier_id, delivered_orders=rows, generated_at=self._clock.now())

    def _delivered_record(self, order: Order) -> _DeliveredRecord:
        accepted = [
            row.supplier_id
            for row in self._orders.list_visibilities(order.id)
            if row.status == VisibilityStatus.ACCEPTED
        ]
        return _DeliveredRecord(
            order=order,
            events=self._events.list_for_order(order.id),
            supplier_id=accepted[0] if accepted else None,
            rating=self._ratings.get_for_order(order.id),
            value=order_total_with_tax(order),
        )

    def _split_periods(self, delivered: List[_DeliveredRecord], now: datetime):
        recent_start = now - TREND_WINDOW
        previous_start = now - 2 * TREND_WINDOW
        recent: List[_DeliveredRecord] = []
        previous: List[_DeliveredRecord] = []
        for record in delivered:
            delivered_at = ensure_utc(record.order.actual_delivered_at)
            if not delivered_at:
                continue
            if delivered_at >= recent_start:
                recent.append(record)
            elif delivered_at >= previous_start:
                previous.append(record)
        return recent, previous

    def _most_stable_supplier(self, delivered: List[_DeliveredRecord]) -> MostStableSupplier:
        scores: Dict[str, List[int]] = defaultdict(list)
        for record in delivered:
            if record.supplier_id and record.rating:
                scores[record.supplier_id].append(record.rating.score)

        best = MostStableSupplier()
        for supplier_id, values in scores.items():
            average = sum(values) / len(values)
            if average > best.rating:
                best = MostStableSupplier(name=self._supplier_name(supplier_id), rating=round(average, 2))
        return best

    def _supplier_performance(self, delivered: List[_DeliveredRecord]) -> List[SupplierPerformance]:
        tallies: Dict[str, _SupplierTally] = {}
        for record in delivered:
            if not record.supplier_id:
                continue
            tally = tallies.setdefault(record.supplier_id, _SupplierTally(name=self._supplier_name(record.supplier_id)))
            tally.spend += record.value
            if record.rating:
                tally.scores.append(record.rating.score)

        max_spend = max([tally.spend for tally in tallies.values()] + [1.0])
        ranked = sorted(tallies.items(), key=lambda item: item[1].spend, reverse=True)[:TOP_SUPPLIERS]

        performance: List[SupplierPerformance] = []
        for supplier_id, tally in ranked:
            average = sum(tally.scores) / len(tally.scores) if tally.scores else 0.0
            performance.append(
                SupplierPerformance(
                    supplier_id=supplier_id,
                    name=tally.name,
                    spend=round(tally.spend, 2),
                    spend_percent=round_half_up(tally.spend / max_spend * 100),
                    score=round_half_up(average / MAX_RATING * 100),
                    score_val=f"{average:.1f}",
                    spend_val=f"{self._currency}{tally.spend / 1000:.1f}k",
                )
            )
        return performance

    def _disruption_heatmap(self, order_ids: set, now: datetime) -> List[List[int]]:
        grid = [[HEATMAP_BASELINE] * 7 for _ in range(HEATMAP_WEEKS)]
        window = timedelta(days=HEATMAP_WEEKS * 7)
        for event in self._events.list_between(now - window, now, EventType.DELAY_REPORTED.value):
            if event.order_id not in order_ids:
                continue
            days_since = int((now - ensure_utc(event.timestamp)).total_seconds() // 86400)
            if 0 <= days_since < HEATMAP_WEEKS * 7:
                week, day = divmod(days_since, 7)
                grid[week][day] = min(grid[week][day] + HEATMAP_STEP, HEATMAP_CAP)
        return grid

    def _supplier_name(self, supplier_id: Optional[str]) -> str:
        if not supplier_id:
            return "Unknown"
        supplier = self._directory.get_supplier(supplier_id)
        return supplier.name if supplier and supplier.name else "Unknown"

    def _money(self, amount: float) -> str:
        return f"{self._currency}{amount:,.2f}"


def _reliability(records: List[_DeliveredRecord]) -> float:
    if not records:
        return 0.0
    reliable = [record for record in records if not has_at_risk_event(record.events)]
    return len(reliable) / len(records) * 100

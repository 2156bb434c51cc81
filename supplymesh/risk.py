"""Derived delivery-risk classification.

The persisted ``AT_RISK`` delivery state is only a hint; every read recomputes the
flag from the order's timestamps.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from .clock import ensure_utc
from .domain import DeliveryState, Order, OrderState, OrderView

PREDICTION_DRIFT_LIMIT = timedelta(minutes=60)


def is_at_risk(order: Order, now: datetime) -> bool:
    if (
        order.order_state == OrderState.CANCELLED
        or order.delivery_state == DeliveryState.DELIVERED
        or order.actual_delivered_at is not None
    ):
        return False

    # A carrier prediction, when present, decides on its own even past the deadline.
    if order.promised_delivery_at and order.predicted_delivery_at:
        drift = ensure_utc(order.predicted_delivery_at) - ensure_utc(order.promised_delivery_at)
        return drift >= PREDICTION_DRIFT_LIMIT

    return ensure_utc(now) > ensure_utc(order.required_delivery_date)


def assess(order: Order, now: datetime) -> OrderView:
    return OrderView(**order.model_dump(), at_risk=is_at_risk(order, now))

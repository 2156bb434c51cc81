"""Legal transitions for the two orthogonal order axes.

Both the in-memory and SQL order stores call into these checks so that the
compare-and-set they perform enforces the same rules.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from .domain import DeliveryState, OrderState, VisibilityStatus
from .errors import ConflictError

ORDER_TRANSITIONS: Dict[OrderState, FrozenSet[OrderState]] = {
    OrderState.PENDING: frozenset({OrderState.ACCEPTED, OrderState.CANCELLED}),
    OrderState.ACCEPTED: frozenset({OrderState.CANCELLED}),
    OrderState.CANCELLED: frozenset(),
}

DELIVERY_TRANSITIONS: Dict[DeliveryState, FrozenSet[DeliveryState]] = {
    DeliveryState.ON_TRACK: frozenset({DeliveryState.AT_RISK, DeliveryState.DELIVERED, DeliveryState.FAILED}),
    DeliveryState.AT_RISK: frozenset({DeliveryState.DELIVERED, DeliveryState.FAILED}),
    DeliveryState.DELIVERED: frozenset(),
    DeliveryState.FAILED: frozenset(),
}

TERMINAL_DELIVERY_STATES = frozenset({DeliveryState.DELIVERED, DeliveryState.FAILED})


def canonical_delivery_state(status: str) -> Optional[DeliveryState]:
    try:
        return DeliveryState(status.strip().upper())
    except ValueError:
        return None


def check_acceptance(
    order_state: OrderState,
    visibility_status: VisibilityStatus,
    accepted_by: Optional[str],
    supplier_id: str,
) -> None:
    if order_state == OrderState.ACCEPTED:
        if accepted_by and accepted_by != supplier_id:
            raise ConflictError("Order already accepted by another supplier")
        raise ConflictError("Order already accepted")
    if OrderState.ACCEPTED not in ORDER_TRANSITIONS[order_state]:
        raise ConflictError(f"Order is {order_state.value} and can no longer be accepted")
    if visibility_status != VisibilityStatus.VISIBLE:
        raise ConflictError(f"Offer already {visibility_status.value.lower()}")


def check_visibility_change(current: VisibilityStatus) -> None:
    if current != VisibilityStatus.VISIBLE:
        raise ConflictError(f"Offer already {current.value.lower()}")


def check_cancellation(order_state: OrderState) -> None:
    if OrderState.CANCELLED not in ORDER_TRANSITIONS[order_state]:
        raise ConflictError(f"Order is {order_state.value} and cannot be cancelled")


def check_delivery_transition(current: DeliveryState, target: DeliveryState) -> None:
    if current in TERMINAL_DELIVERY_STATES:
        raise ConflictError(f"Delivery already {current.value}")
    if target == current:
        return
    if target not in DELIVERY_TRANSITIONS[current]:
        raise ConflictError(f"Illegal delivery transition {current.value} -> {target.value}")

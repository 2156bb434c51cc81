from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from .clock import Clock
from .domain import Event, EventType
from .id_provider import IdProvider
from .repositories import EventBus, EventLog


class AuditTrail:
    """Appends events to the log and fans them out to live subscribers."""

    def __init__(self, events: EventLog, bus: EventBus, clock: Clock, ids: IdProvider) -> None:
        self._events = events
        self._bus = bus
        self._clock = clock
        self._ids = ids

    def record(
        self,
        event_type: Union[EventType, str],
        order_id: Optional[str],
        details: Optional[Dict[str, Any]] = None,
    ) -> Event:
        tag = event_type.value if isinstance(event_type, EventType) else event_type
        event = self._events.append(
            Event(
                id=self._ids.new_id(),
                type=tag,
                order_id=order_id,
                details=details or {},
                timestamp=self._clock.now(),
            )
        )
        self._bus.publish(event)
        return event

    def timeline(self, order_id: str) -> List[Event]:
        return self._events.list_for_order(order_id)

from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import uuid4


class IdProvider(Protocol):
    def new_id(self) -> str: ...

    def new_order_number(self, now: datetime) -> str: ...


class UUIDProvider:
    def new_id(self) -> str:
        return uuid4().hex

    def new_order_number(self, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        return f"ORD-{millis}-{uuid4().hex[:4].upper()}"

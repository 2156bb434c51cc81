from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Protocol, Set

from .domain import Order, OrderVisibility, StockStatus, Supplier, VisibilityStatus
from .logging import ServiceLogger
from .repositories import Directory, OrderRepository, SupplierStockRepository

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


class EligibilityResolver(Protocol):
    def resolve_eligible_suppliers(self, order: Order) -> Set[str]: ...


def normalize_area(value: str) -> str:
    return _WHITESPACE.sub(" ", _PUNCTUATION.sub("", value.upper())).strip()


@dataclass
class SupplierRejection:
    supplier_id: str
    reasons: List[str] = field(default_factory=list)


class CatalogEligibilityResolver:
    """Service-area plus catalog/stock matching against the supplier directory."""

    def __init__(self, directory: Directory, stock: SupplierStockRepository) -> None:
        self._directory = directory
        self._stock = stock
        self._log = ServiceLogger("eligibility")

    def resolve_eligible_suppliers(self, order: Order) -> Set[str]:
        eligible: Set[str] = set()
        rejected: List[SupplierRejection] = []

        for supplier in self._directory.list_suppliers():
            reasons = self.rejection_reasons(order, supplier)
            if reasons:
                rejected.append(SupplierRejection(supplier_id=supplier.id, reasons=reasons))
            else:
                eligible.add(supplier.id)

        if not eligible:
            self._log.info(
                "No eligible suppliers",
                order_id=order.id,
                skus=",".join(item.sku for item in order.items),
                location=order.delivery_location,
                partial_allowed=order.partial_allowed,
                rejected=len(rejected),
            )
            for rejection in rejected:
                self._log.debug("Supplier rejected", supplier_id=rejection.supplier_id, reasons="; ".join(rejection.reasons))
        return eligible

    def rejection_reasons(self, order: Order, supplier: Supplier) -> List[str]:
        reasons: List[str] = []
        if not _serves(order.delivery_location, supplier.service_areas):
            reasons.append(
                f"Service area mismatch (order: {order.delivery_location}, "
                f"supplier areas: {', '.join(supplier.service_areas)})"
            )

        # Keep collecting so the log explains every failed rule.
        for item in order.items:
            stock = self._stock.get(supplier.id, item.sku)
            if not stock:
                reasons.append(f"SKU {item.sku} not in supplier catalog")
            elif stock.status == StockStatus.UNAVAILABLE:
                reasons.append(f"SKU {item.sku} inventory UNAVAILABLE")
            elif stock.status == StockStatus.LOW and not order.partial_allowed:
                reasons.append(f"SKU {item.sku} status is LOW but partial orders not allowed")
        return reasons


def _serves(location: str, service_areas: Iterable[str]) -> bool:
    wanted = normalize_area(location)
    if not wanted:
        return False
    for area in service_areas:
        normalized = normalize_area(area)
        if normalized and (normalized in wanted or wanted in normalized):
            return True
    return False


class VisibilityFanout:
    def __init__(self, orders: OrderRepository) -> None:
        self._orders = orders

    def distribute(self, order: Order, supplier_ids: Iterable[str], now: datetime) -> List[OrderVisibility]:
        rows = [
            OrderVisibility(
                order_id=order.id,
                supplier_id=supplier_id,
                status=VisibilityStatus.VISIBLE,
                created_at=now,
                updated_at=now,
            )
            for supplier_id in sorted(set(supplier_ids))
        ]
        return self._orders.add_visibilities(rows)

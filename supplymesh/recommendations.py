from __future__ import annotations

from collections import Counter
from typing import Dict, List

from .domain import OrderState, Recommendation, StockStatus, SupplierStock
from .pricing import simulated_price
from .repositories import Directory, OrderRepository, SkuCatalog, SupplierStockRepository

MIN_HISTORY_MATCHES = 5
SUPPLEMENT_LIMIT = 10
DEFAULT_LIMIT = 6
UNKNOWN_SUPPLIER = "Unknown Supplier"


class RecommendationService:
    """Suggests supplier positions to a vendor, ranked by units sold across accepted orders."""

    def __init__(
        self,
        *,
        orders: OrderRepository,
        supplier_stock: SupplierStockRepository,
        catalog: SkuCatalog,
        directory: Directory,
        limit: int = DEFAULT_LIMIT,
    ) -> None:
        self._orders = orders
        self._supplier_stock = supplier_stock
        self._catalog = catalog
        self._directory = directory
        self._limit = limit

    def for_vendor(self, vendor_id: str) -> List[Recommendation]:
        past_skus = {item.sku for order in self._orders.list_by_vendor(vendor_id) for item in order.items}

        candidates: List[SupplierStock] = []
        if past_skus:
            candidates = [
                stock
                for stock in self._supplier_stock.list_by_status([StockStatus.AVAILABLE, StockStatus.LOW])
                if stock.sku in past_skus
            ]

        # Thin or missing history is topped up with positions the vendor has not bought before.
        if len(candidates) < MIN_HISTORY_MATCHES:
            seen = {(stock.supplier_id, stock.sku) for stock in candidates}
            extra = [
                stock
                for stock in self._supplier_stock.list_by_status([StockStatus.AVAILABLE])
                if (stock.supplier_id, stock.sku) not in seen
            ]
            candidates.extend(extra[:SUPPLEMENT_LIMIT])

        demand = self._demand()
        supplier_names: Dict[str, str] = {}
        recommendations = [self._recommend(stock, demand, supplier_names) for stock in candidates]
        recommendations.sort(key=lambda item: item.total_sold, reverse=True)
        return recommendations[: self._limit]

    def _demand(self) -> Counter:
        sold: Counter = Counter()
        for order in self._orders.list_by_state(OrderState.ACCEPTED):
            for item in order.items:
                sold[item.sku] += item.quantity
        return sold

    def _recommend(self, stock: SupplierStock, demand: Counter, supplier_names: Dict[str, str]) -> Recommendation:
        sku = self._catalog.get(stock.sku)
        if stock.supplier_id not in supplier_names:
            supplier = self._directory.get_supplier(stock.supplier_id)
            supplier_names[stock.supplier_id] = supplier.name if supplier and supplier.name else UNKNOWN_SUPPLIER
        price = sku.unit_price if sku and sku.unit_price is not None else simulated_price(stock.sku)
        return Recommendation(
            sku=stock.sku,
            name=sku.name if sku else stock.sku,
            supplier_id=stock.supplier_id,
            supplier_name=supplier_names[stock.supplier_id],
            price=price,
            total_sold=demand[stock.sku],
        )

from datetime import timedelta

from supplymesh.domain import OrderCreate, OrderItem, Sku, StockStatus, SupplierStock
from supplymesh.recommendations import RecommendationService
from supplymesh.repositories import (
    InMemoryDirectory,
    InMemoryOrderRepository,
    InMemorySkuCatalog,
    InMemorySupplierStockRepository,
)

VENDOR = "ven-oak-street"
OTHER_VENDOR = "ven-sandton-builders"
GAUTENG = "sup-gauteng-hardware"
JOBURG = "sup-joburg-fasteners"
CAPE = "sup-cape-steel"


def place(container, clock, *items, vendor_id=VENDOR):
    return container.order_service.place(
        OrderCreate(
            vendor_id=vendor_id,
            items=[OrderItem(sku=sku, quantity=quantity) for sku, quantity in items],
            delivery_location="Pretoria",
            delivery_address="12 Oak St",
            required_delivery_date=clock.now() + timedelta(days=3),
        )
    )


def positions(recommendations):
    return [(item.supplier_id, item.sku) for item in recommendations]


class TestRecommendations:
    def test_thin_history_is_topped_up_with_available_stock(self, container, clock):
        order = place(container, clock, ("M8-BOLT-20", 10))
        container.order_service.accept(order.id, GAUTENG)

        result = container.recommendation_service.for_vendor(VENDOR)

        assert positions(result) == [
            (GAUTENG, "M8-BOLT-20"),
            (JOBURG, "M8-BOLT-20"),
            (CAPE, "STEEL-ROD-10MM-6M"),
            (CAPE, "WELDING-ROD-3.2MM-5KG"),
            (GAUTENG, "TAPE-MEASURE-5M"),
            (GAUTENG, "WOOD-SCREW-50"),
        ]
        assert [item.total_sold for item in result[:3]] == [10, 10, 0]
        assert result[0].supplier_name == "Gauteng Hardware Supply"
        assert result[0].name == "M8 x 20mm Steel Bolt"
        tape = result[4]
        assert tape.price == 89.0

    def test_rich_history_is_not_supplemented(self, container, clock):
        place(
            container,
            clock,
            ("M8-BOLT-20", 10),
            ("WOOD-SCREW-50", 5),
            ("HAMMER-CLAW-16OZ", 1),
            ("TAPE-MEASURE-5M", 2),
        )

        result = container.recommendation_service.for_vendor(VENDOR)

        assert len(result) == 5
        assert (GAUTENG, "HAMMER-CLAW-16OZ") in positions(result)
        assert CAPE not in {item.supplier_id for item in result}
        assert all(item.total_sold == 0 for item in result)

    def test_vendor_without_history_sees_available_stock_only(self, container):
        result = container.recommendation_service.for_vendor("ven-popup-tools")

        assert len(result) == 6
        assert "HAMMER-CLAW-16OZ" not in {item.sku for item in result}
        assert "ELECTRICAL-TAPE-RED-19MM" not in {item.sku for item in result}

    def test_demand_counts_only_accepted_orders(self, container, clock):
        accepted = place(container, clock, ("DRILL-BIT-SET-10PC", 4), vendor_id=OTHER_VENDOR)
        container.order_service.accept(accepted.id, JOBURG)
        place(container, clock, ("DRILL-BIT-SET-10PC", 50), vendor_id=OTHER_VENDOR)
        cancelled = place(container, clock, ("DRILL-BIT-SET-10PC", 7), vendor_id=OTHER_VENDOR)
        container.order_service.cancel(cancelled.id)

        result = container.recommendation_service.for_vendor("ven-popup-tools")

        assert positions(result)[0] == (JOBURG, "DRILL-BIT-SET-10PC")
        assert result[0].total_sold == 4

    def test_unlisted_supplier_falls_back_to_placeholder_name(self, clock):
        service = RecommendationService(
            orders=InMemoryOrderRepository(),
            supplier_stock=InMemorySupplierStockRepository(
                [
                    SupplierStock(
                        supplier_id="sup-closed",
                        sku="GRIT-80",
                        quantity=30,
                        status=StockStatus.AVAILABLE,
                        updated_at=clock.now(),
                    )
                ]
            ),
            catalog=InMemorySkuCatalog([Sku(code="GRIT-80", name="80 Grit Sandpaper")]),
            directory=InMemoryDirectory([], []),
        )

        [item] = service.for_vendor(VENDOR)

        assert item.supplier_name == "Unknown Supplier"
        assert item.price > 0
        assert item.total_sold == 0

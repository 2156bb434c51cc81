from datetime import timedelta

import pytest

from supplymesh.audit import AuditTrail
from supplymesh.domain import (
    Address,
    DeliveryStatusUpdate,
    Order,
    OrderCreate,
    OrderItem,
    RetailerStock,
    RetailerStockUpdate,
    Sku,
    StockStatus,
    SupplierStockUpdate,
    Vendor,
)
from supplymesh.errors import ValidationError
from supplymesh.id_provider import UUIDProvider
from supplymesh.reorder import AutoReorderTrigger, VendorAddressPolicy
from supplymesh.repositories import (
    InMemoryDirectory,
    InMemoryEventBus,
    InMemoryEventLog,
    InMemoryOrderRepository,
    InMemoryRetailerStockRepository,
    InMemorySkuCatalog,
)


def low_stock_update(**overrides):
    data = {
        "vendor_id": "ven-oak-street",
        "sku": "M8-BOLT-20",
        "quantity": 2,
        "reorder_threshold": 10,
        "reorder_quantity": 55,
        "auto_reorder_enabled": True,
    }
    data.update(overrides)
    return RetailerStockUpdate(**data)


class TestAutoReorder:
    def test_low_stock_places_one_order(self, container, clock):
        result = container.inventory_service.update_retailer_stock(low_stock_update())

        outcome = result.auto_reorder
        assert outcome.triggered is True
        assert outcome.success is True
        order = outcome.order
        assert order is not None
        assert len(order.items) == 1
        assert order.items[0].sku == "M8-BOLT-20"
        assert order.items[0].quantity == 55
        assert order.delivery_location == "Pretoria"
        assert order.delivery_address == "12 Oak St"
        assert order.partial_allowed is False
        assert (order.required_delivery_date - clock.now()).total_seconds() == 24 * 3600

        events = container.order_service.timeline(order.id)
        linked = [event for event in events if event.type == "auto_reorder_triggered"]
        assert len(linked) == 1
        assert linked[0].details["order_number"] == order.order_number

        assert result.stock.quantity == 2
        assert result.stock.last_auto_order_id == order.id
        assert len(container.order_service.list_orders("ven-oak-street")) == 1

    def test_vendor_without_address_reports_failure(self, container):
        result = container.inventory_service.update_retailer_stock(
            RetailerStockUpdate(vendor_id="ven-popup-tools", sku="HAMMER-CLAW-16OZ", quantity=2)
        )

        assert result.auto_reorder.triggered is True
        assert result.auto_reorder.success is False
        assert result.auto_reorder.order is None
        assert container.order_service.list_orders("ven-popup-tools") == []

        stock = container.inventory_service.retailer_stock("ven-popup-tools")
        assert [(item.sku, item.quantity) for item in stock] == [("HAMMER-CLAW-16OZ", 2)]

    def test_outstanding_auto_order_suppresses_repeat(self, container):
        first = container.inventory_service.update_retailer_stock(low_stock_update())
        second = container.inventory_service.update_retailer_stock(low_stock_update(quantity=1))

        assert second.auto_reorder.triggered is False
        assert first.auto_reorder.order.order_number in second.auto_reorder.message
        assert len(container.order_service.list_orders("ven-oak-street")) == 1

    def test_finished_auto_order_allows_next_one(self, container):
        first = container.inventory_service.update_retailer_stock(low_stock_update())
        container.order_service.advance_delivery(first.auto_reorder.order.id, DeliveryStatusUpdate(status="DELIVERED"))

        second = container.inventory_service.update_retailer_stock(low_stock_update(quantity=1))

        assert second.auto_reorder.success is True
        assert len(container.order_service.list_orders("ven-oak-street")) == 2

    def test_above_threshold_does_not_fire(self, container):
        result = container.inventory_service.update_retailer_stock(low_stock_update(quantity=11))

        assert result.auto_reorder.triggered is False
        assert container.order_service.list_orders("ven-oak-street") == []

    def test_threshold_is_inclusive(self, container):
        result = container.inventory_service.update_retailer_stock(low_stock_update(quantity=10))
        assert result.auto_reorder.success is True

    def test_disabled_position_does_not_fire(self, container):
        result = container.inventory_service.update_retailer_stock(
            RetailerStockUpdate(vendor_id="ven-oak-street", sku="WOOD-SCREW-50", quantity=0)
        )
        assert result.auto_reorder.triggered is False
        assert result.stock.quantity == 0

    def test_new_position_uses_defaults(self, container):
        result = container.inventory_service.update_retailer_stock(
            RetailerStockUpdate(vendor_id="ven-sandton-builders", sku="DRILL-BIT-SET-10PC", quantity=40)
        )
        assert result.stock.reorder_threshold == 10
        assert result.stock.reorder_quantity == 50
        assert result.stock.auto_reorder_enabled is False

    def test_unknown_sku_is_rejected(self, container):
        with pytest.raises(ValidationError):
            container.inventory_service.update_retailer_stock(low_stock_update(sku="NOPE"))


class FailingPlacer:
    def place(self, payload):
        raise RuntimeError("catalog offline")


class RecordingPlacer:
    def __init__(self, clock):
        self.clock = clock
        self.placed = []

    def place(self, payload):
        order = Order(
            id=f"ord-{len(self.placed) + 1}",
            vendor_id=payload.vendor_id,
            order_number=f"ORD-TEST-{len(self.placed) + 1}",
            items=payload.items,
            delivery_location=payload.delivery_location,
            delivery_address=payload.delivery_address,
            required_delivery_date=payload.required_delivery_date,
            created_at=self.clock.now(),
            updated_at=self.clock.now(),
        )
        self.placed.append(order)
        return order


class ReadOnlyStock(InMemoryRetailerStockRepository):
    def update(self, vendor_id, sku, changes):
        raise RuntimeError("stock store is read-only")


class TestTriggerFailures:
    def make_trigger(self, clock, stock, placer=None, stock_repository=None):
        ids = UUIDProvider()
        vendor = Vendor(id="ven-1", name="Vendor One", address=Address.from_text("12 Oak St, Pretoria"))
        return AutoReorderTrigger(
            placer=placer or FailingPlacer(),
            orders=InMemoryOrderRepository(),
            stock=stock_repository or InMemoryRetailerStockRepository([stock]),
            directory=InMemoryDirectory([vendor], []),
            catalog=InMemorySkuCatalog([Sku(code="M8-BOLT-20", name="M8 bolt")]),
            audit=AuditTrail(InMemoryEventLog(), InMemoryEventBus(), clock, ids),
            clock=clock,
            policy=VendorAddressPolicy("Unassigned"),
        )

    def test_place_failure_is_reported_not_raised(self, clock):
        stock = RetailerStock(
            vendor_id="ven-1",
            sku="M8-BOLT-20",
            quantity=1,
            reorder_threshold=5,
            auto_reorder_enabled=True,
            updated_at=clock.now(),
        )
        outcome = self.make_trigger(clock, stock).evaluate(stock)

        assert outcome.triggered is True
        assert outcome.success is False
        assert "catalog offline" in outcome.message

    def test_bookkeeping_failure_still_reports_the_order(self, clock):
        stock = RetailerStock(
            vendor_id="ven-1",
            sku="M8-BOLT-20",
            quantity=1,
            reorder_threshold=5,
            auto_reorder_enabled=True,
            updated_at=clock.now(),
        )
        placer = RecordingPlacer(clock)
        trigger = self.make_trigger(clock, stock, placer=placer, stock_repository=ReadOnlyStock([stock]))

        outcome = trigger.evaluate(stock)

        assert outcome.triggered is True
        assert outcome.success is True
        assert outcome.order == placer.placed[0]
        assert "bookkeeping incomplete" in outcome.message

    def test_order_link_keeps_a_later_stock_edit(self, clock):
        stock = RetailerStock(
            vendor_id="ven-1",
            sku="M8-BOLT-20",
            quantity=1,
            reorder_threshold=5,
            auto_reorder_enabled=True,
            updated_at=clock.now(),
        )
        repository = InMemoryRetailerStockRepository([stock])
        placer = RecordingPlacer(clock)

        class EditDuringPlacement:
            def place(self, payload):
                repository.update("ven-1", "M8-BOLT-20", {"quantity": 300, "auto_reorder_enabled": False})
                return placer.place(payload)

        trigger = self.make_trigger(clock, stock, placer=EditDuringPlacement(), stock_repository=repository)
        outcome = trigger.evaluate(stock)

        saved = repository.get("ven-1", "M8-BOLT-20")
        assert outcome.success is True
        assert saved.last_auto_order_id == outcome.order.id
        assert saved.quantity == 300
        assert saved.auto_reorder_enabled is False


class TestDeliveryLocationPolicy:
    def test_area_from_last_address_segment(self):
        vendor = Vendor(id="v", name="V", address=Address.from_text("Unit 4, 12 Oak St, Pretoria"))
        location = VendorAddressPolicy("Unassigned").resolve(vendor)
        assert location.area == "Pretoria"
        assert location.street == "Unit 4, 12 Oak St"

    def test_single_segment_address_uses_default_area(self):
        vendor = Vendor(id="v", name="V", address=Address.from_text("12 Oak St"))
        location = VendorAddressPolicy("Unassigned").resolve(vendor)
        assert location.area == "Unassigned"
        assert location.street == "12 Oak St"

    def test_missing_address(self):
        assert VendorAddressPolicy("Unassigned").resolve(Vendor(id="v", name="V")) is None
        assert VendorAddressPolicy("Unassigned").resolve(None) is None


class TestSupplierStock:
    def test_status_derived_from_quantity(self, container):
        service = container.inventory_service
        low = service.update_supplier_stock(
            SupplierStockUpdate(supplier_id="sup-cape-steel", sku="STEEL-ROD-10MM-6M", quantity=4)
        )
        gone = service.update_supplier_stock(
            SupplierStockUpdate(supplier_id="sup-cape-steel", sku="STEEL-ROD-10MM-6M", quantity=0)
        )
        new = service.update_supplier_stock(
            SupplierStockUpdate(supplier_id="sup-cape-steel", sku="M8-BOLT-20", quantity=500)
        )

        assert low.status == StockStatus.LOW
        assert gone.status == StockStatus.UNAVAILABLE
        assert new.status == StockStatus.AVAILABLE
        skus = [item.sku for item in service.supplier_stock("sup-cape-steel")]
        assert "M8-BOLT-20" in skus

    def test_new_supplier_stock_changes_eligibility(self, container, clock):
        container.inventory_service.update_supplier_stock(
            SupplierStockUpdate(supplier_id="sup-cape-steel", sku="M8-BOLT-20", quantity=500)
        )
        order = container.order_service.place(
            OrderCreate(
                vendor_id="ven-oak-street",
                items=[OrderItem(sku="M8-BOLT-20", quantity=3)],
                delivery_location="Cape Town",
                required_delivery_date=clock.now() + timedelta(days=2),
            )
        )
        assert [row.supplier_id for row in container.order_service.visibility(order.id)] == ["sup-cape-steel"]

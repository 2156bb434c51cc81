from __future__ import annotations

from datetime import datetime

from sqlalchemy import select

from ..seed import load_seed
from .db import Database
from .models import RetailerStockRecord, SkuRecord, SupplierRecord, SupplierStockRecord, VendorRecord


def seed_if_empty(db: Database, seed_path: str, now: datetime) -> None:
    seed = load_seed(seed_path, now)

    with db.session() as session:
        existing = session.execute(select(SkuRecord.code).limit(1)).first()
        if existing:
            return
        session.add_all([SkuRecord(code=sku.code, name=sku.name, unit_price=sku.unit_price) for sku in seed.skus])
        session.add_all(
            [
                VendorRecord(
                    id=vendor.id,
                    name=vendor.name,
                    email=vendor.email,
                    street=vendor.address.street if vendor.address else None,
                    area=vendor.address.area if vendor.address else None,
                    city=vendor.address.city if vendor.address else None,
                )
                for vendor in seed.vendors
            ]
        )
        session.add_all(
            [
                SupplierRecord(
                    id=supplier.id,
                    name=supplier.name,
                    email=supplier.email,
                    street=supplier.address.street if supplier.address else None,
                    area=supplier.address.area if supplier.address else None,
                    city=supplier.address.city if supplier.address else None,
                    service_areas=supplier.service_areas,
                )
                for supplier in seed.suppliers
            ]
        )
        session.flush()
        session.add_all(
            [
                SupplierStockRecord(
                    supplier_id=stock.supplier_id,
                    sku=stock.sku,
                    quantity=stock.quantity,
                    status=stock.status.value,
                    reorder_threshold=stock.reorder_threshold,
                    updated_at=stock.updated_at,
                )
                for stock in seed.supplier_stock
            ]
        )
        session.add_all(
            [
                RetailerStockRecord(
                    vendor_id=stock.vendor_id,
                    sku=stock.sku,
                    quantity=stock.quantity,
                    reorder_threshold=stock.reorder_threshold,
                    reorder_quantity=stock.reorder_quantity,
                    auto_reorder_enabled=stock.auto_reorder_enabled,
                    updated_at=stock.updated_at,
                )
                for stock in seed.retailer_stock
            ]
        )

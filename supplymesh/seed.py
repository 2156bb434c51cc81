from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from .domain import Address, RetailerStock, Sku, StockStatus, Supplier, SupplierStock, Vendor


class SupplierStockSeed(BaseModel):
    sku: str
    quantity: int
    status: StockStatus
    reorder_threshold: int = 10


class SupplierSeed(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    address: Optional[str] = None
    service_areas: List[str] = Field(default_factory=list)
    stock: List[SupplierStockSeed] = Field(default_factory=list)


class VendorSeed(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    address: Optional[str] = None


class RetailerStockSeed(BaseModel):
    vendor_id: str
    sku: str
    quantity: int
    reorder_threshold: int = 10
    reorder_quantity: Optional[int] = None
    auto_reorder_enabled: bool = False


class DirectorySeed(BaseModel):
    skus: List[Sku] = Field(default_factory=list)
    suppliers: List[SupplierSeed] = Field(default_factory=list)
    vendors: List[VendorSeed] = Field(default_factory=list)
    retailer_stock: List[RetailerStockSeed] = Field(default_factory=list)


class SeedData(BaseModel):
    skus: List[Sku]
    vendors: List[Vendor]
    suppliers: List[Supplier]
    supplier_stock: List[SupplierStock]
    retailer_stock: List[RetailerStock]


def load_seed(path: str, now: datetime) -> SeedData:
    seed = DirectorySeed(**json.loads(Path(path).read_text(encoding="utf-8")))
    return SeedData(
        skus=seed.skus,
        vendors=[
            Vendor(id=item.id, name=item.name, email=item.email, address=Address.from_text(item.address))
            for item in seed.vendors
        ],
        suppliers=[
            Supplier(
                id=item.id,
                name=item.name,
                email=item.email,
                address=Address.from_text(item.address),
                service_areas=item.service_areas,
            )
            for item in seed.suppliers
        ],
        supplier_stock=[
            SupplierStock(supplier_id=supplier.id, updated_at=now, **stock.model_dump())
            for supplier in seed.suppliers
            for stock in supplier.stock
        ],
        retailer_stock=[RetailerStock(updated_at=now, **item.model_dump()) for item in seed.retailer_stock],
    )

from __future__ import annotations

from .domain import Order, OrderItem

TAX_MULTIPLIER = 1.08
SIMULATED_PRICE_FLOOR = 50
SIMULATED_PRICE_SPREAD = 500


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def sku_hash(code: str) -> int:
    """Classic ``h * 31 + c`` string hash with 32-bit shift semantics."""
    value = 0
    for char in code:
        value = ord(char) + _to_int32(_to_int32(value) << 5) - value
    return value


def simulated_price(code: str) -> float:
    """Stable stand-in price for line items that carry none."""
    return float(abs(sku_hash(code)) % SIMULATED_PRICE_SPREAD + SIMULATED_PRICE_FLOOR)


def line_price(item: OrderItem) -> float:
    if item.unit_price is not None:
        return float(item.unit_price)
    return simulated_price(item.sku)


def order_subtotal(order: Order) -> float:
    if order.subtotal:
        return float(order.subtotal)
    return sum(line_price(item) * item.quantity for item in order.items)


def with_tax(amount: float) -> float:
    return amount * TAX_MULTIPLIER


def order_total_with_tax(order: Order) -> float:
    return with_tax(order_subtotal(order))

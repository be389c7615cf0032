"""Validation of the cart snapshot posted to checkout.

The cart and liked items live only in the browser (``static/cart.js``). The
server sees the cart once, as the ``items`` list of a checkout request.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List

from .errors import ValidationError


@dataclass(frozen=True)
class CartLine:
    id: int
    name: str
    price: float      # major units
    quantity: int = 1


def _parse_price(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("price must be a number")
    if isinstance(value, str):
        value = value.strip()
    price = float(value)
    if math.isnan(price) or math.isinf(price) or price < 0:
        raise ValueError("price must be a non-negative number")
    return price


def _parse_quantity(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("quantity must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError("quantity must be an integer")
    qty = int(value)
    if qty < 1:
        raise ValueError("quantity must be at least 1")
    return qty


def line_from_item(raw: Any) -> CartLine:
    if not isinstance(raw, dict):
        raise ValidationError("Invalid cart item")
    try:
        pid = int(raw["id"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("Invalid cart item id")
    try:
        price = _parse_price(raw.get("price"))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid price for item {pid}: {e}")
    try:
        qty = _parse_quantity(raw.get("quantity", 1))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid quantity for item {pid}: {e}")
    name = str(raw.get("name") or "").strip() or f"Product {pid}"
    return CartLine(id=pid, name=name, price=price, quantity=qty)


def lines_from_items(items: Any) -> List[CartLine]:
    """Validate a posted ``items`` list; absent or empty means an empty cart."""
    if not items or not isinstance(items, list):
        raise ValidationError("Cart is empty")
    return [line_from_item(raw) for raw in items]

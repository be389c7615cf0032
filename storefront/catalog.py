from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)


def format_price(cents: int) -> str:
    """Format minor units as a dollar amount: 1999 -> "$19.99"."""
    try:
        v = int(cents)
    except (TypeError, ValueError):
        v = 0
    return f"${v / 100:,.2f}"


# -------------------------
# Model
# -------------------------
@dataclass(frozen=True)
class Product:
    id: int
    name: str
    price: int                   # cents
    image: str = ""
    download: str = ""           # asset filename under DIGITAL_DIR

    def display_price(self) -> str:
        return format_price(self.price)

    def to_json(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("download", None)
        return data


def _product_from_record(raw: Any) -> Optional[Product]:
    if not isinstance(raw, dict):
        return None
    try:
        pid = int(raw["id"])
        price = int(raw.get("price", 0))
    except (KeyError, TypeError, ValueError):
        return None
    name = str(raw.get("name") or "").strip()
    if pid <= 0 or price < 0 or not name:
        return None
    return Product(
        id=pid,
        name=name,
        price=price,
        image=str(raw.get("image") or ""),
        download=str(raw.get("download") or "").strip(),
    )


def load_catalog(path: str) -> List[Product]:
    """Load the product list from a JSON file.

    Records that are not well-formed are skipped with a warning; a missing
    or unparsable file gives an empty catalog.
    """
    if not os.path.exists(path):
        log.warning("Catalog file %s not found", path)
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except ValueError as e:
        log.error("Catalog file %s is not valid JSON: %s", path, e)
        return []
    if not isinstance(data, list):
        log.warning("Catalog file %s does not contain a list", path)
        return []

    products: List[Product] = []
    seen = set()
    for raw in data:
        p = _product_from_record(raw)
        if p is None:
            log.warning("Skipping malformed catalog record: %r", raw)
            continue
        if p.id in seen:
            log.warning("Skipping duplicate catalog id %s", p.id)
            continue
        seen.add(p.id)
        products.append(p)
    return products


def find_product(catalog: List[Product], product_id: int) -> Optional[Product]:
    return next((p for p in catalog if p.id == product_id), None)

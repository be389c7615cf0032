from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List

import stripe

from .cart import CartLine
from .errors import ProviderError, ValidationError

log = logging.getLogger(__name__)

PAYMENT_METHOD_TYPES = ["card"]
CHECKOUT_MODE = "payment"


def to_minor_units(price: Any) -> int:
    """Convert a major-unit price to integer cents, rounding half up.

    Goes through the decimal string so 19.995 becomes 2000 rather than the
    1999 that ``round(19.995 * 100)`` gives on binary floats.
    """
    try:
        amount = (Decimal(str(price)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid price: {price!r}")
    return int(amount)


def build_stripe_line_items(lines: List[CartLine], currency: str) -> List[Dict[str, Any]]:
    """Convert cart lines to Stripe Checkout line_items."""
    line_items: List[Dict[str, Any]] = []
    for line in lines:
        line_items.append(
            {
                "quantity": line.quantity,
                "price_data": {
                    "currency": currency,
                    "unit_amount": to_minor_units(line.price),
                    "product_data": {"name": line.name},
                },
            }
        )
    return line_items


def purchased_ids(lines: List[CartLine]) -> List[int]:
    """Distinct product ids, in cart order."""
    ids: List[int] = []
    for line in lines:
        if line.id not in ids:
            ids.append(line.id)
    return ids


def success_url(base_url: str, product_ids: List[int]) -> str:
    # Stripe substitutes {CHECKOUT_SESSION_ID}; it must stay unescaped.
    products = ",".join(str(pid) for pid in product_ids)
    return f"{base_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}&products={products}"


def cancel_url(base_url: str) -> str:
    return f"{base_url}/cart.html"


def create_checkout_session(lines: List[CartLine], *, base_url: str, currency: str = "usd") -> str:
    """Create a Stripe Checkout Session and return its hosted payment URL.

    Each call creates a new session; nothing is cached or deduplicated.
    """
    if not lines:
        raise ValidationError("Cart is empty")

    ids = purchased_ids(lines)
    line_items = build_stripe_line_items(lines, currency)
    try:
        checkout_session = stripe.checkout.Session.create(
            mode=CHECKOUT_MODE,
            payment_method_types=PAYMENT_METHOD_TYPES,
            line_items=line_items,
            # Purchased ids travel with the session so /checkout/success can resolve downloads.
            metadata={"product_ids": json.dumps(ids)},
            success_url=success_url(base_url, ids),
            cancel_url=cancel_url(base_url),
        )
    except stripe.StripeError as e:
        log.error("Stripe checkout session failed: %s", e)
        raise ProviderError("Stripe checkout failed", step="create_session")

    url = getattr(checkout_session, "url", None)
    if not url:
        log.error("Stripe returned a checkout session without a url")
        raise ProviderError("Stripe checkout failed", step="create_session")
    log.info("Created checkout session %s for products %s", getattr(checkout_session, "id", "?"), ids)
    return url


def retrieve_paid_session(session_id: str) -> Any:
    """Fetch a Checkout Session and require it to be paid."""
    try:
        cs = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        log.warning("Could not retrieve checkout session %s: %s", session_id, e)
        raise ValidationError("Invalid session_id")
    if getattr(cs, "payment_status", None) != "paid":
        raise ProviderError("Payment not completed", step="verify_session")
    return cs


def session_product_ids(cs: Any) -> List[int]:
    """Read the product ids stored in session metadata."""
    meta = getattr(cs, "metadata", None) or {}
    try:
        values = json.loads(meta["product_ids"] or "[]")
    except (KeyError, TypeError, ValueError):
        return []
    ids: List[int] = []
    for value in values if isinstance(values, list) else []:
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            continue
    return ids

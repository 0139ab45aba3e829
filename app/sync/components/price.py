# app/sync/components/price.py
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from app.models.catalog import SyncAccount, Variant
from app.sync.components.util import to_float

# explicit compare-at first, then "was" prices that only count when above the selling price
EXPLICIT_COMPARE_KEYS = ("compare_at_price", "sale_compare_at_price", "sale_was_price")
REFERENCE_PRICE_KEYS = ("original_price", "msrp", "rrp")


def money(value: Any) -> str:
    """Format as a 2-decimal string (no scientific notation)."""
    d = Decimal(str(to_float(value) or 0.0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return format(d, "f")


def channel_price(variant: Variant, account: Optional[SyncAccount]) -> float:
    code = account.channel_code if account else None
    return variant.channel_price(code)


def compare_at_price(variant: Variant, price: float) -> Optional[float]:
    attrs: Dict[str, Any] = variant.attributes or {}
    for k in EXPLICIT_COMPARE_KEYS:
        v = to_float(attrs.get(k))
        if v is not None and v > 0:
            return v
    for k in REFERENCE_PRICE_KEYS:
        v = to_float(attrs.get(k))
        if v is not None and v > price:
            return v
    return None


def variant_price_input(variant: Variant, account: Optional[SyncAccount]) -> Dict[str, str]:
    """{'price': '19.99', 'compareAtPrice': '24.99'?} for one local variant."""
    price = channel_price(variant, account)
    out = {"price": money(price)}
    cap = compare_at_price(variant, price)
    if cap is not None:
        out["compareAtPrice"] = money(cap)
    return out

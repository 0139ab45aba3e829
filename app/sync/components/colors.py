# app/sync/components/colors.py
# Partition a product's variants into one group per color.
from __future__ import annotations

import re
from collections import OrderedDict
from typing import Dict, List, Optional

from app.models.catalog import Product, Variant
from app.sync.components.util import words

DEFAULT_COLOR = "Default"

KNOWN_COLORS = [
    "Red", "Blue", "Green", "White", "Black", "Grey", "Gray", "Yellow", "Orange",
    "Purple", "Pink", "Brown", "Cream", "Navy", "Charcoal", "Beige", "Silver",
    "Gold", "Ivory", "Natural", "Teal", "Taupe", "Ochre", "Sage", "Mustard",
]
_KNOWN_COLOR_RE = re.compile(r"\b(" + "|".join(KNOWN_COLORS) + r")\b", re.IGNORECASE)

# Tokens that describe size or units, never a color
SIZE_TOKENS = {
    "cm", "mm", "m", "in", "inch", "inches", "ft", "x",
    "xs", "s", "l", "xl", "xxl", "xxxl",
    "small", "medium", "large", "extra", "mini", "maxi", "standard", "size",
    "wide", "width", "drop", "long", "short", "pack", "set",
}

_ALIASES = {"Gray": "Grey"}


def normalize_color(value: Optional[str]) -> str:
    """' dark  GRAY ' -> 'Dark Grey'; blanks become the Default sentinel."""
    parts = (value or "").split()
    if not parts:
        return DEFAULT_COLOR
    parts = [_ALIASES.get(p.capitalize(), p.capitalize()) for p in parts]
    return " ".join(parts)


def _color_from_known_list(text: str) -> Optional[str]:
    m = _KNOWN_COLOR_RE.search(text or "")
    return m.group(1) if m else None


def _color_from_words(text: str, exclude: set[str]) -> Optional[str]:
    for w in words(text):
        lw = w.lower()
        if len(lw) <= 2 or lw in SIZE_TOKENS or lw in exclude:
            continue
        if any(ch.isdigit() for ch in lw):
            continue
        return w
    return None


class ColorGroupingEngine:
    def __init__(self, default_color: str = DEFAULT_COLOR):
        self.default_color = default_color

    def derive_color(self, variant: Variant, product: Optional[Product] = None) -> str:
        explicit = (variant.color or "").strip()
        if explicit:
            return normalize_color(explicit)

        name = variant.name or ""
        known = _color_from_known_list(name)
        if known:
            return normalize_color(known)

        exclude = {w.lower() for w in words(product.name)} if product else set()
        guessed = _color_from_words(name, exclude)
        if guessed:
            return normalize_color(guessed)

        return self.default_color

    def group(self, product: Product) -> "OrderedDict[str, List[Variant]]":
        buckets: Dict[str, List[Variant]] = {}
        for v in product.variants or []:
            buckets.setdefault(self.derive_color(v, product), []).append(v)
        return OrderedDict((color, buckets[color]) for color in sorted(buckets))

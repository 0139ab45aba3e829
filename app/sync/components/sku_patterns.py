# app/sync/components/sku_patterns.py
# Recover parent SKU / color from marketplace-side variant SKUs, and score
# marketplace products as link candidates for a local product.
from __future__ import annotations

import re
from collections import Counter, OrderedDict
from typing import Any, Dict, List, Optional, Tuple

from app.models.catalog import Product
from app.sync.components.colors import DEFAULT_COLOR, KNOWN_COLORS, normalize_color
from app.sync.components.util import words


def _norm(s: str | None) -> str:
    return "" if s is None else str(s).strip()

def _upper(s: str | None) -> str:
    return _norm(s).upper()


# (name, regex); first match wins, group(1) is the parent
SKU_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("numeric_prefix", re.compile(r"^(\d+)-.+$")),                 # 001-002      -> 001
    ("alnum_prefix", re.compile(r"^([A-Z]+\d+[A-Z0-9]*)-.+$")),    # RB120-BK-60  -> RB120
    ("letter_digit_prefix", re.compile(r"^([A-Z]+)\d+$")),         # MTMSAV225    -> MTMSAV
    ("generic_token", re.compile(r"^([^-]+)-.+$")),                # BLIND-RED    -> BLIND
]

COLOUR_ABBREVIATIONS: Dict[str, str] = {
    "R": "Red", "RD": "Red",
    "B": "Blue", "BL": "Blue", "BLU": "Blue",
    "G": "Green", "GR": "Green", "GRN": "Green",
    "W": "White", "WH": "White", "WHT": "White",
    "BK": "Black", "BLK": "Black",
    "GY": "Grey", "GRY": "Grey",
    "CR": "Cream", "NV": "Navy", "CH": "Charcoal", "BR": "Brown",
    "PK": "Pink", "YL": "Yellow", "OR": "Orange", "PU": "Purple",
    "SV": "Silver", "BG": "Beige", "IV": "Ivory",
}
COLOUR_ABBREVIATIONS.update({c.upper(): normalize_color(c) for c in KNOWN_COLORS})

STOPWORDS = {"with", "from", "that", "this", "your", "for", "and", "the", "pack", "size"}
CATEGORY_KEYWORDS = ("blind", "blinds", "curtain", "curtains", "shade", "shutter", "roller", "venetian", "roman", "vertical")

SCORE_SKU_IN_TITLE = 50
SCORE_SKU_CONTAINMENT = 30
SCORE_NAME_WORD = 10
SCORE_CATEGORY = 5


def _significant_words(text: str | None) -> set[str]:
    return {w.lower() for w in words(text) if len(w) > 3 and w.lower() not in STOPWORDS and not w.isdigit()}


class SkuPatternExtractor:

    def __init__(self, patterns: Optional[List[Tuple[str, re.Pattern]]] = None):
        self.patterns = patterns or SKU_PATTERNS

    # ---------------------------
    # Parent SKU
    # ---------------------------
    def match_pattern(self, sku: str) -> Tuple[Optional[str], Optional[str]]:
        s = _upper(sku)
        if not s:
            return None, None
        for name, rx in self.patterns:
            m = rx.match(s)
            if m:
                return name, m.group(1)
        return None, None

    def extract_parent(self, sku: str) -> Optional[str]:
        return self.match_pattern(sku)[1]

    def infer_parent(self, skus: List[str]) -> Optional[str]:
        """Statistical mode of per-SKU guesses; Counter keeps first-seen order on ties."""
        guesses = Counter()
        for sku in skus or []:
            parent = self.extract_parent(sku)
            if parent:
                guesses[parent] += 1
        if not guesses:
            return None
        return guesses.most_common(1)[0][0]

    def group_by_parent(self, marketplace_products: List[Dict[str, Any]]) -> "OrderedDict[str, List[Dict[str, Any]]]":
        """Group marketplace products ({id,title,variants:[{sku}]}) by inferred parent SKU."""
        groups: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        ungrouped: List[Dict[str, Any]] = []
        for p in marketplace_products or []:
            skus = [v.get("sku") or "" for v in (p.get("variants") or [])]
            parent = self.infer_parent(skus)
            if parent:
                groups.setdefault(parent, []).append(p)
            else:
                ungrouped.append(p)
        if ungrouped:
            groups[""] = ungrouped
        return groups

    # ---------------------------
    # Color
    # ---------------------------
    def extract_color(self, sku: str, parent_sku: Optional[str] = None) -> str:
        s = _upper(sku)
        parent = _upper(parent_sku) or (self.extract_parent(s) or "")
        if parent and s.startswith(parent):
            remainder = s[len(parent):]
        elif parent:
            remainder = s.replace(parent, "", 1)
        else:
            remainder = s

        tokens = [t for t in re.split(r"[-_/\s.]+", remainder) if t]
        for tok in tokens:
            if tok in COLOUR_ABBREVIATIONS:
                return COLOUR_ABBREVIATIONS[tok]
        # "BK120" style tokens carry a size suffix
        for tok in tokens:
            m = re.match(r"^([A-Z]+)\d+$", tok)
            if m and m.group(1) in COLOUR_ABBREVIATIONS:
                return COLOUR_ABBREVIATIONS[m.group(1)]
        return DEFAULT_COLOR

    def color_from_title(self, title: str, product_name: str) -> Optional[str]:
        """'Blackout Blind - Black' -> 'Black'; the bare product name is the Default group."""
        t, name = _norm(title), _norm(product_name)
        if not t:
            return None
        if name and t.lower() == name.lower():
            return DEFAULT_COLOR
        if name:
            m = re.match(r"^" + re.escape(name) + r"\s*-\s*(.+)$", t, re.IGNORECASE)
            if m:
                return normalize_color(m.group(1))
        return None

    # ---------------------------
    # Link candidate scoring
    # ---------------------------
    def score_candidate(self, product: Product, candidate: Dict[str, Any]) -> Dict[str, Any]:
        title = _norm(candidate.get("title"))
        title_l = title.lower()
        local_skus = {_upper(s) for s in product.skus()}
        remote_skus = [_upper(v.get("sku")) for v in (candidate.get("variants") or []) if _norm(v.get("sku"))]

        exact_hits = [s for s in remote_skus if s in local_skus]
        signals: Dict[str, int] = {}

        title_tokens = [_upper(product.parent_sku)] + sorted(local_skus)
        if any(tok and tok.lower() in title_l for tok in title_tokens):
            signals["sku_in_title"] = SCORE_SKU_IN_TITLE

        if any(r in l or l in r for r in remote_skus for l in local_skus):
            signals["variant_sku_containment"] = SCORE_SKU_CONTAINMENT

        overlap = _significant_words(product.name) & _significant_words(title)
        if overlap:
            signals["name_word_overlap"] = SCORE_NAME_WORD * len(overlap)

        category_words = {w.lower() for w in words(str(product.attributes.get("category") or ""))}
        category_words |= {k for k in CATEGORY_KEYWORDS if k in (product.name or "").lower()}
        if any(k in title_l for k in category_words if len(k) > 2):
            signals["category_keyword"] = SCORE_CATEGORY

        return {
            "id": candidate.get("id"),
            "title": title,
            "handle": candidate.get("handle"),
            "score": sum(signals.values()),
            "signals": signals,
            "exact_sku_hits": exact_hits,
            "name_overlap": sorted(overlap),
        }

    def rank_candidates(self, product: Product, candidates: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        scored = [self.score_candidate(product, c) for c in candidates or []]
        scored = [s for s in scored if s["exact_sku_hits"]]
        scored.sort(key=lambda s: s["score"], reverse=True)
        return scored

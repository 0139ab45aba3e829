# app/sync/components/util.py
from __future__ import annotations

import re
import time
import unicodedata
from typing import Any, Iterable, List

def slugify(text: str | None) -> str:
    s = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    s = re.sub(r"[^a-zA-Z0-9]+", "-", s.lower())
    return s.strip("-")

def to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

def format_dimension(value: float) -> str:
    """120.0 -> '120cm', 92.5 -> '92.5cm'"""
    v = float(value)
    return f"{int(v)}cm" if v.is_integer() else f"{v:g}cm"

def unique_sorted_numbers(values: Iterable[Any]) -> List[float]:
    seen = {f for f in (to_float(v) for v in values) if f is not None}
    return sorted(seen)

def now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

def words(text: str | None) -> List[str]:
    return re.findall(r"[A-Za-z0-9]+", text or "")

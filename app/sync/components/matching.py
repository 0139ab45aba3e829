# app/sync/components/matching.py
# Pair local variant payloads with live marketplace variants.
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


def _sku(obj: Any) -> str:
    raw = obj.get("sku") if isinstance(obj, dict) else getattr(obj, "sku", None)
    return (raw or "").strip()


@dataclass
class VariantPairing:
    pairs: List[Tuple[Any, Dict[str, Any]]] = field(default_factory=list)
    sku_matched: int = 0
    positional: int = 0
    mismatches: List[Dict[str, Any]] = field(default_factory=list)
    unmatched_local: List[Any] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "paired": len(self.pairs),
            "sku_matched": self.sku_matched,
            "positional": self.positional,
            "mismatches": self.mismatches,
            "unmatched_local_skus": [_sku(l) for l in self.unmatched_local],
        }


def pair_variants(local: List[Any], remote: List[Dict[str, Any]]) -> VariantPairing:
    """
    SKU match first. A remote variant with a blank SKU (freshly auto-generated)
    falls back to the local variant at the same index if that one is unclaimed.
    A remote variant with a SKU that matches nothing is a mismatch and stays unpaired.
    """
    result = VariantPairing()
    local_index = {}
    for i, l in enumerate(local):
        s = _sku(l).upper()
        if s and s not in local_index:
            local_index[s] = i

    claimed: set[int] = set()
    paired_remote: Dict[int, int] = {}

    for ri, r in enumerate(remote):
        s = _sku(r).upper()
        li = local_index.get(s) if s else None
        if li is not None and li not in claimed:
            claimed.add(li)
            paired_remote[ri] = li
            result.sku_matched += 1

    for ri, r in enumerate(remote):
        if ri in paired_remote:
            continue
        s = _sku(r)
        if s:
            result.mismatches.append({"variant_id": r.get("id"), "sku": s, "reason": "sku not found locally"})
            continue
        if ri < len(local) and ri not in claimed:
            claimed.add(ri)
            paired_remote[ri] = ri
            result.positional += 1
        else:
            result.mismatches.append({"variant_id": r.get("id"), "sku": "", "reason": "no local variant at position"})

    for ri in sorted(paired_remote):
        result.pairs.append((local[paired_remote[ri]], remote[ri]))
    result.unmatched_local = [l for i, l in enumerate(local) if i not in claimed]
    return result

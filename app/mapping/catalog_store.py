# app/mapping/catalog_store.py
# Local product catalog kept as one JSON document: {"version", "updated", "products": {id: Product}}.
from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from app.config import settings
from app.mapping.sync_link_store import _atomic_write, _ensure_parent
from app.models.catalog import Product
from app.sync.components.util import now_iso

logger = logging.getLogger("uvicorn.error")

DEFAULT_PATH = Path(settings.CATALOG_PATH)


def _blank() -> Dict[str, Any]:
    return {"version": 1, "updated": now_iso(), "products": {}}

def _load_raw(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return _blank()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as e:
        logger.error("[CATALOG] could not read %s: %s", path, e)
        return _blank()
    if not isinstance(raw, dict) or not isinstance(raw.get("products"), dict):
        return _blank()
    return raw

def _save_raw(path: Path, obj: Dict[str, Any]) -> None:
    obj = dict(obj or {})
    obj["version"] = 1
    obj["updated"] = now_iso()
    _ensure_parent(path)
    _atomic_write(path, json.dumps(obj, ensure_ascii=False, indent=2, default=str))

# -------- Public API --------

def load_product(product_id: Any, path: Path = DEFAULT_PATH) -> Optional[Product]:
    rec = _load_raw(Path(path))["products"].get(str(product_id))
    if not rec:
        return None
    try:
        return Product(**rec)
    except ValidationError as e:
        logger.warning("[CATALOG] ignoring invalid product %s: %s", product_id, e)
        return None

def list_products(path: Path = DEFAULT_PATH) -> List[Product]:
    out: List[Product] = []
    for pid, rec in _load_raw(Path(path))["products"].items():
        try:
            out.append(Product(**rec))
        except ValidationError as e:
            logger.warning("[CATALOG] ignoring invalid product %s: %s", pid, e)
    return out

def upsert_products(products: List[Product], path: Path = DEFAULT_PATH) -> int:
    path = Path(path)
    raw = _load_raw(path)
    for p in products:
        raw["products"][str(p.id)] = p.model_dump(mode="json")
    _save_raw(path, raw)
    return len(products)

def upsert_product(product: Product, path: Path = DEFAULT_PATH) -> Product:
    upsert_products([product], path)
    return product

def delete_product(product_id: Any, path: Path = DEFAULT_PATH) -> bool:
    path = Path(path)
    raw = _load_raw(path)
    if raw["products"].pop(str(product_id), None) is None:
        return False
    _save_raw(path, raw)
    return True

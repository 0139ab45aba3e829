# app/mapping/catalog_import.py
# --------------------------------------------------------------------------------------
# Build catalog Products from a flat CSV / Excel export (one row per variant).
# --------------------------------------------------------------------------------------

import logging
import os
from collections import OrderedDict

import pandas as pd

from app.models.catalog import Product, Variant

logger = logging.getLogger("uvicorn.error")


# Common header spellings seen in exports
COLUMN_ALIASES = {
    "product id": "product_id",
    "product name": "name",
    "title": "name",
    "parent sku": "parent_sku",
    "variant sku": "sku",
    "colour": "color",
    "stock": "stock_level",
    "qty": "stock_level",
    "height": "drop",
}


def _clean(value):
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    s = str(value).strip()
    return s or None


def _number(value):
    v = _clean(value)
    if v is None:
        return None
    try:
        return float(v)
    except ValueError:
        return None


def read_frame(filepath: str) -> pd.DataFrame:
    if not os.path.isfile(filepath):
        raise FileNotFoundError(f"File not found: {filepath}")
    if filepath.lower().endswith((".xlsx", ".xlsm", ".xls")):
        df = pd.read_excel(filepath, engine="openpyxl", dtype=str)
    else:
        df = pd.read_csv(filepath, dtype=str)
    return normalize_columns(df)


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    renamed = {}
    for col in df.columns:
        key = str(col).strip().lower()
        renamed[col] = COLUMN_ALIASES.get(key, key.replace(" ", "_"))
    return df.rename(columns=renamed)


def products_from_frame(df: pd.DataFrame) -> list:
    """
    Rows sharing a product_id become one Product; product-level columns are
    taken from the first row of each group. Rows without a product_id or name
    are skipped.
    """
    df = normalize_columns(df)
    missing = [c for c in ("product_id", "name", "sku") if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    grouped = OrderedDict()
    skipped = 0
    for _, row in df.iterrows():
        pid = _clean(row.get("product_id"))
        name = _clean(row.get("name"))
        if not pid or not name:
            skipped += 1
            continue
        if pid not in grouped:
            grouped[pid] = {
                "id": pid,
                "name": name,
                "description": _clean(row.get("description")),
                "parent_sku": _clean(row.get("parent_sku")),
                "vendor": _clean(row.get("vendor")),
                "image_url": _clean(row.get("image_url")),
                "variants": [],
            }
        sku = _clean(row.get("sku"))
        if not sku:
            skipped += 1
            continue
        grouped[pid]["variants"].append(Variant(
            id=_clean(row.get("variant_id")),
            sku=sku,
            name=_clean(row.get("variant_name")),
            color=_clean(row.get("color")),
            width=_number(row.get("width")),
            drop=_number(row.get("drop")),
            price=_number(row.get("price")) or 0.0,
            stock_level=int(_number(row.get("stock_level")) or 0),
            barcode=_clean(row.get("barcode")),
            weight=_number(row.get("weight")),
        ))

    if skipped:
        logger.warning("[CATALOG] skipped %d rows without product_id, name or sku", skipped)
    return [Product(**p) for p in grouped.values()]


def load_catalog_file(filepath: str) -> list:
    return products_from_frame(read_frame(filepath))

# app/mapping/catalog_api.py
from __future__ import annotations
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from app.mapping.catalog_import import load_catalog_file
from app.mapping.catalog_store import delete_product, list_products, load_product, upsert_products
from app.models.catalog import Product
from app.sync.deps import get_catalog_path, verify_admin

router = APIRouter(prefix="/api/catalog", tags=["Catalog"], dependencies=[Depends(verify_admin)])

class CatalogImport(BaseModel):
    path: str
    dry_run: Optional[bool] = False

@router.get("/products")
def get_products(catalog_path: Path = Depends(get_catalog_path)):
    products = list_products(catalog_path)
    return {"ok": True, "count": len(products), "products": [p.model_dump(mode="json") for p in products]}

@router.get("/products/{product_id}")
def get_product(product_id: str, catalog_path: Path = Depends(get_catalog_path)):
    p = load_product(product_id, catalog_path)
    if not p:
        raise HTTPException(status_code=404, detail="product not found")
    return {"ok": True, "product": p.model_dump(mode="json")}

@router.put("/products")
def put_products(products: List[Product] = Body(...), catalog_path: Path = Depends(get_catalog_path)):
    n = upsert_products(products, catalog_path)
    return {"ok": True, "upserted": n}

@router.delete("/products/{product_id}")
def remove_product(product_id: str, catalog_path: Path = Depends(get_catalog_path)):
    if not delete_product(product_id, catalog_path):
        raise HTTPException(status_code=404, detail="product not found")
    return {"ok": True, "removed": product_id}

@router.post("/import")
def import_catalog(payload: CatalogImport = Body(...), catalog_path: Path = Depends(get_catalog_path)):
    """
    Import a CSV / Excel export (one row per variant) from a path on the server.
    """
    try:
        products = load_catalog_file(payload.path)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if payload.dry_run:
        return {"ok": True, "dry_run": True, "products": len(products),
                "variants": sum(len(p.variants) for p in products)}
    n = upsert_products(products, catalog_path)
    return {"ok": True, "imported": n, "variants": sum(len(p.variants) for p in products)}

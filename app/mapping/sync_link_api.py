# app/mapping/sync_link_api.py
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder

from app.mapping.sync_link_store import SyncLinkStore
from app.models.sync_link import SyncStatus
from app.sync.deps import get_link_store, verify_admin

router = APIRouter(prefix="/api/integration/links", tags=["Sync Links"], dependencies=[Depends(verify_admin)])

@router.get("")
async def list_links(
    account: Optional[str] = Query(None),
    status: Optional[SyncStatus] = Query(None),
    store: SyncLinkStore = Depends(get_link_store),
):
    links = await store.all()
    if account:
        links = [l for l in links if l.account_id == account]
    if status:
        links = [l for l in links if l.status == status]
    return {"ok": True, "count": len(links), "links": [jsonable_encoder(l.to_record()) for l in links]}

@router.get("/{product_id}/{account_id}")
async def get_link(product_id: str, account_id: str, store: SyncLinkStore = Depends(get_link_store)):
    link = await store.get(product_id, account_id)
    if not link:
        raise HTTPException(status_code=404, detail="link not found")
    return {"ok": True, "link": jsonable_encoder(link.to_record())}

@router.delete("/{product_id}/{account_id}")
async def clear_link(product_id: str, account_id: str, store: SyncLinkStore = Depends(get_link_store)):
    """Forget the mapping only; nothing is deleted on the marketplace."""
    async with store.lock(product_id, account_id):
        removed = await store.clear(product_id, account_id)
    if not removed:
        raise HTTPException(status_code=404, detail="link not found")
    return {"ok": True, "removed": f"{product_id}:{account_id}"}

# app/sync/deps.py
# FastAPI dependencies shared by the sync routers (tests override these).
import secrets
from pathlib import Path
from typing import Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from app.config import settings
from app.mapping.sync_link_store import SyncLinkStore, build_link_store
from app.models.catalog import SyncAccount
from app.shopify.gateway import APIGateway
from app.shopify.graphql_client import ShopifyGraphQLGateway

security = HTTPBasic()

def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )

_store: Optional[SyncLinkStore] = None

def get_link_store() -> SyncLinkStore:
    # one instance per process so the per-key locks are shared
    global _store
    if _store is None:
        _store = build_link_store()
    return _store

def get_gateway_factory() -> Callable[[SyncAccount], APIGateway]:
    return ShopifyGraphQLGateway.for_account

def get_catalog_path() -> Path:
    return Path(settings.CATALOG_PATH)

# app/sync/accounts.py
# Sync accounts from settings: the "main" Shopify store plus any SYNC_ACCOUNTS entries.
from typing import Dict, Optional

from app.config import settings
from app.models.catalog import SyncAccount


def load_accounts() -> Dict[str, SyncAccount]:
    accounts: Dict[str, SyncAccount] = {}
    if settings.SHOPIFY_SHOP_DOMAIN:
        accounts["main"] = SyncAccount(
            id="main",
            name="main",
            channel_code=settings.SHOPIFY_CHANNEL_CODE,
            shop_domain=settings.SHOPIFY_SHOP_DOMAIN,
            access_token=settings.SHOPIFY_ACCESS_TOKEN,
            api_version=settings.SHOPIFY_API_VERSION,
        )
    for name, cfg in (settings.SYNC_ACCOUNTS or {}).items():
        if not isinstance(cfg, dict):
            continue
        body = {"api_version": settings.SHOPIFY_API_VERSION, **cfg}
        body.setdefault("id", name)
        body["name"] = name
        accounts[name] = SyncAccount(**body)
    return accounts


def get_account(name: Optional[str]) -> Optional[SyncAccount]:
    """Active account by name; None when unknown or disabled."""
    acc = load_accounts().get(name or "main")
    if acc is None or not acc.is_active:
        return None
    return acc


def public_view(account: SyncAccount) -> dict:
    data = account.model_dump(exclude={"access_token"})
    data["has_token"] = bool(account.access_token)
    return data

# app/mapping/sync_link_store.py
# Persisted (product, account) -> SyncLink records.
from __future__ import annotations
import asyncio
import json
import logging
import weakref
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from app.config import settings
from app.models.sync_link import SyncLink, link_key
from app.sync.components.util import now_iso

logger = logging.getLogger("uvicorn.error")

DEFAULT_PATH = Path(settings.SYNC_LINK_STORE_PATH)


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)

def _atomic_write(path: Path, text: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)

def _blank() -> Dict[str, Any]:
    return {"version": 1, "updated": now_iso(), "links": {}}


def _check_key(product_id: Any, account_id: Any, link: SyncLink) -> None:
    if link.product_id != str(product_id) or link.account_id != str(account_id):
        raise ValueError(
            f"link for {link_key(link.product_id, link.account_id)} cannot be stored under {link_key(product_id, account_id)}"
        )


def _parse(key: str, rec: Dict[str, Any]) -> Optional[SyncLink]:
    """Invalid persisted state is logged and treated as not found."""
    try:
        return SyncLink.from_record(rec)
    except (ValidationError, ValueError, TypeError) as e:
        logger.warning("[LINKS] ignoring unreadable link %s: %s", key, e)
        return None


class SyncLinkStore(ABC):
    """get / put / clear contract plus a per-key asyncio.Lock for callers that read-modify-write."""

    def __init__(self) -> None:
        # a lock lives while a holder or waiter references it, then drops out
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock(self, product_id: Any, account_id: Any) -> asyncio.Lock:
        key = link_key(product_id, account_id)
        lk = self._locks.get(key)
        if lk is None:
            lk = asyncio.Lock()
            self._locks[key] = lk
        return lk

    @abstractmethod
    async def get(self, product_id: Any, account_id: Any) -> Optional[SyncLink]:
        raise NotImplementedError

    @abstractmethod
    async def put(self, product_id: Any, account_id: Any, link: SyncLink) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self, product_id: Any, account_id: Any) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def all(self) -> List[SyncLink]:
        raise NotImplementedError


class MemorySyncLinkStore(SyncLinkStore):
    def __init__(self) -> None:
        super().__init__()
        self._records: Dict[str, Dict[str, Any]] = {}

    async def get(self, product_id: Any, account_id: Any) -> Optional[SyncLink]:
        key = link_key(product_id, account_id)
        rec = self._records.get(key)
        return _parse(key, rec) if rec else None

    async def put(self, product_id: Any, account_id: Any, link: SyncLink) -> None:
        _check_key(product_id, account_id, link)
        self._records[link_key(product_id, account_id)] = link.to_record()

    async def clear(self, product_id: Any, account_id: Any) -> bool:
        return self._records.pop(link_key(product_id, account_id), None) is not None

    async def all(self) -> List[SyncLink]:
        return [l for k, r in self._records.items() if (l := _parse(k, r))]


class JsonSyncLinkStore(SyncLinkStore):
    def __init__(self, path: Path = DEFAULT_PATH) -> None:
        super().__init__()
        self.path = Path(path)

    def _load_raw(self) -> Dict[str, Any]:
        if not self.path.exists():
            return _blank()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except Exception as e:
            logger.error("[LINKS] could not read %s: %s", self.path, e)
            return _blank()
        if not isinstance(raw, dict) or not isinstance(raw.get("links"), dict):
            return _blank()
        return raw

    def _save_raw(self, obj: Dict[str, Any]) -> None:
        obj = dict(obj or {})
        obj["version"] = 1
        obj["updated"] = now_iso()
        _ensure_parent(self.path)
        _atomic_write(self.path, json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=True))

    async def get(self, product_id: Any, account_id: Any) -> Optional[SyncLink]:
        key = link_key(product_id, account_id)
        rec = self._load_raw()["links"].get(key)
        return _parse(key, rec) if rec else None

    async def put(self, product_id: Any, account_id: Any, link: SyncLink) -> None:
        _check_key(product_id, account_id, link)
        raw = self._load_raw()
        raw["links"][link_key(product_id, account_id)] = link.to_record()
        self._save_raw(raw)

    async def clear(self, product_id: Any, account_id: Any) -> bool:
        raw = self._load_raw()
        if raw["links"].pop(link_key(product_id, account_id), None) is None:
            return False
        self._save_raw(raw)
        return True

    async def all(self) -> List[SyncLink]:
        return [l for k, r in self._load_raw()["links"].items() if (l := _parse(k, r))]


def build_link_store() -> SyncLinkStore:
    backend = settings.SYNC_LINK_BACKEND
    if backend == "db":
        from app.mapping.sync_link_db import DbSyncLinkStore
        return DbSyncLinkStore()
    if backend == "memory":
        return MemorySyncLinkStore()
    return JsonSyncLinkStore(Path(settings.SYNC_LINK_STORE_PATH))

# app/mapping/sync_link_db.py
# SyncLinkStore backed by the sync_links table (SQLAlchemy async).
from __future__ import annotations
import json
import logging
from typing import Any, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import get_sessionmaker
from app.mapping.sync_link_store import SyncLinkStore, _check_key, _parse
from app.models.sync_link import LINK_FORMAT_VERSION, SyncLink, link_key
from app.models.sync_link_table import SyncLinkRow

logger = logging.getLogger("uvicorn.error")


def _row_to_record(row: SyncLinkRow) -> dict:
    return {
        "version": row.version,
        "product_id": row.product_id,
        "account_id": row.account_id,
        "color_map": json.loads(row.color_map or "{}"),
        "status": row.status,
        "synced_at": row.synced_at,
        "metadata": json.loads(row.meta or "{}"),
    }


class DbSyncLinkStore(SyncLinkStore):
    def __init__(self, sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        super().__init__()
        self._sessionmaker = sessionmaker

    @property
    def sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        return self._sessionmaker or get_sessionmaker()

    async def _row(self, session: AsyncSession, product_id: Any, account_id: Any) -> Optional[SyncLinkRow]:
        stmt = select(SyncLinkRow).where(
            SyncLinkRow.product_id == str(product_id),
            SyncLinkRow.account_id == str(account_id),
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get(self, product_id: Any, account_id: Any) -> Optional[SyncLink]:
        async with self.sessionmaker() as session:
            row = await self._row(session, product_id, account_id)
        if row is None:
            return None
        try:
            rec = _row_to_record(row)
        except json.JSONDecodeError as e:
            logger.warning("[DB] unreadable sync link %s: %s", link_key(product_id, account_id), e)
            return None
        return _parse(link_key(product_id, account_id), rec)

    async def put(self, product_id: Any, account_id: Any, link: SyncLink) -> None:
        _check_key(product_id, account_id, link)
        async with self.sessionmaker() as session:
            async with session.begin():
                row = await self._row(session, product_id, account_id)
                if row is None:
                    row = SyncLinkRow(product_id=link.product_id, account_id=link.account_id)
                    session.add(row)
                row.color_map = json.dumps(link.color_map, ensure_ascii=False)
                row.status = link.status.value
                row.synced_at = link.synced_at
                row.meta = json.dumps(link.metadata, ensure_ascii=False, default=str)
                row.version = LINK_FORMAT_VERSION

    async def clear(self, product_id: Any, account_id: Any) -> bool:
        async with self.sessionmaker() as session:
            async with session.begin():
                res = await session.execute(
                    delete(SyncLinkRow).where(
                        SyncLinkRow.product_id == str(product_id),
                        SyncLinkRow.account_id == str(account_id),
                    )
                )
        return bool(res.rowcount)

    async def all(self) -> List[SyncLink]:
        async with self.sessionmaker() as session:
            rows = (await session.execute(select(SyncLinkRow).order_by(SyncLinkRow.id))).scalars().all()
        out: List[SyncLink] = []
        for row in rows:
            link = _parse(link_key(row.product_id, row.account_id), _row_to_record(row))
            if link:
                out.append(link)
        return out

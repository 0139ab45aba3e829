# app/models/sync_link_table.py
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.db import Base


class SyncLinkRow(Base):
    __tablename__ = "sync_links"
    __table_args__ = (UniqueConstraint("product_id", "account_id", name="uq_sync_link_product_account"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(64), index=True)
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    color_map: Mapped[str] = mapped_column(Text, default="{}")      # JSON text: {"Red": "gid://..."}
    status: Mapped[str] = mapped_column(String(16), default="unsynced", index=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    meta: Mapped[str] = mapped_column(Text, default="{}")           # JSON text
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

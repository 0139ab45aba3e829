# app/models/sync_link.py
# Persisted reconciliation record between one local product and one sync account.
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, Field, model_validator

LINK_FORMAT_VERSION = 1


class SyncStatus(str, Enum):
    UNSYNCED = "unsynced"
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


# from -> allowed targets
TRANSITIONS: Dict[SyncStatus, FrozenSet[SyncStatus]] = {
    SyncStatus.UNSYNCED: frozenset({SyncStatus.PENDING, SyncStatus.SYNCED}),
    SyncStatus.PENDING: frozenset({SyncStatus.UNSYNCED, SyncStatus.SYNCED, SyncStatus.FAILED}),
    SyncStatus.SYNCED: frozenset({SyncStatus.UNSYNCED, SyncStatus.PENDING, SyncStatus.SYNCED, SyncStatus.FAILED}),
    SyncStatus.FAILED: frozenset({SyncStatus.UNSYNCED, SyncStatus.PENDING, SyncStatus.SYNCED, SyncStatus.FAILED}),
}


class InvalidTransition(ValueError):
    def __init__(self, current: SyncStatus, target: SyncStatus):
        super().__init__(f"Invalid sync status transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target


def can_transition(current: SyncStatus, target: SyncStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def link_key(product_id: Any, account_id: Any) -> str:
    return f"{product_id}:{account_id}"


class SyncLink(BaseModel):
    """
    color -> external product id for one (product, account) pair.

    The color map is the only thing the orchestrator consults to decide between
    create, update and delete; status is bookkeeping on top of it.
    """

    product_id: str
    account_id: str
    color_map: Dict[str, str] = Field(default_factory=dict)
    status: SyncStatus = SyncStatus.UNSYNCED
    synced_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _coerce_ids(cls, values: Any) -> Any:
        if isinstance(values, dict):
            values = dict(values)
            for k in ("product_id", "account_id"):
                if values.get(k) is not None:
                    values[k] = str(values[k])
        return values

    @model_validator(mode="after")
    def _check_invariants(self) -> "SyncLink":
        if self.status == SyncStatus.SYNCED and not self.color_map:
            raise ValueError("a synced link requires a non-empty color map")
        if any(not str(v or "").strip() for v in self.color_map.values()):
            raise ValueError("color map contains an empty external id")
        return self

    @property
    def is_linked(self) -> bool:
        return bool(self.color_map)

    def transition(self, target: SyncStatus, **changes: Any) -> "SyncLink":
        """Return a copy moved to `target`; raises InvalidTransition if the move is not allowed."""
        if not can_transition(self.status, target):
            raise InvalidTransition(self.status, target)
        data = self.model_dump()
        data.update(changes)
        data["status"] = target
        if target == SyncStatus.SYNCED and "synced_at" not in changes:
            data["synced_at"] = _utcnow()
        return SyncLink(**data)

    # -------- serialization --------

    def to_record(self) -> Dict[str, Any]:
        return {
            "version": LINK_FORMAT_VERSION,
            "product_id": self.product_id,
            "account_id": self.account_id,
            "color_map": dict(self.color_map),
            "status": self.status.value,
            "synced_at": self.synced_at.isoformat() if self.synced_at else None,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "SyncLink":
        version = int(rec.get("version") or LINK_FORMAT_VERSION)
        if version != LINK_FORMAT_VERSION:
            raise ValueError(f"unsupported sync link format version: {version}")
        body = {k: v for k, v in rec.items() if k != "version"}
        return cls(**body)


def new_link(product_id: Any, account_id: Any) -> SyncLink:
    return SyncLink(product_id=str(product_id), account_id=str(account_id))

# app/models/sync_result.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncResult(BaseModel):
    """Outcome of one orchestrator action. Partial results always travel in `data`."""

    success: bool
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def ok(cls, message: str, data: Optional[Dict[str, Any]] = None, **kw: Any) -> "SyncResult":
        return cls(success=True, message=message, data=data or {}, **kw)

    @classmethod
    def fail(
        cls,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        errors: Optional[List[str]] = None,
        **kw: Any,
    ) -> "SyncResult":
        return cls(success=False, message=message, data=data or {}, errors=errors or [message], **kw)

    @property
    def is_partial(self) -> bool:
        return not self.success and bool(self.data.get("successful") or self.data.get("updated") or self.data.get("deleted"))

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

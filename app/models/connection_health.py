# app/models/connection_health.py
# Bounded per-account history of connection tests.
from typing import Any, Dict, List
import time
import threading

from app.config import settings

_history: Dict[str, List[Dict[str, Any]]] = {}
lock = threading.Lock()

def record_health_check(
    account_name: str,
    *,
    success: bool,
    message: str,
    response_time_ms: float | None = None,
    endpoint: str | None = None,
    max_history: int | None = None,
) -> Dict[str, Any]:
    entry = {
        "status": "healthy" if success else "failing",
        "success": success,
        "message": message,
        "response_time_ms": response_time_ms,
        "endpoint": endpoint,
        "tested_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    }
    limit = max_history or settings.HEALTH_HISTORY_LIMIT
    with lock:
        hist = _history.setdefault(account_name, [])
        hist.append(entry)
        if len(hist) > limit:
            del hist[: len(hist) - limit]
    return entry

def get_health(account_name: str) -> Dict[str, Any]:
    with lock:
        hist = _history.get(account_name) or []
        current = dict(hist[-1]) if hist else None
    return current or {"status": "unknown", "tested_at": None, "message": None, "response_time_ms": None}

def get_health_history(account_name: str, limit: int = 20) -> List[Dict[str, Any]]:
    with lock:
        return list((_history.get(account_name) or [])[-limit:])

def get_health_badge(account_name: str) -> Dict[str, str]:
    status = get_health(account_name).get("status") or "unknown"
    color = {"healthy": "green", "failing": "red"}.get(status, "gray")
    return {"status": status, "color": color}

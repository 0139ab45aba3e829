# app/models/audit_log.py
from typing import List, Dict, Any
import time
import threading

MAX_ENTRIES = 500

audit_log: List[Dict[str, Any]] = []
lock = threading.Lock()

def add_audit_entry(action: str, user: str, details: str, *, success: bool | None = None):
    entry = {
        "action": action,
        "user": user,
        "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
        "details": details,
    }
    if success is not None:
        entry["success"] = success
    with lock:
        audit_log.append(entry)
        if len(audit_log) > MAX_ENTRIES:
            del audit_log[: len(audit_log) - MAX_ENTRIES]

def get_audit_log(limit: int | None = None) -> List[Dict[str, Any]]:
    with lock:
        entries = list(audit_log)
    return entries[-limit:] if limit else entries

def clear_audit_log() -> None:
    with lock:
        audit_log.clear()

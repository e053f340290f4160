"""Append-only audit trail for recognition and registration events.

Writes newline-delimited JSON entries to `logs/audit.log` (AUDIT_LOG_DIR
overrides the directory). Thread-safe via a module-level lock. Audit failures
are logged and never propagate into request handling.
"""
import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path

_LOCK = threading.Lock()

ROOT = Path(__file__).resolve().parent.parent.parent
LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ROOT / "logs"))
LOG_FILE = LOG_DIR / "audit.log"

log = logging.getLogger("facegate.audit")


def _ensure_dir():
    LOG_DIR.mkdir(parents=True, exist_ok=True)


def log_event(action: str, user_id: str | None, payload: dict | None = None) -> None:
    entry = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "user_id": user_id,
        "payload": payload or {},
    }
    try:
        _ensure_dir()
        with _LOCK:
            with open(LOG_FILE, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    except OSError as exc:
        log.error("Audit write failed for %s: %s", action, exc)

# Audit trail for security-relevant OAuth events.
# Created: 2026-10-18
#
# Every event is logged on the "authgate.audit" logger. When an audit_log_path is
# configured the same event is appended to it as one JSON line.

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger("authgate.audit")


class AuditLogger:
    """Writes audit events to the log and, optionally, a JSONL file."""

    def __init__(self, path: Path | None = None):
        self.path = path
        self._lock = threading.Lock()

    def log_api_event(self, action: str, target: str, **details: Any) -> dict[str, Any]:
        event = {
            "timestamp": datetime.now(UTC).isoformat(),
            "action": action,
            "target": target,
            **details,
        }
        logger.info("%s %s", action, target, extra={"audit": event})

        if self.path is not None:
            line = json.dumps(event, default=str)
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        return event


# Singleton
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        from authgate.config import get_settings

        _audit_logger = AuditLogger(get_settings().audit_log_path)
    return _audit_logger


def reset_audit_logger() -> None:
    """Reset singleton (for testing)."""
    global _audit_logger
    _audit_logger = None

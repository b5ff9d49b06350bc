"""
Blink-Attend — Structured Audit Logger
=======================================
Logs every session decision (phase changes, capture attempts,
verification scores, results) as JSONL for post-mortem analysis.

  - JSONL (newline-delimited JSON), one entry per event
  - Thread-safe appends
  - Levels: AUDIT, WARN, ERROR, SYSTEM
"""

import json
import logging
import os
import sys
import threading
import time
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

_log = logging.getLogger("AttendAudit")


class AttendJSONEncoder(json.JSONEncoder):
    """Handles NumPy types and enums for JSON serialization."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class AttendLogger:
    """Append-only JSONL audit trail for attendance sessions."""

    def __init__(self, log_dir: str = "logs", filename: str = "attend_audit.jsonl"):
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)

        self.log_path = os.path.join(self.log_dir, filename)
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({
            "python_version": sys.version,
            "platform": sys.platform,
        }, level="SYSTEM", event="system_startup")

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        """Append log entry."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }
        line = json.dumps(entry, cls=AttendJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                return
            self._file.write(line)
            self._file.flush()

    def warn(self, message: str, context: Optional[Dict] = None):
        """Log structured warning."""
        _log.warning(message)
        self.log({"message": message, "context": context}, level="WARN", event="system_warning")

    def error(self, message: str, exception: Optional[Exception] = None):
        """Log structured error with exception details."""
        _log.error(message)
        err_details = str(exception) if exception else None
        self.log({"message": message, "exception": err_details}, level="ERROR", event="system_error")

    def close(self):
        """Clean shutdown."""
        if self._file.closed:
            return
        self.log({"message": "Logger shutting down"}, level="SYSTEM", event="system_shutdown")
        with self._lock:
            self._file.close()


_logger = None


def get_logger(log_dir="logs"):
    global _logger
    if _logger is None:
        _logger = AttendLogger(log_dir)
    return _logger

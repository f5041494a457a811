"""
StressScan — Structured Audit Logger
=====================================
Records every per-frame stress assessment, warning and error in
structured JSONL format for later review.

Key Features:
  - JSONL (one JSON object per line)
  - Thread-safe appends (flushed per entry)
  - Levels: AUDIT, WARN, ERROR, SYSTEM
  - NumPy scalars and arrays serialize transparently
"""

import json
import logging
import os
import sys
import threading
import time
from typing import Any, Dict, Optional

import numpy as np

from stress_utils_core import CONFIG

_log = logging.getLogger("StressAudit")


class StressJSONEncoder(json.JSONEncoder):
    """Handles NumPy types for JSON serialization."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


class StressAuditLogger:
    """Append-only JSONL audit trail for a StressScan session."""

    def __init__(self, log_dir: Optional[str] = None, filename: Optional[str] = None):
        self.log_dir = log_dir or CONFIG["logging"]["log_dir"]
        os.makedirs(self.log_dir, exist_ok=True)

        self.log_path = os.path.join(
            self.log_dir, filename or CONFIG["logging"]["audit_file"]
        )
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({
            "event": "system_startup",
            "python_version": sys.version,
            "platform": sys.platform,
        }, level="SYSTEM")

    @property
    def closed(self) -> bool:
        return self._file.closed

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        """Append one entry. Writes after close() are ignored."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }
        line = json.dumps(entry, cls=StressJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                _log.debug("Audit log closed; dropping %s entry", entry["event"])
                return
            self._file.write(line)
            self._file.flush()

    def log_frame(self, frame_data: Dict[str, Any]):
        """Helper for per-frame assessment records."""
        self.log(frame_data, level="AUDIT", event="frame_processed")

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


def get_logger(log_dir: Optional[str] = None) -> StressAuditLogger:
    """Process-wide audit logger, created on first use."""
    global _logger
    if _logger is None or _logger.closed:
        _logger = StressAuditLogger(log_dir)
    return _logger

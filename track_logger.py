"""
Landmark-Track — Structured Session Logger
==========================================
Logs every tracking session event in JSONL format.

Events:
  - session_start / session_end
  - frame_processed (mode, faces, landmarks, FD/LM timings, memory)
  - track_acquired / track_lost
  - system_warning / system_error
"""

import json
import logging
import os
import sys
import threading
import time
from typing import Any, Dict, Optional

import numpy as np

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


class TrackJSONEncoder(json.JSONEncoder):
    """Handles NumPy and enum types for JSON serialization."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if hasattr(obj, "value"):
            return obj.value
        return super().default(obj)


class TrackerLogger:
    """JSONL audit log for a tracking session."""

    def __init__(self, log_path: str = "logs/track_session.jsonl"):
        self.log_path = log_path
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({
            "event": "session_start",
            "python_version": sys.version,
            "platform": sys.platform,
        }, level="SYSTEM")

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        """Append log entry."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }
        line = json.dumps(entry, cls=TrackJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                return
            self._file.write(line)
            self._file.flush()

    def log_frame(self, frame_data: Dict[str, Any]):
        self.log(frame_data, level="AUDIT", event="frame_processed")

    def warn(self, message: str, context: Optional[Dict] = None):
        logging.warning(message)
        self.log({"message": message, "context": context}, level="WARN", event="system_warning")

    def error(self, message: str, exception: Optional[Exception] = None, **kwargs):
        """Log structured error with exception details."""
        logging.error(message, **kwargs)
        err_details = repr(exception) if exception else None
        self.log({"message": message, "exception": err_details}, level="ERROR", event="system_error")

    def close(self):
        with self._lock:
            closed = self._file.closed
        if not closed:
            self.log({"message": "Logger shutting down"}, level="SYSTEM", event="session_end")
            with self._lock:
                self._file.close()


_loggers: Dict[str, TrackerLogger] = {}
_loggers_lock = threading.Lock()


def get_logger(log_path: str = "logs/track_session.jsonl") -> TrackerLogger:
    """Process-wide logger per log file. A closed logger is replaced on the next call."""
    key = os.path.abspath(log_path)
    with _loggers_lock:
        logger = _loggers.get(key)
        if logger is None or logger._file.closed:
            logger = TrackerLogger(log_path)
            _loggers[key] = logger
        return logger

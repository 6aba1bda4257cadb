"""
Drowsiness Guard — Audit Trail
===============================
One JSON object per line in <log_dir>/guard_audit.jsonl:

  {"ts": <epoch s>, "level": "AUDIT|WARN|ERROR|SYSTEM", "event": "...", "data": {...}}

Events: engine_init, health_check, session_started, session_stopped,
tick, inference_failure, alarm_start, alarm_stop, warning_tone,
escalate, error. Writes are serialized; anything logged after close()
is dropped.
"""

import dataclasses
import json
import os
import sys
import threading
import time
from enum import Enum
from typing import Optional

import numpy as np

from guard_utils import setup_logger

_log = setup_logger("GuardAudit")

AUDIT_FILENAME = "guard_audit.jsonl"


def _to_json(obj):
    """json.dumps fallback for guard records."""
    if isinstance(obj, Enum):
        return obj.value
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, np.generic):
        return obj.item()
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")


class GuardLogger:
    def __init__(self, log_dir: str = "logs"):
        os.makedirs(log_dir, exist_ok=True)
        self.path = os.path.join(log_dir, AUDIT_FILENAME)
        self._lock = threading.Lock()
        self._fh = open(self.path, "a", encoding="utf-8")
        self.record("logger_open", {"python": sys.version.split()[0], "platform": sys.platform},
                    level="SYSTEM")

    @property
    def closed(self) -> bool:
        return self._fh.closed

    def record(self, event: str, data: Optional[dict] = None, level: str = "AUDIT") -> None:
        line = json.dumps(
            {"ts": round(time.time(), 3), "level": level, "event": event, "data": data or {}},
            default=_to_json,
        )
        with self._lock:
            if self._fh.closed:
                return
            self._fh.write(line + "\n")
            self._fh.flush()

    def tick(self, assessment, controller_state: str) -> None:
        self.record("tick", {"assessment": assessment, "controller_state": controller_state})

    def error(self, message: str, exception: Optional[BaseException] = None) -> None:
        """Console traceback plus an ERROR audit line."""
        _log.error(message, exc_info=exception)
        self.record("error", {"message": message,
                              "exception": repr(exception) if exception else None},
                    level="ERROR")

    def close(self) -> None:
        self.record("logger_close", level="SYSTEM")
        with self._lock:
            self._fh.close()


_shared: Optional[GuardLogger] = None


def get_logger(log_dir: str = "logs") -> GuardLogger:
    """Process-wide audit logger; reopened after close()."""
    global _shared
    if _shared is None or _shared.closed:
        _shared = GuardLogger(log_dir)
    return _shared

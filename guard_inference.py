"""
Drowsiness Guard — Inference Client
====================================
HTTP client for the remote drowsiness model.

  - health_check(): readiness check consulted before monitoring starts
  - infer(jpeg):    one detection request, returned as InferenceResult

At most one request is in flight. A call made while another is still
running returns a BUSY result immediately (no queueing, no cancel).
Transport errors, non-2xx responses and malformed bodies come back as
FAILED results; nothing here raises into the tick loop.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import requests

from guard_types import DetectionFrame, InferenceResult
from guard_utils import get_api_url

_log = logging.getLogger("GuardInference")

_READY_STATUSES = {"ok", "ready", "healthy", "up"}


class InferenceClient:
    """Talks to the backend detect + health endpoints."""

    def __init__(
        self,
        base_url: str = "",
        detect_endpoint: str = "api/drive/detect",
        health_endpoint: str = "api/drive/health",
        conf_threshold: float = 0.25,
        image_size: int = 320,
        timeout_s: Optional[float] = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.detect_url = get_api_url(base_url, detect_endpoint)
        self.health_url = get_api_url(base_url, health_endpoint)
        self.conf_threshold = conf_threshold
        self.image_size = image_size
        self.timeout_s = timeout_s
        self._session = session or requests.Session()
        self._busy = threading.Lock()
        self.requests_total = 0
        self.requests_failed = 0
        self.requests_skipped = 0

    @classmethod
    def from_config(cls, backend: dict) -> "InferenceClient":
        return cls(
            base_url=backend.get("base_url", ""),
            detect_endpoint=backend.get("detect_endpoint", "api/drive/detect"),
            health_endpoint=backend.get("health_endpoint", "api/drive/health"),
            conf_threshold=backend.get("conf_threshold", 0.25),
            image_size=backend.get("image_size", 320),
            timeout_s=backend.get("timeout_s", 5.0),
        )

    @property
    def in_flight(self) -> bool:
        return self._busy.locked()

    def health_check(self) -> tuple[bool, str]:
        """Probe backend readiness.

        Returns:
            (ready, detail). `detail` is a human-readable reason when not ready.
        """
        try:
            res = self._session.get(self.health_url, timeout=self.timeout_s)
        except requests.RequestException as e:
            _log.warning("Health check failed: %s", e)
            return False, f"Backend unreachable at {self.health_url}: {e}"

        if not res.ok:
            return False, f"Backend health returned HTTP {res.status_code}"

        try:
            body = res.json()
        except ValueError:
            return True, "ok"

        if isinstance(body, dict):
            if "ready" in body:
                ready = bool(body["ready"])
                return ready, "ok" if ready else "Backend reports not ready"
            status = body.get("status")
            if status is not None and str(status).lower() not in _READY_STATUSES:
                return False, f"Backend status: {status}"
        return True, "ok"

    def infer(self, jpeg: bytes) -> InferenceResult:
        """Send one frame. Never raises."""
        if not self._busy.acquire(blocking=False):
            self.requests_skipped += 1
            return InferenceResult.busy()

        t0 = time.monotonic()
        try:
            self.requests_total += 1
            res = self._session.post(
                self.detect_url,
                files={"image": ("frame.jpg", jpeg, "image/jpeg")},
                data={"conf": self.conf_threshold, "imgsz": self.image_size},
                timeout=self.timeout_s,
            )
            res.raise_for_status()
            frame = DetectionFrame.from_response(res.json())
            return InferenceResult.success(frame, (time.monotonic() - t0) * 1000)
        except (requests.RequestException, ValueError) as e:
            self.requests_failed += 1
            _log.debug("Inference failed: %s", e)
            return InferenceResult.failure(str(e), (time.monotonic() - t0) * 1000)
        finally:
            self._busy.release()

    def get_stats(self) -> dict:
        return {
            "requests_total": self.requests_total,
            "requests_failed": self.requests_failed,
            "requests_skipped": self.requests_skipped,
        }

    def close(self) -> None:
        self._session.close()

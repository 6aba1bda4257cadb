"""
Drowsiness Guard — Camera Input Module
=======================================
Owns ALL camera interaction. No other file should touch
cv2.VideoCapture directly.

Features:
  - Frame validation (shape, dtype, channel count, brightness)
  - Lighting quality estimate for the setup screen
  - Health monitoring (FPS, drop rate, connection status)
  - Proper resource cleanup
"""

from __future__ import annotations

import time
import logging
from collections import deque
from typing import Optional

import cv2
import numpy as np

from guard_types import CameraStatus


_log = logging.getLogger("GuardCamera")


class GuardCamera:
    """Validated camera capture for the monitoring session.

    Wraps cv2.VideoCapture with:
      - 1-frame buffer so every tick sees the newest frame
      - Per-frame validation (shape, dtype, brightness, channels)
      - Monotonic timestamping of the last valid frame
      - Health and lighting status reporting
    """

    # ── Validation constants ──────────────────────────────────
    MIN_HEIGHT: int = 120
    MIN_WIDTH: int = 160
    EXPECTED_CHANNELS: int = 3
    EXPECTED_DTYPE = np.uint8
    MIN_MEAN_BRIGHTNESS: float = 5.0    # lens cap / hw failure
    MAX_MEAN_BRIGHTNESS: float = 250.0  # sensor saturation
    FPS_WINDOW: int = 30

    # Mean-brightness bands for lighting quality
    GOOD_LIGHT_RANGE = (70.0, 190.0)
    FAIR_LIGHT_RANGE = (35.0, 220.0)

    UNAVAILABLE_MESSAGE = "No camera found or camera is in use by another application."

    def __init__(
        self,
        camera_id: int = 0,
        width: int = 640,
        height: int = 480,
        backend: int = cv2.CAP_ANY,
    ) -> None:
        """Open the capture device.

        Args:
            camera_id: System camera index or a video file path.
            width: Requested capture width.
            height: Requested capture height.
            backend: OpenCV capture backend.
        """
        self._camera_id = camera_id
        self._cap: cv2.VideoCapture = cv2.VideoCapture(camera_id, backend)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._resolution: tuple[int, int] = (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

        self._frames_total: int = 0
        self._frames_dropped: int = 0
        self._last_valid_timestamp: float = 0.0
        self._last_frame_valid: bool = False
        self._last_brightness: Optional[float] = None
        self._calibrated: bool = False
        self._frame_times: deque[float] = deque(maxlen=self.FPS_WINDOW)

        _log.info(
            "GuardCamera initialized — id=%s resolution=%s opened=%s",
            camera_id,
            self._resolution,
            self._cap.isOpened(),
        )

    # ── Public API ────────────────────────────────────────────

    def read_validated_frame(self) -> tuple[bool, Optional[np.ndarray], float]:
        """Read one frame and run the validation checklist.

        Returns:
            (success, frame_or_None, monotonic_timestamp)
            On failure: (False, None, 0.0) and increments drop counter.
        """
        self._frames_total += 1
        timestamp = time.monotonic()

        ret, frame = self._cap.read()

        if not self._validate_frame(ret, frame):
            self._frames_dropped += 1
            self._last_frame_valid = False
            return False, None, 0.0

        self._last_frame_valid = True
        self._last_valid_timestamp = timestamp
        self._frame_times.append(timestamp)
        return True, frame, timestamp

    def lighting_quality(self) -> str:
        """Classify the last frame's mean brightness as good/fair/poor."""
        b = self._last_brightness
        if b is None:
            return "poor"
        lo, hi = self.GOOD_LIGHT_RANGE
        if lo <= b <= hi:
            return "good"
        lo, hi = self.FAIR_LIGHT_RANGE
        if lo <= b <= hi:
            return "fair"
        return "poor"

    def calibrate(self, max_frames: int = 15) -> CameraStatus:
        """Warm-up check run before monitoring starts.

        Reads up to `max_frames` frames; the camera counts as calibrated
        once one of them is valid with at least fair lighting.
        """
        for _ in range(max_frames):
            ok, _, _ = self.read_validated_frame()
            if ok and self.lighting_quality() != "poor":
                self._calibrated = True
                break
        status = self.get_camera_status()
        _log.info("Camera calibration — calibrated=%s lighting=%s",
                  status.calibrated, status.lighting_quality)
        return status

    def get_camera_status(self) -> CameraStatus:
        return CameraStatus(
            face_visible=self._last_frame_valid,
            lighting_quality=self.lighting_quality(),
            calibrated=self._calibrated,
        )

    def get_health_status(self) -> dict:
        """Return a snapshot of camera health metrics."""
        now = time.monotonic()
        last_age_ms = (
            (now - self._last_valid_timestamp) * 1000.0
            if self._last_valid_timestamp > 0
            else float("inf")
        )
        return {
            "connected": self._cap.isOpened(),
            "fps_actual": self._calculate_fps(),
            "frames_total": self._frames_total,
            "frames_dropped": self._frames_dropped,
            "drop_rate_pct": (
                (self._frames_dropped / self._frames_total * 100.0)
                if self._frames_total > 0
                else 0.0
            ),
            "last_valid_frame_age_ms": round(last_age_ms, 2),
            "resolution": self._resolution,
        }

    def is_opened(self) -> bool:
        """Whether the underlying capture device is open."""
        return self._cap.isOpened()

    def release(self) -> None:
        """Release camera resources and log final statistics."""
        health = self.get_health_status()
        _log.info(
            "GuardCamera releasing — total=%d dropped=%d (%.1f%%)",
            health["frames_total"],
            health["frames_dropped"],
            health["drop_rate_pct"],
        )
        self._cap.release()

    def __enter__(self) -> "GuardCamera":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    # ── Private helpers ───────────────────────────────────────

    def _validate_frame(self, ret: bool, frame: Optional[np.ndarray]) -> bool:
        if not ret or frame is None:
            _log.debug("Validation FAIL: no frame (ret=%s)", ret)
            return False

        if frame.ndim != 3 or frame.shape[2] != self.EXPECTED_CHANNELS:
            _log.debug("Validation FAIL: shape=%s", frame.shape)
            return False

        if frame.dtype != self.EXPECTED_DTYPE:
            _log.debug("Validation FAIL: dtype=%s (expected uint8)", frame.dtype)
            return False

        h, w = frame.shape[:2]
        if h < self.MIN_HEIGHT or w < self.MIN_WIDTH:
            _log.debug(
                "Validation FAIL: resolution %dx%d below minimum %dx%d",
                w, h, self.MIN_WIDTH, self.MIN_HEIGHT,
            )
            return False

        mean_brightness = float(frame.mean())
        self._last_brightness = mean_brightness
        if mean_brightness <= self.MIN_MEAN_BRIGHTNESS:
            _log.debug("Validation FAIL: all-black frame (mean=%.2f)", mean_brightness)
            return False
        if mean_brightness >= self.MAX_MEAN_BRIGHTNESS:
            _log.debug("Validation FAIL: all-white frame (mean=%.2f)", mean_brightness)
            return False

        return True

    def _calculate_fps(self) -> float:
        """Rolling FPS over the last N valid frames."""
        if len(self._frame_times) < 2:
            return 0.0
        elapsed = self._frame_times[-1] - self._frame_times[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._frame_times) - 1) / elapsed

"""
Drowsiness Guard — Frame Sampler
=================================
Turns the live camera feed into a small JPEG still once per tick.
The payload is bounded to ~320x240 to keep upload size and
inference latency low.
"""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from guard_camera import GuardCamera

_log = logging.getLogger("GuardSampler")


class FrameSampler:
    """Downscale + encode one validated frame per call."""

    def __init__(
        self,
        camera: GuardCamera,
        width: int = 320,
        height: int = 240,
        jpeg_quality: int = 70,
    ) -> None:
        self.camera = camera
        self.size = (width, height)
        self.jpeg_quality = jpeg_quality
        self.last_frame: Optional[np.ndarray] = None

    def capture(self) -> Optional[bytes]:
        """Return an encoded still, or None while the feed is not ready.

        An unready feed (warming up, invalid frame) is normal and is not
        reported as an error.
        """
        if not self.camera.is_opened():
            return None

        ok, frame, _ = self.camera.read_validated_frame()
        if not ok:
            return None

        self.last_frame = frame
        return self.encode(frame)

    def encode(self, frame: np.ndarray) -> Optional[bytes]:
        small = cv2.resize(frame, self.size, interpolation=cv2.INTER_AREA)
        ok, buf = cv2.imencode(".jpg", small, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        if not ok:
            _log.debug("JPEG encode failed for frame shape=%s", frame.shape)
            return None
        return buf.tobytes()

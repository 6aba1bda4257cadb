import logging
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from guard_engine import GuardStatus
from guard_types import RiskLevel

_log = logging.getLogger("GuardHUD")


class GuardHUD:
    """Driver-facing overlay: alertness gauge, signal line, status bar."""

    # BGR
    RISK_COLORS = {
        RiskLevel.SAFE:     (80, 200, 0),
        RiskLevel.MILD:     (0, 215, 255),
        RiskLevel.MODERATE: (0, 140, 255),
        RiskLevel.SEVERE:   (0, 0, 230),
    }

    ALERT_TEXT = "DROWSINESS DETECTED"

    def __init__(self):
        _log.info("GuardHUD initialized")

    def render(self, frame: Optional[np.ndarray], status: GuardStatus) -> Tuple[Optional[np.ndarray], float]:
        """Draw overlay onto a copy of `frame`.

        Returns:
            (annotated_frame, hud_render_time_seconds)
        """
        t_start = time.monotonic()
        if frame is None:
            return None, 0.0

        viz = frame.copy()
        self._draw_gauge(viz, status)
        self._draw_signal_line(viz, status)
        self._draw_status_bar(viz, status)
        if status.controller_state == "ESCALATED":
            self._draw_central_notification(viz, self.ALERT_TEXT)
        return viz, time.monotonic() - t_start

    def _draw_gauge(self, frame: np.ndarray, status: GuardStatus):
        a = status.assessment
        color = self.RISK_COLORS.get(a.risk_level, (200, 200, 200))
        h, w = frame.shape[:2]
        center, radius = (w - 80, 90), 60

        cv2.ellipse(frame, center, (radius, radius), 0, 180, 360, (90, 90, 90), 8)
        sweep = 180 + int(a.confidence / 100 * 180)
        cv2.ellipse(frame, center, (radius, radius), 0, 180, sweep, color, 8)

        text = str(a.confidence)
        (tw, th), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 1.0, 2)
        cv2.putText(frame, text, (center[0] - tw // 2, center[1] - 10),
            cv2.FONT_HERSHEY_SIMPLEX, 1.0, color, 2)
        cv2.putText(frame, a.risk_level.value.upper(), (center[0] - 35, center[1] + 20),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1)

    def _draw_signal_line(self, frame: np.ndarray, status: GuardStatus):
        a = status.assessment
        eyes = "Open" if a.eyes_open else "Closed"
        line = (f"Eyes: {eyes} | Blink {a.blink_rate}/min ({a.blink_rate_label}) | "
                f"Closed {a.eye_closed_duration:.1f}s | "
                f"Yawn: {'Yes' if a.yawn_detected else 'No'} | "
                f"Nod: {'Yes' if a.head_nod_detected else 'No'}")
        cv2.putText(frame, line, (10, 25), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)

    def _draw_status_bar(self, frame: np.ndarray, status: GuardStatus):
        h, w = frame.shape[:2]
        bar_h = 36
        overlay = frame.copy()
        cv2.rectangle(overlay, (0, h - bar_h), (w, h), (0, 0, 0), -1)
        alpha = 0.6
        cv2.addWeighted(overlay, alpha, frame, 1 - alpha, 0, frame)

        left = f"GUARD: {status.controller_state}"
        cam = status.camera_status
        if cam is not None:
            left += (f" | Face: {'Yes' if cam.face_visible else 'No'}"
                     f" | Light: {cam.lighting_quality}"
                     f"{'' if cam.calibrated else ' | UNCALIBRATED'}")
        cv2.putText(frame, left, (10, h - 12),
            cv2.FONT_HERSHEY_SIMPLEX, 0.55, (255, 255, 255), 1)

        stats = status.inference_stats
        right = (f"CAM {status.camera_health.get('fps_actual', 0):.1f} FPS | "
                 f"ticks {stats.get('ticks', 0)} fail {stats.get('failed', 0)}")
        text_w = cv2.getTextSize(right, cv2.FONT_HERSHEY_SIMPLEX, 0.55, 1)[0][0]
        cv2.putText(frame, right, (w - text_w - 10, h - 12),
            cv2.FONT_HERSHEY_SIMPLEX, 0.55, (200, 200, 200), 1)

    def _draw_central_notification(self, frame: np.ndarray, text: str):
        h, w = frame.shape[:2]
        font, scale, thickness = cv2.FONT_HERSHEY_SIMPLEX, 1.2, 3
        color = self.RISK_COLORS[RiskLevel.SEVERE]
        (fw, fh), _ = cv2.getTextSize(text, font, scale, thickness)
        cx, cy = w // 2, h // 2
        pad = 20
        cv2.rectangle(frame, (cx - fw // 2 - pad, cy - fh // 2 - pad),
            (cx + fw // 2 + pad, cy + fh // 2 + pad), (0, 0, 0), -1)
        cv2.rectangle(frame, (cx - fw // 2 - pad, cy - fh // 2 - pad),
            (cx + fw // 2 + pad, cy + fh // 2 + pad), color, 2)
        cv2.putText(frame, text, (cx - fw // 2, cy + fh // 2), font, scale, color, thickness)

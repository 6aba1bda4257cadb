from __future__ import annotations

import itertools
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import List, Optional


class RiskLevel(str, Enum):
    SAFE = "safe"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    DROWSINESS = "drowsiness"
    DISTRACTION = "distraction"
    EYES_CLOSED = "eyes_closed"
    YAWN = "yawn"


class EventKind(str, Enum):
    """Side effects requested by the signal and escalation layers."""
    ALARM_START = "alarm_start"
    ALARM_STOP = "alarm_stop"
    WARNING_TONE = "warning_tone"
    ESCALATE = "escalate"


# Upstream models disagree on the eye-closure key name.
EYE_CLOSED_KEYS = ("eye_closed", "closed", "close")
SECONDARY_HINT_KEYS = ("yawn", "tired", "asleep") + EYE_CLOSED_KEYS

_TRUE_STRINGS = {"true", "1", "yes", "on"}


def as_flag(value) -> bool:
    """Read one `signals` value. Strings are parsed, so "false" is False."""
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return False


def has_secondary_hint(raw_signals: dict) -> bool:
    """Weak drowsiness indicator: yawn or any tired/closed/asleep hint."""
    return any(as_flag(raw_signals.get(k, False)) for k in SECONDARY_HINT_KEYS)


@dataclass
class DetectionFrame:
    """Per-tick booleans extracted from one inference response."""
    eyes_closed: bool
    yawn: bool
    head_nod: bool
    hints: dict = field(default_factory=dict)
    detections: list = field(default_factory=list)

    @classmethod
    def from_response(cls, payload: dict) -> "DetectionFrame":
        """Build from the inference JSON body.

        Raises:
            ValueError: payload is not a JSON object or `signals` is malformed.
        """
        if not isinstance(payload, dict):
            raise ValueError("inference response is not an object")
        signals = payload.get("signals") or {}
        if not isinstance(signals, dict):
            raise ValueError("inference response 'signals' is not an object")
        hints = {key: as_flag(value) for key, value in signals.items()}
        return cls(
            eyes_closed=any(hints.get(k, False) for k in EYE_CLOSED_KEYS),
            yawn=hints.get("yawn", False),
            head_nod=hints.get("asleep", False),
            hints=hints,
            detections=list(payload.get("detections") or []),
        )


@dataclass
class InferenceResult:
    """Typed outcome of one inference call: ok, failed or busy."""
    status: str
    frame: Optional[DetectionFrame] = None
    error: Optional[str] = None
    latency_ms: float = 0.0

    OK = "ok"
    FAILED = "failed"
    BUSY = "busy"

    @property
    def ok(self) -> bool:
        return self.status == self.OK

    @classmethod
    def success(cls, frame: DetectionFrame, latency_ms: float = 0.0) -> "InferenceResult":
        return cls(cls.OK, frame=frame, latency_ms=latency_ms)

    @classmethod
    def failure(cls, error: str, latency_ms: float = 0.0) -> "InferenceResult":
        return cls(cls.FAILED, error=error, latency_ms=latency_ms)

    @classmethod
    def busy(cls) -> "InferenceResult":
        return cls(cls.BUSY)


@dataclass
class SignalSnapshot:
    """Derived signals after one debouncer update."""
    timestamp: float
    blink_rate: int
    eye_closed_duration: float
    yawn_count: int
    consecutive_head_nods: int
    asleep_duration: float
    head_nod_active: bool
    yawn_detected: bool
    raw_signals: dict = field(default_factory=dict)


@dataclass
class GuardEvent:
    kind: EventKind
    timestamp: float
    cause: str = ""


@dataclass
class RiskAssessment:
    """Per-tick output consumed by the presentation layer."""
    blink_rate: int
    eye_closed_duration: float
    yawn_detected: bool
    head_nod_detected: bool
    confidence: int
    risk_level: RiskLevel

    @property
    def eyes_open(self) -> bool:
        return self.eye_closed_duration < 0.5

    @property
    def blink_rate_label(self) -> str:
        return "normal" if self.blink_rate > 10 else "slow"

    def to_dict(self) -> dict:
        return asdict(self)


_alert_ids = itertools.count(1)


@dataclass
class Alert:
    severity: AlertSeverity
    confidence: int
    type: AlertType
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: str(next(_alert_ids)))


@dataclass
class Trip:
    id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    alerts: List[Alert] = field(default_factory=list)
    average_alertness: Optional[float] = None


@dataclass
class CameraStatus:
    face_visible: bool
    lighting_quality: str  # "good" | "fair" | "poor"
    calibrated: bool


class GuardError(Exception):
    """Base class for user-facing guard failures."""


class BackendNotReadyError(GuardError):
    pass


class CameraUnavailableError(GuardError):
    pass

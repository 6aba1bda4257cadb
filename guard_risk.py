"""
Drowsiness Guard — Risk Classifier
===================================
Pure priority match from debounced signals to (risk level, confidence).

Priority (first match wins):

  Cause                         | Level    | Confidence
  ------------------------------|----------|-----------
  head-nod active               | severe   | 30
  consecutive nods >= 3         | severe   | 30
  eyes closed >= 2 s            | severe   | 40
  eyes closed >= 1 s            | moderate | 60
  yawn / tired / closed hint    | mild     | 75
  nothing                       | safe     | 94

Duration thresholds outrank instantaneous flags; head-nod outranks
everything because it means the driver is already asleep.
"""

from __future__ import annotations

from typing import Tuple

from guard_types import RiskAssessment, RiskLevel, SignalSnapshot, has_secondary_hint

SEVERE_EYE_CLOSED_S = 2.0
MODERATE_EYE_CLOSED_S = 1.0
CONSECUTIVE_NODS = 3


def classify(
    eye_closed_duration: float,
    raw_signals: dict,
    consecutive_head_nods: int,
    head_nod_active: bool,
    severe_eye_closed_s: float = SEVERE_EYE_CLOSED_S,
    moderate_eye_closed_s: float = MODERATE_EYE_CLOSED_S,
    consecutive_nods: int = CONSECUTIVE_NODS,
) -> Tuple[RiskLevel, int]:
    """Return (risk_level, confidence 0..100)."""
    if head_nod_active:
        return RiskLevel.SEVERE, 30
    if consecutive_head_nods >= consecutive_nods:
        return RiskLevel.SEVERE, 30
    if eye_closed_duration >= severe_eye_closed_s:
        return RiskLevel.SEVERE, 40
    if eye_closed_duration >= moderate_eye_closed_s:
        return RiskLevel.MODERATE, 60
    if has_secondary_hint(raw_signals or {}):
        return RiskLevel.MILD, 75
    return RiskLevel.SAFE, 94


def assess(snapshot: SignalSnapshot, risk_config: dict = None) -> RiskAssessment:
    """Classify a debouncer snapshot into the per-tick RiskAssessment."""
    cfg = risk_config or {}
    level, confidence = classify(
        snapshot.eye_closed_duration,
        snapshot.raw_signals,
        snapshot.consecutive_head_nods,
        snapshot.head_nod_active,
        severe_eye_closed_s=cfg.get("severe_eye_closed_s", SEVERE_EYE_CLOSED_S),
        moderate_eye_closed_s=cfg.get("moderate_eye_closed_s", MODERATE_EYE_CLOSED_S),
        consecutive_nods=cfg.get("consecutive_nods", CONSECUTIVE_NODS),
    )
    return RiskAssessment(
        blink_rate=snapshot.blink_rate,
        eye_closed_duration=round(snapshot.eye_closed_duration, 2),
        yawn_detected=snapshot.yawn_detected,
        head_nod_detected=snapshot.head_nod_active,
        confidence=confidence,
        risk_level=level,
    )

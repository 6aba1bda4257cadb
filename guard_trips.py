"""
Drowsiness Guard — In-Memory Trip Review
=========================================
Collects the alerts raised during each monitoring session so the
driver can review them afterwards. Nothing is written to disk.
"""

from __future__ import annotations

import itertools
import logging
from datetime import datetime
from typing import List, Optional

from guard_types import (
    Alert, AlertSeverity, AlertType, EventKind, GuardEvent, RiskAssessment, Trip,
)

_log = logging.getLogger("GuardTrips")

# (event kind, cause) -> (alert type, severity); cause "" matches any cause
ALERT_MAPPING = {
    (EventKind.WARNING_TONE, "yawn_cluster"): (AlertType.YAWN, AlertSeverity.LOW),
    (EventKind.WARNING_TONE, "eyes_closed"): (AlertType.EYES_CLOSED, AlertSeverity.MEDIUM),
    (EventKind.ALARM_START, ""): (AlertType.DROWSINESS, AlertSeverity.HIGH),
    (EventKind.ESCALATE, ""): (AlertType.DROWSINESS, AlertSeverity.CRITICAL),
}


class TripRecorder:
    def __init__(self):
        self.trips: List[Trip] = []
        self.current: Optional[Trip] = None
        self._confidences: List[int] = []
        self._ids = itertools.count(1)

    def start_trip(self) -> Trip:
        if self.current is not None:
            self.end_trip()
        self.current = Trip(id=str(next(self._ids)), start_time=datetime.now())
        self._confidences = []
        self.trips.append(self.current)
        return self.current

    def end_trip(self) -> Optional[Trip]:
        trip = self.current
        if trip is None:
            return None
        trip.end_time = datetime.now()
        trip.average_alertness = self._average()
        self.current = None
        _log.info("Trip %s ended — %d alerts, avg alertness %s",
                  trip.id, len(trip.alerts), trip.average_alertness)
        return trip

    def record_assessment(self, assessment: RiskAssessment):
        if self.current is None:
            return
        self._confidences.append(assessment.confidence)
        self.current.average_alertness = self._average()

    def record_event(self, event: GuardEvent, confidence: int) -> Optional[Alert]:
        """Turn a dispatched side effect into an Alert on the current trip."""
        if self.current is None:
            return None
        mapped = ALERT_MAPPING.get((event.kind, event.cause)) or ALERT_MAPPING.get((event.kind, ""))
        if mapped is None:
            return None
        alert_type, severity = mapped
        alert = Alert(severity=severity, confidence=confidence, type=alert_type)
        self.current.alerts.append(alert)
        return alert

    def _average(self) -> Optional[float]:
        if not self._confidences:
            return None
        return round(sum(self._confidences) / len(self._confidences), 1)

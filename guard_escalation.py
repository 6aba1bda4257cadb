"""
Drowsiness Guard — Escalation Controller
=========================================
Per-session state machine that turns risk assessments and debouncer
events into side effects (alarm, warning tone, navigation to the
alert experience).

States: MONITORING -> ALARMING -> ESCALATED

  Transition                                   | Effect
  ---------------------------------------------|---------------------
  ALARM_START (sustained head-nod)             | loop alarm, ALARMING
  ALARM_STOP  (head-nod ended after alarm)     | stop alarm
  severe risk, not head-nod, held >= 1.5 s     | ESCALATE
  ESCALATE (any cause, first time)             | navigate, ESCALATED
  WARNING_TONE                                 | one-shot warning

Two watches run independently: the head-nod path lives in the
debouncer (alarm, then escalate on recovery) and the severe-risk hold
timer lives here. Navigation is emitted at most once per session;
there is no transition out of ESCALATED.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from guard_signals import SignalState
from guard_types import EventKind, GuardEvent, RiskAssessment, RiskLevel, SignalSnapshot

_log = logging.getLogger("GuardEscalation")


class EscalationController:
    MONITORING = "MONITORING"
    ALARMING = "ALARMING"
    ESCALATED = "ESCALATED"

    def __init__(
        self,
        audio=None,
        on_escalate: Optional[Callable[[GuardEvent], None]] = None,
        severe_hold_s: float = 1.5,
    ):
        """
        Args:
            audio: object with play_alarm / stop_alarm / play_warning / stop_all
                   (GuardAudio in production, a mock in tests).
            on_escalate: presentation callback for "go to the alert screen".
            severe_hold_s: continuous severe time before escalating.
        """
        self.audio = audio
        self.on_escalate = on_escalate
        self.severe_hold_s = severe_hold_s
        self.state = self.MONITORING
        self.escalated = False
        self.closed = False
        self.history: List[GuardEvent] = []
        # shutdown() and _dispatch() exclude each other; reentrant for on_escalate
        self._lock = threading.RLock()

    def update(
        self,
        signal_state: SignalState,
        assessment: RiskAssessment,
        snapshot: SignalSnapshot,
        events: List[GuardEvent],
        now: float,
    ) -> List[GuardEvent]:
        """Run one tick. Returns the events actually dispatched."""
        if self.closed:
            return []

        pending = list(events)
        severe_event = self._watch_severe(signal_state, assessment, snapshot, now)
        if severe_event is not None:
            pending.append(severe_event)

        return [e for e in pending if self._dispatch(e)]

    def request_escalation(self, now: float, cause: str = "manual") -> bool:
        """Operator-initiated escalation (emergency control)."""
        if self.closed:
            return False
        return self._dispatch(GuardEvent(EventKind.ESCALATE, now, cause))

    def shutdown(self):
        """Stop audio and refuse further effects. Called at session teardown."""
        with self._lock:
            if self.closed:
                return
            self.closed = True
            if self.audio is not None:
                self.audio.stop_all()

    # ── Private helpers ───────────────────────────────────────

    def _watch_severe(
        self,
        signal_state: SignalState,
        assessment: RiskAssessment,
        snapshot: SignalSnapshot,
        now: float,
    ) -> Optional[GuardEvent]:
        severe = assessment.risk_level is RiskLevel.SEVERE and not snapshot.head_nod_active
        if not severe:
            if signal_state.severe_since is not None:
                _log.debug("Severe hold cancelled after %.2fs", now - signal_state.severe_since)
            signal_state.severe_since = None
            return None

        if signal_state.severe_since is None:
            signal_state.severe_since = now
        if not self.escalated and now - signal_state.severe_since >= self.severe_hold_s:
            return GuardEvent(EventKind.ESCALATE, now, "severe_risk")
        return None

    def _dispatch(self, event: GuardEvent) -> bool:
        with self._lock:
            if self.closed:
                return False
            return self._apply(event)

    def _apply(self, event: GuardEvent) -> bool:
        kind = event.kind
        if kind is EventKind.ALARM_START:
            self._call_audio("play_alarm")
            if self.state != self.ESCALATED:
                self.state = self.ALARMING
        elif kind is EventKind.ALARM_STOP:
            self._call_audio("stop_alarm")
            if self.state == self.ALARMING:
                self.state = self.MONITORING
        elif kind is EventKind.WARNING_TONE:
            self._call_audio("play_warning")
        elif kind is EventKind.ESCALATE:
            if self.escalated:
                _log.debug("Escalation (%s) ignored — already escalated", event.cause)
                return False
            self.escalated = True
            self.state = self.ESCALATED
            _log.warning("Escalating to alert experience (cause=%s)", event.cause)
            if self.on_escalate is not None:
                try:
                    self.on_escalate(event)
                except Exception as e:
                    _log.error("Escalation handler failed: %s", e, exc_info=True)

        self.history.append(event)
        return True

    def _call_audio(self, method: str):
        if self.audio is None:
            return
        try:
            getattr(self.audio, method)()
        except Exception as e:
            _log.warning("Audio %s failed: %s", method, e)

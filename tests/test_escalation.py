"""
Drowsiness Guard — Escalation Controller Tests
===============================================
Audio and the navigation callback are mocks; time is explicit.
"""

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from guard_escalation import EscalationController
from guard_signals import SignalState
from guard_types import EventKind, GuardEvent, RiskAssessment, RiskLevel, SignalSnapshot


def _tick(level: RiskLevel, nod: bool = False, confidence: int = 40):
    assessment = RiskAssessment(blink_rate=0, eye_closed_duration=0.0, yawn_detected=False,
                                head_nod_detected=nod, confidence=confidence, risk_level=level)
    snapshot = SignalSnapshot(timestamp=0.0, blink_rate=0, eye_closed_duration=0.0, yawn_count=0,
                              consecutive_head_nods=1 if nod else 0, asleep_duration=0.0,
                              head_nod_active=nod, yawn_detected=False)
    return assessment, snapshot


class TestSevereWatch(unittest.TestCase):
    def setUp(self):
        self.audio = MagicMock()
        self.on_escalate = MagicMock()
        self.ctl = EscalationController(audio=self.audio, on_escalate=self.on_escalate)
        self.state = SignalState()

    def _run(self, now, level, nod=False, events=()):
        assessment, snapshot = _tick(level, nod)
        return self.ctl.update(self.state, assessment, snapshot, list(events), now)

    def test_held_severe_escalates_exactly_once(self):
        self.assertEqual(self._run(0.0, RiskLevel.SEVERE), [])
        self.assertEqual(self._run(1.0, RiskLevel.SEVERE), [])
        dispatched = self._run(1.5, RiskLevel.SEVERE)
        self.assertEqual([e.kind for e in dispatched], [EventKind.ESCALATE])
        self.assertEqual(dispatched[0].cause, "severe_risk")
        for t in (2.5, 3.5, 4.5):
            self.assertEqual(self._run(t, RiskLevel.SEVERE), [])
        self.on_escalate.assert_called_once()
        self.assertEqual(self.ctl.state, EscalationController.ESCALATED)

    def test_drop_below_severe_resets_timer(self):
        self._run(0.0, RiskLevel.SEVERE)
        self._run(1.0, RiskLevel.SEVERE)
        self._run(2.0, RiskLevel.MODERATE)
        self.assertIsNone(self.state.severe_since)
        self.assertEqual(self._run(3.0, RiskLevel.SEVERE), [])
        self.assertEqual(self._run(4.0, RiskLevel.SEVERE), [])
        self.assertEqual(len(self._run(4.5, RiskLevel.SEVERE)), 1)

    def test_head_nod_severe_does_not_start_timer(self):
        for t in (0.0, 1.0, 2.0, 3.0):
            self.assertEqual(self._run(t, RiskLevel.SEVERE, nod=True), [])
        self.assertIsNone(self.state.severe_since)
        self.on_escalate.assert_not_called()

    def test_escalation_handler_error_is_contained(self):
        self.on_escalate.side_effect = RuntimeError("navigation failed")
        self._run(0.0, RiskLevel.SEVERE)
        dispatched = self._run(2.0, RiskLevel.SEVERE)
        self.assertEqual(len(dispatched), 1)
        self.assertTrue(self.ctl.escalated)


class TestEventDispatch(unittest.TestCase):
    def setUp(self):
        self.audio = MagicMock()
        self.on_escalate = MagicMock()
        self.ctl = EscalationController(audio=self.audio, on_escalate=self.on_escalate)
        self.state = SignalState()

    def _events(self, now, *events):
        assessment, snapshot = _tick(RiskLevel.SAFE, confidence=94)
        return self.ctl.update(self.state, assessment, snapshot, list(events), now)

    def test_alarm_start_plays_alarm(self):
        self._events(1.5, GuardEvent(EventKind.ALARM_START, 1.5, "head_nod"))
        self.audio.play_alarm.assert_called_once()
        self.assertEqual(self.ctl.state, EscalationController.ALARMING)

    def test_head_nod_recovery_stops_alarm_and_navigates(self):
        self._events(1.5, GuardEvent(EventKind.ALARM_START, 1.5, "head_nod"))
        dispatched = self._events(1.6, GuardEvent(EventKind.ALARM_STOP, 1.6, "head_nod"),
                                  GuardEvent(EventKind.ESCALATE, 1.6, "head_nod"))
        self.assertEqual([e.kind for e in dispatched], [EventKind.ALARM_STOP, EventKind.ESCALATE])
        self.audio.stop_alarm.assert_called_once()
        self.on_escalate.assert_called_once()
        self.assertEqual(self.on_escalate.call_args[0][0].cause, "head_nod")

    def test_warning_tone_plays_warning(self):
        self._events(8.0, GuardEvent(EventKind.WARNING_TONE, 8.0, "yawn_cluster"))
        self.audio.play_warning.assert_called_once()
        self.assertEqual(self.ctl.state, EscalationController.MONITORING)

    def test_second_escalate_is_dropped(self):
        self._events(1.0, GuardEvent(EventKind.ESCALATE, 1.0, "head_nod"))
        dispatched = self._events(5.0, GuardEvent(EventKind.ESCALATE, 5.0, "head_nod"))
        self.assertEqual(dispatched, [])
        self.on_escalate.assert_called_once()

    def test_manual_escalation_once(self):
        self.assertTrue(self.ctl.request_escalation(3.0))
        self.assertFalse(self.ctl.request_escalation(4.0))
        self.assertEqual(self.on_escalate.call_args[0][0].cause, "manual")

    def test_audio_failure_does_not_raise(self):
        self.audio.play_warning.side_effect = RuntimeError("mixer gone")
        dispatched = self._events(8.0, GuardEvent(EventKind.WARNING_TONE, 8.0, "yawn_cluster"))
        self.assertEqual(len(dispatched), 1)

    def test_shutdown_stops_audio_and_blocks_effects(self):
        self.ctl.shutdown()
        self.audio.stop_all.assert_called_once()
        dispatched = self._events(1.5, GuardEvent(EventKind.ALARM_START, 1.5, "head_nod"))
        self.assertEqual(dispatched, [])
        self.audio.play_alarm.assert_not_called()
        self.assertFalse(self.ctl.request_escalation(2.0))
        self.ctl.shutdown()
        self.audio.stop_all.assert_called_once()

    def test_teardown_mid_update_suppresses_pending_effects(self):
        order = []
        self.audio.stop_all.side_effect = lambda: order.append("stop_all")
        self.audio.play_alarm.side_effect = lambda: order.append("play_alarm")
        watch = self.ctl._watch_severe

        def watch_then_teardown(*args):
            result = watch(*args)
            self.ctl.shutdown()
            return result

        self.ctl._watch_severe = watch_then_teardown
        dispatched = self._events(1.5, GuardEvent(EventKind.ALARM_START, 1.5, "head_nod"),
                                  GuardEvent(EventKind.ESCALATE, 1.5, "head_nod"))
        self.assertEqual(dispatched, [])
        self.assertEqual(order, ["stop_all"])
        self.on_escalate.assert_not_called()
        self.assertEqual(self.ctl.state, EscalationController.MONITORING)


if __name__ == "__main__":
    unittest.main()

"""
Drowsiness Guard — Signal Debouncer Tests
==========================================
Synthetic tick sequences with explicit timestamps — no camera,
network or wall-clock sleeps.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from guard_risk import assess
from guard_signals import Edge, SignalDebouncer, SignalState, TickEdges, edge, prune_window
from guard_types import DetectionFrame, EventKind, RiskLevel


# ─── Helpers ──────────────────────────────────────────────────

def _frame(eyes: bool = False, yawn: bool = False, nod: bool = False, **hints) -> DetectionFrame:
    return DetectionFrame(eyes_closed=eyes, yawn=yawn, head_nod=nod, hints=hints)


def _run(debouncer, state, sequence):
    """Feed [(t, frame), ...]; return {t: (snapshot, [event kinds])}."""
    out = {}
    for t, frame in sequence:
        snap, events = debouncer.update(state, frame, t)
        out[t] = (snap, [e.kind for e in events])
    return out


@pytest.fixture
def debouncer():
    return SignalDebouncer()


@pytest.fixture
def state():
    return SignalState()


# ─── Edge helpers ─────────────────────────────────────────────

def test_edge_classification():
    assert edge(False, True) is Edge.RISING
    assert edge(True, False) is Edge.FALLING
    assert edge(True, True) is Edge.HIGH
    assert edge(False, False) is Edge.LOW


def test_tick_edges_compare_previous_tick(state):
    state.last_yawn = True
    edges = TickEdges.compute(state, _frame(yawn=True, nod=True))
    assert edges.yawn is Edge.HIGH
    assert edges.head_nod is Edge.RISING
    assert edges.eyes_closed is Edge.LOW


def test_prune_window_keeps_boundary_entry():
    from collections import deque
    stamps = deque([0.0, 10.0, 30.0])
    prune_window(stamps, 60.0, 60.0)
    assert list(stamps) == [0.0, 10.0, 30.0]
    prune_window(stamps, 60.5, 60.0)
    assert list(stamps) == [10.0, 30.0]


# ─── Head-nod counting ────────────────────────────────────────

def test_consecutive_head_nods_reset_on_false_tick(debouncer, state):
    seq = [(0.0, _frame(nod=True)), (0.5, _frame(nod=True)), (1.0, _frame()),
           (1.5, _frame(nod=True)), (2.0, _frame())]
    out = _run(debouncer, state, seq)
    counts = [out[t][0].consecutive_head_nods for t, _ in seq]
    assert counts == [1, 1, 0, 1, 0]


def test_head_nod_held_true_counts_once(debouncer, state):
    out = _run(debouncer, state, [(t * 0.5, _frame(nod=True)) for t in range(4)])
    assert out[1.5][0].consecutive_head_nods == 1


# ─── Asleep alarm ─────────────────────────────────────────────

def test_alarm_fires_once_at_threshold(debouncer, state):
    seq = [(t * 0.5, _frame(nod=True)) for t in range(7)]  # 0.0 .. 3.0
    out = _run(debouncer, state, seq)
    alarm_times = [t for t, (_, kinds) in out.items() if EventKind.ALARM_START in kinds]
    assert alarm_times == [1.5]
    assert state.alarm_played is True


def test_head_nod_episode_escalates_on_recovery(debouncer, state):
    seq = [(0.0, _frame(nod=True)), (0.5, _frame(nod=True)), (1.0, _frame(nod=True)),
           (1.5, _frame(nod=True)), (1.6, _frame())]
    out = _run(debouncer, state, seq)
    assert out[1.5][1] == [EventKind.ALARM_START]
    assert out[1.6][1] == [EventKind.ALARM_STOP, EventKind.ESCALATE]
    assert state.asleep_since is None
    assert state.alarm_played is False


def test_short_head_nod_does_not_alarm_or_escalate(debouncer, state):
    out = _run(debouncer, state, [(0.0, _frame(nod=True)), (1.0, _frame(nod=True)), (1.2, _frame())])
    assert all(kinds == [] for _, kinds in out.values())


def test_new_head_nod_episode_rearms_alarm(debouncer, state):
    seq = [(0.0, _frame(nod=True)), (2.0, _frame(nod=True)), (2.5, _frame()),
           (3.0, _frame(nod=True)), (4.5, _frame(nod=True))]
    out = _run(debouncer, state, seq)
    assert EventKind.ALARM_START in out[2.0][1]
    assert EventKind.ALARM_START in out[4.5][1]


# ─── Yawns ────────────────────────────────────────────────────

def _yawn_cluster(start: float, count: int = 5, spacing: float = 2.0):
    seq = []
    for i in range(count):
        t = start + i * spacing
        seq.append((t, _frame(yawn=True)))
        seq.append((t + 1.0, _frame()))
    return seq


def test_yawn_counted_only_on_rising_edge(debouncer, state):
    _run(debouncer, state, [(0.0, _frame(yawn=True)), (1.0, _frame(yawn=True)), (2.0, _frame(yawn=True))])
    assert len(state.yawn_timestamps) == 1


def test_fifth_yawn_in_window_plays_warning(debouncer, state):
    out = _run(debouncer, state, _yawn_cluster(0.0))
    tone_times = [t for t, (_, kinds) in out.items() if EventKind.WARNING_TONE in kinds]
    assert tone_times == [8.0]
    assert state.last_warning_at == 8.0


def test_warning_tone_cooldown(debouncer, state):
    seq = _yawn_cluster(0.0) + _yawn_cluster(10.0)
    out = _run(debouncer, state, seq)
    tone_times = [t for t, (_, kinds) in out.items() if EventKind.WARNING_TONE in kinds]
    assert tone_times == [8.0]


def test_warning_rearms_after_cooldown(debouncer, state):
    seq = _yawn_cluster(0.0) + [(24.0, _frame(yawn=True))]
    out = _run(debouncer, state, seq)
    assert EventKind.WARNING_TONE in out[24.0][1]


def test_yawn_window_prunes_old_entries(debouncer, state):
    _run(debouncer, state, _yawn_cluster(0.0, count=4))
    # 70 s later the old yawns are gone; one fresh yawn is not a cluster
    out = _run(debouncer, state, [(70.0, _frame(yawn=True))])
    assert list(state.yawn_timestamps) == [70.0]
    assert out[70.0][0].yawn_count == 1
    assert out[70.0][1] == []


# ─── Eye closure ──────────────────────────────────────────────

def test_eye_closed_since_set_and_cleared(debouncer, state):
    _run(debouncer, state, [(0.0, _frame(eyes=True))])
    assert state.eye_closed_since == 0.0
    _run(debouncer, state, [(1.0, _frame(eyes=True))])
    assert state.eye_closed_since == 0.0
    _run(debouncer, state, [(2.0, _frame())])
    assert state.eye_closed_since is None


def test_eye_closed_duration_grows_while_closed(debouncer, state):
    out = _run(debouncer, state, [(0.0, _frame(eyes=True)), (0.5, _frame(eyes=True)),
                                  (2.5, _frame(eyes=True)), (3.0, _frame())])
    assert out[0.0][0].eye_closed_duration == 0.0
    assert out[2.5][0].eye_closed_duration == pytest.approx(2.5)
    assert out[3.0][0].eye_closed_duration == 0.0


def test_prolonged_closure_warning_plays_once(debouncer, state):
    seq = [(float(t), _frame(eyes=True)) for t in range(0, 33)]
    out = _run(debouncer, state, seq)
    tone_times = [t for t, (_, kinds) in out.items() if EventKind.WARNING_TONE in kinds]
    assert tone_times == [30.0]
    assert state.eye_warning_played is True


def test_closure_warning_rearms_on_new_closure(debouncer, state):
    seq = [(0.0, _frame(eyes=True)), (30.0, _frame(eyes=True)), (31.0, _frame()),
           (32.0, _frame(eyes=True)), (62.0, _frame(eyes=True))]
    out = _run(debouncer, state, seq)
    assert EventKind.WARNING_TONE in out[30.0][1]
    assert EventKind.WARNING_TONE in out[62.0][1]


# ─── Blinks ───────────────────────────────────────────────────

def test_short_closure_counts_as_blink(debouncer, state):
    out = _run(debouncer, state, [(0.0, _frame(eyes=True)), (0.5, _frame())])
    assert out[0.5][0].blink_rate == 1


def test_700ms_closure_is_not_a_blink(debouncer, state):
    out = _run(debouncer, state, [(10.0, _frame(eyes=True)), (10.5, _frame(eyes=True)),
                                  (10.7, _frame())])
    assert out[10.7][0].blink_rate == 0
    assert out[10.5][0].eye_closed_duration == pytest.approx(0.5)


def test_blink_window_drops_old_blinks(debouncer, state):
    _run(debouncer, state, [(0.0, _frame(eyes=True)), (0.5, _frame())])
    out = _run(debouncer, state, [(60.5, _frame()), (60.75, _frame())])
    assert out[60.5][0].blink_rate == 1
    assert out[60.75][0].blink_rate == 0
    assert len(state.blink_timestamps) == 0


def test_blink_rate_matches_window_contents(debouncer, state):
    seq = []
    for i in range(12):
        t = i * 4.0
        seq += [(t, _frame(eyes=True)), (t + 0.25, _frame())]
    out = _run(debouncer, state, seq)
    last = seq[-1][0]
    assert out[last][0].blink_rate == 12 == len(state.blink_timestamps)
    assert all(last - t <= 60.0 for t in state.blink_timestamps)


# ─── Integration with classifier ──────────────────────────────

def test_eyes_closed_2_1s_is_severe_40(debouncer, state):
    out = _run(debouncer, state, [(0.0, _frame(eyes=True)), (2.1, _frame(eyes=True))])
    result = assess(out[2.1][0])
    assert result.risk_level is RiskLevel.SEVERE
    assert result.confidence == 40


def test_raw_hints_flow_into_snapshot(debouncer, state):
    snap, _ = debouncer.update(state, _frame(tired=True), 0.0)
    assert snap.raw_signals["tired"] is True
    assert assess(snap).risk_level is RiskLevel.MILD


def test_from_config_ignores_unknown_keys():
    d = SignalDebouncer.from_config({"window_s": 30.0, "yawn_cluster": 3, "unused": 1})
    assert d.window_s == 30.0
    assert d.yawn_cluster == 3

"""
Drowsiness Guard — Signal Debouncer
====================================
Folds one DetectionFrame per tick into SignalState and derives the
behavioral signals the classifier consumes:

  1. Head-nod edge counting (consecutive nods)
  2. Asleep duration -> loud alarm, and escalation when the nod ends
  3. Yawn rising edges in a trailing window -> warning tone (cooldown)
  4. Sustained eye closure duration -> warning tone once per closure
  5. Blink rate (short closed->open transitions in a trailing window)

The steps run in that order every tick; later steps read state that
earlier steps wrote. Edges are always previous tick vs current tick,
computed once per tick in `TickEdges`.

All timestamps are seconds (time.monotonic() in production, synthetic
values in tests).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from guard_types import DetectionFrame, EventKind, GuardEvent, SignalSnapshot

_log = logging.getLogger("GuardSignals")


class Edge(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    HIGH = "high"
    LOW = "low"


def edge(previous: bool, current: bool) -> Edge:
    if current and not previous:
        return Edge.RISING
    if previous and not current:
        return Edge.FALLING
    return Edge.HIGH if current else Edge.LOW


@dataclass(frozen=True)
class TickEdges:
    head_nod: Edge
    yawn: Edge
    eyes_closed: Edge

    @classmethod
    def compute(cls, state: "SignalState", frame: DetectionFrame) -> "TickEdges":
        return cls(
            head_nod=edge(state.last_head_nod, frame.head_nod),
            yawn=edge(state.last_yawn, frame.yawn),
            eyes_closed=edge(state.last_eyes_closed, frame.eyes_closed),
        )


@dataclass
class SignalState:
    """Mutable per-session signal memory. One instance per monitoring session."""
    eye_closed_since: Optional[float] = None
    eye_warning_played: bool = False
    last_eyes_closed: bool = False
    blink_timestamps: deque = field(default_factory=deque)

    last_yawn: bool = False
    yawn_timestamps: deque = field(default_factory=deque)
    last_warning_at: Optional[float] = None

    last_head_nod: bool = False
    consecutive_head_nods: int = 0
    asleep_since: Optional[float] = None
    alarm_played: bool = False

    severe_since: Optional[float] = None

    ticks: int = 0


def prune_window(timestamps: deque, now: float, window_s: float) -> None:
    """Drop entries older than `window_s`; keeps entries with now - t <= window."""
    while timestamps and now - timestamps[0] > window_s:
        timestamps.popleft()


class SignalDebouncer:
    """Stateless rule set applied to a SignalState once per tick."""

    def __init__(
        self,
        window_s: float = 60.0,
        blink_max_s: float = 0.6,
        asleep_alarm_s: float = 1.5,
        yawn_cluster: int = 5,
        warning_cooldown_s: float = 15.0,
        eye_closed_warning_s: float = 30.0,
    ) -> None:
        self.window_s = window_s
        self.blink_max_s = blink_max_s
        self.asleep_alarm_s = asleep_alarm_s
        self.yawn_cluster = yawn_cluster
        self.warning_cooldown_s = warning_cooldown_s
        self.eye_closed_warning_s = eye_closed_warning_s

    @classmethod
    def from_config(cls, signals: dict) -> "SignalDebouncer":
        return cls(**{k: v for k, v in signals.items()
                      if k in ("window_s", "blink_max_s", "asleep_alarm_s", "yawn_cluster",
                               "warning_cooldown_s", "eye_closed_warning_s")})

    def update(
        self,
        state: SignalState,
        frame: DetectionFrame,
        now: float,
    ) -> Tuple[SignalSnapshot, List[GuardEvent]]:
        """Apply one tick. Returns the derived snapshot and requested side effects."""
        edges = TickEdges.compute(state, frame)
        events: List[GuardEvent] = []

        self._track_head_nods(state, edges)
        asleep_duration = self._track_asleep(state, frame, now, events)
        self._track_yawns(state, edges, now, events)
        eye_closed_duration, closed_interval = self._track_eye_closure(state, frame, edges, now, events)
        self._track_blinks(state, edges, closed_interval, now)

        state.last_head_nod = frame.head_nod
        state.last_yawn = frame.yawn
        state.last_eyes_closed = frame.eyes_closed
        state.ticks += 1

        snapshot = SignalSnapshot(
            timestamp=now,
            blink_rate=len(state.blink_timestamps),
            eye_closed_duration=eye_closed_duration,
            yawn_count=len(state.yawn_timestamps),
            consecutive_head_nods=state.consecutive_head_nods,
            asleep_duration=asleep_duration,
            head_nod_active=frame.head_nod,
            yawn_detected=frame.yawn,
            raw_signals=dict(frame.hints, yawn=frame.yawn),
        )
        return snapshot, events

    # ── Steps ─────────────────────────────────────────────────

    @staticmethod
    def _track_head_nods(state: SignalState, edges: TickEdges) -> None:
        if edges.head_nod is Edge.RISING:
            state.consecutive_head_nods += 1
        elif edges.head_nod in (Edge.FALLING, Edge.LOW):
            state.consecutive_head_nods = 0

    def _track_asleep(
        self,
        state: SignalState,
        frame: DetectionFrame,
        now: float,
        events: List[GuardEvent],
    ) -> float:
        if frame.head_nod:
            if state.asleep_since is None:
                state.asleep_since = now
                state.alarm_played = False
            elapsed = now - state.asleep_since
            if elapsed >= self.asleep_alarm_s and not state.alarm_played:
                state.alarm_played = True
                events.append(GuardEvent(EventKind.ALARM_START, now, "head_nod"))
                _log.info("Sustained head-nod %.2fs — alarm", elapsed)
            return elapsed

        if state.alarm_played:
            events.append(GuardEvent(EventKind.ALARM_STOP, now, "head_nod"))
            events.append(GuardEvent(EventKind.ESCALATE, now, "head_nod"))
            _log.info("Head-nod episode ended after alarm — escalating")
        state.asleep_since = None
        state.alarm_played = False
        return 0.0

    def _track_yawns(
        self,
        state: SignalState,
        edges: TickEdges,
        now: float,
        events: List[GuardEvent],
    ) -> None:
        rising = edges.yawn is Edge.RISING
        if rising:
            state.yawn_timestamps.append(now)
        prune_window(state.yawn_timestamps, now, self.window_s)

        if (
            rising
            and len(state.yawn_timestamps) >= self.yawn_cluster
            and self._warning_cooled_down(state, now)
        ):
            state.last_warning_at = now
            events.append(GuardEvent(EventKind.WARNING_TONE, now, "yawn_cluster"))

    def _track_eye_closure(
        self,
        state: SignalState,
        frame: DetectionFrame,
        edges: TickEdges,
        now: float,
        events: List[GuardEvent],
    ) -> Tuple[float, Optional[float]]:
        """Returns (current closure duration, length of a closure that just ended)."""
        closed_interval = None
        if edges.eyes_closed is Edge.RISING:
            state.eye_closed_since = now
            state.eye_warning_played = False
        elif edges.eyes_closed is Edge.FALLING:
            if state.eye_closed_since is not None:
                closed_interval = now - state.eye_closed_since
            state.eye_closed_since = None
            state.eye_warning_played = False

        duration = 0.0
        if frame.eyes_closed and state.eye_closed_since is not None:
            duration = now - state.eye_closed_since

        if duration >= self.eye_closed_warning_s and not state.eye_warning_played:
            state.eye_warning_played = True
            state.last_warning_at = now
            events.append(GuardEvent(EventKind.WARNING_TONE, now, "eyes_closed"))
        return duration, closed_interval

    def _track_blinks(
        self,
        state: SignalState,
        edges: TickEdges,
        closed_interval: Optional[float],
        now: float,
    ) -> None:
        if (
            edges.eyes_closed is Edge.FALLING
            and closed_interval is not None
            and closed_interval <= self.blink_max_s
        ):
            state.blink_timestamps.append(now)
        prune_window(state.blink_timestamps, now, self.window_s)

    def _warning_cooled_down(self, state: SignalState, now: float) -> bool:
        return state.last_warning_at is None or now - state.last_warning_at >= self.warning_cooldown_s

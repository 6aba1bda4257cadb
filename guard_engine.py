"""
Drowsiness Guard — GuardEngine (Monitoring Core)
=================================================
Orchestrates one monitoring session:

  Sampler -> InferenceClient -> SignalDebouncer -> classify
          -> EscalationController -> audio / navigation / HUD

Architecture:
  1. Scheduler thread: fixed-cadence tick source (~900 ms)
  2. Tick worker: one tick at a time; a tick that finds the previous
     one still waiting on the network is a no-op (busy flag)
  3. Main thread (HUD): pulls the latest GuardStatus from a queue

A MonitoringSession owns all mutable signal state. It is created when
monitoring starts (camera open + backend healthy) and discarded on
stop; nothing carries over between sessions.
"""

import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

import numpy as np
import psutil

from guard_audio import GuardAudio
from guard_camera import GuardCamera
from guard_escalation import EscalationController
from guard_inference import InferenceClient
from guard_logger import get_logger
from guard_risk import assess
from guard_sampler import FrameSampler
from guard_signals import SignalDebouncer, SignalState
from guard_trips import TripRecorder
from guard_types import (
    BackendNotReadyError, CameraStatus, CameraUnavailableError, EventKind, GuardEvent,
    InferenceResult, RiskAssessment,
)
from guard_utils import load_config, merge_config, setup_logger

_log = setup_logger("GuardEngine")

DEFAULT_CONFIG = load_config()


@dataclass
class GuardStatus:
    """Latest session output for the presentation layer."""
    frame: Optional[np.ndarray]
    timestamp: float
    assessment: RiskAssessment
    controller_state: str
    camera_health: dict
    inference_stats: dict
    memory_mb: float
    camera_status: Optional[CameraStatus] = None


class TickScheduler:
    """Fixed-cadence tick source.

    Yields one timestamp per interval. Deadlines that were missed while
    the consumer was busy are skipped, never queued.
    """

    def __init__(
        self,
        interval_s: float,
        clock: Callable[[], float] = time.monotonic,
        wait: Optional[Callable[[float], bool]] = None,
    ):
        self.interval_s = interval_s
        self.clock = clock
        self.wait = wait
        self.missed = 0

    def ticks(self, stop: threading.Event) -> Iterator[float]:
        wait = self.wait or stop.wait
        deadline = self.clock() + self.interval_s
        while not stop.is_set():
            remaining = deadline - self.clock()
            if remaining > 0 and wait(remaining):
                return
            if stop.is_set():
                return
            now = self.clock()
            yield now
            deadline += self.interval_s
            while deadline <= self.clock():
                deadline += self.interval_s
                self.missed += 1


class MonitoringSession:
    """All per-session state plus the single-tick pipeline."""

    def __init__(
        self,
        sampler: FrameSampler,
        client: InferenceClient,
        debouncer: SignalDebouncer,
        controller: EscalationController,
        risk_config: Optional[dict] = None,
        trips: Optional[TripRecorder] = None,
        logger=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sampler = sampler
        self.client = client
        self.debouncer = debouncer
        self.controller = controller
        self.risk_config = risk_config or {}
        self.trips = trips
        self.logger = logger
        self.clock = clock

        self.state: Optional[SignalState] = SignalState()
        self.latest: Optional[RiskAssessment] = None
        self.closed = False
        self._busy = threading.Lock()
        self.stats = {"ticks": 0, "skipped_busy": 0, "skipped_unready": 0, "failed": 0}

    def tick(self, now: Optional[float] = None) -> Optional[RiskAssessment]:
        """Run sample -> infer -> debounce -> classify -> escalate once.

        Args:
            now: timestamp to fold the detection at. Defaults to the clock
                 read after inference returns.

        Returns:
            The new RiskAssessment, or None when the tick was skipped.
        """
        if self.closed:
            return None
        if not self._busy.acquire(blocking=False):
            self.stats["skipped_busy"] += 1
            return None
        try:
            return self._tick(now)
        finally:
            self._busy.release()

    def _tick(self, now: Optional[float]) -> Optional[RiskAssessment]:
        state = self.state
        jpeg = self.sampler.capture()
        if jpeg is None:
            self.stats["skipped_unready"] += 1
            return None

        result = self.client.infer(jpeg)
        if not result.ok:
            self._on_inference_miss(result)
            return None

        # Teardown may have happened while waiting on the network.
        if self.closed or state is None:
            return None

        now = self.clock() if now is None else now
        snapshot, events = self.debouncer.update(state, result.frame, now)
        assessment = assess(snapshot, self.risk_config)
        dispatched = self.controller.update(state, assessment, snapshot, events, now)

        for event in dispatched:
            self._record_event(event, assessment)
        if self.trips is not None:
            self.trips.record_assessment(assessment)

        self.stats["ticks"] += 1
        self.latest = assessment
        return assessment

    def request_escalation(self, cause: str = "manual") -> bool:
        if self.closed:
            return False
        event_time = self.clock()
        if not self.controller.request_escalation(event_time, cause):
            return False
        confidence = self.latest.confidence if self.latest else 0
        if self.trips is not None:
            self.trips.record_event(GuardEvent(EventKind.ESCALATE, event_time, cause), confidence)
        if self.logger is not None:
            self.logger.record("escalate", {"cause": cause, "timestamp": event_time})
        return True

    def wait_idle(self, timeout: float = 1.0) -> bool:
        """Block until no tick is running (or timeout)."""
        if not self._busy.acquire(timeout=timeout):
            return False
        self._busy.release()
        return True

    def close(self):
        """Stop audio, drop timers and signal state. Idempotent."""
        if self.closed:
            return
        self.closed = True
        self.controller.shutdown()
        self.state = None

    # ── Private helpers ───────────────────────────────────────

    def _on_inference_miss(self, result: InferenceResult):
        if result.status == InferenceResult.BUSY:
            self.stats["skipped_busy"] += 1
            return
        self.stats["failed"] += 1
        _log.debug("Inference failed, skipping tick: %s", result.error)
        if self.logger is not None:
            self.logger.record("inference_failure", {"error": result.error, "latency_ms": result.latency_ms},
                               level="WARN")

    def _record_event(self, event: GuardEvent, assessment: RiskAssessment):
        if self.logger is not None:
            self.logger.record(event.kind.value, {
                "cause": event.cause,
                "timestamp": event.timestamp,
                "assessment": assessment,
            })
        if self.trips is not None:
            self.trips.record_event(event, assessment.confidence)


class GuardEngine:
    """
    Session lifecycle + tick scheduling.
    Health check -> camera -> session -> scheduler thread.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        on_escalate: Optional[Callable[[GuardEvent], None]] = None,
    ):
        self.config = merge_config(DEFAULT_CONFIG, config)
        self.on_escalate = on_escalate

        log_cfg = self.config.get("logging", {})
        self.logger = get_logger(log_cfg.get("log_dir", "logs"))
        self.logger.record("engine_init", {"config": self.config}, level="SYSTEM")

        self.client = InferenceClient.from_config(self.config.get("backend", {}))
        self.audio = GuardAudio.from_config(self.config.get("audio", {}))
        self.trips = TripRecorder()

        self.camera: Optional[GuardCamera] = None
        self.session: Optional[MonitoringSession] = None
        self.scheduler = TickScheduler(self.config["monitoring"]["tick_interval_ms"] / 1000.0)

        self.result_queue = queue.Queue(maxsize=2)
        self.running = False
        self._stop = threading.Event()

    def check_backend(self) -> None:
        """Backend readiness check. Raises BackendNotReadyError when not ready."""
        ready, detail = self.client.health_check()
        self.logger.record("health_check", {"ready": ready, "detail": detail,
                                            "url": self.client.health_url})
        if not ready:
            raise BackendNotReadyError(detail)

    def start(self):
        """Probe backend, open camera, build a fresh session, start ticking."""
        if self.running:
            return
        self.check_backend()

        cam_cfg = self.config.get("camera", {})
        camera = GuardCamera(
            camera_id=cam_cfg.get("camera_id", 0),
            width=cam_cfg.get("width", 640),
            height=cam_cfg.get("height", 480),
        )
        if not camera.is_opened():
            camera.release()
            self.logger.error("Camera unavailable")
            raise CameraUnavailableError(GuardCamera.UNAVAILABLE_MESSAGE)
        self.camera = camera
        status = camera.calibrate(cam_cfg.get("calibration_frames", 15))
        self.logger.record("camera_status", {"status": status})
        if not status.calibrated:
            _log.warning("Camera not calibrated (lighting: %s)", status.lighting_quality)

        self.session = self._build_session()
        self.trips.start_trip()

        self._stop.clear()
        self.running = True
        self.tick_thread = threading.Thread(target=self._scheduler_thread, daemon=True)
        self.tick_thread.start()
        self.logger.record("session_started")

    def stop(self):
        """Tear down: stop ticking, silence audio, drop state, release camera."""
        if not self.running and self.session is None:
            return
        self.running = False
        self._stop.set()
        if hasattr(self, "tick_thread"):
            self.tick_thread.join(timeout=1.0)
        if self.session is not None:
            # Let an in-flight tick finish (bounded by the request timeout) before
            # silencing audio, so it cannot start a sound after teardown.
            if not self.session.wait_idle(timeout=self._idle_timeout_s()):
                _log.warning("Tick still running at teardown; closing anyway")
            self.session.close()
            self.session = None
        if self.camera is not None:
            self.camera.release()
            self.camera = None
        trip = self.trips.end_trip()
        self.logger.record("session_stopped", {"trip": trip})

    def shutdown(self):
        """stop() plus release of process-wide resources."""
        self.stop()
        self.client.close()
        self.logger.close()

    def request_escalation(self) -> bool:
        """Manual emergency: escalate now (at most once per session)."""
        if self.session is None:
            return False
        return self.session.request_escalation("manual")

    def get_latest_result(self) -> Optional[GuardStatus]:
        """HUD thread (main) calls this to get render data."""
        try:
            return self.result_queue.get_nowait()
        except queue.Empty:
            return None

    # ── Private helpers ───────────────────────────────────────

    def _build_session(self) -> MonitoringSession:
        sampler_cfg = self.config.get("sampler", {})
        sampler = FrameSampler(
            self.camera,
            width=sampler_cfg.get("width", 320),
            height=sampler_cfg.get("height", 240),
            jpeg_quality=sampler_cfg.get("jpeg_quality", 70),
        )
        controller = EscalationController(
            audio=self.audio,
            on_escalate=self.on_escalate,
            severe_hold_s=self.config.get("escalation", {}).get("severe_hold_s", 1.5),
        )
        return MonitoringSession(
            sampler=sampler,
            client=self.client,
            debouncer=SignalDebouncer.from_config(self.config.get("signals", {})),
            controller=controller,
            risk_config=self.config.get("risk", {}),
            trips=self.trips,
            logger=self.logger,
        )

    def _idle_timeout_s(self) -> float:
        timeout = self.config.get("backend", {}).get("timeout_s") or 5.0
        return timeout + 1.0

    def _scheduler_thread(self):
        """Fire ticks at a fixed cadence; each tick runs on its own worker."""
        for _ in self.scheduler.ticks(self._stop):
            session = self.session
            if session is None or session.closed:
                break
            threading.Thread(target=self._run_tick, args=(session,), daemon=True).start()

    def _run_tick(self, session: MonitoringSession):
        try:
            assessment = session.tick()
        except Exception as e:
            self.logger.error(f"Tick error: {e}", exception=e)
            return
        if assessment is None:
            return

        camera = self.camera
        status = GuardStatus(
            frame=session.sampler.last_frame,
            timestamp=time.monotonic(),
            assessment=assessment,
            controller_state=session.controller.state,
            camera_health=camera.get_health_status() if camera is not None else {},
            camera_status=camera.get_camera_status() if camera is not None else None,
            inference_stats={**self.client.get_stats(), **session.stats},
            memory_mb=psutil.Process().memory_info().rss / 1e6,
        )
        self.logger.tick(assessment, status.controller_state)
        try:
            self.result_queue.put_nowait(status)
        except queue.Full:
            try:
                self.result_queue.get_nowait()
                self.result_queue.put_nowait(status)
            except (queue.Empty, queue.Full):
                pass

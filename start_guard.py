"""
Drowsiness Guard — Launcher
============================
Entry point: checks the backend, opens the camera and runs the
monitoring session with an OpenCV preview window.

Usage:
  python start_guard.py --source 0
  python start_guard.py --backend-url http://localhost:3000 --headless

Keys: Q / ESC quit, E manual emergency alert.
"""

import argparse
import logging
import sys
import time

import cv2

from guard_engine import GuardEngine
from guard_hud import GuardHUD
from guard_types import BackendNotReadyError, CameraUnavailableError, GuardEvent
from guard_utils import load_config


WINDOW_NAME = "Drowsiness Guard"


def _ask_retry(message: str, interactive: bool) -> bool:
    print(f"[GUARD] {message}")
    if not interactive:
        return False
    try:
        answer = input("[GUARD] Retry? [Y/n] ").strip().lower()
    except EOFError:
        return False
    return answer in ("", "y", "yes")


def _on_escalate(event: GuardEvent):
    print(f"\n[GUARD] *** DROWSINESS DETECTED ({event.cause}) — pull over safely ***")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Drowsiness Guard Launcher")
    parser.add_argument("--source", type=str, default=None, help="Camera ID (0, 1, ...) or video file path")
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    parser.add_argument("--backend-url", type=str, default=None, help="Inference backend base URL")
    parser.add_argument("--interval-ms", type=int, default=None, help="Tick interval in milliseconds")
    parser.add_argument("--no-audio", action="store_true", help="Disable alarm and warning sounds")
    parser.add_argument("--headless", action="store_true", help="Run without UI window")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    logging.getLogger().setLevel(config.get("logging", {}).get("level", "INFO"))
    if args.source is not None:
        config["camera"]["camera_id"] = int(args.source) if args.source.isdigit() else args.source
    if args.backend_url is not None:
        config["backend"]["base_url"] = args.backend_url
    if args.interval_ms is not None:
        config["monitoring"]["tick_interval_ms"] = args.interval_ms
    if args.no_audio:
        config["audio"]["enabled"] = False

    print("=" * 60)
    print("  Drowsiness Guard — Starting...")
    print(f"  Source:   {config['camera']['camera_id']}")
    print(f"  Backend:  {config['backend']['base_url'] or '(relative)'}")
    print(f"  Interval: {config['monitoring']['tick_interval_ms']} ms")
    print("=" * 60)

    hud = GuardHUD()
    engine = None
    interactive = sys.stdin.isatty()

    try:
        engine = GuardEngine(config, on_escalate=_on_escalate)

        while True:
            try:
                engine.start()
                break
            except BackendNotReadyError as e:
                if not _ask_retry(f"Backend not ready: {e}", interactive):
                    return 2
            except CameraUnavailableError as e:
                if not _ask_retry(f"Camera unavailable: {e}", interactive):
                    return 3

        if not args.headless:
            cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_AUTOSIZE)

        print("[GUARD] Monitoring. Press 'Q' or 'ESC' to exit, 'E' for emergency alert.")

        while engine.running:
            if not args.headless:
                key = cv2.waitKey(1) & 0xFF
                if key in (ord('q'), ord('Q'), 27):
                    print("\n[GUARD] Exit key pressed — shutting down...")
                    break
                if key in (ord('e'), ord('E')):
                    engine.request_escalation()

            status = engine.get_latest_result()
            if status is not None and status.frame is not None and not args.headless:
                annotated, _ = hud.render(status.frame, status)
                cv2.imshow(WINDOW_NAME, annotated)
            elif status is not None and args.headless:
                a = status.assessment
                print(f"[GUARD] {a.risk_level.value:<8} conf={a.confidence:3d} "
                      f"blink={a.blink_rate}/min closed={a.eye_closed_duration:.1f}s")
            else:
                time.sleep(0.01)

    except KeyboardInterrupt:
        print("\n[GUARD] Interrupted by User.")
    finally:
        print("[GUARD] Cleaning up...")
        if not args.headless:
            try:
                cv2.destroyAllWindows()
                cv2.waitKey(1)
            except cv2.error:
                pass
        if engine is not None:
            engine.shutdown()
            for trip in engine.trips.trips:
                print(f"[GUARD] Trip {trip.id}: {len(trip.alerts)} alerts, "
                      f"average alertness {trip.average_alertness}")
        print("[GUARD] Shutdown Complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

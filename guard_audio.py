import logging
import os
import threading
from typing import Optional

import numpy as np
import pygame

_log = logging.getLogger("GuardAudio")


class GuardAudio:
    """Alarm and warning sounds for the escalation layer.

    Two clips: a loud looping alarm (sustained head-nod) and a short
    one-shot warning tone (yawn cluster / prolonged eye closure).
    Playback is fire-and-forget; every play rewinds to the start.
    Failures (no audio device, bad file) are logged and swallowed so
    the tick loop is never interrupted.
    """

    ALARM_TONE = (880, 0.6)    # Hz, seconds per loop
    WARNING_TONE = (660, 0.35)

    def __init__(
        self,
        use_audio: bool = True,
        alarm_path: Optional[str] = None,
        warning_path: Optional[str] = None,
        volume: float = 0.8,
    ):
        self.enabled = use_audio
        self._lock = threading.Lock()
        self._alarm: Optional[pygame.mixer.Sound] = None
        self._warning: Optional[pygame.mixer.Sound] = None
        self.alarm_playing = False

        if not self.enabled:
            return

        try:
            if not pygame.mixer.get_init():
                pygame.mixer.init(frequency=22050, size=-16, channels=2, buffer=512)
        except pygame.error as e:
            _log.info("Audio disabled (mixer unavailable: %s)", e)
            self.enabled = False
            return

        self._alarm = self._load(alarm_path, *self.ALARM_TONE)
        self._warning = self._load(warning_path, *self.WARNING_TONE)
        self.set_volume(volume)

    @classmethod
    def from_config(cls, audio: dict) -> "GuardAudio":
        return cls(
            use_audio=audio.get("enabled", True),
            alarm_path=audio.get("alarm_path"),
            warning_path=audio.get("warning_path"),
            volume=audio.get("volume", 0.8),
        )

    def play_alarm(self):
        """Start the looping alarm from the beginning."""
        with self._lock:
            if self._restart(self._alarm, loops=-1):
                self.alarm_playing = True

    def stop_alarm(self):
        with self._lock:
            self.alarm_playing = False
            if self._alarm is None:
                return
            try:
                self._alarm.stop()
            except pygame.error as e:
                _log.debug("Alarm stop rejected: %s", e)

    def play_warning(self):
        with self._lock:
            self._restart(self._warning, loops=0)

    def set_volume(self, volume: float):
        volume = min(max(volume, 0.0), 1.0)
        for sound in (self._alarm, self._warning):
            if sound is not None:
                sound.set_volume(volume)

    def stop_all(self):
        """Stop and rewind everything (session teardown)."""
        self.stop_alarm()
        with self._lock:
            if self._warning is not None:
                try:
                    self._warning.stop()
                except pygame.error as e:
                    _log.debug("Warning stop rejected: %s", e)

    # ── Private helpers ───────────────────────────────────────

    def _restart(self, sound: Optional[pygame.mixer.Sound], loops: int) -> bool:
        if not self.enabled or sound is None:
            return False
        try:
            sound.stop()
            sound.play(loops=loops)
            return True
        except pygame.error as e:
            _log.debug("Playback rejected: %s", e)
            return False

    def _load(self, path: Optional[str], freq: int, duration: float) -> Optional[pygame.mixer.Sound]:
        if path and os.path.exists(path):
            try:
                return pygame.mixer.Sound(path)
            except pygame.error as e:
                _log.warning("Could not load %s (%s), using generated tone", path, e)
        return self._make_tone(freq, duration)

    @staticmethod
    def _make_tone(freq: int, duration: float) -> Optional[pygame.mixer.Sound]:
        """Synthesize a sine tone matching the mixer's format."""
        init = pygame.mixer.get_init()
        if not init:
            return None
        rate, _, channels = init
        t = np.linspace(0, duration, int(rate * duration), endpoint=False)
        wave = (np.sin(2 * np.pi * freq * t) * 32767 * 0.5).astype(np.int16)
        if channels > 1:
            wave = np.ascontiguousarray(np.column_stack([wave] * channels))
        try:
            return pygame.sndarray.make_sound(wave)
        except (pygame.error, ValueError) as e:
            _log.info("Tone synthesis failed: %s", e)
            return None

"""Energy-based barge-in detection.

Fallback for STT providers without native turn detection: while the agent
is speaking, a few consecutive loud caller frames mean the caller is
talking over it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from voice_agent.audio.frames import PCMInput, compute_rms
from voice_agent.config import settings

log = logging.getLogger("voice_agent.audio.barge_in")


@dataclass
class BargeInEvent:
    timestamp: float        # clock seconds
    energy_level: float
    consecutive_frames: int


class BargeInDetector:
    """Counts consecutive above-threshold frames while the agent speaks.

    Reaching ``min_frames`` fires once, then the detector ignores audio for
    ``cooldown_ms`` so one interruption is not reported several times.
    Quiet frames decay the counter by one rather than clearing it, which
    tolerates a short dip inside a word.
    """

    def __init__(
        self,
        energy_threshold: float | None = None,
        min_frames: int | None = None,
        cooldown_ms: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.energy_threshold = (
            settings.barge_in_energy_threshold if energy_threshold is None else energy_threshold
        )
        self.min_frames = settings.barge_in_min_frames if min_frames is None else min_frames
        self.cooldown_ms = settings.barge_in_cooldown_ms if cooldown_ms is None else cooldown_ms
        self._clock = clock

        self._is_agent_speaking = False
        self._consecutive_active_frames = 0
        self._last_barge_in: Optional[float] = None
        self._on_barge_in: Optional[Callable[[BargeInEvent], None]] = None

    def set_on_barge_in(self, callback: Callable[[BargeInEvent], None] | None) -> None:
        self._on_barge_in = callback

    @property
    def is_agent_speaking(self) -> bool:
        return self._is_agent_speaking

    def agent_started_speaking(self) -> None:
        self._is_agent_speaking = True
        self._consecutive_active_frames = 0

    def agent_stopped_speaking(self) -> None:
        self._is_agent_speaking = False
        self._consecutive_active_frames = 0

    def process_audio_frame(self, pcm: PCMInput) -> bool:
        """Feed one caller frame. Returns True if this frame fired a barge-in."""
        if not self._is_agent_speaking:
            self._consecutive_active_frames = 0
            return False

        now = self._clock()
        if self._in_cooldown(now):
            return False

        energy = compute_rms(pcm)
        if energy <= self.energy_threshold:
            self._consecutive_active_frames = max(0, self._consecutive_active_frames - 1)
            return False

        self._consecutive_active_frames += 1
        if self._consecutive_active_frames < self.min_frames:
            return False

        event = BargeInEvent(
            timestamp=now,
            energy_level=energy,
            consecutive_frames=self._consecutive_active_frames,
        )
        self._last_barge_in = now
        self._consecutive_active_frames = 0
        log.info("Barge-in detected: energy=%.4f frames=%d", energy, event.consecutive_frames)

        if self._on_barge_in:
            self._on_barge_in(event)
        return True

    def reset(self) -> None:
        self._is_agent_speaking = False
        self._consecutive_active_frames = 0
        self._last_barge_in = None

    def get_stats(self) -> dict:
        since_ms = None
        if self._last_barge_in is not None:
            since_ms = (self._clock() - self._last_barge_in) * 1000
        return {
            "is_agent_speaking": self._is_agent_speaking,
            "consecutive_active_frames": self._consecutive_active_frames,
            "time_since_last_barge_in_ms": since_ms,
        }

    def _in_cooldown(self, now: float) -> bool:
        if self._last_barge_in is None:
            return False
        return (now - self._last_barge_in) * 1000 < self.cooldown_ms

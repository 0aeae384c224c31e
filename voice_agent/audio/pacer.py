"""Real-time pacing of synthesized audio.

TTS engines produce audio much faster than it plays.  Pushing it all at
once floods the channel and makes barge-in useless (the audio is already
queued on the far side), so the pacer keeps only a small lead over the
wall clock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from voice_agent.config import settings

log = logging.getLogger("voice_agent.audio.pacer")


class StreamPacer:
    """Throttle audio delivery to roughly playback speed plus a target buffer."""

    def __init__(
        self,
        sample_rate: int | None = None,
        channels: int | None = None,
        bits_per_sample: int | None = None,
        target_buffer_ms: float | None = None,
        min_sleep_ms: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        sample_rate = sample_rate or settings.sample_rate
        channels = channels or settings.channels
        bits_per_sample = bits_per_sample or settings.bits_per_sample
        self.bytes_per_second = sample_rate * channels * bits_per_sample / 8
        self.target_buffer_ms = (
            settings.tts_buffer_ms if target_buffer_ms is None else target_buffer_ms
        )
        self.min_sleep_ms = settings.pacer_min_sleep_ms if min_sleep_ms is None else min_sleep_ms
        self._clock = clock
        self._sleep = sleep
        self._start_time = clock()
        self._bytes_sent = 0

    def reset(self) -> None:
        """Start a new stream: zero the byte count and restart the clock."""
        self._start_time = self._clock()
        self._bytes_sent = 0

    async def pace(self, chunk_bytes: int) -> None:
        """Account for ``chunk_bytes`` about to be sent; sleep if too far ahead."""
        if self._bytes_sent == 0:
            self._start_time = self._clock()

        self._bytes_sent += chunk_bytes
        lead_ms = self._audio_duration_ms() - self._elapsed_ms()

        if lead_ms > self.target_buffer_ms:
            wait_ms = lead_ms - self.target_buffer_ms
            if wait_ms > self.min_sleep_ms:
                log.debug("Pacing: lead=%.0fms, sleeping %.0fms", lead_ms, wait_ms)
                await self._sleep(wait_ms / 1000)

    def get_stats(self) -> dict[str, float]:
        elapsed_ms = self._elapsed_ms()
        audio_duration_ms = self._audio_duration_ms()
        return {
            "bytes_sent": self._bytes_sent,
            "elapsed_ms": elapsed_ms,
            "audio_duration_ms": audio_duration_ms,
            "lead_ms": audio_duration_ms - elapsed_ms,
        }

    def _elapsed_ms(self) -> float:
        return (self._clock() - self._start_time) * 1000

    def _audio_duration_ms(self) -> float:
        return self._bytes_sent / self.bytes_per_second * 1000

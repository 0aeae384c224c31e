"""PCM frames, energy measurement, playback pacing and barge-in detection."""

from .barge_in import BargeInDetector, BargeInEvent
from .frames import AudioFrame, compute_rms
from .pacer import StreamPacer

__all__ = ["AudioFrame", "BargeInDetector", "BargeInEvent", "StreamPacer", "compute_rms"]

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

from transcript_service.attribution import monotonic_ms


def pcm_rms(pcm_bytes: bytes) -> Optional[float]:
    """RMS of 16-bit little-endian PCM, scaled to [0, 1]. None for an empty frame."""
    usable = len(pcm_bytes) - (len(pcm_bytes) % 2)
    if usable <= 0:
        return None
    samples = np.frombuffer(pcm_bytes[:usable], dtype="<i2").astype(np.float32) / 32768.0
    return float(np.sqrt(np.mean(np.square(samples))))


class MicLevelMeter:
    """Latest microphone energy reading, taken from raw PCM frames."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or monotonic_ms
        self._rms: float | None = None
        self._ts: float = 0.0

    def add_pcm(self, pcm_bytes: bytes) -> Optional[float]:
        rms = pcm_rms(pcm_bytes)
        if rms is not None:
            self._rms = rms
            self._ts = self._clock()
        return rms

    def current(self, max_age_ms: float) -> Optional[float]:
        if self._rms is None or self._clock() - self._ts > max_age_ms:
            return None
        return self._rms

    def reset(self) -> None:
        self._rms = None
        self._ts = 0.0

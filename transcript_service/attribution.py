from __future__ import annotations

import logging
import math
import time
from typing import Callable, Optional

from common.schemas import AudioEvent, Speaker
from transcript_service.models import AttributionDecision

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class SpeakerAttributor:
    """Labels mic/system events and gates mic input that is likely system echo.

    While system audio is being captured, the microphone can pick up the
    system's own playback right after it happens. Mic events inside a short
    bias window after a system event, or without enough voice energy, are
    rejected.
    """

    def __init__(
        self,
        is_system_active: Callable[[], bool],
        system_bias_ms: float = 300,
        vad_threshold: float = 0.06,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self._is_system_active = is_system_active
        self.system_bias_ms = system_bias_ms
        self.vad_threshold = vad_threshold
        self._clock = clock
        self._last_system_ms: float | None = None

    def reset(self) -> None:
        self._last_system_ms = None

    def record_system_event(self) -> None:
        self._last_system_ms = self._clock()

    def classify_system(self) -> AttributionDecision:
        self.record_system_event()
        return AttributionDecision(speaker=Speaker.remote, accept=True)

    def classify_mic(self, is_final: bool, energy: Optional[float] = None) -> AttributionDecision:
        if not self._is_system_active():
            return AttributionDecision(speaker=Speaker.local, accept=True)

        has_energy = energy is not None and math.isfinite(energy)
        elapsed = self._elapsed_ms()

        if is_final:
            if has_energy:
                accept = energy >= self.vad_threshold
            else:
                accept = elapsed > self.system_bias_ms
        elif not has_energy or elapsed <= self.system_bias_ms:
            accept = False
        else:
            accept = energy >= self.vad_threshold

        if not accept:
            logger.debug(
                "Mic %s rejected: energy=%s elapsed=%.0fms",
                "final" if is_final else "interim",
                energy,
                elapsed,
            )
        return AttributionDecision(speaker=Speaker.local, accept=accept)

    def classify(self, event: AudioEvent) -> AttributionDecision:
        if event.speaker is Speaker.remote:
            return self.classify_system()
        return self.classify_mic(event.is_final, event.energy)

    def _elapsed_ms(self) -> float:
        # No system event seen yet: nothing can be echoing
        if self._last_system_ms is None:
            return math.inf
        return self._clock() - self._last_system_ms

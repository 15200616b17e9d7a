"""Internal models for transcript consolidation."""

from __future__ import annotations

from dataclasses import dataclass, field

from common.schemas import Speaker, TranscriptRow, WordUnit


@dataclass(frozen=True)
class AttributionDecision:
    speaker: Speaker
    accept: bool


@dataclass
class SpeakerState:
    confirmed_words: list[WordUnit] = field(default_factory=list)
    commit_index: int = 0
    interim_tail: str = ""

    @property
    def last_end_ms(self) -> int:
        return self.confirmed_words[-1].end_ms if self.confirmed_words else -1


@dataclass
class FlushSnapshot:
    """Rendered rows plus the finalized rows committed since the previous flush."""

    rows: list[TranscriptRow]
    finals: list[TranscriptRow] = field(default_factory=list)

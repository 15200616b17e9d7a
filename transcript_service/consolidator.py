from __future__ import annotations

import logging
from collections import deque
from typing import Optional

from common.schemas import Speaker, TranscriptRow
from transcript_service.buffer import normalize_text

logger = logging.getLogger(__name__)


def merge_paragraph_text(existing: str, incoming: str) -> str:
    """Merge a same-speaker final into the paragraph it follows.

    An incoming text that contains the paragraph is treated as an extended
    correction and replaces it; one that is contained in the paragraph is a
    late duplicate and is ignored; anything else is appended.
    """
    existing = normalize_text(existing)
    incoming = normalize_text(incoming)
    existing_key = existing.lower()
    incoming_key = incoming.lower()
    if existing_key in incoming_key:
        return incoming
    if incoming_key in existing_key:
        return existing
    return normalize_text(f"{existing} {incoming}")


class TranscriptConsolidator:
    """Append-only finalized log, coalesced into speaker paragraphs, plus one interim slot per speaker."""

    def __init__(self, row_cap: int = 300) -> None:
        self.row_cap = row_cap
        self._paragraphs: deque[TranscriptRow] = deque(maxlen=row_cap)
        self._interim: dict[Speaker, str] = {}
        self._last_final: dict[Speaker, str] = {}

    def append(self, row: TranscriptRow) -> None:
        text = normalize_text(row.text)
        if not text:
            return
        self._last_final[row.speaker] = text

        # Only the newest paragraph can absorb an incoming row
        last = self._paragraphs[-1] if self._paragraphs else None
        if last is not None and last.speaker is row.speaker:
            last.text = merge_paragraph_text(last.text, text)
            return
        self._paragraphs.append(
            TranscriptRow(id=row.id, speaker=row.speaker, text=text, is_final=True)
        )

    def set_interim(self, speaker: Speaker, text: str) -> None:
        text = normalize_text(text)
        if text:
            self._interim[speaker] = text
        else:
            self._interim.pop(speaker, None)

    def interim(self, speaker: Speaker) -> str:
        return self._interim.get(speaker, "")

    def last_final(self, speaker: Speaker) -> Optional[str]:
        return self._last_final.get(speaker)

    def render(self) -> list[TranscriptRow]:
        rows = [p.model_copy() for p in self._paragraphs]

        for speaker in Speaker:
            tail = self._interim.get(speaker)
            if not tail:
                continue
            target = next((r for r in reversed(rows) if r.speaker is speaker), None)
            if target is not None:
                target.interim = tail
            else:
                rows.append(
                    TranscriptRow(
                        id=f"{speaker.value}-interim",
                        speaker=speaker,
                        text=tail,
                        is_final=False,
                    )
                )

        if len(rows) > self.row_cap:
            del rows[: len(rows) - self.row_cap]
        return rows

    def clear(self) -> None:
        self._paragraphs.clear()
        self._interim.clear()
        self._last_final.clear()

    def __len__(self) -> int:
        return len(self._paragraphs)

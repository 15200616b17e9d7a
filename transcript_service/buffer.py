from __future__ import annotations

import itertools
import logging
import re

from common.schemas import AudioEvent, Speaker, TranscriptRow, WordUnit
from transcript_service.models import SpeakerState

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_END = (".", "!", "?")


def normalize_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def join_words(words: list[WordUnit]) -> str:
    return normalize_text(" ".join(w.text for w in words))


class SentenceCommitBuffer:
    """Turns one speaker's interim/final updates into finalized sentence rows.

    Word-timed updates are merged on their ``end_ms`` cursor and committed at
    sentence-terminal punctuation; the uncommitted words form the interim
    tail. Updates without word timings replace the tail wholesale and commit
    the whole text on a final.
    """

    def __init__(self, speaker: Speaker) -> None:
        self.speaker = speaker
        self._state = SpeakerState()
        self._row_counter = itertools.count()

    @property
    def state(self) -> SpeakerState:
        return self._state

    @property
    def interim_tail(self) -> str:
        return self._state.interim_tail

    def update(self, event: AudioEvent) -> list[TranscriptRow]:
        """Apply one accepted event. Returns the rows it committed, in order."""
        text = normalize_text(event.text)
        if not text:
            return []
        if event.words:
            return self._update_words(event.words, event.is_final)

        if event.is_final:
            # Words still pending on the timed path are covered by this final
            self._state.commit_index = len(self._state.confirmed_words)
            self._state.interim_tail = ""
            return [self._make_row(text)]
        self._state.interim_tail = text
        return []

    def reset(self) -> None:
        # The row counter keeps running so ids stay unique across resets
        self._state = SpeakerState()

    def _update_words(self, words: list[WordUnit], is_final: bool) -> list[TranscriptRow]:
        state = self._state
        last_end = state.last_end_ms
        for word in words:
            if word.end_ms > last_end:
                state.confirmed_words.append(word)
                last_end = word.end_ms
            else:
                logger.debug("%s: dropped stale word %r (end_ms=%d)", self.speaker.value, word.text, word.end_ms)

        rows: list[TranscriptRow] = []
        confirmed = state.confirmed_words
        for i in range(state.commit_index, len(confirmed)):
            if confirmed[i].text.rstrip().endswith(_SENTENCE_END):
                sentence = join_words(confirmed[state.commit_index : i + 1])
                if sentence:
                    rows.append(self._make_row(sentence))
                state.commit_index = i + 1

        if is_final and state.commit_index < len(confirmed):
            tail = join_words(confirmed[state.commit_index :])
            if tail:
                rows.append(self._make_row(tail))
            state.commit_index = len(confirmed)

        state.interim_tail = join_words(confirmed[state.commit_index :])
        return rows

    def _make_row(self, text: str) -> TranscriptRow:
        return TranscriptRow(
            id=f"{self.speaker.value}-final-{next(self._row_counter)}",
            speaker=self.speaker,
            text=text,
            is_final=True,
        )

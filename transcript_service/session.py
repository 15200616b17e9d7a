from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from common.config import TranscriptSettings
from common.schemas import AudioEvent, Speaker, TranscriptRow
from transcript_service.attribution import SpeakerAttributor, monotonic_ms
from transcript_service.buffer import SentenceCommitBuffer, normalize_text
from transcript_service.consolidator import TranscriptConsolidator
from transcript_service.levels import MicLevelMeter
from transcript_service.models import FlushSnapshot
from transcript_service.scheduler import FlushScheduler

logger = logging.getLogger(__name__)


class TranscriptSession:
    """Per-stream state: attribution, per-speaker buffers and the consolidated transcript.

    Each source feeds its own bounded queue; the session is the only
    consumer and all mutation runs on the event loop thread.
    """

    def __init__(
        self,
        stream_id: str,
        settings: TranscriptSettings,
        on_flush: Callable[[FlushSnapshot], None] | None = None,
        system_active: bool = False,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.stream_id = stream_id
        self.settings = settings
        self.system_active = system_active

        self.attributor = SpeakerAttributor(
            is_system_active=lambda: self.system_active,
            system_bias_ms=settings.system_bias_ms,
            vad_threshold=settings.vad_threshold,
            clock=clock,
        )
        self.buffers = {speaker: SentenceCommitBuffer(speaker) for speaker in Speaker}
        self.consolidator = TranscriptConsolidator(row_cap=settings.row_cap)
        self.levels = MicLevelMeter(clock=clock)
        self.scheduler = FlushScheduler(self._flush, tick_ms=settings.tick_ms)

        self._on_flush = on_flush
        self._pending_finals: list[TranscriptRow] = []
        self._channels: dict[Speaker, asyncio.Queue[AudioEvent]] = {
            speaker: asyncio.Queue(maxsize=settings.queue_maxsize) for speaker in Speaker
        }
        self._consumers: list[asyncio.Task] = []
        self.last_snapshot: FlushSnapshot | None = None

    # --- producers ---

    async def submit(self, event: AudioEvent) -> None:
        """Queue an event on its source channel. Finals wait for room; interims are dropped when full."""
        channel = self._channels[event.speaker]
        if event.is_final:
            await channel.put(event)
            return
        try:
            channel.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug("%s: channel full, interim dropped", event.speaker.value)

    def set_system_active(self, active: bool) -> None:
        if active != self.system_active:
            logger.info("System audio %s for %s", "active" if active else "inactive", self.stream_id)
        self.system_active = active

    def add_mic_audio(self, pcm_bytes: bytes) -> Optional[float]:
        return self.levels.add_pcm(pcm_bytes)

    # --- processing ---

    def start(self) -> None:
        if self._consumers:
            return
        for speaker in Speaker:
            self._consumers.append(asyncio.create_task(self._consume(speaker)))

    async def close(self) -> None:
        self.scheduler.cancel()
        for task in self._consumers:
            task.cancel()
        await asyncio.gather(*self._consumers, return_exceptions=True)
        self._consumers = []

    async def drain(self) -> None:
        """Wait until every queued event has been handled, then flush."""
        for channel in self._channels.values():
            await channel.join()
        self.scheduler.flush_now()

    async def _consume(self, speaker: Speaker) -> None:
        channel = self._channels[speaker]
        while True:
            event = await channel.get()
            try:
                self.handle_event(event)
            except Exception:
                logger.exception("Failed to handle %s event for %s", speaker.value, self.stream_id)
            finally:
                channel.task_done()

    def handle_event(self, event: AudioEvent) -> list[TranscriptRow]:
        """Attribute, buffer and consolidate one event. Returns the rows it committed."""
        if event.speaker is Speaker.local and event.energy is None:
            level = self.levels.current(self.settings.mic_level_max_age_ms)
            if level is not None:
                event = event.model_copy(update={"energy": level})

        decision = self.attributor.classify(event)
        if not decision.accept or not normalize_text(event.text):
            return []

        buffer = self.buffers[decision.speaker]
        rows = buffer.update(event)
        for row in rows:
            self.consolidator.append(row)
        self._pending_finals.extend(rows)
        self.consolidator.set_interim(decision.speaker, buffer.interim_tail)
        self.scheduler.schedule()
        return rows

    def _flush(self) -> None:
        snapshot = FlushSnapshot(rows=self.consolidator.render(), finals=self._pending_finals)
        self._pending_finals = []
        self.last_snapshot = snapshot
        if self._on_flush is not None:
            self._on_flush(snapshot)

    # --- consumer-facing ---

    def get_display_rows(self) -> list[TranscriptRow]:
        return self.consolidator.render()

    def get_last_final(self, speaker: Speaker) -> Optional[str]:
        return self.consolidator.last_final(speaker)

    def reset(self) -> None:
        """Drop all transcript state, including events still queued, and publish the empty view."""
        self.scheduler.cancel()
        dropped = 0
        for channel in self._channels.values():
            while True:
                try:
                    channel.get_nowait()
                except asyncio.QueueEmpty:
                    break
                channel.task_done()
                dropped += 1
        for buffer in self.buffers.values():
            buffer.reset()
        self.attributor.reset()
        self.consolidator.clear()
        self.levels.reset()
        self._pending_finals = []
        logger.info("Transcript reset for %s (%d queued events dropped)", self.stream_id, dropped)
        self.scheduler.flush_now()


class SessionManager:
    def __init__(self, max_sessions: int = 10) -> None:
        self._max = max_sessions
        self._sessions: dict[str, TranscriptSession] = {}
        self._lock = asyncio.Lock()

    async def create(self, stream_id: str, settings: TranscriptSettings, **kwargs) -> TranscriptSession:
        async with self._lock:
            if len(self._sessions) >= self._max:
                raise RuntimeError(f"Max sessions ({self._max}) reached")
            if stream_id in self._sessions:
                raise RuntimeError(f"Session {stream_id} already exists")
            session = TranscriptSession(stream_id=stream_id, settings=settings, **kwargs)
            self._sessions[stream_id] = session
            logger.info("Session created: %s (%d active)", stream_id, len(self._sessions))
            return session

    async def remove(self, stream_id: str) -> None:
        async with self._lock:
            session = self._sessions.pop(stream_id, None)
            logger.info("Session removed: %s (%d active)", stream_id, len(self._sessions))
        if session is not None:
            await session.close()

    def get(self, stream_id: str) -> TranscriptSession | None:
        return self._sessions.get(stream_id)

    @property
    def active_count(self) -> int:
        return len(self._sessions)

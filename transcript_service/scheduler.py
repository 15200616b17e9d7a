from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class FlushScheduler:
    """Debounces mutation signals into at most one flush per redraw tick."""

    def __init__(self, flush: Callable[[], None], tick_ms: float = 16) -> None:
        self._flush = flush
        self.tick_s = tick_ms / 1000.0
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        if self._handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.tick_s, self._run)

    def flush_now(self) -> None:
        self.cancel()
        self._flush()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _run(self) -> None:
        self._handle = None
        try:
            self._flush()
        except Exception:
            logger.exception("Transcript flush failed")

"""Active subtitles — each chunk is on screen for its own duration."""

import asyncio
import uuid
from typing import Optional

from eventsync.schemas.subtitle import ActiveSubtitle, SubtitleChunk
from eventsync.state.base import Reconciler


class SubtitlesState(Reconciler):
    """Chunks in arrival order, each removed by its own expiry timer."""

    def __init__(self, log=None):
        super().__init__("subtitles", log)
        self.subtitles: list[ActiveSubtitle] = []
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    def add(self, chunk: SubtitleChunk) -> ActiveSubtitle:
        loop = asyncio.get_running_loop()
        ttl = chunk.duration / 1000
        subtitle = ActiveSubtitle(
            id=str(uuid.uuid4()),
            chunk=chunk,
            expires_at=loop.time() + ttl,
        )
        self.subtitles = self.subtitles + [subtitle]
        self._timers[subtitle.id] = loop.call_later(ttl, self._expire, subtitle.id)
        self.changed()
        return subtitle

    def get(self, subtitle_id: str) -> Optional[ActiveSubtitle]:
        return next((s for s in self.subtitles if s.id == subtitle_id), None)

    def set_translation(self, subtitle_id: str, text: str) -> bool:
        """Attach a translation; False if the subtitle already expired."""
        subtitle = self.get(subtitle_id)
        if subtitle is None:
            return False
        subtitle.translated_text = text
        self.changed()
        return True

    def clear(self) -> None:
        self._cancel_timers()
        if self.subtitles:
            self.subtitles = []
            self.changed()

    def close(self) -> None:
        """Stop the expiry timers without notifying listeners."""
        self._cancel_timers()

    def _cancel_timers(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _expire(self, subtitle_id: str) -> None:
        self._timers.pop(subtitle_id, None)
        self.subtitles = [s for s in self.subtitles if s.id != subtitle_id]
        self.changed()

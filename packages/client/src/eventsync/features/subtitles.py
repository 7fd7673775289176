"""Live subtitles for a session, with optional auto-translation.

Learn: Each chunk stays on screen for its own `duration` (ms) and is
removed by its own timer. Translating a chunk is keyed by its TEXT, not
its id, so the speaker repeating a phrase costs one request, not two.
"""

from typing import Any, Optional

from eventsync.cache import cache_key
from eventsync.events import types as ev
from eventsync.features.base import FeatureClient
from eventsync.features.translation import request_translation
from eventsync.schemas.subtitle import ActiveSubtitle, SubtitleChunk
from eventsync.state.subtitles import SubtitlesState


class SubtitlesClient(FeatureClient):
    name = "subtitles"
    scope_kinds = ("session",)

    def __init__(
        self,
        handle,
        *,
        enabled: bool = True,
        auto_translate: bool = False,
        language: str = "en",
    ):
        super().__init__(handle)
        self.state = SubtitlesState(log=self.log)
        self.enabled = enabled
        self.paused = False
        self.auto_translate = auto_translate
        self.language = language
        self.translations = handle.cache("subtitle_translations")

        self.listen(ev.SUBTITLE_CHUNK, self._on_chunk)
        self.listen(ev.SYSTEM_ERROR, self._on_system_error, gated=False)
        self.start()

    @property
    def subtitles(self) -> list[ActiveSubtitle]:
        return self.state.subtitles

    @property
    def current(self) -> Optional[ActiveSubtitle]:
        return self.state.subtitles[-1] if self.state.subtitles else None

    # ─── Controls ───────────────────────────────────────

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False
        self.state.clear()

    def clear(self) -> None:
        self.state.clear()

    def snapshot(self) -> dict[str, Any]:
        current = self.current
        return {
            "subtitles": [s.text for s in self.state.subtitles],
            "current": current.text if current else None,
            "enabled": self.enabled,
            "paused": self.paused,
            "error": self.error,
        }

    def close(self) -> None:
        super().close()
        self.state.close()

    # ─── Broadcasts ─────────────────────────────────────

    def _on_chunk(self, payload: Any = None, *_: Any) -> None:
        if not self.enabled or self.paused or not self.scope.matches(payload):
            return
        chunk = self.state.parse(SubtitleChunk, payload)
        if chunk is None:
            return
        subtitle = self.state.add(chunk)
        if self.auto_translate and chunk.language != self.language:
            self._translate(subtitle)

    def _on_system_error(self, payload: Any = None, *_: Any) -> None:
        message = payload.get("message") if isinstance(payload, dict) else None
        self.error = message or "Subtitle stream error"
        self.log.warning("subtitles.system_error", error=self.error)

    def _translate(self, subtitle: ActiveSubtitle) -> None:
        chunk = subtitle.chunk
        key = cache_key(chunk.text, self.language)
        cached = self.translations.get(key)
        if cached is not None:
            self.state.set_translation(subtitle.id, cached)
            return

        async def fetch() -> Optional[str]:
            data = await request_translation(
                self.handle,
                {
                    "messageId": subtitle.id,
                    "targetLanguage": self.language,
                    "text": chunk.text,
                    "sourceLanguage": chunk.language,
                },
            )
            return data.translated_text if data is not None else None

        async def run() -> None:
            text = await self.translations.resolve(key, fetch)
            if text is not None:
                self.state.set_translation(subtitle.id, text)

        self.handle.spawn(run())

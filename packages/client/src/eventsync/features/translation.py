"""Message translation — cached, deduplicated `translation.request` calls.

Learn: Translating the same message into the same language twice is
wasted work, so results live in a connection-owned BoundedCache (500
entries, oldest evicted first). Ten callers asking for the same key at
once share ONE request: the cache parks them on a single future.

  t = TranslationClient(handle, language="es")
  a, b = await asyncio.gather(t.translate("m1"), t.translate("m1"))
  # one translation.request on the wire; a == b

Failures are not cached. A later translate() for that key asks again.
"""

import asyncio
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from eventsync.cache import cache_key
from eventsync.events import types as ev
from eventsync.features.base import FeatureClient
from eventsync.schemas.subtitle import TranslatedMessage, TranslationData

TRANSLATION_FAILED = "Translation failed"


async def request_translation(handle, payload: dict[str, Any]) -> Optional[TranslationData]:
    """Send one translation.request; None when it fails or the reply is unusable."""
    result = await handle.call(ev.TRANSLATION_REQUEST, payload)
    if not result.success:
        return None
    try:
        return TranslationData.model_validate(result.data)
    except ValidationError:
        return None


class TranslationClient(FeatureClient):
    name = "translation"

    def __init__(self, handle, *, language: str = "en"):
        super().__init__(handle)
        self.language = language
        self.cache = handle.cache("translations")

    def key(self, message_id: str, language: Optional[str] = None) -> str:
        return cache_key(message_id, language or self.language)

    def has_translation(self, message_id: str, language: Optional[str] = None) -> bool:
        return self.key(message_id, language) in self.cache

    def get_translation(
        self, message_id: str, language: Optional[str] = None
    ) -> Optional[TranslatedMessage]:
        return self.cache.get(self.key(message_id, language))

    def is_translating(self, message_id: str, language: Optional[str] = None) -> bool:
        return self.cache.is_pending(self.key(message_id, language))

    async def translate(
        self, message_id: str, language: Optional[str] = None
    ) -> Optional[TranslatedMessage]:
        """Translate a message, from cache when possible."""
        lang = language or self.language

        async def fetch() -> Optional[TranslatedMessage]:
            data = await request_translation(
                self.handle, {"messageId": message_id, "targetLanguage": lang}
            )
            if data is None:
                self.error = TRANSLATION_FAILED
                self.log.debug("translation.failed", message_id=message_id, language=lang)
                return None
            self.error = None
            return TranslatedMessage(
                message_id=message_id,
                target_language=lang,
                translated_text=data.translated_text,
            )

        return await self.cache.resolve(self.key(message_id, lang), fetch)

    async def translate_batch(
        self, message_ids: Iterable[str], language: Optional[str] = None
    ) -> dict[str, Optional[TranslatedMessage]]:
        ids = list(dict.fromkeys(message_ids))
        results = await asyncio.gather(*(self.translate(i, language) for i in ids))
        return dict(zip(ids, results))

    def clear_cache(self) -> None:
        self.cache.clear()

    def snapshot(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "cached": len(self.cache),
            "pending": self.cache.pending_count,
            "error": self.error,
        }

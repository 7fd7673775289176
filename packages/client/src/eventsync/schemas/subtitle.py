"""Live subtitles and translation payloads."""

from typing import Optional

from pydantic import BaseModel, Field

from eventsync.schemas.base import WireModel


class SubtitleChunk(WireModel):
    session_id: str
    text: str
    language: str
    timestamp: str
    duration: int = Field(..., ge=0)  # ms


class ActiveSubtitle(BaseModel):
    """A chunk currently on screen."""

    id: str
    chunk: SubtitleChunk
    expires_at: float  # loop time
    translated_text: Optional[str] = None

    @property
    def text(self) -> str:
        return self.translated_text or self.chunk.text


class TranslationData(WireModel):
    message_id: str = ""
    target_language: str = ""
    translated_text: str = Field(..., min_length=1)


class TranslatedMessage(BaseModel):
    message_id: str
    target_language: str
    translated_text: str

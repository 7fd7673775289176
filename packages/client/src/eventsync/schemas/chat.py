"""Booth chat payloads."""

from typing import Any, Optional

from pydantic import Field

from eventsync.schemas.base import WireModel


class BoothChatMessage(WireModel):
    id: str
    booth_id: str
    sender_id: str
    sender_name: str = ""
    sender_avatar_url: Optional[str] = None
    is_staff: bool = False
    text: str
    created_at: str
    metadata: Optional[dict[str, Any]] = None


class BoothChatHistory(WireModel):
    messages: list[BoothChatMessage] = Field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[str] = None

"""AI networking suggestions.

Suggestions carry no id of their own, so `key` derives one from what is
being suggested; a repeat of the same suggestion replaces the old entry.
"""

from typing import Literal, Optional, Union

from pydantic import Field

from eventsync.schemas.base import WireModel


class ConnectionSuggestion(WireModel):
    type: Literal["CONNECTION_SUGGESTION"] = "CONNECTION_SUGGESTION"
    target_user_id: str
    suggested_user_id: str
    suggested_user_name: str
    suggested_user_avatar: Optional[str] = None
    suggested_user_title: Optional[str] = None
    suggested_user_company: Optional[str] = None
    reason: str = ""
    match_score: float = 0
    shared_interests: list[str] = Field(default_factory=list)
    conversation_starter: Optional[str] = None
    timestamp: str = ""

    @property
    def key(self) -> str:
        return f"connection:{self.suggested_user_id}"


class CircleSuggestion(WireModel):
    type: Literal["CIRCLE_SUGGESTION"] = "CIRCLE_SUGGESTION"
    target_user_id: str
    circle_id: str
    circle_name: str
    circle_description: Optional[str] = None
    reason: str = ""
    member_count: int = 0
    timestamp: str = ""

    @property
    def key(self) -> str:
        return f"circle:{self.circle_id}"


Suggestion = Union[ConnectionSuggestion, CircleSuggestion]

"""Gamification payloads: leaderboards, point events, achievements."""

from enum import Enum
from typing import Optional

from pydantic import Field

from eventsync.schemas.base import WireModel


class PointReason(str, Enum):
    MESSAGE_SENT = "MESSAGE_SENT"
    MESSAGE_REACTED = "MESSAGE_REACTED"
    QUESTION_ASKED = "QUESTION_ASKED"
    QUESTION_UPVOTED = "QUESTION_UPVOTED"
    POLL_CREATED = "POLL_CREATED"
    POLL_VOTED = "POLL_VOTED"
    WAITLIST_JOINED = "WAITLIST_JOINED"

    @property
    def label(self) -> str:
        """Human text: POLL_VOTED → "poll voted"."""
        return self.value.replace("_", " ").lower()


POINT_VALUES: dict[PointReason, int] = {
    PointReason.MESSAGE_SENT: 10,
    PointReason.MESSAGE_REACTED: 5,
    PointReason.QUESTION_ASKED: 20,
    PointReason.QUESTION_UPVOTED: 5,
    PointReason.POLL_CREATED: 15,
    PointReason.POLL_VOTED: 10,
    PointReason.WAITLIST_JOINED: 5,
}


# ─── Leaderboards ───────────────────────────────────────

class LeaderboardUser(WireModel):
    id: str
    first_name: str = ""
    last_name: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.id


class LeaderboardEntry(WireModel):
    rank: int
    user: LeaderboardUser
    score: int


class LeaderboardPayload(WireModel):
    """`leaderboard.data` / `leaderboard.updated` — always the full top-N."""
    top_entries: list[LeaderboardEntry]


class TeamLeaderboardEntry(WireModel):
    team_id: str
    name: str
    score: int
    rank: int
    member_count: int = 0


class TeamLeaderboardPayload(WireModel):
    team_scores: list[TeamLeaderboardEntry]


# ─── Points + achievements ──────────────────────────────

class PointEvent(WireModel):
    id: str
    reason: PointReason
    points: int
    timestamp: float


class Achievement(WireModel):
    id: str
    badge_name: str
    description: str = ""
    icon: Optional[str] = None
    unlocked_at: str = Field(..., min_length=1)

"""Heatmap payloads and the zone view derived from them.

Learn: The server sends raw per-session heat:

  {"sessionHeat": {"<sessionId>": {"heat": 42, "chatVelocity": 3, ...}},
   "updatedAt": "2026-..."}

The client turns that into zones with an activity level. `sessionHeat`
and `updatedAt` are required: a payload missing either is rejected as a
whole, never half-applied.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from eventsync.schemas.base import WireModel


class ActivityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Upper bounds (exclusive) of each level; anything above is critical.
ACTIVITY_THRESHOLDS = (
    (25.0, ActivityLevel.LOW),
    (50.0, ActivityLevel.MEDIUM),
    (75.0, ActivityLevel.HIGH),
)


def activity_level(heat: float) -> ActivityLevel:
    for bound, level in ACTIVITY_THRESHOLDS:
        if heat < bound:
            return level
    return ActivityLevel.CRITICAL


class SessionHeat(WireModel):
    heat: float = 0.0
    chat_velocity: float = 0.0
    qna_velocity: float = 0.0


class HeatmapPayload(WireModel):
    session_heat: dict[str, Optional[SessionHeat]]
    updated_at: str


# ─── Derived view ───────────────────────────────────────

class HeatmapZone(BaseModel):
    zone_id: str
    zone_name: str
    activity_level: ActivityLevel
    attendee_count: int
    heat_score: float
    chat_velocity: float
    qna_velocity: float


class HeatmapData(BaseModel):
    zones: list[HeatmapZone] = Field(default_factory=list)
    total_attendees: int = 0
    overall_activity_level: ActivityLevel = ActivityLevel.LOW
    updated_at: str = ""

"""Heatmap state — raw per-session heat in, sorted activity zones out."""

from typing import Any, Optional

from eventsync.schemas.heatmap import (
    ActivityLevel,
    HeatmapData,
    HeatmapPayload,
    HeatmapZone,
    activity_level,
)
from eventsync.state.base import Reconciler


def build_heatmap(payload: HeatmapPayload) -> HeatmapData:
    """Turn `sessionHeat` into zones, hottest first."""
    zones = []
    for session_id, heat in payload.session_heat.items():
        score = heat.heat if heat is not None else 0.0
        zones.append(
            HeatmapZone(
                zone_id=session_id,
                zone_name=f"Session {session_id[:8] or 'Unknown'}",
                activity_level=activity_level(score),
                attendee_count=round(score),
                heat_score=score,
                chat_velocity=heat.chat_velocity if heat is not None else 0.0,
                qna_velocity=heat.qna_velocity if heat is not None else 0.0,
            )
        )
    zones.sort(key=lambda z: z.heat_score, reverse=True)
    average = sum(z.heat_score for z in zones) / len(zones) if zones else 0.0
    return HeatmapData(
        zones=zones,
        total_attendees=sum(z.attendee_count for z in zones),
        overall_activity_level=activity_level(average),
        updated_at=payload.updated_at,
    )


class HeatmapState(Reconciler):
    def __init__(self, log=None):
        super().__init__("heatmap", log)
        self.data: Optional[HeatmapData] = None

    @property
    def zones(self) -> list[HeatmapZone]:
        return self.data.zones if self.data else []

    @property
    def total_attendees(self) -> int:
        return self.data.total_attendees if self.data else 0

    @property
    def overall_activity(self) -> ActivityLevel:
        return self.data.overall_activity_level if self.data else ActivityLevel.LOW

    def apply(self, payload: Any = None, *_: Any) -> bool:
        parsed = self.parse(HeatmapPayload, payload)
        if parsed is None:
            return False
        self.data = build_heatmap(parsed)
        self.changed()
        return True

    def zones_by_activity(self, level: ActivityLevel) -> list[HeatmapZone]:
        return [z for z in self.zones if z.activity_level == level]

    def critical_zones(self) -> list[HeatmapZone]:
        """Zones that need attention: high or critical."""
        hot = (ActivityLevel.HIGH, ActivityLevel.CRITICAL)
        return [z for z in self.zones if z.activity_level in hot]

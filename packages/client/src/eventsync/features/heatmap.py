"""Heatmap — live per-session activity for an event's organizers."""

from typing import Any

from eventsync.events import types as ev
from eventsync.features.base import FeatureClient
from eventsync.schemas.heatmap import ActivityLevel, HeatmapZone
from eventsync.state.heatmap import HeatmapState


class HeatmapClient(FeatureClient):
    """Joins the event's heatmap room and keeps the latest zones."""

    name = "heatmap"
    scope_kinds = ("event",)

    def __init__(self, handle):
        super().__init__(handle)
        self.state = HeatmapState(log=self.log)
        self.room = handle.add_room(
            "heatmap", ev.HEATMAP_JOIN, ev.HEATMAP_LEAVE, params={"eventId": self.scope.id}
        )
        self.listen(ev.HEATMAP_UPDATED, self.state.apply, room=self.room)
        self.start()

    @property
    def joined(self) -> bool:
        return self.room.joined

    def zones_by_activity(self, level: ActivityLevel) -> list[HeatmapZone]:
        return self.state.zones_by_activity(level)

    def critical_zones(self) -> list[HeatmapZone]:
        return self.state.critical_zones()

    def snapshot(self) -> dict[str, Any]:
        data = self.state.data
        return {
            "zones": [z.model_dump(mode="json") for z in self.state.zones],
            "total_attendees": self.state.total_attendees,
            "overall_activity": self.state.overall_activity.value,
            "last_updated": data.updated_at if data else None,
            "joined": self.room.joined,
            "error": self.room.error,
        }

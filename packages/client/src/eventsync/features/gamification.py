"""Gamification — live leaderboard, team scores, points and badges."""

from typing import Any

from eventsync.events import types as ev
from eventsync.features.base import FeatureClient
from eventsync.state.leaderboard import LeaderboardState


class GamificationClient(FeatureClient):
    """Session leaderboard view.

    Learn: `leaderboard.request` has no acknowledgment. The answer comes
    back as a `leaderboard.data` broadcast, so `loading` is cleared by
    that broadcast, not by the request.
    """

    name = "gamification"
    scope_kinds = ("session",)

    def __init__(self, handle):
        super().__init__(handle)
        self.state = LeaderboardState(
            self.user_id,
            max_point_events=self.config.max_point_events,
            point_event_ttl=self.config.point_event_ttl,
            log=self.log,
        )
        self.loading = False

        self.listen(ev.LEADERBOARD_DATA, self._on_leaderboard_data)
        self.listen(ev.LEADERBOARD_UPDATED, self.state.apply_leaderboard)
        self.listen(ev.TEAM_LEADERBOARD_UPDATED, self.state.apply_team_leaderboard)
        self.listen(ev.POINT_EVENT, self.state.apply_point_event)
        self.listen(ev.ACHIEVEMENT_UNLOCKED, self.state.apply_achievement)
        self.start()

    async def on_joined(self) -> None:
        await self.request_leaderboard()

    async def request_leaderboard(self) -> bool:
        self.loading = await self.handle.emit(ev.LEADERBOARD_REQUEST, self.scope.params())
        return self.loading

    def clear_achievements(self, ids: list[str]) -> None:
        self.state.clear_achievements(ids)

    def snapshot(self) -> dict[str, Any]:
        s = self.state
        return {
            "leaderboard": [e.model_dump() for e in s.entries],
            "team_leaderboard": [e.model_dump() for e in s.team_entries],
            "current_rank": s.current_rank,
            "current_score": s.current_score,
            "recent_points": [e.model_dump() for e in s.point_events],
            "achievements": [a.model_dump() for a in s.achievements],
            "loading": self.loading,
        }

    def close(self) -> None:
        super().close()
        self.state.close()

    def _on_leaderboard_data(self, payload: Any = None, *_: Any) -> None:
        if self.state.apply_leaderboard(payload):
            self.loading = False

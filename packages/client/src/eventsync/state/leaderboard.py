"""Leaderboard state — full replace of the top-N, plus points and badges."""

import asyncio
from typing import Any, Optional

from eventsync.schemas.leaderboard import (
    Achievement,
    LeaderboardEntry,
    LeaderboardPayload,
    PointEvent,
    TeamLeaderboardEntry,
    TeamLeaderboardPayload,
)
from eventsync.state.base import Reconciler


class LeaderboardState(Reconciler):
    """Local view of one session's gamification broadcasts.

    Learn: The server always sends the whole top-N, so apply is a plain
    replace and duplicates are free. "My" rank and score are derived by
    scanning the new entries for the local user id; between leaderboard
    updates, point events bump the score locally.

    Point events are transient (toasts): each one expires after
    `point_event_ttl` seconds. Those expiry timers belong to this object
    and close() cancels them.
    """

    def __init__(
        self,
        user_id: Optional[str],
        *,
        max_point_events: int = 50,
        point_event_ttl: float = 5.0,
        log=None,
    ):
        super().__init__("leaderboard", log)
        self.user_id = user_id
        self.max_point_events = max_point_events
        self.point_event_ttl = point_event_ttl

        self.entries: list[LeaderboardEntry] = []
        self.team_entries: list[TeamLeaderboardEntry] = []
        self.current_rank: Optional[int] = None
        self.current_score = 0
        self.point_events: list[PointEvent] = []
        self.achievements: list[Achievement] = []
        self.loaded = False
        self._expiry: dict[str, asyncio.TimerHandle] = {}

    # ─── Broadcast handlers ─────────────────────────────

    def apply_leaderboard(self, payload: Any = None, *_: Any) -> bool:
        board = self.parse(LeaderboardPayload, payload)
        if board is None:
            return False
        self.entries = board.top_entries
        self.loaded = True
        mine = self.find(self.user_id)
        if mine is not None:
            self.current_rank = mine.rank
            self.current_score = mine.score
        self.changed()
        return True

    def apply_team_leaderboard(self, payload: Any = None, *_: Any) -> bool:
        board = self.parse(TeamLeaderboardPayload, payload)
        if board is None:
            return False
        self.team_entries = board.team_scores
        self.changed()
        return True

    def apply_point_event(self, payload: Any = None, *_: Any) -> bool:
        event = self.parse(PointEvent, payload)
        if event is None:
            return False
        if any(e.id == event.id for e in self.point_events):
            return False
        self.point_events.append(event)
        if len(self.point_events) > self.max_point_events:
            expired = self.point_events.pop(0)
            self._cancel_expiry(expired.id)
        self.current_score += event.points

        loop = asyncio.get_running_loop()
        self._expiry[event.id] = loop.call_later(self.point_event_ttl, self._expire, event.id)
        self.changed()
        return True

    def apply_achievement(self, payload: Any = None, *_: Any) -> bool:
        achievement = self.parse(Achievement, payload)
        if achievement is None:
            return False
        if any(a.id == achievement.id for a in self.achievements):
            return False
        self.achievements.append(achievement)
        self.changed()
        return True

    # ─── Queries + housekeeping ─────────────────────────

    def find(self, user_id: Optional[str]) -> Optional[LeaderboardEntry]:
        if user_id is None:
            return None
        return next((e for e in self.entries if e.user.id == user_id), None)

    def clear_achievements(self, ids: list[str]) -> None:
        self.achievements = [a for a in self.achievements if a.id not in ids]
        self.changed()

    def close(self) -> None:
        for handle in self._expiry.values():
            handle.cancel()
        self._expiry.clear()

    @property
    def pending_timers(self) -> int:
        return len(self._expiry)

    def _expire(self, event_id: str) -> None:
        self._expiry.pop(event_id, None)
        self.point_events = [e for e in self.point_events if e.id != event_id]
        self.changed()

    def _cancel_expiry(self, event_id: str) -> None:
        handle = self._expiry.pop(event_id, None)
        if handle is not None:
            handle.cancel()

"""Teams — list, create, join and leave session teams.

Learn: Create/join/leave are mutations, so they go through the
idempotency guard. Each call builds one MutationAttempt; `retry()`
re-sends the last attempt with the SAME token, which is what makes a
retry after a timeout safe:

  r = await teams.create_team("Rocket")      # times out, token T
  r = await teams.retry()                    # re-sent with token T
  # server applied it once → exactly one "Rocket"

Replies arrive as `team.<verb>.response` events, not acks.
"""

from typing import Any, Optional

from eventsync.correlator import CallResult
from eventsync.events import types as ev
from eventsync.features.base import FeatureClient
from eventsync.idempotency import MutationAttempt
from eventsync.schemas.team import TEAM_NAME_MAX, Team
from eventsync.state.teams import TeamsState


class TeamsClient(FeatureClient):
    name = "teams"
    scope_kinds = ("session",)

    def __init__(self, handle):
        super().__init__(handle)
        self.state = TeamsState(self.user_id, log=self.log)
        self.loading = False
        self.last_attempt: Optional[MutationAttempt] = None

        self.listen(ev.TEAM_CREATED, self.state.apply_created)
        self.listen(ev.TEAM_ROSTER_UPDATED, self.state.apply_roster)
        self.start()

    @property
    def teams(self) -> list[Team]:
        return self.state.teams

    @property
    def current_team(self) -> Optional[Team]:
        return self.state.current_team

    async def on_joined(self) -> None:
        await self.refresh()

    async def refresh(self) -> CallResult:
        """Reload the full team list."""
        result = await self.handle.call(ev.TEAMS_LIST, {}, reply_event=ev.TEAMS_LIST_RESPONSE)
        if result.success:
            self.state.apply_list(result.raw)
        return self._record(result)

    # ─── Mutations ──────────────────────────────────────

    async def create_team(self, name: str) -> CallResult:
        name = (name or "").strip()
        if not name:
            return self._rejected("Team name is required")
        if len(name) > TEAM_NAME_MAX:
            return self._rejected(f"Team name must be {TEAM_NAME_MAX} characters or less")
        attempt = self.handle.guard.prepare(
            ev.TEAM_CREATE, {"name": name}, reply_event=ev.TEAM_CREATE_RESPONSE
        )
        return await self._send(attempt)

    async def join_team(self, team_id: str) -> CallResult:
        if not team_id:
            return self._rejected("Team ID is required")
        if self.state.in_team:
            return self._rejected("You are already in a team. Leave first.")
        attempt = self.handle.guard.prepare(
            ev.TEAM_JOIN, {"teamId": team_id}, reply_event=ev.TEAM_JOIN_RESPONSE
        )
        return await self._send(attempt)

    async def leave_team(self) -> CallResult:
        team = self.state.current_team
        if team is None:
            return self._rejected("You are not in a team")
        attempt = self.handle.guard.prepare(
            ev.TEAM_LEAVE, {"teamId": team.id}, reply_event=ev.TEAM_LEAVE_RESPONSE
        )
        return await self._send(attempt)

    async def retry(self, attempt: Optional[MutationAttempt] = None) -> CallResult:
        """Re-send an attempt (default: the last one) with its original token."""
        attempt = attempt or self.last_attempt
        if attempt is None:
            return self._rejected("Nothing to retry")
        return await self._send(attempt)

    def snapshot(self) -> dict[str, Any]:
        current = self.state.current_team
        return {
            "teams": [t.model_dump() for t in self.state.teams],
            "current_team": current.model_dump() if current else None,
            "in_team": current is not None,
            "team_count": len(self.state.teams),
            "loading": self.loading,
            "error": self.error,
        }

    async def _send(self, attempt: MutationAttempt) -> CallResult:
        self.last_attempt = attempt
        self.loading = True
        try:
            result = await self.handle.guard.send(attempt)
        finally:
            self.loading = False
        if result.success and attempt.event == ev.TEAM_CREATE:
            # The creator may see the reply before the team.created broadcast.
            self.state.apply_created(result.get("team"))
        return self._record(result)

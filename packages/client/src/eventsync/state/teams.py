"""Team list state for one session."""

from typing import Any, Optional

from eventsync.schemas.team import Team, TeamsListPayload
from eventsync.state.base import Reconciler


class TeamsState(Reconciler):
    """Teams, and which one (if any) the local user belongs to.

    - initial list: full replace
    - `team.created`: add if absent (duplicates are no-ops)
    - `team.roster.updated`: replace the team with that id in place
    """

    def __init__(self, user_id: Optional[str], log=None):
        super().__init__("teams", log)
        self.user_id = user_id
        self.teams: list[Team] = []
        self.loaded = False

    @property
    def current_team(self) -> Optional[Team]:
        return next((t for t in self.teams if t.has_member(self.user_id)), None)

    @property
    def in_team(self) -> bool:
        return self.current_team is not None

    def get(self, team_id: str) -> Optional[Team]:
        return next((t for t in self.teams if t.id == team_id), None)

    def apply_list(self, payload: Any = None, *_: Any) -> bool:
        listing = self.parse(TeamsListPayload, payload)
        if listing is None or not listing.success:
            return False
        self.teams = listing.teams
        self.loaded = True
        self.changed()
        return True

    def apply_created(self, payload: Any = None, *_: Any) -> bool:
        team = self.parse(Team, payload)
        if team is None or self.get(team.id) is not None:
            return False
        self.teams = self.teams + [team]
        self.changed()
        return True

    def apply_roster(self, payload: Any = None, *_: Any) -> bool:
        team = self.parse(Team, payload)
        if team is None or self.get(team.id) is None:
            return False
        self.teams = [team if t.id == team.id else t for t in self.teams]
        self.changed()
        return True

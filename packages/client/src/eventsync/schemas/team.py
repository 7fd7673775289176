"""Team payloads (session-scoped teams)."""

from typing import Optional

from pydantic import Field

from eventsync.schemas.base import WireModel

TEAM_NAME_MAX = 100


class TeamMemberUser(WireModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    image_url: Optional[str] = None


class TeamMember(WireModel):
    user_id: str
    user: Optional[TeamMemberUser] = None
    joined_at: str = ""


class Team(WireModel):
    id: str
    name: str
    created_at: str = ""
    creator_id: str = ""
    session_id: str = ""
    members: list[TeamMember] = Field(default_factory=list)
    score: Optional[int] = None

    def has_member(self, user_id: Optional[str]) -> bool:
        return user_id is not None and any(m.user_id == user_id for m in self.members)


class TeamsListPayload(WireModel):
    success: bool
    teams: list[Team] = Field(default_factory=list)

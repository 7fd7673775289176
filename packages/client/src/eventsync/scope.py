"""Scopes — the logical rooms a connection and its broadcasts belong to.

Learn: A scope is `kind:id`, e.g. `session:3f2a...`. The kind decides
which wire field carries the id (`sessionId`, `eventId`, ...) and which
join/leave events promote a bare connection to a joined room.

An event scope has no scope-level join: the server routes by the
`eventId` connect query, and features that need a narrower room (the
heatmap) join it themselves.
"""

from dataclasses import dataclass
from typing import Optional

from eventsync.events import types as ev

SCOPE_KINDS: dict[str, dict[str, Optional[str]]] = {
    "session": {"field": "sessionId", "join": ev.SESSION_JOIN, "leave": ev.SESSION_LEAVE},
    "event": {"field": "eventId", "join": None, "leave": None},
    "booth": {"field": "boothId", "join": ev.BOOTH_CHAT_JOIN, "leave": ev.BOOTH_CHAT_LEAVE},
    "sponsor": {"field": "sponsorId", "join": ev.SPONSOR_LEADS_JOIN, "leave": ev.SPONSOR_LEADS_LEAVE},
}


@dataclass(frozen=True)
class Scope:
    kind: str
    id: str
    # Extra ids sent alongside the scope id (a session also names its event).
    parent_event_id: Optional[str] = None

    def __post_init__(self):
        if self.kind not in SCOPE_KINDS:
            raise ValueError(
                f"Unknown scope kind {self.kind!r}; expected one of {sorted(SCOPE_KINDS)}"
            )
        if not self.id:
            raise ValueError("Scope id is required")

    @classmethod
    def parse(cls, text: str, parent_event_id: Optional[str] = None) -> "Scope":
        """Parse `kind:id` (e.g. `session:abc123`)."""
        kind, sep, scope_id = text.partition(":")
        if not sep:
            raise ValueError(f"Scope must look like kind:id, got {text!r}")
        return cls(kind=kind.strip(), id=scope_id.strip(), parent_event_id=parent_event_id)

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.id}"

    @property
    def id_field(self) -> str:
        return SCOPE_KINDS[self.kind]["field"]

    @property
    def join_event(self) -> Optional[str]:
        return SCOPE_KINDS[self.kind]["join"]

    @property
    def leave_event(self) -> Optional[str]:
        return SCOPE_KINDS[self.kind]["leave"]

    def params(self) -> dict[str, str]:
        """Scope-identifying parameters for connect query and join payloads."""
        params = {self.id_field: self.id}
        if self.parent_event_id:
            params["eventId"] = self.parent_event_id
        return params

    def matches(self, payload: object, field: Optional[str] = None) -> bool:
        """True when a broadcast payload names this scope."""
        if not isinstance(payload, dict):
            return False
        return payload.get(field or self.id_field) == self.id

    def __str__(self) -> str:
        return self.key

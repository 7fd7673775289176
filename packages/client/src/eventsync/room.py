"""Room join protocol — promote a connected transport to a joined room.

Learn: Being connected is not enough to receive a scope's broadcasts.
The server only routes `leaderboard.updated` for session X to sockets
that joined session X. So after every (re)connect:

  connected ──emit join {sessionId}──► server
            ◄──ack {success, settings}──
  joined ✓  (settings applied, broadcasts trusted)

A rejected join is a *handshake* failure, not a transport failure: the
socket stays up, the error is surfaced, and nothing gated on this room is
applied. We don't reconnect to fix it — a new socket would be rejected
the same way.
"""

import functools
from dataclasses import asdict, dataclass
from typing import Any, Optional

import structlog

from eventsync.correlator import TIMEOUT, CallResult, RequestResponseCorrelator
from eventsync.errors import TransportError
from eventsync.events import types as ev
from eventsync.scope import Scope
from eventsync.transport.base import Transport

logger = structlog.get_logger()

JOIN_TIMEOUT_MESSAGE = "Join request timed out"


@dataclass
class ScopeSettings:
    """Server-authoritative feature switches for a scope."""

    chat_open: bool = False
    qa_open: bool = False
    polls_open: bool = False
    reactions_open: bool = False

    def apply(self, data: Any) -> bool:
        """Copy known flags from a `{chatOpen, qaOpen, ...}` dict.

        Returns True if anything changed. Non-bool values are ignored.
        """
        if not isinstance(data, dict):
            return False
        changed = False
        for attr, wire in _WIRE_FIELDS.items():
            value = data.get(wire)
            if isinstance(value, bool) and getattr(self, attr) != value:
                setattr(self, attr, value)
                changed = True
        return changed

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)


_WIRE_FIELDS = {
    "chat_open": "chatOpen",
    "qa_open": "qaOpen",
    "polls_open": "pollsOpen",
    "reactions_open": "reactionsOpen",
}

# Broadcast → the ScopeSettings attribute it toggles
SETTINGS_EVENTS = {
    ev.CHAT_STATUS_CHANGED: "chat_open",
    ev.QA_STATUS_CHANGED: "qa_open",
    ev.POLLS_STATUS_CHANGED: "polls_open",
    ev.REACTIONS_STATUS_CHANGED: "reactions_open",
}


class RoomJoinProtocol:
    """One join/leave handshake on a connection.

    The scope's own room carries settings; feature rooms (heatmap) are
    the same protocol without them. A room whose join_event is None is
    implicit: it is joined as soon as the transport is.
    """

    def __init__(
        self,
        name: str,
        *,
        scope: Scope,
        transport: Transport,
        correlator: RequestResponseCorrelator,
        join_event: Optional[str],
        leave_event: Optional[str] = None,
        params: Optional[dict[str, Any]] = None,
        timeout: float = 10.0,
        settings: Optional[ScopeSettings] = None,
        log=None,
    ):
        self.name = name
        self.scope = scope
        self.transport = transport
        self.correlator = correlator
        self.join_event = join_event
        self.leave_event = leave_event
        self.params = dict(params if params is not None else scope.params())
        self.timeout = timeout
        self.settings = settings
        self.log = (log or logger).bind(room=name)

        self.joined = False
        self.error: Optional[str] = None
        self.join_count = 0
        self._handlers: list[tuple[str, Any]] = []

    @property
    def implicit(self) -> bool:
        return self.join_event is None

    # ─── Handshake ──────────────────────────────────────

    async def join(self) -> CallResult:
        """Emit the join request and wait for its acknowledgment."""
        self.joined = False
        if self.implicit:
            if not self.transport.connected:
                self.error = "Not connected to server"
                return CallResult.failure(self.error, "not_connected")
            self._mark_joined()
            return CallResult(success=True)

        result = await self.correlator.call(self.join_event, self.params, self.timeout)
        if result.success:
            if self.settings is not None:
                # The realtime service has replied with either key over time.
                self.settings.apply(result.get("settings") or result.get("session"))
            self._mark_joined()
        else:
            self.error = JOIN_TIMEOUT_MESSAGE if result.code == TIMEOUT else result.error
            self.log.warning("room.join_failed", error=self.error, code=result.code)
        return result

    async def leave(self) -> None:
        """Send the leave notice. Fire-and-forget; no reply is awaited."""
        was_joined = self.joined
        self.joined = False
        if self.leave_event is None or not was_joined or not self.transport.connected:
            return
        try:
            await self.transport.emit(self.leave_event, self.params)
        except TransportError as e:
            self.log.debug("room.leave_failed", error=str(e))
        else:
            self.log.debug("room.left")

    def reset(self) -> None:
        """Forget the joined flag after a transport drop."""
        self.joined = False

    def _mark_joined(self) -> None:
        self.joined = True
        self.error = None
        self.join_count += 1
        self.log.info("room.joined", rejoin=self.join_count > 1)

    # ─── Settings broadcasts ────────────────────────────

    def attach(self) -> None:
        """Listen for scope settings changes. Only the scope room does this."""
        if self.settings is None or self._handlers:
            return
        for event, attr in SETTINGS_EVENTS.items():
            handler = functools.partial(self._on_settings_changed, attr)
            self.transport.on(event, handler)
            self._handlers.append((event, handler))

    def detach(self) -> None:
        for event, handler in self._handlers:
            self.transport.off(event, handler)
        self._handlers.clear()

    def _on_settings_changed(self, attr: str, data: Any = None, *_: Any) -> None:
        if not self.joined or not self.scope.matches(data):
            return
        value = data.get("isOpen")
        if not isinstance(value, bool):
            self.log.debug("room.settings_dropped", attr=attr)
            return
        setattr(self.settings, attr, value)
        self.log.info("room.settings_changed", **{attr: value})

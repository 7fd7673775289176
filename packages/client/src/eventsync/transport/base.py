"""Transport base — pluggable interface for the bidirectional channel.

Learn: The sync layer doesn't care how bytes move. It needs exactly four
primitives from a transport:
1. connect(url, auth, query) / disconnect()
2. emit(event, payload, callback=None) — one-way send, optional ack
3. on(event, handler) / off(event, handler) — inbound event listeners
4. a "disconnect" lifecycle event carrying the reason

Everything else (correlation, rooms, reconnection, batching) is built
on top of those in the other modules. Reconnection in particular is
NOT the transport's job — ConnectionManager owns it, so adapters must
connect exactly once per connect() call.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger()

# Lifecycle pseudo-events dispatched through the same listener registry.
CONNECT = "connect"
DISCONNECT = "disconnect"

# Disconnect reasons. Only the first two are an explicit close;
# everything else is a drop that should trigger reconnection.
CLIENT_DISCONNECT = "io client disconnect"
SERVER_DISCONNECT = "io server disconnect"
TRANSPORT_CLOSE = "transport close"
PING_TIMEOUT = "ping timeout"

EXPLICIT_CLOSE_REASONS = frozenset({CLIENT_DISCONNECT, SERVER_DISCONNECT})

Handler = Callable[..., Any]
AckCallback = Callable[..., Any]


class Transport(ABC):
    """Abstract base for realtime transports.

    Learn: Implement connect/disconnect/emit/connected. Listener
    bookkeeping lives here so every adapter removes handlers the same
    way — teardown correctness depends on off() actually working.
    """

    def __init__(self):
        self._listeners: dict[str, list[Handler]] = {}

    # ─── Subclass contract ──────────────────────────────

    @property
    @abstractmethod
    def connected(self) -> bool:
        """True while the underlying channel is open."""

    @abstractmethod
    async def connect(
        self,
        url: str,
        *,
        auth: dict[str, Any],
        query: dict[str, str],
        timeout: float,
    ) -> None:
        """Open the channel once. Raise TransportError on failure."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel. Must dispatch DISCONNECT with CLIENT_DISCONNECT."""

    @abstractmethod
    async def emit(
        self,
        event: str,
        payload: Any = None,
        callback: Optional[AckCallback] = None,
    ) -> None:
        """Send an event. `callback` receives the server's acknowledgment."""

    # ─── Listener registry ──────────────────────────────

    def on(self, event: str, handler: Handler) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Optional[Handler] = None) -> None:
        """Remove one handler, or every handler for `event` when omitted."""
        if handler is None:
            self._listeners.pop(event, None)
            return
        handlers = self._listeners.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._listeners[event]

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, ()))
        return sum(len(h) for h in self._listeners.values())

    def dispatch(self, event: str, *args: Any) -> None:
        """Deliver an inbound event to every registered handler, in order.

        A handler that raises is logged and skipped; one broken consumer
        must not starve the others attached to the same scope.
        """
        for handler in list(self._listeners.get(event, ())):
            try:
                handler(*args)
            except Exception:
                logger.exception("transport.handler_failed", event_name=event)

"""Test fixtures — an in-memory realtime server and transport.

Learn: Testing pattern for the sync layer without a socket:

1. FakeServer holds per-event handlers. A handler gets the payload and
   returns the reply dict, or None to stay silent (for timeout tests).
2. FakeTransport implements the Transport contract and routes emits to
   the server. Replies arrive on a later loop iteration, the way a real
   ack would: as the emit callback, or as a `*.response` event echoing
   `correlationId` for events registered with a reply event.
3. The server dedupes on `idempotencyKey` like the real service, and
   can drop connections or fail connect attempts on demand.

Timings come from `fast_config` so reconnect/backoff tests run in
milliseconds.
"""

import asyncio
from typing import Any, Callable, Optional

import jwt
import pytest
import pytest_asyncio

from eventsync.config import Settings
from eventsync.connection import ConnectionManager
from eventsync.errors import TransportError
from eventsync.events import types as ev
from eventsync.idempotency import TOKEN_FIELD
from eventsync.transport.base import (
    CLIENT_DISCONNECT,
    CONNECT,
    DISCONNECT,
    TRANSPORT_CLOSE,
    Transport,
)

ServerHandler = Callable[[dict], Optional[dict]]


def _ok(payload: dict) -> dict:
    return {"success": True}


class FakeServer:
    """In-memory stand-in for the realtime service."""

    def __init__(self):
        self.handlers: dict[str, ServerHandler] = {
            ev.SESSION_JOIN: lambda p: {
                "success": True,
                "session": {"chatOpen": True, "qaOpen": False},
            },
            ev.BOOTH_CHAT_JOIN: _ok,
            ev.SPONSOR_LEADS_JOIN: _ok,
            ev.HEATMAP_JOIN: _ok,
        }
        self.reply_events: dict[str, str] = {}
        self.delays: dict[str, float] = {}
        self.transports: list["FakeTransport"] = []
        self.received: list[tuple[str, Any]] = []
        self.connect_attempts = 0
        self.fail_connects = 0
        self.refuse_connects = False
        self.handled_tokens: dict[str, Optional[dict]] = {}
        self.handler_calls: dict[str, int] = {}
        # Most transports ever connected at once.
        self.peak_connections = 0

    def handle(self, event: str, handler: ServerHandler, *, reply_event: Optional[str] = None):
        self.handlers[event] = handler
        if reply_event:
            self.reply_events[event] = reply_event

    def received_events(self, event: str) -> list[Any]:
        return [payload for name, payload in self.received if name == event]

    def broadcast(self, event: str, payload: Any) -> None:
        for transport in list(self.transports):
            transport.dispatch(event, payload)

    def drop_all(self, reason: str = TRANSPORT_CLOSE) -> None:
        for transport in list(self.transports):
            transport.drop(reason)

    def receive(self, transport: "FakeTransport", event: str, payload: Any, callback) -> None:
        self.received.append((event, payload))
        handler = self.handlers.get(event)
        if handler is None:
            return

        token = payload.get(TOKEN_FIELD) if isinstance(payload, dict) else None
        if token is not None and token in self.handled_tokens:
            reply = self.handled_tokens[token]
        else:
            self.handler_calls[event] = self.handler_calls.get(event, 0) + 1
            reply = handler(payload)
            if token is not None:
                self.handled_tokens[token] = reply
        if reply is None:
            return

        loop = asyncio.get_running_loop()
        delay = self.delays.get(event, 0)
        reply_event = self.reply_events.get(event)
        if reply_event is not None:
            echoed = dict(reply)
            if isinstance(payload, dict) and "correlationId" in payload:
                echoed["correlationId"] = payload["correlationId"]
            deliver = lambda: transport.connected and transport.dispatch(reply_event, echoed)
        elif callback is not None:
            deliver = lambda: transport.connected and callback(reply)
        else:
            return
        if delay:
            loop.call_later(delay, deliver)
        else:
            loop.call_soon(deliver)


class FakeTransport(Transport):
    def __init__(self, server: FakeServer):
        super().__init__()
        self.server = server
        self._connected = False
        self.connects = 0
        self.last_auth: Optional[dict] = None
        self.last_query: Optional[dict] = None

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, url, *, auth, query, timeout) -> None:
        self.server.connect_attempts += 1
        await asyncio.sleep(0)
        if self.server.refuse_connects:
            raise TransportError("Unauthorized", retryable=False)
        if self.server.fail_connects > 0:
            self.server.fail_connects -= 1
            raise TransportError("Connection refused")
        self.connects += 1
        self.last_auth = auth
        self.last_query = query
        self._connected = True
        self.server.transports.append(self)
        self.server.peak_connections = max(self.server.peak_connections, len(self.server.transports))
        self.dispatch(CONNECT)

    async def disconnect(self) -> None:
        if self._connected:
            self.drop(CLIENT_DISCONNECT)

    async def emit(self, event, payload=None, callback=None) -> None:
        if not self._connected:
            raise TransportError("Not connected")
        self.server.receive(self, event, payload, callback)

    def drop(self, reason: str = TRANSPORT_CLOSE) -> None:
        """Simulate the channel going away."""
        self._connected = False
        if self in self.server.transports:
            self.server.transports.remove(self)
        self.dispatch(DISCONNECT, reason)


async def settle(rounds: int = 5) -> None:
    """Let call_soon replies and spawned tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fast_config() -> Settings:
    return Settings(
        reconnection_attempts=3,
        reconnection_delay=0.01,
        reconnection_delay_max=0.04,
        connect_timeout=1.0,
        join_timeout=0.2,
        call_timeout=0.2,
        mutation_timeout=0.2,
        batch_quiet_period=0.02,
        point_event_ttl=0.05,
    )


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def transports() -> list[FakeTransport]:
    return []


@pytest_asyncio.fixture()
async def manager(server, transports, fast_config):
    """A ConnectionManager whose transports all talk to `server`."""

    def factory() -> FakeTransport:
        transport = FakeTransport(server)
        transports.append(transport)
        return transport

    mgr = ConnectionManager(factory, config=fast_config)
    try:
        yield mgr
    finally:
        await mgr.close_all()


# Unsigned claims are all the client reads from the token.
USER_ID = "user-1"
TOKEN = jwt.encode({"sub": USER_ID}, "eventsync-test-signing-key-0123456789", algorithm="HS256")

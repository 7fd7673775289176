"""Connection manager — one live transport per scope, shared by refcount.

Learn: Several consumers usually want the same scope at once (the
leaderboard panel, the teams panel and the point toasts all watch one
session). Each of them acquires a handle; the first acquire opens the
transport, the last release closes it:

  acquire(session:X) ─► new ScopeConnection, refs=1, open() scheduled
  acquire(session:X) ─► same connection,     refs=2
  release(h1)        ─► refs=1
  release(h2)        ─► refs=0 → leave rooms, close transport

acquire() is synchronous and registers the connection before anything
awaits, so two acquires in the same tick can never race into two
sockets. A re-acquire while the previous close is still running gets a
fresh connection that waits for that close before connecting.

Each ScopeConnection is an arena: it owns the correlator, the mutation
guard, named caches, broadcast subscriptions, feature rooms and cleanup
callbacks. close() tears all of them down together. What a consumer
registers through its handle is also torn down when that handle alone
is released, so an unmounted consumer stops receiving updates.

State machine:

  connecting ─► connected ─► joined
       │            │  ▲        │
       │            ▼  │        ▼
       └──► error ◄─ reconnecting (drop that isn't an explicit close)

  any ─► disconnected (close(), or the server closed us explicitly)
"""

import asyncio
import itertools
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from pydantic import BaseModel

from eventsync.auth import Credential
from eventsync.cache import BoundedCache
from eventsync.config import Settings, settings as default_settings
from eventsync.correlator import (
    TRANSPORT_FAILED,
    CallResult,
    PendingCall,
    RequestResponseCorrelator,
)
from eventsync.errors import CredentialError, HandshakeError, TransportError
from eventsync.idempotency import IdempotentMutationGuard
from eventsync.room import RoomJoinProtocol, ScopeSettings
from eventsync.scope import Scope
from eventsync.transport.base import (
    DISCONNECT,
    EXPLICIT_CLOSE_REASONS,
    SERVER_DISCONNECT,
    Handler,
    Transport,
)

logger = structlog.get_logger()

TransportFactory = Callable[[], Transport]
StateListener = Callable[["ConnectionState", "ConnectionState"], Any]


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    JOINED = "joined"
    RECONNECTING = "reconnecting"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class ConnectionStatus(BaseModel):
    """Read-only snapshot of a scope connection."""

    scope: str
    state: ConnectionState
    connected: bool
    joined: bool
    error: Optional[str] = None
    settings: dict[str, bool]
    reconnect_attempts: int
    ref_count: int
    user_id: Optional[str] = None
    created_at: datetime


class ScopeConnection:
    """The shared connection (and everything it owns) for one scope."""

    def __init__(
        self,
        scope: Scope,
        credential: Credential,
        transport: Transport,
        *,
        config: Settings = default_settings,
        after: Optional[asyncio.Future] = None,
    ):
        self.scope = scope
        self.credential = credential
        self.transport = transport
        self.config = config
        self.created_at = datetime.now(timezone.utc)
        self.log = logger.bind(scope=scope.key)

        self.state = ConnectionState.CONNECTING
        self.error: Optional[str] = None
        self.ref_count = 0
        self.reconnect_attempts = 0

        self.correlator = RequestResponseCorrelator(
            transport, default_timeout=config.call_timeout, log=self.log
        )
        self.guard = IdempotentMutationGuard(
            self.correlator,
            timeout=config.mutation_timeout,
            history=config.cache_capacity,
            log=self.log,
        )
        self.settings = ScopeSettings()
        self.room = RoomJoinProtocol(
            scope.key,
            scope=scope,
            transport=transport,
            correlator=self.correlator,
            join_event=scope.join_event,
            leave_event=scope.leave_event,
            timeout=config.join_timeout,
            settings=self.settings,
            log=self.log,
        )

        # Arena
        self._rooms: list[RoomJoinProtocol] = [self.room]
        self._room_refs: dict[str, int] = {}
        self._subscriptions: list[tuple[str, Handler]] = []
        self._cleanups: list[Callable[[], Any]] = []
        self._caches: dict[str, BoundedCache] = {}
        self._state_listeners: list[StateListener] = []
        self._tasks: set[asyncio.Task] = set()

        self._after = after
        self._open_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._settled = asyncio.Event()
        self._closed = False

        self.room.attach()
        transport.on(DISCONNECT, self._on_transport_disconnect)

    # ─── Properties ─────────────────────────────────────

    @property
    def connected(self) -> bool:
        return self.transport.connected

    @property
    def joined(self) -> bool:
        return self.state == ConnectionState.JOINED and self.room.joined

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def user_id(self) -> Optional[str]:
        return self.credential.user_id

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            scope=self.scope.key,
            state=self.state,
            connected=self.connected,
            joined=self.joined,
            error=self.error,
            settings=self.settings.as_dict(),
            reconnect_attempts=self.reconnect_attempts,
            ref_count=self.ref_count,
            user_id=self.user_id,
            created_at=self.created_at,
        )

    # ─── Lifecycle ──────────────────────────────────────

    def start(self) -> None:
        """Schedule open() on the running loop."""
        if self._open_task is None:
            self._open_task = asyncio.get_running_loop().create_task(self.open())

    async def open(self) -> None:
        """Connect once, then join. Failures land in self.error."""
        if self._after is not None:
            # The previous connection for this scope must be fully closed first.
            await asyncio.wait({self._after})
        if self._closed:
            return

        self._set_state(ConnectionState.CONNECTING)
        try:
            await self._connect_once()
        except TransportError as e:
            self.error = str(e)
            if not e.retryable:
                self.log.error("connection.refused", error=self.error)
                self._set_state(ConnectionState.ERROR)
                return
            self.log.warning("connection.connect_failed", error=self.error)
            self._schedule_reconnect()
            return

        self.log.info("connection.opened")
        await self._after_connect()

    async def retry(self) -> None:
        """Start over after `error` or `disconnected`; re-join if only the join failed."""
        if self._closed:
            return
        if self.connected:
            if not self.joined:
                await self._join_rooms()
            return
        self._cancel_reconnect()
        self.reconnect_attempts = 0
        self.error = None
        await self.open()

    async def close(self) -> None:
        """Tear down the whole arena. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.log.info("connection.closing")

        self._cancel_reconnect()
        current = asyncio.current_task()
        if self._open_task is not None and self._open_task is not current:
            self._open_task.cancel()
            await asyncio.wait({self._open_task})
        if self._after is not None and not self._after.done():
            # Closes for one scope finish in acquire order.
            await asyncio.wait({self._after})
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

        # Leave notices: feature rooms first, the scope room last.
        if self.transport.connected:
            for room in reversed(self._rooms):
                await room.leave()

        for event, handler in self._subscriptions:
            self.transport.off(event, handler)
        self._subscriptions.clear()
        for room in self._rooms:
            room.detach()
        self.transport.off(DISCONNECT, self._on_transport_disconnect)

        self.correlator.cancel_all("Connection closed")
        for cleanup in reversed(self._cleanups):
            try:
                cleanup()
            except Exception:
                self.log.exception("connection.cleanup_failed")
        self._cleanups.clear()
        for cache in self._caches.values():
            cache.clear()
        self.guard.forget()

        try:
            await self.transport.disconnect()
        except TransportError as e:
            self.log.debug("connection.disconnect_failed", error=str(e))

        self._set_state(ConnectionState.DISCONNECTED)
        self._state_listeners.clear()
        self.log.info("connection.closed")

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait until the connection settles (joined, or failed).

        Returns True when joined.
        """
        try:
            await asyncio.wait_for(self._settled.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.joined

    # ─── Arena registration ─────────────────────────────

    def subscribe(
        self,
        event: str,
        handler: Handler,
        *,
        room: Optional[RoomJoinProtocol] = None,
        gated: bool = True,
    ) -> Callable[[], None]:
        """Listen for a broadcast until unsubscribed or closed.

        Gated handlers only run while `room` (default: the scope room)
        is joined; anything arriving before that is dropped.
        """
        gate = room or self.room

        def guarded(*args: Any) -> None:
            if self._closed:
                return
            if gated and not gate.joined:
                self.log.debug("broadcast.dropped_not_joined", event_name=event)
                return
            handler(*args)

        self.transport.on(event, guarded)
        entry = (event, guarded)
        self._subscriptions.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscriptions:
                self._subscriptions.remove(entry)
                self.transport.off(event, guarded)

        return unsubscribe

    def add_room(
        self,
        name: str,
        join_event: str,
        leave_event: Optional[str] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> RoomJoinProtocol:
        """Add a feature room. Joined now if the scope is joined, and on every rejoin.

        Rooms are shared by name: a second add returns the existing room,
        and it is left only when the last user removes it.
        """
        for room in self._rooms[1:]:
            if room.name == name:
                self._room_refs[name] += 1
                return room

        room = RoomJoinProtocol(
            name,
            scope=self.scope,
            transport=self.transport,
            correlator=self.correlator,
            join_event=join_event,
            leave_event=leave_event,
            params=params,
            timeout=self.config.join_timeout,
            log=self.log,
        )
        self._rooms.append(room)
        self._room_refs[name] = 1
        if self.joined:
            self.spawn(room.join())
        return room

    async def remove_room(self, room: RoomJoinProtocol) -> None:
        if room not in self._rooms or room is self.room:
            return
        self._room_refs[room.name] -= 1
        if self._room_refs[room.name] > 0:
            return
        del self._room_refs[room.name]
        self._rooms.remove(room)
        room.detach()
        await room.leave()

    def add_cleanup(self, callback: Callable[[], Any]) -> None:
        """Run `callback` at teardown (cancel timers, stop batchers)."""
        self._cleanups.append(callback)

    def discard_cleanup(self, callback: Callable[[], Any]) -> None:
        if callback in self._cleanups:
            self._cleanups.remove(callback)

    def cache(self, name: str, capacity: Optional[int] = None) -> BoundedCache:
        """A named cache that lives exactly as long as this connection."""
        cache = self._caches.get(name)
        if cache is None:
            cache = BoundedCache(capacity or self.config.cache_capacity, name=name)
            self._caches[name] = cache
        return cache

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)

        def remove() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return remove

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Run a coroutine owned by this connection (cancelled at close)."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def call(
        self,
        event: str,
        payload: Optional[dict] = None,
        timeout: Optional[float] = None,
        *,
        reply_event: Optional[str] = None,
    ) -> PendingCall:
        return self.correlator.call(event, payload, timeout, reply_event=reply_event)

    async def emit(self, event: str, payload: Optional[dict] = None) -> bool:
        """Fire-and-forget send for requests answered by a broadcast."""
        if not self.transport.connected:
            return False
        try:
            await self.transport.emit(event, payload or {})
        except TransportError as e:
            self.log.debug("connection.emit_failed", event_name=event, error=str(e))
            return False
        return True

    # ─── Internals ──────────────────────────────────────

    async def _connect_once(self) -> None:
        try:
            self.credential.validate()
        except CredentialError as e:
            raise TransportError(str(e), retryable=False) from e
        try:
            await self.transport.connect(
                self.config.realtime_url,
                auth=self.credential.auth_payload(),
                query=self.scope.params(),
                timeout=self.config.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise TransportError(str(e) or type(e).__name__) from e

    async def _after_connect(self) -> None:
        if self._closed:
            return
        self.error = None
        self.reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        await self._join_rooms()

    async def _join_rooms(self) -> None:
        result = await self.room.join()
        if self._closed or not self.transport.connected:
            return
        if not result.success:
            self.error = self.room.error
            # Connected but not joined is a resting state.
            self._settled.set()
            return

        self.error = None
        self._set_state(ConnectionState.JOINED)
        feature_rooms = self._rooms[1:]
        if feature_rooms:
            results = await asyncio.gather(*(room.join() for room in feature_rooms))
            for room, room_result in zip(feature_rooms, results):
                if not room_result.success:
                    self.log.warning("connection.feature_room_failed", room=room.name)

    def _on_transport_disconnect(self, reason: Optional[str] = None, *_: Any) -> None:
        for room in self._rooms:
            room.reset()
        if self._closed:
            return
        self.correlator.cancel_all("Connection lost", TRANSPORT_FAILED)

        if reason in EXPLICIT_CLOSE_REASONS:
            self.log.info("connection.closed_explicitly", reason=reason)
            if reason == SERVER_DISCONNECT:
                self.error = "Disconnected by server"
            self._set_state(ConnectionState.DISCONNECTED)
            return

        self.log.warning("connection.dropped", reason=reason)
        self._set_state(ConnectionState.RECONNECTING)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff: delay, 2×delay, 4×delay, ... capped at delay_max."""
        delay = self.config.reconnection_delay * (2 ** max(attempt - 1, 0))
        return min(delay, self.config.reconnection_delay_max)

    async def _reconnect_loop(self) -> None:
        while not self._closed:
            if self.reconnect_attempts >= self.config.reconnection_attempts:
                self.error = f"Reconnection failed after {self.reconnect_attempts} attempts"
                self.log.error("connection.reconnect_exhausted", attempts=self.reconnect_attempts)
                self._set_state(ConnectionState.ERROR)
                return

            self.reconnect_attempts += 1
            delay = self.backoff_delay(self.reconnect_attempts)
            self.log.info("connection.reconnecting", attempt=self.reconnect_attempts, delay=delay)
            await asyncio.sleep(delay)
            if self._closed:
                return

            try:
                await self._connect_once()
            except TransportError as e:
                self.error = str(e)
                if not e.retryable:
                    self.log.error("connection.refused", error=self.error)
                    self._set_state(ConnectionState.ERROR)
                    return
                self.log.warning(
                    "connection.reconnect_failed",
                    attempt=self.reconnect_attempts,
                    error=self.error,
                )
                continue

            self.log.info("connection.reconnected", attempts=self.reconnect_attempts)
            # A drop during the rejoin below must be able to schedule a new loop.
            self._reconnect_task = None
            await self._after_connect()
            return

    def _set_state(self, state: ConnectionState) -> None:
        previous = self.state
        if previous == state:
            return
        self.state = state
        if state in (ConnectionState.JOINED, ConnectionState.ERROR, ConnectionState.DISCONNECTED):
            self._settled.set()
        else:
            self._settled.clear()
        self.log.debug("connection.state", previous=previous.value, state=state.value)
        self._notify(previous, state)

    def _notify(self, previous: ConnectionState, state: ConnectionState) -> None:
        for listener in list(self._state_listeners):
            try:
                listener(previous, state)
            except Exception:
                self.log.exception("connection.state_listener_failed")

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.log.error("connection.task_failed", error=str(task.exception()))


class ConnectionHandle:
    """A consumer's reference to a shared ScopeConnection.

    Release it exactly once (extra releases are no-ops), or use it as an
    async context manager.

    Subscriptions, cleanups, state listeners, feature rooms and tasks
    registered through a handle belong to that handle: releasing it
    removes them even while other handles keep the connection open.
    """

    def __init__(self, manager: "ConnectionManager", connection: ScopeConnection, handle_id: int):
        self.manager = manager
        self.connection = connection
        self.id = handle_id
        self.released = False
        self._cleanups: list[Callable[[], Any]] = []
        self._rooms: list[RoomJoinProtocol] = []
        self._tasks: set[asyncio.Task] = set()
        # The connection runs our cleanups if it closes while we are held.
        connection.add_cleanup(self._run_cleanups)

    @property
    def scope(self) -> Scope:
        return self.connection.scope

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def user_id(self) -> Optional[str]:
        return self.connection.user_id

    @property
    def guard(self) -> IdempotentMutationGuard:
        return self.connection.guard

    @property
    def config(self) -> Settings:
        return self.connection.config

    def status(self) -> ConnectionStatus:
        return self.connection.status()

    async def ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for the connection to settle. True when joined."""
        return await self.connection.wait_ready(timeout)

    async def wait_joined(self, timeout: Optional[float] = None) -> None:
        """Like ready(), but raises when the scope did not end up joined.

        HandshakeError if the socket is up and the join was refused,
        TransportError otherwise.
        """
        if await self.ready(timeout):
            return
        status = self.status()
        if status.connected:
            raise HandshakeError(status.error or "Join rejected")
        raise TransportError(
            status.error or f"Not joined (state: {status.state.value})",
            retryable=status.state != ConnectionState.ERROR,
        )

    def call(
        self,
        event: str,
        payload: Optional[dict] = None,
        timeout: Optional[float] = None,
        *,
        reply_event: Optional[str] = None,
    ) -> PendingCall:
        return self.connection.call(event, payload, timeout, reply_event=reply_event)

    async def emit(self, event: str, payload: Optional[dict] = None) -> bool:
        return await self.connection.emit(event, payload)

    async def mutate(
        self,
        event: str,
        payload: Optional[dict] = None,
        *,
        reply_event: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CallResult:
        return await self.connection.guard.mutate(
            event, payload, reply_event=reply_event, timeout=timeout
        )

    def subscribe(self, event: str, handler: Handler, **kwargs: Any) -> Callable[[], None]:
        unsubscribe = self.connection.subscribe(event, handler, **kwargs)
        self._cleanups.append(unsubscribe)
        return unsubscribe

    def add_room(
        self,
        name: str,
        join_event: str,
        leave_event: Optional[str] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> RoomJoinProtocol:
        room = self.connection.add_room(name, join_event, leave_event, params)
        self._rooms.append(room)
        return room

    def add_cleanup(self, callback: Callable[[], Any]) -> None:
        """Run `callback` when this handle is released or its connection closes."""
        self._cleanups.append(callback)

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        remove = self.connection.add_state_listener(listener)
        self._cleanups.append(remove)
        return remove

    def cache(self, name: str, capacity: Optional[int] = None) -> BoundedCache:
        return self.connection.cache(name, capacity)

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = self.connection.spawn(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def retry(self) -> None:
        await self.connection.retry()

    async def release(self) -> None:
        await self.manager.release(self)

    async def detach(self) -> None:
        """Remove everything registered through this handle."""
        self.connection.discard_cleanup(self._run_cleanups)
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._run_cleanups()
        rooms, self._rooms = self._rooms, []
        for room in reversed(rooms):
            await self.connection.remove_room(room)

    def _run_cleanups(self) -> None:
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in reversed(cleanups):
            try:
                cleanup()
            except Exception:
                self.connection.log.exception("handle.cleanup_failed", handle=self.id)

    async def __aenter__(self) -> "ConnectionHandle":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.release()

    def __repr__(self) -> str:
        return f"<ConnectionHandle #{self.id} {self.scope.key} released={self.released}>"


class ConnectionManager:
    """Scope-keyed registry of shared connections."""

    def __init__(
        self,
        transport_factory: Optional[TransportFactory] = None,
        *,
        config: Settings = default_settings,
    ):
        self.config = config
        self.transport_factory = transport_factory or self._socketio_transport
        self._connections: dict[str, ScopeConnection] = {}
        self._closing: dict[str, asyncio.Task] = {}
        self._handle_ids = itertools.count(1)

    def _socketio_transport(self) -> Transport:
        from eventsync.transport.socketio import SocketIOTransport

        return SocketIOTransport(self.config.realtime_namespace, self.config.transports)

    def acquire(
        self,
        scope: Union[Scope, str],
        credential: Union[Credential, str],
    ) -> ConnectionHandle:
        """Get a handle on `scope`, opening its connection if needed.

        Raises CredentialError for a missing or expired credential; that is
        the only failure reported by raising.
        """
        if isinstance(scope, str):
            scope = Scope.parse(scope)
        if isinstance(credential, str):
            credential = Credential.from_token(credential)
        credential.validate()

        connection = self._connections.get(scope.key)
        if connection is None:
            connection = ScopeConnection(
                scope,
                credential,
                self.transport_factory(),
                config=self.config,
                after=self._closing.get(scope.key),
            )
            self._connections[scope.key] = connection
            connection.start()
            logger.info("connection.created", scope=scope.key)
        elif credential.token != connection.credential.token:
            logger.warning("connection.credential_ignored", scope=scope.key)

        connection.ref_count += 1
        return ConnectionHandle(self, connection, next(self._handle_ids))

    async def release(self, handle: ConnectionHandle) -> None:
        """Drop one reference; close the connection when it was the last."""
        if handle.released:
            return
        handle.released = True
        await handle.detach()
        connection = handle.connection
        connection.ref_count -= 1
        if connection.ref_count > 0:
            return

        key = connection.scope.key
        if self._connections.get(key) is connection:
            del self._connections[key]
        task = asyncio.ensure_future(connection.close())
        self._closing[key] = task

        def _forget(done: asyncio.Task, key: str = key) -> None:
            if self._closing.get(key) is done:
                del self._closing[key]

        task.add_done_callback(_forget)
        await asyncio.shield(task)

    def get(self, scope: Union[Scope, str]) -> Optional[ScopeConnection]:
        key = scope if isinstance(scope, str) else scope.key
        return self._connections.get(key)

    def __contains__(self, scope: Union[Scope, str]) -> bool:
        return self.get(scope) is not None

    def __len__(self) -> int:
        return len(self._connections)

    def statuses(self) -> list[ConnectionStatus]:
        return [connection.status() for connection in self._connections.values()]

    async def close_all(self) -> None:
        """Close every connection regardless of outstanding handles."""
        connections = list(self._connections.values())
        self._connections.clear()
        for connection in connections:
            connection.ref_count = 0
        await asyncio.gather(
            *(connection.close() for connection in connections),
            *list(self._closing.values()),
        )

    async def __aenter__(self) -> "ConnectionManager":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close_all()

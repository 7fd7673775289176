"""Feature client base — wiring shared by every feature.

Learn: A feature client never owns a socket. It borrows a
ConnectionHandle and registers everything it creates (subscriptions,
timers, rooms) on that handle, so releasing the handle removes it all
even while other consumers keep the scope open. Releasing the handle is
the one way to stop a feature.

Subclasses:
1. set `name` (log field) and `scope_kinds` (which scopes make sense)
2. call self.listen(...) for each broadcast
3. put one-shot loads in on_joined() — it runs after every (re)join,
   which is how state is re-synced after a reconnect
"""

from typing import Any, Callable, Optional

from eventsync.connection import ConnectionHandle, ConnectionState
from eventsync.correlator import INVALID_ARGUMENT, CallResult


class FeatureClient:
    name = "feature"
    scope_kinds: tuple[str, ...] = ()

    def __init__(self, handle: ConnectionHandle):
        if self.scope_kinds and handle.scope.kind not in self.scope_kinds:
            raise ValueError(
                f"{type(self).__name__} needs a {'/'.join(self.scope_kinds)} scope, "
                f"got {handle.scope.key}"
            )
        self.handle = handle
        self.scope = handle.scope
        self.config = handle.config
        self.log = handle.connection.log.bind(feature=self.name)
        self.error: Optional[str] = None
        self._unsubscribes: list[Callable[[], None]] = []
        self._closed = False

        self._unsubscribes.append(handle.add_state_listener(self._on_state))
        handle.add_cleanup(self.close)

    @property
    def user_id(self) -> Optional[str]:
        return self.handle.user_id

    def listen(self, event: str, handler: Callable[..., Any], **kwargs: Any) -> None:
        self._unsubscribes.append(self.handle.subscribe(event, handler, **kwargs))

    def start(self) -> "FeatureClient":
        """Run the initial load now if the scope is already joined."""
        if self.handle.connection.joined:
            self.handle.spawn(self.on_joined())
        return self

    async def on_joined(self) -> None:
        """Load initial state. Runs after every successful (re)join."""

    def snapshot(self) -> dict[str, Any]:
        raise NotImplementedError

    def close(self) -> None:
        """Detach from the connection. Called when the handle is released."""
        if self._closed:
            return
        self._closed = True
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()

    def clear_error(self) -> None:
        self.error = None

    def _on_state(self, previous: ConnectionState, state: ConnectionState) -> None:
        if state == ConnectionState.JOINED and not self._closed:
            self.handle.spawn(self.on_joined())

    def _rejected(self, message: str) -> CallResult:
        """A locally refused action, reported like any other failed call."""
        self.error = message
        return CallResult.failure(message, INVALID_ARGUMENT)

    def _record(self, result: CallResult) -> CallResult:
        self.error = None if result.success else result.error
        return result

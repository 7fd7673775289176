"""Request/response correlation over a one-way emit transport.

Learn: The transport can only *send an event*. To get an awaitable call
we race two things for every outbound event:

  reply (ack callback or reply event)  vs.  deadline timer

Whichever fires first settles the call; the other is disarmed. A
resolved-guard on each PendingCall makes "exactly one resolution"
structural rather than a matter of timing:

  call() ──emit──► server
     │                 │
     ├─ timer ─────────┼──► settle(timeout)   ← first wins
     └─ reply ◄────────┘──► settle(reply)     ← loser is ignored

Every outcome is a CallResult. Nothing here raises at the caller —
callers that prefer exceptions use CallResult.raise_for_error().

Replies for distinct calls may arrive in any order; a fast call never
waits behind a slow one.
"""

import asyncio
import functools
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from eventsync.errors import (
    CallCancelledError,
    CallError,
    CallTimeoutError,
    NotConnectedError,
    TransportError,
)
from eventsync.transport.base import Transport

logger = structlog.get_logger()

# CallResult.code values for client-side failures
NOT_CONNECTED = "not_connected"
TIMEOUT = "timeout"
CANCELLED = "cancelled"
TRANSPORT_FAILED = "transport_error"
SERVER_ERROR = "server_error"
INVALID_REPLY = "invalid_reply"
INVALID_ARGUMENT = "invalid_argument"  # rejected locally, never sent

TIMEOUT_MESSAGE = "Request timed out"


@dataclass
class CallResult:
    """Typed outcome of a correlated call.

    Learn: `raw` keeps the full reply so feature clients can read
    feature-specific fields (`team`, `messages`, `hasMore`) without this
    module knowing about them.
    """

    success: bool
    data: Any = None
    error: Optional[str] = None
    code: Optional[str] = None
    raw: Optional[dict] = None

    @property
    def ok(self) -> bool:
        return self.success

    @classmethod
    def failure(cls, error: str, code: str) -> "CallResult":
        return cls(success=False, error=error, code=code)

    @classmethod
    def from_reply(cls, reply: Any) -> "CallResult":
        """Normalize a server reply `{success, error?, data?}`."""
        if not isinstance(reply, dict):
            return cls.failure("Invalid response from server", INVALID_REPLY)

        if reply.get("success") is True:
            return cls(success=True, data=reply.get("data"), raw=reply)

        error = reply.get("error")
        if isinstance(error, dict):
            message = error.get("message") or "Request failed"
        elif error:
            message = str(error)
        else:
            message = "Request failed"
        return cls(success=False, error=message, code=SERVER_ERROR, raw=reply)

    def get(self, key: str, default: Any = None) -> Any:
        """Read a field from the raw reply."""
        return (self.raw or {}).get(key, default)

    def raise_for_error(self) -> "CallResult":
        """Raise the matching SyncError for a failed call; return self otherwise."""
        if self.success:
            return self
        if self.code == TIMEOUT:
            raise CallTimeoutError(self.error or TIMEOUT_MESSAGE, code=self.code)
        if self.code == CANCELLED:
            raise CallCancelledError(self.error or "Request cancelled", code=self.code)
        if self.code == NOT_CONNECTED:
            raise NotConnectedError(self.error or "Not connected to server")
        if self.code == TRANSPORT_FAILED:
            raise TransportError(self.error or "Transport error")
        raise CallError(self.error or "Request failed", code=self.code)


class PendingCall:
    """Handle for one outstanding call. Await it, or cancel() it.

    Awaiting never raises (except for cancellation of the awaiting task
    itself, which does not cancel the call).
    """

    def __init__(
        self,
        correlation_id: str,
        event: str,
        payload: dict,
        deadline: float,
        future: asyncio.Future,
        reply_event: Optional[str] = None,
    ):
        self.correlation_id = correlation_id
        self.event = event
        self.payload = payload
        self.deadline = deadline
        self.reply_event = reply_event
        self._future = future
        self._timer: Optional[asyncio.TimerHandle] = None
        self._send_task: Optional[asyncio.Task] = None
        self._settled = False
        self._settle_hook = None

    def __await__(self):
        return asyncio.shield(self._future).__await__()

    def done(self) -> bool:
        return self._settled

    def result(self) -> CallResult:
        """The CallResult of a settled call."""
        return self._future.result()

    def cancel(self) -> bool:
        """Settle as cancelled. False if the call had already settled."""
        if self._settle_hook is None:
            return False
        return self._settle_hook(self, CallResult.failure("Request cancelled", CANCELLED))

    def __repr__(self) -> str:
        state = "settled" if self._settled else "pending"
        return f"<PendingCall {self.event} {self.correlation_id[:8]} {state}>"


class RequestResponseCorrelator:
    """Turns fire-and-forget emits into awaitable, cancellable calls.

    Learn: Owns the pending-call map for ONE transport. The connection
    that owns the transport owns the correlator too, and tears both down
    together (cancel_all) so no timer outlives its scope.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        default_timeout: float = 10.0,
        log=None,
    ):
        self.transport = transport
        self.default_timeout = default_timeout
        self.log = log or logger
        self._pending: dict[str, PendingCall] = {}
        # reply_event -> correlation ids awaiting it, oldest first
        self._routes: dict[str, list[str]] = {}
        self._routers: dict[str, Any] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, correlation_id: str) -> bool:
        return correlation_id in self._pending

    # ─── Calls ──────────────────────────────────────────

    def call(
        self,
        event: str,
        payload: Optional[dict] = None,
        timeout: Optional[float] = None,
        *,
        reply_event: Optional[str] = None,
    ) -> PendingCall:
        """Emit `event` and return a handle that settles exactly once.

        By default the reply is the transport acknowledgment. With
        `reply_event`, the reply is the next matching inbound event
        (matched on `correlationId` when the server echoes it).
        """
        loop = asyncio.get_running_loop()
        timeout = timeout if timeout is not None else self.default_timeout
        payload = dict(payload or {})
        call = PendingCall(
            correlation_id=uuid.uuid4().hex,
            event=event,
            payload=payload,
            deadline=loop.time() + timeout,
            future=loop.create_future(),
            reply_event=reply_event,
        )
        call._settle_hook = self._settle

        if not self.transport.connected:
            self._settle(call, CallResult.failure("Not connected to server", NOT_CONNECTED))
            return call

        self._pending[call.correlation_id] = call

        if reply_event:
            wire_payload = {**payload, "correlationId": call.correlation_id}
            self._add_route(reply_event, call.correlation_id)
            callback = None
        else:
            wire_payload = payload
            callback = functools.partial(self._on_ack, call.correlation_id)

        call._timer = loop.call_later(timeout, self._on_timeout, call.correlation_id)
        call._send_task = loop.create_task(self._send(call, wire_payload, callback))
        self.log.debug("call.sent", event_name=event, correlation_id=call.correlation_id)
        return call

    def cancel_all(self, reason: str = "Connection closed", code: str = CANCELLED) -> int:
        """Settle every outstanding call as failed. Returns how many."""
        calls = list(self._pending.values())
        for call in calls:
            self._settle(call, CallResult.failure(reason, code))
        return len(calls)

    # ─── Internals ──────────────────────────────────────

    async def _send(self, call: PendingCall, payload: dict, callback) -> None:
        try:
            await self.transport.emit(call.event, payload, callback)
        except TransportError as e:
            self._settle(call, CallResult.failure(str(e), TRANSPORT_FAILED))

    def _on_ack(self, correlation_id: str, *args: Any) -> None:
        call = self._pending.get(correlation_id)
        if call is None:
            # Timed out or cancelled already; the late reply is dropped.
            self.log.debug("call.late_reply", correlation_id=correlation_id)
            return
        self._settle(call, CallResult.from_reply(args[0] if args else None))

    def _on_reply_event(self, reply_event: str, reply: Any = None, *_: Any) -> None:
        waiting = self._routes.get(reply_event)
        if not waiting:
            return
        if isinstance(reply, dict) and "correlationId" in reply:
            target = reply["correlationId"]
            if target not in waiting:
                self.log.debug("call.late_reply", event_name=reply_event, correlation_id=target)
                return
        else:
            target = waiting[0]
        self._settle(self._pending[target], CallResult.from_reply(reply))

    def _on_timeout(self, correlation_id: str) -> None:
        call = self._pending.get(correlation_id)
        if call is None:
            return
        call._timer = None
        self.log.warning("call.timeout", event_name=call.event, correlation_id=correlation_id)
        self._settle(call, CallResult.failure(TIMEOUT_MESSAGE, TIMEOUT))

    def _add_route(self, reply_event: str, correlation_id: str) -> None:
        waiting = self._routes.setdefault(reply_event, [])
        waiting.append(correlation_id)
        if reply_event not in self._routers:
            router = functools.partial(self._on_reply_event, reply_event)
            self._routers[reply_event] = router
            self.transport.on(reply_event, router)

    def _drop_route(self, reply_event: str, correlation_id: str) -> None:
        waiting = self._routes.get(reply_event)
        if waiting is None:
            return
        if correlation_id in waiting:
            waiting.remove(correlation_id)
        if not waiting:
            del self._routes[reply_event]
            router = self._routers.pop(reply_event, None)
            if router is not None:
                self.transport.off(reply_event, router)

    def _settle(self, call: PendingCall, result: CallResult) -> bool:
        if call._settled:
            return False
        call._settled = True

        if call._timer is not None:
            call._timer.cancel()
            call._timer = None
        self._pending.pop(call.correlation_id, None)
        if call.reply_event:
            self._drop_route(call.reply_event, call.correlation_id)

        task = call._send_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        if not call._future.done():
            call._future.set_result(result)

        if not result.success:
            self.log.debug("call.failed", event_name=call.event, code=result.code, error=result.error)
        return True

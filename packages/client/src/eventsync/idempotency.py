"""Idempotent mutations — make state-changing calls safe to retry.

Learn: A call like `team.create` can time out AFTER the server applied
it (the reply got lost, not the request). Retrying blindly would create
a second team. So every *logical* mutation carries one idempotency token:

  attempt = guard.prepare("team.create", {"name": "Rocket"})
  result = await guard.send(attempt)      # emits with idempotencyKey=T
  if result.code == "timeout":
      result = await guard.send(attempt)  # SAME token T; server dedupes

The token is generated once per logical attempt and reused verbatim on
every re-send. This layer never retries on its own; it is a hook for
callers who do.

Client-side, the guard also remembers tokens that already succeeded, so
re-sending a completed attempt returns the recorded result without
touching the network, and re-sending one that is still in flight joins
the outstanding call instead of emitting again.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from eventsync.cache import BoundedCache
from eventsync.correlator import CallResult, PendingCall, RequestResponseCorrelator

logger = structlog.get_logger()

TOKEN_FIELD = "idempotencyKey"


def new_idempotency_token() -> str:
    return str(uuid.uuid4())


@dataclass
class MutationAttempt:
    """One logical state change. Re-send this object to retry it."""

    event: str
    payload: dict[str, Any]
    reply_event: Optional[str] = None
    token: str = field(default_factory=new_idempotency_token)
    sends: int = 0
    result: Optional[CallResult] = None

    @property
    def completed(self) -> bool:
        return self.result is not None and self.result.success

    def wire_payload(self) -> dict[str, Any]:
        return {**self.payload, TOKEN_FIELD: self.token}


class IdempotentMutationGuard:
    """Wraps a correlator for create/join/leave style calls."""

    def __init__(
        self,
        correlator: RequestResponseCorrelator,
        *,
        timeout: float = 30.0,
        history: int = 500,
        log=None,
    ):
        self.correlator = correlator
        self.timeout = timeout
        self.log = log or logger
        # token -> successful CallResult
        self._completed = BoundedCache(capacity=history, name="idempotency")
        # token -> outstanding call
        self._inflight: dict[str, PendingCall] = {}

    def prepare(
        self,
        event: str,
        payload: Optional[dict[str, Any]] = None,
        *,
        reply_event: Optional[str] = None,
        token: Optional[str] = None,
    ) -> MutationAttempt:
        """Create a logical attempt. Pass `token` to resume a known one."""
        attempt = MutationAttempt(event=event, payload=dict(payload or {}), reply_event=reply_event)
        if token:
            attempt.token = token
        return attempt

    async def send(
        self,
        attempt: MutationAttempt,
        timeout: Optional[float] = None,
    ) -> CallResult:
        """Send (or re-send) an attempt with its original token."""
        prior = self._completed.get(attempt.token)
        if prior is not None:
            self.log.debug("mutation.replayed", event_name=attempt.event, token=attempt.token)
            attempt.result = prior
            return prior

        call = self._inflight.get(attempt.token)
        if call is None:
            attempt.sends += 1
            call = self.correlator.call(
                attempt.event,
                attempt.wire_payload(),
                timeout if timeout is not None else self.timeout,
                reply_event=attempt.reply_event,
            )
            if call.done():
                # Rejected before emitting (not connected); nothing in flight.
                attempt.result = call.result()
                return attempt.result
            self._inflight[attempt.token] = call
            if attempt.sends > 1:
                self.log.info(
                    "mutation.retry",
                    event_name=attempt.event,
                    token=attempt.token,
                    sends=attempt.sends,
                )

        try:
            result = await call
        finally:
            if self._inflight.get(attempt.token) is call and call.done():
                del self._inflight[attempt.token]

        attempt.result = result
        if result.success:
            self._completed.put(attempt.token, result)
        return result

    async def mutate(
        self,
        event: str,
        payload: Optional[dict[str, Any]] = None,
        *,
        reply_event: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CallResult:
        """Prepare and send a fresh attempt in one go."""
        attempt = self.prepare(event, payload, reply_event=reply_event)
        return await self.send(attempt, timeout)

    def forget(self) -> None:
        """Drop every recorded token (connection teardown)."""
        self._completed.clear()
        self._inflight.clear()

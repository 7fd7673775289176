"""Event batcher — coalesce bursts of pushes into one delivery.

Learn: The AI matcher can push several suggestions within a few
milliseconds. Applying each one separately means N state updates (and N
notification sounds). Instead:

  push() → prepend to buffer, (re)start the quiet-period timer
  timer fires with no new arrivals → flush():
      1. on_flush(batch)        — apply everything in ONE update
      2. on_item(item) per item — side effects (toasts, callbacks)
      3. clear the buffer

The timer is an idle timer only. A stream that never pauses for the
quiet period keeps pushing the flush back; there is no max-wait ceiling.
That's the accepted tradeoff — callers needing a latency bound can call
flush() themselves.
"""

import asyncio
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger()


class EventBatcher:
    """Debounced buffer with newest-first ordering."""

    def __init__(
        self,
        on_flush: Callable[[list[Any]], None],
        *,
        quiet_period: float = 0.1,
        on_item: Optional[Callable[[Any], None]] = None,
        name: str = "batcher",
    ):
        self.on_flush = on_flush
        self.on_item = on_item
        self.quiet_period = quiet_period
        self.name = name
        self.flush_count = 0
        self._pending: list[Any] = []
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    def push(self, item: Any) -> None:
        """Queue an item (newest first) and restart the idle timer."""
        self._pending.insert(0, item)
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.quiet_period, self._on_timer)

    def flush(self) -> list[Any]:
        """Deliver the buffered batch now. Returns what was delivered."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._pending:
            return []

        batch = self._pending
        self._pending = []
        self.flush_count += 1
        logger.debug("batcher.flush", batcher=self.name, size=len(batch))

        self.on_flush(batch)
        if self.on_item is not None:
            for item in batch:
                try:
                    self.on_item(item)
                except Exception:
                    logger.exception("batcher.item_callback_failed", batcher=self.name)
        return batch

    def cancel(self) -> None:
        """Drop the buffer and the timer without delivering (teardown)."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = []

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

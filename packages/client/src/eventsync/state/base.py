"""State reconciler base — validate first, then apply, never half-apply.

Learn: Broadcasts come from another process we don't control. Every
payload goes through a pydantic model before it touches local state:

  payload ──model_validate──► ok   → apply, notify listeners
                          └─► fail → drop silently (debug log)

Dropping is silent on purpose: a malformed broadcast is the server's
bug, and there is nothing a consumer could do with an error about it.
Duplicate delivery is harmless because every apply is keyed (replace
by id, add-if-absent, or full replace).
"""

from typing import Any, Callable, Hashable, Optional, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")


class Reconciler:
    """Shared plumbing: validation, drop accounting, change listeners."""

    def __init__(self, name: str, log=None):
        self.name = name
        self.log = log or logger
        self.dropped = 0
        self.applied = 0
        self._listeners: list[Callable[[], Any]] = []

    def parse(self, model: type[M], payload: Any) -> Optional[M]:
        """Validate a payload, or return None (and count the drop)."""
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            self.dropped += 1
            self.log.debug(
                "state.payload_dropped",
                reconciler=self.name,
                model=model.__name__,
                errors=e.error_count(),
            )
            return None

    def on_change(self, listener: Callable[[], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def changed(self) -> None:
        self.applied += 1
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                self.log.exception("state.listener_failed", reconciler=self.name)


def upsert_bounded(
    items: list[T],
    item: T,
    key: Callable[[T], Hashable],
    limit: int,
    *,
    prepend: bool = True,
) -> list[T]:
    """Return a new list with `item` inserted or replaced in place.

    An item whose key is already present replaces the old one where it
    stands. A new item goes to the front (or back), then the list is cut
    to `limit`, dropping from the opposite end.
    """
    item_key = key(item)
    for i, existing in enumerate(items):
        if key(existing) == item_key:
            return items[:i] + [item] + items[i + 1:]
    if prepend:
        return ([item] + items)[:limit]
    merged = items + [item]
    return merged[-limit:] if len(merged) > limit else merged

"""AI networking suggestions — batched, capped, with read tracking.

Learn: The matcher can push a burst of suggestions at once. They go
through an EventBatcher, so a burst becomes ONE state update (and one
notification) after 100ms of quiet instead of N.

Marking a suggestion read is optimistic: the entry flips to read
immediately and carries a "pending" marker until the server confirms
`suggestion.viewed`. A refusal rolls it back to unread.
"""

from typing import Any, Callable, Optional

from eventsync.batcher import EventBatcher
from eventsync.correlator import CallResult
from eventsync.events import types as ev
from eventsync.features.base import FeatureClient
from eventsync.schemas.suggestion import Suggestion
from eventsync.state.feeds import SuggestionsState


class SuggestionsClient(FeatureClient):
    name = "suggestions"
    scope_kinds = ("event",)

    def __init__(
        self,
        handle,
        *,
        on_suggestion: Optional[Callable[[Suggestion], Any]] = None,
    ):
        super().__init__(handle)
        self.state = SuggestionsState(max_suggestions=self.config.max_suggestions, log=self.log)
        self.batcher = EventBatcher(
            self.state.apply_batch,
            quiet_period=self.config.batch_quiet_period,
            on_item=on_suggestion,
            name="suggestions",
        )
        self.listen(ev.SUGGESTION_CONNECTION, self._on_connection)
        self.listen(ev.SUGGESTION_CIRCLE, self._on_circle)
        self.start()

    @property
    def suggestions(self) -> list[Suggestion]:
        return self.state.suggestions

    @property
    def unread_count(self) -> int:
        return self.state.unread_count

    async def mark_as_read(self, key: str) -> CallResult:
        entry = self.state.get(key)
        if entry is None:
            return self._rejected(f"Unknown suggestion {key}")
        if entry.read and not entry.pending:
            return CallResult(success=True)

        self.state.mark_read(key, pending=True)
        result = await self.handle.mutate(
            ev.SUGGESTION_VIEWED,
            {"eventId": self.scope.id, "suggestionKey": key, "type": entry.suggestion.type},
        )
        if result.success:
            self.state.confirm_read(key)
        else:
            self.log.info("suggestions.read_rolled_back", key=key, error=result.error)
            self.state.rollback_read(key)
        return self._record(result)

    def mark_all_as_read(self) -> None:
        self.state.mark_all_read()

    def dismiss(self, key: str) -> bool:
        return self.state.dismiss(key)

    def clear_all(self) -> None:
        self.batcher.cancel()
        self.state.clear()

    def snapshot(self) -> dict[str, Any]:
        latest = self.state.latest
        return {
            "suggestions": [s.model_dump() for s in self.state.suggestions],
            "latest": latest.model_dump() if latest else None,
            "unread_count": self.state.unread_count,
            "has_suggestions": bool(self.state.entries),
        }

    def close(self) -> None:
        super().close()
        self.batcher.cancel()

    def _on_connection(self, payload: Any = None, *_: Any) -> None:
        self._queue("connection", payload)

    def _on_circle(self, payload: Any = None, *_: Any) -> None:
        self._queue("circle", payload)

    def _queue(self, kind: str, payload: Any) -> None:
        suggestion = self.state.parse_suggestion(kind, payload)
        if suggestion is not None:
            self.batcher.push(suggestion)

"""Expo booth chat — history paging, sending, live messages."""

from typing import Any, Callable, Optional

from eventsync.correlator import INVALID_REPLY, CallResult
from eventsync.events import types as ev
from eventsync.features.base import FeatureClient
from eventsync.schemas.chat import BoothChatMessage
from eventsync.state.feeds import ChatState

HISTORY_PAGE_SIZE = 50


class BoothChatClient(FeatureClient):
    """Chat for one booth.

    Learn: The history reply is a bare `{messages, hasMore, nextCursor}`
    object, not the usual `{success, data}` envelope. A reply that carries
    `messages` and no `error` is treated as a page.
    """

    name = "booth_chat"
    scope_kinds = ("booth",)

    def __init__(
        self,
        handle,
        *,
        on_message: Optional[Callable[[BoothChatMessage], Any]] = None,
    ):
        super().__init__(handle)
        self.state = ChatState(
            self.scope.id, max_messages=self.config.max_chat_messages, log=self.log
        )
        self.on_message = on_message
        self.loading = False
        self.sending = False
        self.listen(ev.BOOTH_CHAT_MESSAGE, self._on_message)
        self.start()

    @property
    def messages(self) -> list[BoothChatMessage]:
        return self.state.messages

    async def on_joined(self) -> None:
        await self.load_history()

    async def load_history(self, cursor: Optional[str] = None) -> CallResult:
        self.loading = True
        try:
            payload: dict[str, Any] = {"boothId": self.scope.id, "limit": HISTORY_PAGE_SIZE}
            if cursor:
                payload["cursor"] = cursor
            result = await self.handle.call(ev.BOOTH_CHAT_HISTORY, payload)
        finally:
            self.loading = False

        page = _history_page(result)
        if page is None:
            return self._record(result)
        if not self.state.apply_history(page, cursor):
            return self._record(CallResult.failure("Invalid chat history", INVALID_REPLY))
        return self._record(CallResult(success=True, raw=page))

    async def load_more(self) -> CallResult:
        if not self.state.has_more or not self.state.next_cursor:
            return self._rejected("No more messages")
        if self.loading:
            return self._rejected("History is already loading")
        return await self.load_history(self.state.next_cursor)

    async def send_message(self, text: str) -> CallResult:
        text = (text or "").strip()
        if not text:
            return self._rejected("Message is empty")
        self.sending = True
        try:
            result = await self.handle.mutate(
                ev.BOOTH_CHAT_SEND, {"boothId": self.scope.id, "text": text}
            )
        finally:
            self.sending = False
        return self._record(result)

    def snapshot(self) -> dict[str, Any]:
        return {
            "messages": [m.model_dump() for m in self.state.messages],
            "has_more": self.state.has_more,
            "next_cursor": self.state.next_cursor,
            "loading": self.loading,
            "sending": self.sending,
            "error": self.error,
        }

    def _on_message(self, payload: Any = None, *_: Any) -> None:
        message = self.state.apply_message(payload)
        if message is None or self.on_message is None:
            return
        if message.sender_id != self.user_id:
            self.on_message(message)


def _history_page(result: CallResult) -> Optional[dict]:
    if isinstance(result.data, dict) and "messages" in result.data:
        return result.data
    raw = result.raw
    if raw is None or raw.get("error") or "messages" not in raw:
        return None
    return raw

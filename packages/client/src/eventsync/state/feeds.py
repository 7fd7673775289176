"""Bounded feeds: leads, booth chat, networking suggestions.

Learn: All three are lists that grow from broadcasts and must not grow
forever. They share one rule set (see upsert_bounded):
- an id we already hold is updated where it stands
- a new id is prepended (chat: appended, it reads top-down)
- the list is cut to its max from the old end
"""

from dataclasses import dataclass
from typing import Any, Optional

from eventsync.schemas.chat import BoothChatHistory, BoothChatMessage
from eventsync.schemas.lead import (
    Lead,
    LeadCapturedEvent,
    LeadIntentUpdatedEvent,
    LeadStats,
)
from eventsync.schemas.suggestion import CircleSuggestion, ConnectionSuggestion, Suggestion
from eventsync.state.base import Reconciler, upsert_bounded


# ─── Leads ──────────────────────────────────────────────

class LeadsState(Reconciler):
    def __init__(self, sponsor_id: str, *, max_leads: int = 200, log=None):
        super().__init__("leads", log)
        self.sponsor_id = sponsor_id
        self.max_leads = max_leads
        self.leads: list[Lead] = []
        self.stats: Optional[LeadStats] = None

    def get(self, lead_id: str) -> Optional[Lead]:
        return next((lead for lead in self.leads if lead.id == lead_id), None)

    def apply_captured(self, payload: Any = None, *_: Any) -> bool:
        event = self.parse(LeadCapturedEvent, payload)
        if event is None:
            return False
        existing = self.get(event.id)
        if existing is not None:
            lead = existing.model_copy(
                update={
                    "intent_score": event.intent_score,
                    "intent_level": event.intent_level,
                }
            )
        else:
            lead = event.to_lead(self.sponsor_id)
        self.leads = upsert_bounded(self.leads, lead, lambda l: l.id, self.max_leads)
        self.changed()
        return True

    def apply_intent(self, payload: Any = None, *_: Any) -> bool:
        event = self.parse(LeadIntentUpdatedEvent, payload)
        if event is None or self.get(event.lead_id) is None:
            return False
        self.leads = [
            lead.model_copy(
                update={
                    "intent_score": event.intent_score,
                    "intent_level": event.intent_level,
                    "interaction_count": event.interaction_count,
                }
            )
            if lead.id == event.lead_id
            else lead
            for lead in self.leads
        ]
        self.changed()
        return True

    def replace(self, leads: list[Lead], stats: Optional[LeadStats] = None) -> None:
        """Authoritative reload from the REST API."""
        self.leads = leads[: self.max_leads]
        if stats is not None:
            self.stats = stats
        self.changed()


# ─── Booth chat ─────────────────────────────────────────

class ChatState(Reconciler):
    def __init__(self, booth_id: str, *, max_messages: int = 500, log=None):
        super().__init__("booth_chat", log)
        self.booth_id = booth_id
        self.max_messages = max_messages
        self.messages: list[BoothChatMessage] = []
        self.has_more = False
        self.next_cursor: Optional[str] = None

    def apply_message(self, payload: Any = None, *_: Any) -> Optional[BoothChatMessage]:
        message = self.parse(BoothChatMessage, payload)
        if message is None or message.booth_id != self.booth_id:
            return None
        self.messages = upsert_bounded(
            self.messages, message, lambda m: m.id, self.max_messages, prepend=False
        )
        self.changed()
        return message

    def apply_history(self, reply: Any, cursor: Optional[str] = None) -> bool:
        """Merge a history page. With `cursor` it is an older page."""
        history = self.parse(BoothChatHistory, reply)
        if history is None:
            return False
        page = [m for m in history.messages if m.booth_id == self.booth_id]
        if cursor:
            seen = {m.id for m in self.messages}
            merged = [m for m in page if m.id not in seen] + self.messages
        else:
            merged = page
        self.messages = merged[-self.max_messages:]
        self.has_more = history.has_more
        self.next_cursor = history.next_cursor
        self.changed()
        return True


# ─── Suggestions ────────────────────────────────────────

@dataclass
class SuggestionEntry:
    suggestion: Suggestion
    read: bool = False
    # Optimistically marked read, server confirmation outstanding.
    pending: bool = False

    @property
    def key(self) -> str:
        return self.suggestion.key


class SuggestionsState(Reconciler):
    def __init__(self, *, max_suggestions: int = 20, log=None):
        super().__init__("suggestions", log)
        self.max_suggestions = max_suggestions
        self.entries: list[SuggestionEntry] = []
        self.latest: Optional[Suggestion] = None

    @property
    def suggestions(self) -> list[Suggestion]:
        return [e.suggestion for e in self.entries]

    @property
    def unread_count(self) -> int:
        return sum(1 for e in self.entries if not e.read)

    def get(self, key: str) -> Optional[SuggestionEntry]:
        return next((e for e in self.entries if e.key == key), None)

    def parse_suggestion(self, kind: str, payload: Any) -> Optional[Suggestion]:
        """Validate a `suggestion.connection` or `suggestion.circle` payload."""
        model = ConnectionSuggestion if kind == "connection" else CircleSuggestion
        if not isinstance(payload, dict):
            return None
        # The event name decides the type, whatever the payload claims.
        return self.parse(model, {**payload, "type": model.model_fields["type"].default})

    def apply_batch(self, batch: list[Suggestion]) -> None:
        """Merge a newest-first batch in one update."""
        if not batch:
            return
        entries = self.entries
        # Oldest first, so the newest ends up at the front.
        for suggestion in reversed(batch):
            entries = upsert_bounded(
                entries, SuggestionEntry(suggestion), lambda e: e.key, self.max_suggestions
            )
        self.entries = entries
        self.latest = batch[0]
        self.changed()

    # ─── Read tracking ──────────────────────────────────

    def mark_read(self, key: str, *, pending: bool = False) -> bool:
        entry = self.get(key)
        if entry is None:
            return False
        entry.read = True
        entry.pending = pending
        self.changed()
        return True

    def confirm_read(self, key: str) -> None:
        entry = self.get(key)
        if entry is not None and entry.pending:
            entry.pending = False
            self.changed()

    def rollback_read(self, key: str) -> None:
        """Undo an optimistic read the server refused."""
        entry = self.get(key)
        if entry is not None and entry.pending:
            entry.read = False
            entry.pending = False
            self.changed()

    def mark_all_read(self) -> None:
        for entry in self.entries:
            entry.read = True
        self.changed()

    def dismiss(self, key: str) -> bool:
        before = len(self.entries)
        self.entries = [e for e in self.entries if e.key != key]
        if len(self.entries) == before:
            return False
        self.changed()
        return True

    def clear(self) -> None:
        self.entries = []
        self.latest = None
        self.changed()

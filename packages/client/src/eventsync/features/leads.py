"""Sponsor leads — live captures plus the REST list they reconcile with.

Learn: Broadcasts are applied locally right away (so a new lead shows up
instantly) and ALSO schedule a REST refresh, because the server's list
is the source of truth for counts, stats and interaction history. A new
broadcast cancels a refresh that is still running; only the latest one
lands.
"""

import asyncio
from typing import Any, Optional

from eventsync.errors import ReferenceDataError
from eventsync.events import types as ev
from eventsync.features.base import FeatureClient
from eventsync.reference import ReferenceClient
from eventsync.schemas.lead import Lead, LeadStats
from eventsync.state.feeds import LeadsState

PAGE_SIZE = 50


class LeadsClient(FeatureClient):
    name = "leads"
    scope_kinds = ("sponsor",)

    def __init__(self, handle, reference: Optional[ReferenceClient] = None):
        super().__init__(handle)
        self.reference = reference
        self.state = LeadsState(self.scope.id, max_leads=self.config.max_leads, log=self.log)
        self.loading = False
        self.has_more = False
        self._refresh_task: Optional[asyncio.Task] = None

        self.listen(ev.LEAD_CAPTURED, self._on_captured)
        self.listen(ev.LEAD_INTENT_UPDATED, self._on_intent_updated)
        self.start()

    @property
    def leads(self) -> list[Lead]:
        return self.state.leads

    @property
    def stats(self) -> Optional[LeadStats]:
        return self.state.stats

    def hot_leads(self) -> list[Lead]:
        return [lead for lead in self.state.leads if lead.intent_level == "hot"]

    async def on_joined(self) -> None:
        await self.refresh()

    async def refresh(self) -> bool:
        """Reload the first page of leads and the stats from REST."""
        if self.reference is None:
            return False
        self.loading = True
        try:
            leads, stats = await asyncio.gather(
                self.reference.leads(self.scope.id, limit=PAGE_SIZE),
                self.reference.lead_stats(self.scope.id),
            )
        except ReferenceDataError as e:
            self.log.warning("leads.refresh_failed", error=str(e))
            self.error = str(e)
            return False
        finally:
            self.loading = False
        self.state.replace(leads, stats)
        self.has_more = len(leads) == PAGE_SIZE
        self.error = None
        return True

    async def fetch_next_page(self) -> bool:
        if self.reference is None or not self.has_more or self.loading:
            return False
        self.loading = True
        try:
            page = await self.reference.leads(
                self.scope.id, limit=PAGE_SIZE, skip=len(self.state.leads)
            )
        except ReferenceDataError as e:
            self.error = str(e)
            return False
        finally:
            self.loading = False
        known = {lead.id for lead in self.state.leads}
        self.state.replace(self.state.leads + [l for l in page if l.id not in known])
        self.has_more = len(page) == PAGE_SIZE
        return True

    def snapshot(self) -> dict[str, Any]:
        stats = self.state.stats
        return {
            "leads": [lead.model_dump() for lead in self.state.leads],
            "stats": stats.model_dump() if stats else None,
            "has_more": self.has_more,
            "loading": self.loading,
            "error": self.error,
        }

    def close(self) -> None:
        super().close()
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None

    # ─── Broadcasts ─────────────────────────────────────

    def _on_captured(self, payload: Any = None, *_: Any) -> None:
        if self.state.apply_captured(payload):
            self._schedule_refresh()

    def _on_intent_updated(self, payload: Any = None, *_: Any) -> None:
        if self.state.apply_intent(payload):
            self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        if self.reference is None or self._closed:
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = self.handle.spawn(self.refresh())

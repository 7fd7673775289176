"""Reference data — read-only REST lookups next to the realtime channel.

Learn: Some data is owned by the REST API, not the realtime service. A
`lead.captured.new` broadcast says "something changed"; the full lead
list and the aggregate stats come from PostgreSQL via the API. This
client only ever GETs, with the same bearer credential as the socket.

Transient failures (network errors, 5xx) are retried with exponential
backoff: 2s, 4s, 8s. 4xx responses are not retried; they won't change.
"""

import asyncio
from typing import Any, Optional

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from eventsync.auth import Credential
from eventsync.config import Settings, settings as default_settings
from eventsync.errors import ReferenceDataError
from eventsync.schemas.lead import Lead, LeadStats, UserProfile

logger = structlog.get_logger()

_LEADS = TypeAdapter(list[Lead])


class ReferenceClient:
    """Async httpx client for the lead and profile endpoints."""

    def __init__(
        self,
        credential: Credential,
        *,
        config: Settings = default_settings,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credential = credential
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client = httpx.AsyncClient(
            base_url=config.api_url.rstrip("/"),
            timeout=config.api_timeout,
            headers={**credential.headers(), "Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "ReferenceClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ─── Endpoints ──────────────────────────────────────

    async def leads(
        self,
        sponsor_id: str,
        *,
        limit: int = 50,
        skip: int = 0,
        intent_level: Optional[str] = None,
    ) -> list[Lead]:
        params: dict[str, Any] = {"limit": limit, "skip": skip}
        if intent_level:
            params["intent_level"] = intent_level
        data = await self._get(f"/sponsors/sponsors/{sponsor_id}/leads", params)
        try:
            return _LEADS.validate_python(data)
        except ValidationError as e:
            raise ReferenceDataError(f"Malformed leads response: {e.error_count()} errors") from e

    async def lead_stats(self, sponsor_id: str) -> LeadStats:
        data = await self._get(f"/sponsors/sponsors/{sponsor_id}/leads/stats")
        try:
            return LeadStats.model_validate(data)
        except ValidationError as e:
            raise ReferenceDataError("Malformed lead stats response") from e

    async def user(self, user_id: str) -> UserProfile:
        data = await self._get(f"/users/{user_id}")
        try:
            return UserProfile.model_validate(data)
        except ValidationError as e:
            raise ReferenceDataError("Malformed user profile response") from e

    # ─── Internals ──────────────────────────────────────

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        attempt = 0
        while True:
            try:
                r = await self._client.get(path, params=params)
                r.raise_for_status()
                return r.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                error = ReferenceDataError(f"GET {path} failed: {status}", status_code=status)
                if status < 500:
                    raise error from e
            except httpx.TransportError as e:
                error = ReferenceDataError(f"GET {path} failed: {e}")
            except ValueError as e:
                raise ReferenceDataError(f"GET {path} returned invalid JSON") from e

            if attempt >= self.max_retries:
                raise error
            attempt += 1
            delay = self.retry_delay * (2 ** (attempt - 1))
            logger.warning("reference.retry", path=path, attempt=attempt, delay=delay, error=str(error))
            await asyncio.sleep(delay)

"""Client configuration via environment variables.

Uses pydantic-settings to load config from env vars with EVENTSYNC_ prefix.
No config files; env vars only.

Learn: Timeouts and delays are in seconds (floats), not milliseconds.
Everything async in this package schedules on the running event loop,
so these values feed straight into asyncio.wait_for / loop.call_later.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All client configuration. Set via EVENTSYNC_* env vars."""

    # Realtime transport
    realtime_url: str = "http://localhost:3002"
    realtime_namespace: str = "/events"
    transports: list[str] = ["websocket", "polling"]

    # Reference data (read-only REST)
    api_url: str = "http://localhost:8000/api/v1"
    api_timeout: float = 10.0

    # Reconnection
    reconnection_attempts: int = 10
    reconnection_delay: float = 1.0
    reconnection_delay_max: float = 10.0

    # Timeouts
    connect_timeout: float = 20.0
    join_timeout: float = 10.0
    call_timeout: float = 10.0
    mutation_timeout: float = 30.0

    # Batching + bounds
    batch_quiet_period: float = 0.1  # 100ms idle before a batch flushes
    cache_capacity: int = 500
    max_suggestions: int = 20
    max_leads: int = 200
    max_chat_messages: int = 500
    max_point_events: int = 50
    point_event_ttl: float = 5.0

    environment: str = "development"

    model_config = {"env_prefix": "EVENTSYNC_"}

    @model_validator(mode="after")
    def validate_timing(self):
        """Reject timing values that would hang or spin."""
        for name in (
            "connect_timeout",
            "join_timeout",
            "call_timeout",
            "mutation_timeout",
            "batch_quiet_period",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"EVENTSYNC_{name.upper()} must be positive")
        if self.reconnection_delay > self.reconnection_delay_max:
            raise ValueError(
                "EVENTSYNC_RECONNECTION_DELAY must not exceed "
                "EVENTSYNC_RECONNECTION_DELAY_MAX"
            )
        if self.cache_capacity < 1:
            raise ValueError("EVENTSYNC_CACHE_CAPACITY must be at least 1")
        return self


# Singleton: import this everywhere
settings = Settings()

"""Bearer credentials for the realtime and reference channels.

Learn: The client never verifies JWT signatures — it has no secret, and
the server verifies on connect anyway. We only *read* the claims:
- `sub` is the local user id (used to find "my" rank, "my" team)
- `exp` lets us refuse to open a connection with a token that is
  already dead, instead of burning reconnection attempts on it

Opaque (non-JWT) tokens are accepted as-is; they just carry no user id.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import jwt

from eventsync.errors import CredentialError


@dataclass(frozen=True)
class Credential:
    """A bearer token plus the claims we can read from it."""

    token: str
    user_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_token(cls, token: str, user_id: Optional[str] = None) -> "Credential":
        """Build a credential, reading `sub`/`exp` when the token is a JWT.

        An explicit user_id wins over the token's `sub` claim.
        """
        token = (token or "").strip()
        if token.lower() == "bearer" or token.lower().startswith("bearer "):
            token = token[6:].strip()
        if not token:
            raise CredentialError("A bearer token is required")

        expires_at = None
        try:
            claims = jwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": False},
            )
        except jwt.InvalidTokenError:
            claims = {}

        if "exp" in claims:
            try:
                expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
            except (TypeError, ValueError):
                raise CredentialError("Token has a malformed exp claim")

        sub = claims.get("sub")
        return cls(
            token=token,
            user_id=user_id or (str(sub) if sub is not None else None),
            expires_at=expires_at,
        )

    @property
    def bearer(self) -> str:
        return f"Bearer {self.token}"

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= datetime.now(timezone.utc)

    def auth_payload(self) -> dict[str, str]:
        """Payload presented at transport-connect time."""
        return {"token": self.bearer}

    def headers(self) -> dict[str, str]:
        """HTTP headers for the reference REST client."""
        return {"Authorization": self.bearer}

    def validate(self) -> None:
        """Raise CredentialError if this credential cannot open a connection."""
        if self.is_expired:
            raise CredentialError("Token has expired")

    def __repr__(self) -> str:
        # Never print the token itself.
        return f"Credential(user_id={self.user_id!r}, expires_at={self.expires_at!r})"

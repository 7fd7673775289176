"""Error taxonomy for the sync layer.

Learn: Almost nothing here is raised at runtime. Calls resolve to a
CallResult and connection problems land in ConnectionStatus.error.
These classes exist so callers who prefer exceptions can opt in via
CallResult.raise_for_error(), and so transports have a typed way to
report connect failures to the ConnectionManager.
"""


class SyncError(Exception):
    """Base class for every eventsync error."""


class CredentialError(SyncError):
    """Raised when a credential is missing, malformed, or expired."""


class TransportError(SyncError):
    """Connect failure or mid-session drop.

    `retryable=False` means the server refused the handshake itself
    (bad auth, unknown namespace) and reconnecting would repeat it.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class NotConnectedError(SyncError):
    """Raised when a call is attempted without a live transport."""


class HandshakeError(SyncError):
    """Raised when the server rejects a room join."""


class CallError(SyncError):
    """Raised when the server answers a call with success=false."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class CallTimeoutError(CallError):
    """Client-synthesized: no reply arrived before the deadline."""


class CallCancelledError(CallError):
    """The call was cancelled locally, usually by scope teardown."""


class ReferenceDataError(SyncError):
    """A read-only REST lookup failed (HTTP error or unreachable API)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

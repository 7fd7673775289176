"""Transport adapters.

Learn: `Transport` is the abstract contract; `SocketIOTransport` is the
production adapter. Tests plug in an in-memory fake with the same base.
"""

from eventsync.transport.base import Transport
from eventsync.transport.socketio import SocketIOTransport

__all__ = ["Transport", "SocketIOTransport"]

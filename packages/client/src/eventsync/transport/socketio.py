"""Socket.IO transport — python-socketio AsyncClient adapter.

Learn: The realtime service speaks Socket.IO on the `/events` namespace.
python-socketio already gives us emit-with-ack, which is exactly the
"one-shot reply handler" the correlator needs.

Two deliberate choices:
- reconnection=False — ConnectionManager owns reconnection so it can
  replay room joins and keep an honest state machine.
- a single catch-all ("*") handler feeds the base class registry, so
  off() really removes listeners (python-socketio has no per-handler off).
"""

from typing import Any, Optional
from urllib.parse import urlencode

import socketio
import structlog

from eventsync.errors import TransportError
from eventsync.transport.base import (
    CLIENT_DISCONNECT,
    CONNECT,
    DISCONNECT,
    SERVER_DISCONNECT,
    TRANSPORT_CLOSE,
    AckCallback,
    Transport,
)

logger = structlog.get_logger()

# python-socketio disconnect reasons (passed to the handler since 5.12)
_REASONS = {
    socketio.AsyncClient.reason.CLIENT_DISCONNECT: CLIENT_DISCONNECT,
    socketio.AsyncClient.reason.SERVER_DISCONNECT: SERVER_DISCONNECT,
}


class SocketIOTransport(Transport):
    """One Socket.IO client connection on one namespace."""

    def __init__(
        self,
        namespace: str = "/events",
        transports: Optional[list[str]] = None,
    ):
        super().__init__()
        self.namespace = namespace
        self.transports = transports or ["websocket", "polling"]
        self._sio: Optional[socketio.AsyncClient] = None
        self._open = False
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._open and self._sio is not None and self._sio.connected

    async def connect(
        self,
        url: str,
        *,
        auth: dict[str, Any],
        query: dict[str, str],
        timeout: float,
    ) -> None:
        sio = socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)
        sio.on("*", self._on_any, namespace=self.namespace)
        sio.on("disconnect", self._on_disconnect, namespace=self.namespace)

        target = f"{url}?{urlencode(query)}" if query else url
        self._closing = False
        # Tracked before connecting so a disconnect() racing this call
        # can still close the half-open client.
        self._sio = sio
        try:
            await sio.connect(
                target,
                auth=auth,
                transports=self.transports,
                namespaces=[self.namespace],
                wait_timeout=timeout,
            )
        except socketio.exceptions.ConnectionError as e:
            self._sio = None
            raise TransportError(str(e) or "Connection failed") from e

        if self._sio is not sio:
            # disconnect() ran while we were connecting.
            await sio.disconnect()
            raise TransportError("Connection closed during connect", retryable=False)
        self._open = True
        logger.debug("socketio.connected", url=url, namespace=self.namespace, sid=sio.sid)
        self.dispatch(CONNECT)

    async def disconnect(self) -> None:
        sio = self._sio
        if sio is None:
            return
        self._closing = True
        try:
            await sio.disconnect()
        finally:
            self._sio = None
            if self._open:
                self._open = False
                self.dispatch(DISCONNECT, CLIENT_DISCONNECT)

    async def emit(
        self,
        event: str,
        payload: Any = None,
        callback: Optional[AckCallback] = None,
    ) -> None:
        if not self.connected:
            raise TransportError("Not connected to server")
        try:
            await self._sio.emit(event, payload, namespace=self.namespace, callback=callback)
        except socketio.exceptions.SocketIOError as e:
            raise TransportError(str(e)) from e

    # ─── python-socketio callbacks ──────────────────────

    async def _on_any(self, event: str, *args: Any) -> None:
        self.dispatch(event, *args)

    async def _on_disconnect(self, reason: Optional[str] = None) -> None:
        if not self._open:
            return
        self._open = False
        if self._closing:
            mapped = CLIENT_DISCONNECT
        else:
            mapped = _REASONS.get(reason or "", TRANSPORT_CLOSE)
        logger.debug("socketio.disconnected", reason=reason, mapped=mapped)
        self.dispatch(DISCONNECT, mapped)

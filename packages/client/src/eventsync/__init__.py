"""eventsync — real-time synchronization client for the event platform.

The layer every live feature sits on: one shared transport connection per
scope (session, event, booth, sponsor), an authenticated room-join
handshake, request/response correlation over a one-way emit transport,
idempotent mutating calls, debounced batching of bursty pushes, and
bounded caches.
"""

__version__ = "0.1.0"

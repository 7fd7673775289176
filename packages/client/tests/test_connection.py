"""ConnectionManager tests — sharing, reconnection, and teardown.

Pattern: test_<verb>_<noun>_<scenario>
"""

import asyncio
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from conftest import TOKEN, USER_ID, settle, wait_until
from eventsync.connection import ConnectionState
from eventsync.correlator import TRANSPORT_FAILED
from eventsync.errors import CredentialError, HandshakeError, TransportError
from eventsync.events import types as ev
from eventsync.scope import Scope
from eventsync.transport.base import SERVER_DISCONNECT

SESSION = "session:s1"


# ═══════════════════════════════════════════════════════════
# Acquire / release
# ═══════════════════════════════════════════════════════════


async def test_acquire_same_scope_shares_one_transport(manager, transports):
    h1 = manager.acquire(SESSION, TOKEN)
    h2 = manager.acquire(SESSION, TOKEN)

    assert h1.connection is h2.connection
    assert len(transports) == 1
    assert h1.connection.ref_count == 2
    await h1.wait_joined(1)
    assert transports[0].connects == 1


async def test_acquire_different_scopes_opens_separate_transports(manager, transports):
    manager.acquire("session:s1", TOKEN)
    manager.acquire("session:s2", TOKEN)
    assert len(transports) == 2
    assert len(manager) == 2


async def test_acquire_joins_with_credential_and_scope_params(manager, transports, server):
    handle = manager.acquire(Scope("session", "s1", parent_event_id="e1"), TOKEN)
    await handle.wait_joined(1)

    transport = transports[0]
    assert transport.last_auth == {"token": f"Bearer {TOKEN}"}
    assert transport.last_query == {"sessionId": "s1", "eventId": "e1"}
    assert handle.state == ConnectionState.JOINED
    assert handle.user_id == USER_ID

    status = handle.status()
    assert status.joined and status.connected
    assert status.settings["chat_open"] is True
    assert status.ref_count == 1


async def test_acquire_rejects_missing_or_expired_credential(manager, transports):
    with pytest.raises(CredentialError):
        manager.acquire(SESSION, "")

    expired = jwt.encode(
        {"sub": "u1", "exp": datetime.now(timezone.utc) - timedelta(minutes=5)},
        "eventsync-test-signing-key-0123456789",
        algorithm="HS256",
    )
    with pytest.raises(CredentialError):
        manager.acquire(SESSION, expired)
    assert transports == []
    assert len(manager) == 0


async def test_acquire_rejects_unknown_scope_kind(manager):
    with pytest.raises(ValueError):
        manager.acquire("planet:p1", TOKEN)


async def test_release_keeps_connection_until_last_handle(manager, transports, server):
    h1 = manager.acquire(SESSION, TOKEN)
    h2 = manager.acquire(SESSION, TOKEN)
    await h1.wait_joined(1)

    await h1.release()
    assert transports[0].connected
    assert SESSION in manager

    await h2.release()
    assert not transports[0].connected
    assert SESSION not in manager
    assert h2.connection.state == ConnectionState.DISCONNECTED
    assert server.received_events(ev.SESSION_LEAVE) == [{"sessionId": "s1"}]


async def test_double_release_is_a_noop(manager):
    h1 = manager.acquire(SESSION, TOKEN)
    h2 = manager.acquire(SESSION, TOKEN)
    await h1.release()
    await h1.release()
    assert h2.connection.ref_count == 1


async def test_handle_as_context_manager_releases(manager, transports):
    async with manager.acquire(SESSION, TOKEN) as handle:
        await handle.wait_joined(1)
    assert handle.released
    assert not transports[0].connected


async def test_reacquire_while_closing_waits_for_the_old_close(manager, transports):
    h1 = manager.acquire(SESSION, TOKEN)
    await h1.wait_joined(1)

    releasing = asyncio.ensure_future(h1.release())
    await asyncio.sleep(0)
    h2 = manager.acquire(SESSION, TOKEN)
    assert h2.connection is not h1.connection

    await releasing
    await h2.wait_joined(1)
    assert not transports[0].connected
    assert transports[1].connected


async def test_rapid_mount_unmount_never_overlaps_transports(manager, server):
    async def consumer(pause):
        for _ in range(6):
            handle = manager.acquire(SESSION, TOKEN)
            await asyncio.sleep(pause)
            await handle.release()

    await asyncio.gather(consumer(0), consumer(0.003))
    assert server.peak_connections == 1
    assert SESSION not in manager


# ═══════════════════════════════════════════════════════════
# Join failures
# ═══════════════════════════════════════════════════════════


async def test_rejected_join_stays_connected_and_raises_handshake_error(manager, server):
    server.handle(ev.SESSION_JOIN, lambda p: {"success": False, "error": "Session has ended"})
    handle = manager.acquire(SESSION, TOKEN)

    with pytest.raises(HandshakeError, match="Session has ended"):
        await handle.wait_joined(1)
    assert handle.state == ConnectionState.CONNECTED
    assert handle.status().error == "Session has ended"


async def test_retry_rejoins_after_rejected_join(manager, server):
    server.handle(ev.SESSION_JOIN, lambda p: {"success": False, "error": "Not yet"})
    handle = manager.acquire(SESSION, TOKEN)
    assert not await handle.ready(1)

    server.handle(ev.SESSION_JOIN, lambda p: {"success": True})
    await handle.retry()
    assert handle.state == ConnectionState.JOINED
    assert handle.status().error is None


async def test_broadcasts_are_not_applied_without_a_join(manager, server):
    server.handle(ev.SESSION_JOIN, lambda p: {"success": False, "error": "nope"})
    handle = manager.acquire(SESSION, TOKEN)
    gated, ungated = [], []
    handle.subscribe(ev.LEADERBOARD_UPDATED, gated.append)
    handle.subscribe(ev.SYSTEM_ERROR, ungated.append, gated=False)
    await handle.ready(1)

    server.broadcast(ev.LEADERBOARD_UPDATED, {"topEntries": []})
    server.broadcast(ev.SYSTEM_ERROR, {"message": "x"})
    assert gated == []
    assert ungated == [{"message": "x"}]


async def test_refused_handshake_goes_to_error_without_retrying(manager, server):
    server.refuse_connects = True
    handle = manager.acquire(SESSION, TOKEN)

    with pytest.raises(TransportError) as exc:
        await handle.wait_joined(1)
    assert exc.value.retryable is False
    assert handle.state == ConnectionState.ERROR
    await asyncio.sleep(0.05)
    assert server.connect_attempts == 1


# ═══════════════════════════════════════════════════════════
# Reconnection
# ═══════════════════════════════════════════════════════════


async def test_drop_reconnects_and_replays_the_join(manager, server, transports):
    handle = manager.acquire(SESSION, TOKEN)
    await handle.wait_joined(1)
    states = []
    handle.add_state_listener(lambda prev, state: states.append(state))

    server.drop_all()
    assert handle.state == ConnectionState.RECONNECTING

    await wait_until(lambda: handle.state == ConnectionState.JOINED)
    assert transports[0].connects == 2
    assert len(server.received_events(ev.SESSION_JOIN)) == 2
    assert handle.connection.room.join_count == 2
    assert handle.status().reconnect_attempts == 0
    assert states == [
        ConnectionState.RECONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.JOINED,
    ]


async def test_drop_fails_pending_calls_fast(manager, server):
    handle = manager.acquire(SESSION, TOKEN)
    await handle.wait_joined(1)

    call = handle.call("slow.request", {})  # never answered
    await settle()
    server.drop_all()

    result = await call
    assert result.code == TRANSPORT_FAILED


async def test_connect_failures_back_off_then_recover(manager, server):
    server.fail_connects = 2
    handle = manager.acquire(SESSION, TOKEN)

    await wait_until(lambda: handle.state == ConnectionState.JOINED)
    assert server.connect_attempts == 3


async def test_reconnect_gives_up_after_configured_attempts(manager, server, fast_config):
    handle = manager.acquire(SESSION, TOKEN)
    await handle.wait_joined(1)

    server.fail_connects = 100
    server.drop_all()
    await wait_until(lambda: handle.state == ConnectionState.ERROR)

    attempts = fast_config.reconnection_attempts
    assert handle.status().error == f"Reconnection failed after {attempts} attempts"
    assert server.connect_attempts == 1 + attempts


async def test_retry_after_exhaustion_starts_over(manager, server):
    handle = manager.acquire(SESSION, TOKEN)
    await handle.wait_joined(1)
    server.fail_connects = 100
    server.drop_all()
    await wait_until(lambda: handle.state == ConnectionState.ERROR)

    server.fail_connects = 0
    await handle.retry()
    assert handle.state == ConnectionState.JOINED


async def test_server_disconnect_is_final(manager, server):
    handle = manager.acquire(SESSION, TOKEN)
    await handle.wait_joined(1)

    server.drop_all(SERVER_DISCONNECT)
    await asyncio.sleep(0.05)
    assert handle.state == ConnectionState.DISCONNECTED
    assert handle.status().error == "Disconnected by server"
    assert server.connect_attempts == 1


async def test_backoff_delay_is_exponential_and_capped(manager):
    handle = manager.acquire(SESSION, TOKEN)
    delays = [handle.connection.backoff_delay(n) for n in range(1, 6)]
    assert delays == [0.01, 0.02, 0.04, 0.04, 0.04]


# ═══════════════════════════════════════════════════════════
# Teardown
# ═══════════════════════════════════════════════════════════


async def test_release_tears_down_the_whole_arena(manager, transports, server):
    handle = manager.acquire(SESSION, TOKEN)
    await handle.wait_joined(1)
    connection = handle.connection
    transport = transports[0]

    cleaned = []
    handle.add_cleanup(lambda: cleaned.append(True))
    cache = handle.cache("translations")
    cache.put("k", "v")
    received = []
    handle.subscribe(ev.POINT_EVENT, received.append)
    sleeper = handle.spawn(asyncio.sleep(10))
    pending = handle.call("never.answered", {})
    late_states = []
    connection.add_state_listener(lambda prev, state: late_states.append(state))

    await handle.release()
    await settle()

    assert cleaned == [True]
    assert len(cache) == 0
    assert sleeper.cancelled()
    assert pending.done()
    assert connection.correlator.pending_count == 0
    assert transport.listener_count() == 0
    assert late_states == [ConnectionState.DISCONNECTED]

    server.broadcast(ev.POINT_EVENT, {"id": "p1"})
    assert received == []


async def test_release_removes_only_that_handles_registrations(manager, server, transports):
    h1 = manager.acquire(SESSION, TOKEN)
    h2 = manager.acquire(SESSION, TOKEN)
    await h1.wait_joined(1)

    first, second, cleaned, states = [], [], [], []
    h1.subscribe(ev.POINT_EVENT, first.append)
    h2.subscribe(ev.POINT_EVENT, second.append)
    h1.add_cleanup(lambda: cleaned.append("h1"))
    h2.add_cleanup(lambda: cleaned.append("h2"))
    h1.add_state_listener(lambda prev, state: states.append(state))
    sleeper = h1.spawn(asyncio.sleep(10))

    await h1.release()
    await settle()

    assert cleaned == ["h1"]
    assert sleeper.cancelled()
    assert transports[0].listener_count(ev.POINT_EVENT) == 1
    server.broadcast(ev.POINT_EVENT, {"id": "p1"})
    assert first == []
    assert second == [{"id": "p1"}]

    server.drop_all()
    await wait_until(lambda: h2.state == ConnectionState.JOINED)
    assert states == []

    await h2.release()
    assert cleaned == ["h1", "h2"]


async def test_close_all_runs_cleanups_of_held_handles(manager):
    handle = manager.acquire(SESSION, TOKEN)
    cleaned = []
    handle.add_cleanup(lambda: cleaned.append(True))

    await manager.close_all()
    assert cleaned == [True]
    await handle.release()
    assert cleaned == [True]


async def test_close_all_closes_regardless_of_handles(manager, transports):
    manager.acquire("session:s1", TOKEN)
    manager.acquire("session:s1", TOKEN)
    manager.acquire("event:e1", TOKEN)
    await settle(10)

    await manager.close_all()
    assert len(manager) == 0
    assert all(not t.connected for t in transports)


async def test_second_credential_for_open_scope_is_ignored(manager):
    other = jwt.encode({"sub": "someone-else"}, "eventsync-test-signing-key-0123456789", algorithm="HS256")
    h1 = manager.acquire(SESSION, TOKEN)
    h2 = manager.acquire(SESSION, other)
    assert h2.user_id == h1.user_id == USER_ID

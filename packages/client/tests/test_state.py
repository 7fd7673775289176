"""State reconciler tests — validate, then apply; malformed input is dropped whole."""

import asyncio

from eventsync.schemas.heatmap import ActivityLevel, activity_level
from eventsync.schemas.leaderboard import PointReason
from eventsync.schemas.subtitle import SubtitleChunk
from eventsync.state.base import upsert_bounded
from eventsync.state.feeds import ChatState, LeadsState, SuggestionsState
from eventsync.state.heatmap import HeatmapState
from eventsync.state.leaderboard import LeaderboardState
from eventsync.state.subtitles import SubtitlesState
from eventsync.state.teams import TeamsState


def _entry(rank, user_id, score, first="Ada"):
    return {"rank": rank, "user": {"id": user_id, "firstName": first, "lastName": "L"}, "score": score}


def _point(pid, points=10, reason="MESSAGE_SENT"):
    return {"id": pid, "reason": reason, "points": points, "timestamp": 1700000000.0}


def _team(tid, name, members=()):
    return {"id": tid, "name": name, "members": [{"userId": m} for m in members]}


# ═══════════════════════════════════════════════════════════
# Shared helpers
# ═══════════════════════════════════════════════════════════


def test_upsert_bounded_replaces_in_place_and_trims():
    items = [{"id": 1, "v": "a"}, {"id": 2, "v": "b"}]
    key = lambda i: i["id"]

    replaced = upsert_bounded(items, {"id": 2, "v": "B"}, key, limit=2)
    assert [i["v"] for i in replaced] == ["a", "B"]

    added = upsert_bounded(items, {"id": 3, "v": "c"}, key, limit=2)
    assert [i["id"] for i in added] == [3, 1]

    appended = upsert_bounded(items, {"id": 3, "v": "c"}, key, limit=2, prepend=False)
    assert [i["id"] for i in appended] == [2, 3]


def test_change_listeners_fire_and_can_be_removed():
    state = TeamsState("u1")
    calls = []
    remove = state.on_change(lambda: calls.append(1))

    state.apply_created(_team("t1", "Rocket"))
    remove()
    state.apply_created(_team("t2", "Comet"))
    assert calls == [1]


# ═══════════════════════════════════════════════════════════
# Leaderboard
# ═══════════════════════════════════════════════════════════


async def test_leaderboard_full_replace_derives_own_rank():
    state = LeaderboardState("u2")
    assert state.apply_leaderboard({"topEntries": [_entry(1, "u1", 90), _entry(2, "u2", 40)]})

    assert [e.user.id for e in state.entries] == ["u1", "u2"]
    assert state.current_rank == 2
    assert state.current_score == 40
    assert state.entries[0].user.display_name == "Ada L"


async def test_malformed_leaderboard_is_dropped_whole():
    state = LeaderboardState("u1")
    state.apply_leaderboard({"topEntries": [_entry(1, "u1", 10)]})

    bad = {"topEntries": [_entry(1, "u9", 99), {"rank": "first"}]}
    assert not state.apply_leaderboard(bad)
    assert [e.user.id for e in state.entries] == ["u1"]
    assert state.dropped == 1


async def test_point_events_dedupe_bump_score_and_expire():
    state = LeaderboardState("u1", point_event_ttl=0.02)
    assert state.apply_point_event(_point("p1", 10))
    assert not state.apply_point_event(_point("p1", 10))  # redelivery
    assert state.current_score == 10
    assert state.point_events[0].reason is PointReason.MESSAGE_SENT

    await asyncio.sleep(0.05)
    assert state.point_events == []
    assert state.pending_timers == 0


async def test_point_events_are_bounded_and_close_cancels_timers():
    state = LeaderboardState("u1", max_point_events=2, point_event_ttl=10)
    for n in range(3):
        state.apply_point_event(_point(f"p{n}", 1))

    assert [e.id for e in state.point_events] == ["p1", "p2"]
    assert state.pending_timers == 2
    state.close()
    assert state.pending_timers == 0


async def test_achievements_dedupe_by_id():
    state = LeaderboardState("u1")
    badge = {"id": "a1", "badgeName": "First Post", "unlockedAt": "2026-01-01T00:00:00Z"}
    assert state.apply_achievement(badge)
    assert not state.apply_achievement(badge)
    assert not state.apply_achievement({"id": "a2", "badgeName": "x", "unlockedAt": ""})

    state.clear_achievements(["a1"])
    assert state.achievements == []


def test_team_leaderboard_replaces():
    state = LeaderboardState("u1")
    state.apply_team_leaderboard(
        {"teamScores": [{"teamId": "t1", "name": "Rocket", "score": 50, "rank": 1}]}
    )
    assert state.team_entries[0].name == "Rocket"


# ═══════════════════════════════════════════════════════════
# Teams
# ═══════════════════════════════════════════════════════════


def test_teams_list_requires_success_flag():
    state = TeamsState("u1")
    assert not state.apply_list({"teams": [_team("t1", "Rocket")]})
    assert state.apply_list({"success": True, "teams": [_team("t1", "Rocket", ["u1"])]})
    assert state.current_team.id == "t1"
    assert state.in_team


def test_team_created_is_add_if_absent():
    state = TeamsState("u1")
    assert state.apply_created(_team("t1", "Rocket"))
    assert not state.apply_created(_team("t1", "Rocket"))
    assert len(state.teams) == 1


def test_roster_update_replaces_known_team_only():
    state = TeamsState("u1")
    state.apply_created(_team("t1", "Rocket"))

    assert state.apply_roster(_team("t1", "Rocket", ["u1", "u2"]))
    assert state.current_team.id == "t1"
    assert not state.apply_roster(_team("t9", "Ghost", ["u1"]))
    assert [t.id for t in state.teams] == ["t1"]


# ═══════════════════════════════════════════════════════════
# Heatmap
# ═══════════════════════════════════════════════════════════


def test_activity_thresholds():
    assert activity_level(0) is ActivityLevel.LOW
    assert activity_level(25) is ActivityLevel.MEDIUM
    assert activity_level(50) is ActivityLevel.HIGH
    assert activity_level(75) is ActivityLevel.CRITICAL


def test_heatmap_zones_sorted_hottest_first():
    state = HeatmapState()
    state.apply(
        {
            "sessionHeat": {
                "cool-session": {"heat": 10, "chatVelocity": 1, "qnaVelocity": 0},
                "hot-session": {"heat": 80, "chatVelocity": 9, "qnaVelocity": 4},
                "empty": None,
            },
            "updatedAt": "2026-10-18T10:00:00Z",
        }
    )

    assert [z.zone_id for z in state.zones] == ["hot-session", "cool-session", "empty"]
    assert state.total_attendees == 90
    assert state.overall_activity is ActivityLevel.MEDIUM  # average 30
    assert [z.zone_id for z in state.critical_zones()] == ["hot-session"]
    assert [z.zone_id for z in state.zones_by_activity(ActivityLevel.LOW)] == [
        "cool-session",
        "empty",
    ]


def test_heatmap_without_updated_at_is_dropped():
    state = HeatmapState()
    state.apply({"sessionHeat": {"s": {"heat": 1}}, "updatedAt": "t0"})

    assert not state.apply({"sessionHeat": {"s": {"heat": 99}}})
    assert state.zones[0].heat_score == 1
    assert state.data.updated_at == "t0"


# ═══════════════════════════════════════════════════════════
# Leads, chat, suggestions
# ═══════════════════════════════════════════════════════════


def _captured(lead_id, user_id="u1", score=50, level="warm"):
    return {
        "id": lead_id,
        "user_id": user_id,
        "intent_score": score,
        "intent_level": level,
        "interaction_type": "BOOTH_VISIT",
        "created_at": "2026-10-18T10:00:00Z",
    }


def test_leads_capture_is_newest_first_deduped_and_bounded():
    state = LeadsState("sp1", max_leads=2)
    state.apply_captured(_captured("l1"))
    state.apply_captured(_captured("l2"))
    state.apply_captured(_captured("l1", score=90, level="hot"))
    assert [lead.id for lead in state.leads] == ["l2", "l1"]  # updated where it stands
    assert state.get("l1").intent_level == "hot"

    state.apply_captured(_captured("l3"))
    assert [lead.id for lead in state.leads] == ["l3", "l2"]


def test_lead_intent_update_ignores_unknown_leads():
    state = LeadsState("sp1")
    state.apply_captured(_captured("l1"))
    update = {"lead_id": "l1", "intent_score": 95, "intent_level": "hot", "interaction_count": 4}

    assert state.apply_intent(update)
    assert state.get("l1").intent_level == "hot"
    assert state.get("l1").interaction_count == 4
    assert not state.apply_intent({**update, "lead_id": "nope"})


def _message(mid, booth="b1", text="hi"):
    return {
        "id": mid,
        "boothId": booth,
        "senderId": "u2",
        "senderName": "Grace",
        "text": text,
        "createdAt": "2026-10-18T10:00:00Z",
    }


def test_chat_filters_by_booth_and_dedupes():
    state = ChatState("b1")
    assert state.apply_message(_message("m1")) is not None
    assert state.apply_message(_message("m2", booth="other")) is None
    state.apply_message(_message("m1", text="edited"))

    assert [m.text for m in state.messages] == ["edited"]


def test_chat_history_page_prepends_older_messages():
    state = ChatState("b1")
    state.apply_history({"messages": [_message("m3"), _message("m4")], "hasMore": True, "nextCursor": "c1"})
    assert state.has_more and state.next_cursor == "c1"

    state.apply_history({"messages": [_message("m1"), _message("m3")], "hasMore": False}, cursor="c1")
    assert [m.id for m in state.messages] == ["m1", "m3", "m4"]
    assert not state.has_more


def _connection_suggestion(user_id):
    return {
        "targetUserId": "me",
        "suggestedUserId": user_id,
        "suggestedUserName": f"User {user_id}",
        "reason": "Both like Python",
    }


def test_suggestions_batch_is_newest_first_and_capped():
    state = SuggestionsState(max_suggestions=2)
    batch = [
        state.parse_suggestion("connection", _connection_suggestion(uid))
        for uid in ("c", "b", "a")  # newest first, as the batcher delivers
    ]
    state.apply_batch(batch)

    assert [s.suggested_user_id for s in state.suggestions] == ["c", "b"]
    assert state.latest.suggested_user_id == "c"
    assert state.unread_count == 2


def test_suggestion_type_comes_from_the_event():
    state = SuggestionsState()
    circle = state.parse_suggestion(
        "circle", {"targetUserId": "me", "circleId": "k1", "circleName": "Rustaceans", "type": "BOGUS"}
    )
    assert circle.type == "CIRCLE_SUGGESTION"
    assert circle.key == "circle:k1"
    assert state.parse_suggestion("connection", "not a dict") is None


def test_optimistic_read_confirm_and_rollback():
    state = SuggestionsState()
    state.apply_batch([state.parse_suggestion("connection", _connection_suggestion("a"))])
    key = "connection:a"

    state.mark_read(key, pending=True)
    assert state.unread_count == 0
    state.rollback_read(key)
    assert state.unread_count == 1

    state.mark_read(key, pending=True)
    state.confirm_read(key)
    state.rollback_read(key)  # nothing pending any more
    assert state.unread_count == 0
    assert not state.get(key).pending


# ═══════════════════════════════════════════════════════════
# Subtitles
# ═══════════════════════════════════════════════════════════


async def test_subtitles_expire_after_their_own_duration():
    state = SubtitlesState()
    short = SubtitleChunk(session_id="s1", text="hi", language="en", timestamp="t", duration=20)
    long = SubtitleChunk(session_id="s1", text="there", language="en", timestamp="t", duration=500)
    state.add(short)
    kept = state.add(long)

    await asyncio.sleep(0.05)
    assert [s.id for s in state.subtitles] == [kept.id]
    assert state.set_translation(kept.id, "allí")
    assert state.get(kept.id).text == "allí"

    state.clear()
    assert state.subtitles == []
    assert state.pending_timers == 0


async def test_subtitles_close_stops_timers_without_notifying():
    state = SubtitlesState()
    changes = []
    state.add(SubtitleChunk(session_id="s1", text="hi", language="en", timestamp="t", duration=20))
    state.on_change(lambda: changes.append(True))

    state.close()
    await asyncio.sleep(0.04)

    assert changes == []
    assert state.pending_timers == 0

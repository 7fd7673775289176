"""Wire event name constants.

Learn: Centralizing event names as constants prevents typos and makes
it easy to discover every event the client emits or listens for.
Grouped by feature. Names are the server's — do not rename.
"""

# ─── Scope rooms ─────────────────────────────────────────

SESSION_JOIN = "session.join"
SESSION_LEAVE = "session.leave"

# ─── Scope settings (server-authoritative feature flags) ─

CHAT_STATUS_CHANGED = "chat.status.changed"
QA_STATUS_CHANGED = "qa.status.changed"
POLLS_STATUS_CHANGED = "polls.status.changed"
REACTIONS_STATUS_CHANGED = "reactions.status.changed"

# ─── Gamification ────────────────────────────────────────

LEADERBOARD_REQUEST = "leaderboard.request"
LEADERBOARD_DATA = "leaderboard.data"
LEADERBOARD_UPDATED = "leaderboard.updated"
TEAM_LEADERBOARD_UPDATED = "team.leaderboard.updated"
POINT_EVENT = "point.event"
ACHIEVEMENT_UNLOCKED = "achievement.unlocked"

# ─── Teams ───────────────────────────────────────────────

TEAMS_LIST = "teams.list"
TEAMS_LIST_RESPONSE = "teams.list.response"
TEAM_CREATE = "team.create"
TEAM_CREATE_RESPONSE = "team.create.response"
TEAM_JOIN = "team.join"
TEAM_JOIN_RESPONSE = "team.join.response"
TEAM_LEAVE = "team.leave"
TEAM_LEAVE_RESPONSE = "team.leave.response"
TEAM_CREATED = "team.created"
TEAM_ROSTER_UPDATED = "team.roster.updated"

# ─── Heatmap ─────────────────────────────────────────────

HEATMAP_JOIN = "heatmap.join"
HEATMAP_LEAVE = "heatmap.leave"
HEATMAP_UPDATED = "heatmap.updated"

# ─── Networking suggestions ──────────────────────────────

SUGGESTION_CONNECTION = "suggestion.connection"
SUGGESTION_CIRCLE = "suggestion.circle"
SUGGESTION_VIEWED = "suggestion.viewed"

# ─── Sponsor leads ───────────────────────────────────────

SPONSOR_LEADS_JOIN = "sponsor.leads.join"
SPONSOR_LEADS_LEAVE = "sponsor.leads.leave"
LEAD_CAPTURED = "lead.captured.new"
LEAD_INTENT_UPDATED = "lead.intent.updated"

# ─── Booth chat ──────────────────────────────────────────

BOOTH_CHAT_JOIN = "expo.booth.chat.join"
BOOTH_CHAT_LEAVE = "expo.booth.chat.leave"
BOOTH_CHAT_HISTORY = "expo.booth.chat.history"
BOOTH_CHAT_SEND = "expo.booth.chat.send"
BOOTH_CHAT_MESSAGE = "expo.booth.chat.message"

# ─── Translation + subtitles ─────────────────────────────

TRANSLATION_REQUEST = "translation.request"
SUBTITLE_CHUNK = "subtitle.stream.chunk"
SYSTEM_ERROR = "systemError"

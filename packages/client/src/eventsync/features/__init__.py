"""Feature clients — one per realtime feature, all borrowing a ConnectionHandle."""

from eventsync.features.base import FeatureClient
from eventsync.features.booth_chat import BoothChatClient
from eventsync.features.gamification import GamificationClient
from eventsync.features.heatmap import HeatmapClient
from eventsync.features.leads import LeadsClient
from eventsync.features.subtitles import SubtitlesClient
from eventsync.features.suggestions import SuggestionsClient
from eventsync.features.teams import TeamsClient
from eventsync.features.translation import TranslationClient

__all__ = [
    "BoothChatClient",
    "FeatureClient",
    "GamificationClient",
    "HeatmapClient",
    "LeadsClient",
    "SubtitlesClient",
    "SuggestionsClient",
    "TeamsClient",
    "TranslationClient",
]

"""Sponsor lead payloads.

Leads come from the lead service, which is snake_case end to end (both
the REST API and the `lead.*` broadcasts), hence RestModel.
"""

from typing import Literal, Optional

from pydantic import Field

from eventsync.schemas.base import RestModel

IntentLevel = Literal["hot", "warm", "cold"]
FollowUpStatus = Literal["new", "contacted", "qualified", "not_interested", "converted"]


class LeadInteraction(RestModel):
    type: str
    timestamp: str
    duration_seconds: Optional[float] = None
    content_name: Optional[str] = None
    notes: Optional[str] = None


class Lead(RestModel):
    id: str
    sponsor_id: str = ""
    event_id: str = ""
    user_id: str
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_company: Optional[str] = None
    user_title: Optional[str] = None
    intent_score: float = 0
    intent_level: IntentLevel = "cold"
    interaction_count: int = 0
    interactions: list[LeadInteraction] = Field(default_factory=list)
    contact_requested: bool = False
    follow_up_status: FollowUpStatus = "new"
    tags: list[str] = Field(default_factory=list)
    is_starred: bool = False
    is_archived: bool = False
    created_at: str = ""
    updated_at: str = ""


class LeadCapturedEvent(RestModel):
    """`lead.captured.new`"""
    id: str
    user_id: str
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_company: Optional[str] = None
    user_title: Optional[str] = None
    intent_score: float
    intent_level: IntentLevel
    interaction_type: str = ""
    created_at: str = ""

    def to_lead(self, sponsor_id: str) -> Lead:
        return Lead(
            id=self.id,
            sponsor_id=sponsor_id,
            user_id=self.user_id,
            user_name=self.user_name,
            user_email=self.user_email,
            user_company=self.user_company,
            user_title=self.user_title,
            intent_score=self.intent_score,
            intent_level=self.intent_level,
            interaction_count=1,
            created_at=self.created_at,
            updated_at=self.created_at,
        )


class LeadIntentUpdatedEvent(RestModel):
    """`lead.intent.updated`"""
    lead_id: str
    intent_score: float
    intent_level: IntentLevel
    interaction_count: int


class LeadStats(RestModel):
    total_leads: int = 0
    hot_leads: int = 0
    warm_leads: int = 0
    cold_leads: int = 0
    leads_contacted: int = 0
    leads_converted: int = 0
    conversion_rate: float = 0.0
    avg_intent_score: float = 0.0


class UserProfile(RestModel):
    """`GET /users/{id}` — only the fields the client displays."""
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email or self.id

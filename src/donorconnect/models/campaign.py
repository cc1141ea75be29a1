import uuid
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Literal

from donorconnect.models.donation import UtcDatetime, utcnow


CampaignStatus = Literal["Planning", "Active", "Completed", "Cancelled"]


class Campaign(BaseModel):
    campaign_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str | None = None
    goal_amount: Decimal | None = None
    # Materialized from linked Completed donations
    raised_amount: Decimal = Decimal("0")
    status: CampaignStatus = "Planning"
    start_date: UtcDatetime | None = None
    end_date: UtcDatetime | None = None

    created_at: UtcDatetime = Field(default_factory=utcnow)


class Event(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str | None = None
    event_date: UtcDatetime
    location: str | None = None
    # Materialized count of attendance records with attended=True
    attendees: int = 0

    created_at: UtcDatetime = Field(default_factory=utcnow)


class EventAttendance(BaseModel):
    event_id: str
    donor_id: str
    attended: bool = True

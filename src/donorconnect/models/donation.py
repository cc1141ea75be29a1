import uuid
from datetime import datetime, timezone
from decimal import Decimal
from pydantic import AfterValidator, BaseModel, Field
from typing import Annotated, Literal, Union


DonationStatus = Literal["Completed", "Pending", "Cancelled", "Failed", "Refunded"]
PaymentMethod = Literal["Credit Card", "Check", "Cash", "Bank Transfer", "Online", "Other"]

COMPLETED: DonationStatus = "Completed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

# Stored timestamps are UTC so their ISO strings sort chronologically
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class CampaignRef(BaseModel):
    kind: Literal["campaign"] = "campaign"
    campaign_id: str

class EventRef(BaseModel):
    kind: Literal["event"] = "event"
    event_id: str

# A donation is attached to at most one of {campaign, event}
Attribution = Annotated[Union[CampaignRef, EventRef], Field(discriminator="kind")]


class Donation(BaseModel):
    donor_id: str
    donation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    amount: Decimal
    donation_date: UtcDatetime = Field(default_factory=utcnow)
    status: DonationStatus = COMPLETED
    attribution: Attribution | None = None

    is_recurring: bool = False
    payment_method: PaymentMethod = "Credit Card"
    notes: str | None = None

    created_at: UtcDatetime = Field(default_factory=utcnow)

    @property
    def campaign_id(self) -> str | None:
        if isinstance(self.attribution, CampaignRef):
            return self.attribution.campaign_id
        return None

    @property
    def event_id(self) -> str | None:
        if isinstance(self.attribution, EventRef):
            return self.attribution.event_id
        return None


def attribution_from_ids(campaign_id: str | None = None, event_id: str | None = None):
    """Build the tagged reference from flat ids, rejecting donations that name both."""
    if campaign_id and event_id:
        raise ValueError("A donation can be attributed to a campaign or an event, not both")
    if campaign_id:
        return CampaignRef(campaign_id=campaign_id)
    if event_id:
        return EventRef(event_id=event_id)
    return None

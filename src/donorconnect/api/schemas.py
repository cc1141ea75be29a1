from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel
from typing import Annotated, Literal, Optional

from donorconnect.models.campaign import CampaignStatus
from donorconnect.models.donation import DonationStatus, PaymentMethod
from donorconnect.models.donor import ContactMethod, DonorType, FollowUpMethod, Priority


def _as_float(value):
    return float(value) if value is not None else 0.0

# Amounts are Decimals internally and plain JSON numbers on the wire
Money = Annotated[float, BeforeValidator(_as_float)]


class CognitoUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sub: str  # The unique user ID from Cognito
    email: EmailStr
    email_verified: bool
    name: Optional[str] = None
    role: Optional[str] = Field(default=None, alias="custom:role")
    groups: list[str] | str | None = Field(default=None, alias="cognito:groups")

    def has_role(self, role: str) -> bool:
        if self.role == role:
            return True
        groups = self.groups or []
        if isinstance(groups, str):
            groups = [g.strip() for g in groups.strip("[]").replace(",", " ").split()]
        return role in groups


# ---- requests ----

class DonorCreate(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "USA"
    donor_type: DonorType = "Individual"
    preferred_contact: ContactMethod = "Email"
    is_active: bool = True
    tags: Optional[str] = None
    notes: Optional[str] = None

class DonorUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1)
    last_name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    donor_type: Optional[DonorType] = None
    preferred_contact: Optional[ContactMethod] = None
    is_active: Optional[bool] = None
    tags: Optional[str] = None
    notes: Optional[str] = None

class DonationCreate(BaseModel):
    donor_id: str
    amount: Decimal = Field(ge=0)
    donation_date: datetime
    status: DonationStatus = "Completed"
    campaign_id: Optional[str] = None
    event_id: Optional[str] = None
    is_recurring: bool = False
    payment_method: PaymentMethod = "Credit Card"
    notes: Optional[str] = None

class DonationUpdate(BaseModel):
    amount: Optional[Decimal] = Field(default=None, ge=0)
    donation_date: Optional[datetime] = None
    status: Optional[DonationStatus] = None
    is_recurring: Optional[bool] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None

class CampaignCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    goal_amount: Optional[Decimal] = Field(default=None, ge=0)
    status: CampaignStatus = "Planning"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

class EventCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    event_date: datetime
    location: Optional[str] = None

class AttendanceRequest(BaseModel):
    donor_id: str
    attended: bool = True

class FollowUpCreate(BaseModel):
    donor_id: str
    method: FollowUpMethod = "Email"
    due_date: datetime
    priority: Priority = "Medium"
    notes: Optional[str] = None

class FollowUpUpdate(BaseModel):
    method: Optional[FollowUpMethod] = None
    due_date: Optional[datetime] = None
    completed: Optional[bool] = None
    priority: Optional[Priority] = None
    notes: Optional[str] = None

class DonorAnalysisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    donor_id: str = Field(alias="donorId")
    type: Literal["engagement_strategy", "risk_assessment", "upgrade_potential", "general"] = "general"


# ---- dashboard response ----

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class DashboardSummary(CamelModel):
    total_donors: int
    total_donations: int
    total_campaigns: int
    total_events: int
    total_amount: Money
    average_gift: Money

class DonorName(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

class CampaignName(CamelModel):
    name: Optional[str] = None

class RecentDonation(CamelModel):
    id: str
    amount: Money
    donation_date: datetime
    status: Optional[str] = None
    donor: DonorName
    campaign: Optional[CampaignName] = None

class TopDonor(CamelModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    total_donated: Money
    donation_count: int
    risk_level: str

class CampaignPerformance(CamelModel):
    id: str
    name: Optional[str] = None
    goal_amount: Money
    raised: Money
    donor_count: int
    status: Optional[str] = None

class DonationTrendRow(CamelModel):
    amount: Money
    donation_date: datetime

class MonthlyAmount(CamelModel):
    month: str
    amount: Money

class YearlyAmount(CamelModel):
    year: int
    amount: Money

class MonthlyCount(CamelModel):
    month: str
    count: int

class DashboardResponse(CamelModel):
    summary: DashboardSummary
    recent_donations: list[RecentDonation]
    top_donors: list[TopDonor]
    campaign_performance: list[CampaignPerformance]
    donation_trends: list[DonationTrendRow]
    donation_trends_monthly: list[MonthlyAmount]
    donation_trends_yearly: list[YearlyAmount]
    donor_growth: list[MonthlyCount]


class RecalculationResponse(BaseModel):
    success: bool = True
    message: str = "Data recalculation completed successfully"
    updated_donors: int
    updated_campaigns: int
    updated_events: int
    total_donors: int
    total_campaigns: int
    total_events: int

import uuid
from decimal import Decimal
from pydantic import BaseModel, Field, EmailStr
from typing import Literal

from donorconnect.models.donation import UtcDatetime, utcnow


DonorType = Literal["Individual", "Corporate", "Foundation"]
ContactMethod = Literal["Email", "Phone", "Mail"]
FollowUpMethod = Literal["Email", "Phone", "Mail", "Meeting"]
Priority = Literal["Low", "Medium", "High"]


class Donor(BaseModel):
    donor_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    first_name: str
    last_name: str
    email: EmailStr | None = None
    phone: str | None = None

    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str = "USA"

    donor_type: DonorType = "Individual"
    preferred_contact: ContactMethod = "Email"
    is_active: bool = True
    tags: str | None = None
    notes: str | None = None

    # Materialized from the donor's Completed donations
    total_donated: Decimal = Decimal("0")
    last_donation: UtcDatetime | None = None

    created_at: UtcDatetime = Field(default_factory=utcnow)


class FollowUp(BaseModel):
    donor_id: str
    follow_up_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    method: FollowUpMethod = "Email"
    due_date: UtcDatetime
    completed: bool = False
    priority: Priority = "Medium"
    notes: str | None = None

    created_at: UtcDatetime = Field(default_factory=utcnow)

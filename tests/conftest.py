import os
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

# Settings are read once and cached; keep tests off the API Gateway stage prefix
os.environ.setdefault("API_ROOT_PATH", "")

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_donation(amount, when, status="Completed", donor_id="donor-a", campaign_id=None, event_id=None):
    """A donation shaped like an item read back from the table."""
    if isinstance(when, datetime):
        when = when.isoformat()
    return {
        "donation_id": str(uuid.uuid4()),
        "donor_id": donor_id,
        "amount": Decimal(str(amount)),
        "donation_date": when,
        "status": status,
        "campaign_id": campaign_id,
        "event_id": event_id,
        "is_recurring": False,
    }


def make_donor(donor_id, first_name, last_name, created_at, donations=None, **extra):
    return {
        "donor_id": donor_id,
        "first_name": first_name,
        "last_name": last_name,
        "email": f"{first_name.lower()}@example.org",
        "created_at": created_at,
        "total_donated": Decimal("0"),
        "last_donation": None,
        "donations": donations or [],
        **extra,
    }


@pytest.fixture
def now():
    return NOW

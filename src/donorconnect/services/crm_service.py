import logging
from boto3.dynamodb.conditions import Attr
from datetime import datetime

from donorconnect.analytics.aggregation import record_date
from donorconnect.analytics.projections import completed_only
from donorconnect.analytics.scoring import donation_frequency, donor_risk
from donorconnect.data_access.dynamodb import (
    CAMPAIGN,
    DONATION,
    DONOR,
    EVENT,
    DynamoDataAccess,
    NotFoundError,
)
from donorconnect.models.campaign import Campaign, Event, EventAttendance
from donorconnect.models.donation import COMPLETED, Donation
from donorconnect.models.donor import Donor, FollowUp

logger = logging.getLogger(__name__)


def _newest_first(items: list[dict], field: str) -> list[dict]:
    return sorted(items, key=lambda i: str(i.get(field) or ""), reverse=True)


class CrmService:
    def __init__(self, data_access: DynamoDataAccess):
        self.data_access = data_access

    # ---- donors ----

    def create_donor(self, donor: Donor) -> dict:
        item = self.data_access.create_donor(donor)
        logger.info(f"Created donor {donor.donor_id}.")
        return item

    def list_donors(self) -> list[dict]:
        donors = self.data_access.list_with_relation(DONOR, "donations")
        return _newest_first(donors, "created_at")

    def get_donor_detail(self, donor_id: str, now: datetime) -> dict:
        donor = self.data_access.get_donor_partition(donor_id)
        donor["donations"] = sorted(donor["donations"], key=record_date, reverse=True)
        donor["follow_ups"] = _newest_first(donor["follow_ups"], "due_date")

        completed = completed_only(donor["donations"])
        donor["risk"] = donor_risk(donor["donations"], now).to_dict()
        donor["donation_frequency"] = donation_frequency(record_date(d) for d in completed)
        return donor

    def update_donor(self, donor_id: str, fields: dict) -> dict:
        return self.data_access.update_donor(donor_id, fields)

    def delete_donor(self, donor_id: str) -> None:
        self.data_access.delete_donor(donor_id)

    # ---- donations ----

    def create_donation(self, donation: Donation) -> dict:
        return self.data_access.create_donation(donation)

    def list_donations(self, status: str | None = None) -> list[dict]:
        filter = Attr("status").eq(status) if status else None
        return self.data_access.list_entities(DONATION, filter, order_by="donation_date", descending=True)

    def update_donation(self, donation_id: str, fields: dict) -> dict:
        updated = self.data_access.update_donation(donation_id, fields)
        if "status" in fields:
            logger.info(f"Donation {donation_id} status set to {fields['status']}.")
        return updated

    def delete_donation(self, donation_id: str) -> None:
        self.data_access.delete_donation(donation_id)
        logger.info(f"Deleted donation {donation_id}.")

    # ---- campaigns & events ----

    def create_campaign(self, campaign: Campaign) -> dict:
        return self.data_access.create_campaign(campaign)

    def list_campaigns(self) -> list[dict]:
        campaigns = self.data_access.list_with_relation(
            CAMPAIGN, "donations", relation_filter=Attr("status").eq(COMPLETED)
        )
        return _newest_first(campaigns, "created_at")

    def create_event(self, event: Event) -> dict:
        return self.data_access.create_event(event)

    def list_events(self) -> list[dict]:
        return self.data_access.list_entities(EVENT, order_by="event_date", descending=True)

    def record_attendance(self, attendance: EventAttendance) -> dict:
        if self.data_access.get_donor(attendance.donor_id) is None:
            raise NotFoundError(f"Donor {attendance.donor_id} not found")
        return self.data_access.record_attendance(attendance)

    # ---- follow-ups ----

    def create_follow_up(self, follow_up: FollowUp) -> dict:
        if self.data_access.get_donor(follow_up.donor_id) is None:
            raise NotFoundError(f"Donor {follow_up.donor_id} not found")
        return self.data_access.create_follow_up(follow_up)

    def list_follow_ups(self, donor_id: str | None = None) -> list[dict]:
        return self.data_access.list_follow_ups(donor_id)

    def update_follow_up(self, follow_up_id: str, fields: dict) -> dict:
        return self.data_access.update_follow_up(follow_up_id, fields)

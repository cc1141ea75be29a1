import logging
from decimal import Decimal

from donorconnect.analytics.aggregation import to_utc
from donorconnect.analytics.projections import project_campaign, project_donor, project_event
from donorconnect.data_access.dynamodb import CAMPAIGN, DONOR, EVENT, DynamoDataAccess

logger = logging.getLogger(__name__)


def _same_moment(stored, computed) -> bool:
    if stored is None or computed is None:
        return stored is None and computed is None
    return to_utc(stored) == to_utc(computed)


def _same_amount(stored, computed: Decimal) -> bool:
    return Decimal(str(stored if stored is not None else 0)) == computed


class ProjectionService:
    """Rebuilds every stored derived field from its source records."""

    def __init__(self, data_access: DynamoDataAccess):
        self.data_access = data_access

    def recalculate_all(self) -> dict:
        logger.info("Starting data recalculation...")
        data = self.data_access

        donors = data.list_with_relation(DONOR, "donations")
        updated_donors = 0
        for donor in donors:
            totals = project_donor(donor["donations"])
            if (_same_amount(donor.get("total_donated"), totals.total_donated)
                    and _same_moment(donor.get("last_donation"), totals.last_donation)):
                continue
            data.set_donor_totals(donor["donor_id"], totals)
            updated_donors += 1

        campaigns = data.list_with_relation(CAMPAIGN, "donations")
        updated_campaigns = 0
        for campaign in campaigns:
            raised = project_campaign(campaign["donations"])
            if _same_amount(campaign.get("raised_amount"), raised):
                continue
            data.set_campaign_raised(campaign["campaign_id"], raised)
            updated_campaigns += 1

        events = data.list_with_relation(EVENT, "attendances")
        updated_events = 0
        for event in events:
            attendees = project_event(event["attendances"])
            if int(event.get("attendees") or 0) == attendees:
                continue
            data.set_event_attendees(event["event_id"], attendees)
            updated_events += 1

        result = {
            "updated_donors": updated_donors,
            "updated_campaigns": updated_campaigns,
            "updated_events": updated_events,
            "total_donors": len(donors),
            "total_campaigns": len(campaigns),
            "total_events": len(events),
        }
        logger.info(f"Data recalculation completed: {result}")
        return result

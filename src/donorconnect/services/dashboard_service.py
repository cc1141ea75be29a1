import logging
from boto3.dynamodb.conditions import Attr
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from donorconnect.analytics.aggregation import (
    bucket_yearly,
    in_window,
    monthly_count_trend,
    monthly_trend,
    record_date,
    to_utc,
    totals_by_entity,
)
from donorconnect.analytics.projections import completed_only
from donorconnect.analytics.scoring import donor_risk
from donorconnect.data_access.dynamodb import CAMPAIGN, DONATION, DONOR, EVENT, DynamoDataAccess
from donorconnect.models.donation import COMPLETED

logger = logging.getLogger(__name__)

TOP_DONOR_LIMIT = 5
RECENT_DONATION_LIMIT = 5
RAW_TREND_DAYS = 30
TREND_MONTHS = 12

CENT = Decimal("0.01")


@dataclass
class DashboardInputs:
    """Raw rows and figures read from the store for one dashboard build."""
    total_donors: int
    total_donations: int
    total_campaigns: int
    total_events: int
    total_amount: Decimal
    average_gift: Decimal
    recent_donations: list[dict] = field(default_factory=list)
    completed_donations: list[dict] = field(default_factory=list)
    donors: list[dict] = field(default_factory=list)
    campaigns: list[dict] = field(default_factory=list)


def _insertion_order(rows: list[dict], id_field: str) -> list[dict]:
    return sorted(rows, key=lambda r: (str(r.get("created_at") or ""), str(r.get(id_field))))


def rank_top_donors(donors: list[dict], now: datetime, limit: int = TOP_DONOR_LIMIT) -> list[dict]:
    rows = []
    for donor in _insertion_order(donors, "donor_id"):
        donations = donor.get("donations", [])
        completed = completed_only(donations)
        total = sum(totals_by_entity(completed, "donor_id").values(), Decimal("0"))
        rows.append({
            "id": donor["donor_id"],
            "firstName": donor.get("first_name"),
            "lastName": donor.get("last_name"),
            "email": donor.get("email"),
            "totalDonated": total,
            "donationCount": len(completed),
            "riskLevel": donor_risk(donations, now).level.value,
        })
    # sorted() is stable with reverse=True, so ties keep insertion order
    return sorted(rows, key=lambda r: r["totalDonated"], reverse=True)[:limit]


def campaign_performance(campaigns: list[dict]) -> list[dict]:
    performance = []
    for campaign in _insertion_order(campaigns, "campaign_id"):
        completed = completed_only(campaign.get("donations", []))
        raised = totals_by_entity(completed, "campaign_id").get(campaign["campaign_id"], Decimal("0"))
        performance.append({
            "id": campaign["campaign_id"],
            "name": campaign.get("name"),
            "goalAmount": campaign.get("goal_amount") or Decimal("0"),
            "raised": raised,
            "donorCount": len({d.get("donor_id") for d in completed}),
            "status": campaign.get("status"),
        })
    return performance


def _recent_donation_row(donation: dict, donors: dict[str, dict], campaigns: dict[str, dict]) -> dict:
    donor = donors.get(donation.get("donor_id"), {})
    campaign = campaigns.get(donation.get("campaign_id"))
    return {
        "id": donation["donation_id"],
        "amount": donation.get("amount"),
        "donationDate": record_date(donation),
        "status": donation.get("status"),
        "donor": {
            "firstName": donor.get("first_name"),
            "lastName": donor.get("last_name"),
            "email": donor.get("email"),
        },
        "campaign": {"name": campaign.get("name")} if campaign else None,
    }


def compose_dashboard(inputs: DashboardInputs, now: datetime) -> dict:
    """
    Merge store figures, bucketed trends and donor scores into the dashboard payload.

    Pure: no reads happen here. Money figures come from Completed donations only.
    """
    now = to_utc(now)
    completed = completed_only(inputs.completed_donations)
    donors_by_id = {d["donor_id"]: d for d in inputs.donors}
    campaigns_by_id = {c["campaign_id"]: c for c in inputs.campaigns}

    recent = sorted(inputs.recent_donations, key=record_date, reverse=True)[:RECENT_DONATION_LIMIT]
    raw_trend = sorted(in_window(completed, now - timedelta(days=RAW_TREND_DAYS)), key=record_date)

    return {
        "summary": {
            "totalDonors": inputs.total_donors,
            "totalDonations": inputs.total_donations,
            "totalCampaigns": inputs.total_campaigns,
            "totalEvents": inputs.total_events,
            "totalAmount": inputs.total_amount or Decimal("0"),
            "averageGift": (inputs.average_gift or Decimal("0")).quantize(CENT, rounding=ROUND_HALF_UP),
        },
        "recentDonations": [_recent_donation_row(d, donors_by_id, campaigns_by_id) for d in recent],
        "topDonors": rank_top_donors(inputs.donors, now),
        "campaignPerformance": campaign_performance(inputs.campaigns),
        "donationTrends": [{"amount": d.get("amount"), "donationDate": record_date(d)} for d in raw_trend],
        "donationTrendsMonthly": monthly_trend(completed, now, TREND_MONTHS),
        "donationTrendsYearly": bucket_yearly(completed),
        "donorGrowth": monthly_count_trend([d.get("created_at") for d in inputs.donors], now, TREND_MONTHS),
    }


class DashboardService:
    def __init__(self, data_access: DynamoDataAccess):
        self.data_access = data_access

    def load_inputs(self) -> DashboardInputs:
        completed = Attr("status").eq(COMPLETED)
        data = self.data_access
        return DashboardInputs(
            total_donors=data.count(DONOR),
            total_donations=data.count(DONATION),
            total_campaigns=data.count(CAMPAIGN),
            total_events=data.count(EVENT),
            total_amount=data.aggregate_sum(DONATION, "amount", completed),
            average_gift=data.aggregate_avg(DONATION, "amount", completed),
            recent_donations=data.list_entities(
                DONATION, order_by="donation_date", descending=True, limit=RECENT_DONATION_LIMIT
            ),
            completed_donations=data.list_entities(DONATION, completed, order_by="donation_date"),
            donors=data.list_with_relation(DONOR, "donations"),
            campaigns=data.list_with_relation(CAMPAIGN, "donations", relation_filter=completed),
        )

    def get_dashboard(self, now: datetime) -> dict[str, Any]:
        inputs = self.load_inputs()
        payload = compose_dashboard(inputs, now)

        logger.info(
            f"Dashboard snapshot: {inputs.total_donors} donors, {inputs.total_donations} donations, "
            f"{inputs.total_campaigns} campaigns, {inputs.total_events} events, "
            f"{len(payload['topDonors'])} top donors."
        )
        return payload

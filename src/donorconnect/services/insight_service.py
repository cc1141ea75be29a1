import logging
import openai
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from donorconnect.analytics.aggregation import record_amount, record_date, to_utc
from donorconnect.analytics.projections import completed_only
from donorconnect.analytics.scoring import RiskLevel, donation_frequency, donor_risk
from donorconnect.data_access.dynamodb import DynamoDataAccess

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert nonprofit fundraising consultant. Provide practical, actionable "
    "advice based on donor data. Be specific and considerate of nonprofit best practices."
)

TRANSIENT_ERRORS = (openai.APIConnectionError, openai.APITimeoutError, openai.RateLimitError)


@dataclass(frozen=True)
class DonorSummary:
    total_donations: int
    total_amount: Decimal
    average_gift: Decimal
    days_since_last_donation: int | None
    donation_frequency: str
    risk_level: RiskLevel
    campaign_participation: int
    event_participation: int
    follow_up_history: int

    def to_dict(self) -> dict:
        return {
            "totalDonations": self.total_donations,
            "totalAmount": float(self.total_amount),
            "averageGift": float(self.average_gift),
            "daysSinceLastDonation": self.days_since_last_donation,
            "donationFrequency": self.donation_frequency,
            "riskLevel": self.risk_level.value,
            "campaignParticipation": self.campaign_participation,
            "eventParticipation": self.event_participation,
            "followUpHistory": self.follow_up_history,
        }


def summarize_donor(donor: dict, now: datetime) -> DonorSummary:
    donations = donor.get("donations", [])
    completed = completed_only(donations)
    total = sum((record_amount(d) for d in completed), Decimal("0"))
    risk = donor_risk(donations, now)
    return DonorSummary(
        total_donations=len(completed),
        total_amount=total,
        average_gift=(total / len(completed)) if completed else Decimal("0"),
        days_since_last_donation=risk.days_since_last_donation,
        donation_frequency=donation_frequency(record_date(d) for d in completed),
        risk_level=risk.level,
        campaign_participation=sum(1 for d in completed if d.get("campaign_id")),
        event_participation=sum(1 for d in completed if d.get("event_id")),
        follow_up_history=len(donor.get("follow_ups", [])),
    )


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def suggested_ask(average: Decimal, factor: str) -> Decimal:
    return (average * Decimal(factor)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def _location(donor: dict) -> str:
    if donor.get("city"):
        return f"{donor['city']}, {donor.get('state') or ''}".rstrip(", ")
    return "Not provided"


def _days_label(summary: DonorSummary, never: str) -> str:
    if summary.days_since_last_donation is None:
        return never
    return str(summary.days_since_last_donation)


def build_prompt(kind: str, donor: dict, summary: DonorSummary) -> str | None:
    name = f"{donor.get('first_name')} {donor.get('last_name')}"
    notes = donor.get("notes") or "None"

    if kind == "engagement_strategy":
        return f"""Based on this donor profile, suggest a personalized engagement strategy:

Donor: {name}
Email: {donor.get('email') or 'Not provided'}
Phone: {donor.get('phone') or 'Not provided'}
Location: {_location(donor)}
Donor Type: {donor.get('donor_type')}
Preferred Contact: {donor.get('preferred_contact')}
Total Donations: {summary.total_donations}
Total Amount: ${_money(summary.total_amount)}
Average Gift: ${_money(summary.average_gift)}
Days Since Last Gift: {_days_label(summary, 'Never donated')}
Donation Frequency: {summary.donation_frequency}
Campaign Participation: {summary.campaign_participation} campaigns
Event Participation: {summary.event_participation} events
Follow-up History: {summary.follow_up_history} interactions
Notes: {notes}

Provide a concise, actionable engagement strategy focusing on:
1. Recommended next steps (considering their preferred contact method)
2. Optimal communication timing
3. Suggested donation ask amount
4. Relationship building opportunities"""

    if kind == "risk_assessment":
        return f"""Analyze the lapse risk for this donor and provide specific recommendations:

Donor Profile:
Name: {name}
Donor Type: {donor.get('donor_type')}
Location: {_location(donor)}
Total Donations: {summary.total_donations}
Total Given: ${_money(summary.total_amount)}
Days Since Last Gift: {_days_label(summary, 'No donations')}
Computed Risk Level: {summary.risk_level.value}
Frequency Pattern: {summary.donation_frequency}
Engagement Level: {summary.follow_up_history} follow-ups
Campaign Participation: {summary.campaign_participation} campaigns
Event Participation: {summary.event_participation} events
Notes: {notes}

Assess the risk level and provide:
1. Risk factors identified
2. Recommended intervention timeline
3. Specific retention strategies"""

    if kind == "upgrade_potential":
        return f"""Evaluate this donor's potential for gift upgrades:

Current Profile:
Name: {name}
Donor Type: {donor.get('donor_type')}
Location: {_location(donor)}
Donation History: {summary.total_donations} gifts totaling ${_money(summary.total_amount)}
Average Gift: ${_money(summary.average_gift)}
Giving Pattern: {summary.donation_frequency}
Campaign Engagement: {'Active' if summary.campaign_participation > 0 else 'Limited'}
Event Participation: {summary.event_participation} events
Notes: {notes}

Provide upgrade assessment including:
1. Upgrade likelihood (Low/Medium/High)
2. Suggested ask amount
3. Best approach strategy
4. Timing recommendations"""

    return None


def _is_at_least(summary: DonorSummary, level: RiskLevel) -> bool:
    return summary.risk_level.rank >= level.rank


def template_analysis(kind: str, donor: dict, summary: DonorSummary) -> str:
    """Canned analysis used when no completion service is configured or it fails."""
    first_name = donor.get("first_name")
    average = summary.average_gift
    days = _days_label(summary, "No recorded")

    if kind == "engagement_strategy":
        return f"""**Recommended Engagement Strategy for {first_name}:**

**Risk Level**: {summary.risk_level.value}

**Next Steps:**
1. {'Schedule immediate personal outreach call' if _is_at_least(summary, RiskLevel.MEDIUM) else 'Send personalized thank you with impact story'}
2. {'Invite to VIP donor event' if average > 100 else 'Include in newsletter with giving opportunities'}
3. Follow up within {'1 week' if _is_at_least(summary, RiskLevel.HIGH) else '2-3 weeks'}

**Suggested Ask Amount**: ${suggested_ask(average, "1.25")} (25% increase from average)

**Communication Preference**: Based on history, {'responds well to campaign updates' if summary.campaign_participation > 0 else 'prefers direct personal communication'}"""

    if kind == "risk_assessment":
        return f"""**Donor Lapse Risk Assessment:**

**Risk Level**: {summary.risk_level.value.upper()}

**Key Risk Factors:**
- {days} days since last donation
- {summary.donation_frequency} giving pattern
- {'Limited engagement history' if summary.follow_up_history < 2 else 'Good engagement history'}

**Recommended Timeline**: {'Immediate action required' if _is_at_least(summary, RiskLevel.HIGH) else 'Monitor and engage within 30 days'}

**Retention Strategies**:
1. Personal phone call or meeting
2. Share specific impact of their previous gifts
3. Offer involvement opportunity beyond giving
4. {'Major gift cultivation track' if average > 250 else 'Upgrade cultivation program'}"""

    if kind == "upgrade_potential":
        if summary.total_donations > 3 and average > 50:
            likelihood = "HIGH"
        elif summary.total_donations > 1:
            likelihood = "MEDIUM"
        else:
            likelihood = "LOW"
        warm = summary.days_since_last_donation is not None and summary.days_since_last_donation < 60
        return f"""**Gift Upgrade Assessment:**

**Upgrade Likelihood**: {likelihood}

**Current Giving Pattern**: {summary.donation_frequency} averaging ${_money(average)}

**Suggested Ask**: ${suggested_ask(average, "1.5")} (50% increase)

**Best Approach**:
1. {'Campaign-based ask with specific project funding' if summary.campaign_participation > 0 else 'General operating support with clear impact metrics'}
2. Timing: {'Strike while engagement is warm' if warm else 'Rebuild relationship first'}
3. Format: {'In-person meeting or phone call' if average > 200 else 'Personal letter or email'}"""

    if summary.follow_up_history > 2:
        engagement = "Highly engaged"
    elif summary.follow_up_history > 0:
        engagement = "Moderately engaged"
    else:
        engagement = "Low engagement"

    relationship = {
        RiskLevel.NEW: "New prospect",
        RiskLevel.LOW: "Active donor",
        RiskLevel.MEDIUM: "Recent donor",
        RiskLevel.HIGH: "Recent donor",
        RiskLevel.CRITICAL: "Lapsed donor",
    }[summary.risk_level]

    return f"""**Donor Profile Analysis for {first_name} {donor.get('last_name')}:**

**Giving Summary**: {summary.total_donations} donations totaling ${_money(summary.total_amount)} (avg: ${_money(average)})

**Engagement Level**: {engagement}

**Relationship Status**: {relationship}

**Recommended Actions**: Regular stewardship, {'major gift consideration' if average > 100 else 'upgrade potential'}, and {'immediate re-engagement needed' if _is_at_least(summary, RiskLevel.HIGH) else 'continued cultivation'}."""


class InsightService:
    def __init__(
        self,
        data_access: DynamoDataAccess,
        client: openai.OpenAI | None,
        model: str | None,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ):
        self.data_access = data_access
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @property
    def enabled(self) -> bool:
        return self.client is not None and bool(self.model)

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=4),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    def _complete(self, prompt: str) -> str:
        completion = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        return completion.choices[0].message.content

    def analyze_donor(self, donor_id: str, kind: str, now: datetime) -> dict:
        donor = self.data_access.get_donor_partition(donor_id)
        summary = summarize_donor(donor, now)
        prompt = build_prompt(kind, donor, summary)

        source = "template"
        analysis = None
        if prompt is not None and self.enabled:
            try:
                analysis = self._complete(prompt)
                source = "openai"
            except openai.OpenAIError as e:
                logger.error(f"OpenAI API error for donor {donor_id}: {e}")

        if analysis is None:
            analysis = template_analysis(kind, donor, summary)

        return {
            "donor": {
                "id": donor["donor_id"],
                "name": f"{donor.get('first_name')} {donor.get('last_name')}",
                "email": donor.get("email"),
            },
            "analysisType": kind,
            "summary": summary.to_dict(),
            "analysis": analysis,
            "source": source,
            "generatedAt": to_utc(now).isoformat(),
        }

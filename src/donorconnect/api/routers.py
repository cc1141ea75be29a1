from fastapi import (
    APIRouter,
    Request,
    Depends,
    HTTPException
)
from fastapi.security import HTTPBearer
from botocore.exceptions import ClientError
from datetime import datetime, timezone
from typing import Optional
import logging

from donorconnect.core.config import get_settings
from donorconnect.core.dependencies import (
    get_crm_service,
    get_dashboard_service,
    get_insight_service,
    get_projection_service,
)
from donorconnect.data_access.dynamodb import NotFoundError
from donorconnect.models.campaign import Campaign, Event, EventAttendance
from donorconnect.models.donation import Donation, attribution_from_ids
from donorconnect.models.donor import Donor, FollowUp
from donorconnect.services.crm_service import CrmService
from donorconnect.services.dashboard_service import DashboardService
from donorconnect.services.insight_service import InsightService
from donorconnect.services.projection_service import ProjectionService
from donorconnect.api.schemas import (
    AttendanceRequest,
    CampaignCreate,
    CognitoUser,
    DashboardResponse,
    DonationCreate,
    DonationUpdate,
    DonorAnalysisRequest,
    DonorCreate,
    DonorUpdate,
    EventCreate,
    FollowUpCreate,
    FollowUpUpdate,
    RecalculationResponse,
)

router = APIRouter()
security = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)


def get_now() -> datetime:
    return datetime.now(timezone.utc)

async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(security)
) -> CognitoUser:
    auth = request.scope.get("aws.event", {}).get("requestContext", {}).get("authorizer", {})
    claims = auth.get("claims", {})

    if not claims:
        raise HTTPException(status_code=401, detail="Could not find user claims")

    try:
        user = CognitoUser(**claims)
    except Exception as e:
        raise HTTPException(
            status_code=401,
            detail=f"Invalid authentication credentials: {e}"
        )

    if not user.email_verified:
        raise HTTPException(status_code=403, detail="Email not verified")

    return user

async def require_admin(user: CognitoUser = Depends(get_current_user)) -> CognitoUser:
    if not user.has_role(get_settings().ADMIN_ROLE):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def _changes(body) -> dict:
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    return fields


# ---- dashboard ----

@router.get(
    "/dashboard",
    response_model=DashboardResponse
)
def get_dashboard(
    user: CognitoUser = Depends(get_current_user),
    service: DashboardService = Depends(get_dashboard_service),
    now: datetime = Depends(get_now)
):
    try:
        return service.get_dashboard(now)
    except Exception as e:
        logger.error(f"Dashboard API error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load dashboard data")


# ---- donors ----

@router.get("/donors")
def list_donors(
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    return service.list_donors()

@router.post("/donors", status_code=201)
def create_donor(
    body: DonorCreate,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    return service.create_donor(Donor(**body.model_dump()))

@router.get("/donors/{donor_id}")
def get_donor(
    donor_id: str,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service),
    now: datetime = Depends(get_now)
):
    try:
        return service.get_donor_detail(donor_id, now)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Donor not found")

@router.patch("/donors/{donor_id}")
def update_donor(
    donor_id: str,
    body: DonorUpdate,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    try:
        return service.update_donor(donor_id, _changes(body))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Donor not found")

@router.delete("/donors/{donor_id}")
def delete_donor(
    donor_id: str,
    user: CognitoUser = Depends(require_admin),
    service: CrmService = Depends(get_crm_service)
):
    try:
        service.delete_donor(donor_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Donor not found")
    return {"message": "Donor deleted successfully"}


# ---- donations ----

@router.get("/donations")
def list_donations(
    status: Optional[str] = None,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    return service.list_donations(status)

@router.post("/donations", status_code=201)
def create_donation(
    body: DonationCreate,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    data = body.model_dump(exclude={"campaign_id", "event_id"})
    try:
        donation = Donation(**data, attribution=attribution_from_ids(body.campaign_id, body.event_id))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        return service.create_donation(donation)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Donor or campaign not found")
    except ClientError as e:
        logger.error(f"Error creating donation: {e}")
        raise HTTPException(status_code=500, detail="Failed to create donation")

@router.patch("/donations/{donation_id}")
def update_donation(
    donation_id: str,
    body: DonationUpdate,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    try:
        return service.update_donation(donation_id, _changes(body))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Donation not found")

@router.delete("/donations/{donation_id}")
def delete_donation(
    donation_id: str,
    user: CognitoUser = Depends(require_admin),
    service: CrmService = Depends(get_crm_service)
):
    try:
        service.delete_donation(donation_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Donation not found")
    return {"message": "Donation deleted successfully"}


# ---- campaigns & events ----

@router.get("/campaigns")
def list_campaigns(
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    return service.list_campaigns()

@router.post("/campaigns", status_code=201)
def create_campaign(
    body: CampaignCreate,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    return service.create_campaign(Campaign(**body.model_dump()))

@router.get("/events")
def list_events(
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    return service.list_events()

@router.post("/events", status_code=201)
def create_event(
    body: EventCreate,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    return service.create_event(Event(**body.model_dump()))

@router.post("/events/{event_id}/attendance", status_code=201)
def record_attendance(
    event_id: str,
    body: AttendanceRequest,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    try:
        return service.record_attendance(EventAttendance(event_id=event_id, **body.model_dump()))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Event or donor not found")


# ---- follow-ups ----

@router.get("/follow-ups")
def list_follow_ups(
    donor_id: Optional[str] = None,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    return service.list_follow_ups(donor_id)

@router.post("/follow-ups", status_code=201)
def create_follow_up(
    body: FollowUpCreate,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    try:
        return service.create_follow_up(FollowUp(**body.model_dump()))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Donor not found")

@router.patch("/follow-ups/{follow_up_id}")
def update_follow_up(
    follow_up_id: str,
    body: FollowUpUpdate,
    user: CognitoUser = Depends(get_current_user),
    service: CrmService = Depends(get_crm_service)
):
    try:
        return service.update_follow_up(follow_up_id, _changes(body))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Follow-up not found")


# ---- AI insights ----

@router.post("/ai/donor-analysis")
def analyze_donor(
    body: DonorAnalysisRequest,
    user: CognitoUser = Depends(get_current_user),
    service: InsightService = Depends(get_insight_service),
    now: datetime = Depends(get_now)
):
    try:
        return service.analyze_donor(body.donor_id, body.type, now)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Donor not found")
    except Exception as e:
        logger.error(f"AI analysis error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to generate AI analysis")


# ---- admin ----

@router.post(
    "/admin/recalculate",
    response_model=RecalculationResponse
)
def recalculate(
    user: CognitoUser = Depends(require_admin),
    service: ProjectionService = Depends(get_projection_service)
):
    try:
        return RecalculationResponse(**service.recalculate_all())
    except Exception as e:
        logger.error(f"Error recalculating data: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to recalculate data")

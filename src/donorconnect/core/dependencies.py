import boto3
import logging
import openai
from functools import lru_cache

from donorconnect.core.config import get_settings
from donorconnect.data_access.dynamodb import DynamoDataAccess
from donorconnect.services.crm_service import CrmService
from donorconnect.services.dashboard_service import DashboardService
from donorconnect.services.insight_service import InsightService
from donorconnect.services.projection_service import ProjectionService

logger = logging.getLogger(__name__)


@lru_cache()
def get_boto_session() -> boto3.Session:
    settings = get_settings()
    return boto3.Session(
        region_name=settings.AWS_REGION,
        profile_name=settings.AWS_PROFILE
    )

@lru_cache()
def get_data_access() -> DynamoDataAccess:
    session = get_boto_session()
    dynamo_resource = session.resource('dynamodb')
    table = dynamo_resource.Table(get_settings().DYNAMODB_TABLE_NAME)
    return DynamoDataAccess(table=table)

@lru_cache()
def get_openai_client() -> openai.OpenAI | None:
    settings = get_settings()
    if not settings.OPENAI_API_KEY:
        return None
    if not settings.OPENAI_MODEL:
        logger.warning("OPENAI_API_KEY is set but OPENAI_MODEL is not; using templated donor analysis")
    return openai.OpenAI(api_key=settings.OPENAI_API_KEY)

@lru_cache()
def get_dashboard_service() -> DashboardService:
    return DashboardService(data_access=get_data_access())

@lru_cache()
def get_crm_service() -> CrmService:
    return CrmService(data_access=get_data_access())

@lru_cache()
def get_projection_service() -> ProjectionService:
    return ProjectionService(data_access=get_data_access())

@lru_cache()
def get_insight_service() -> InsightService:
    settings = get_settings()
    return InsightService(
        data_access=get_data_access(),
        client=get_openai_client(),
        model=settings.OPENAI_MODEL,
        max_tokens=settings.OPENAI_MAX_TOKENS,
        temperature=settings.OPENAI_TEMPERATURE
    )

import logging
from donorconnect.core.dependencies import get_projection_service

# We need to configure logging here since workers are entry points
from donorconnect.core.logging_config import configure_logging
configure_logging()

logger = logging.getLogger(__name__)

def lambda_handler(event, context):
    """Scheduled repair of stored donor, campaign and event totals."""
    logger.info("Received scheduled recalculation trigger.")

    try:
        result = get_projection_service().recalculate_all()
    except Exception as e:
        logger.error(f"Error recalculating derived fields: {e}", exc_info=True)
        raise e

    return {'statusCode': 200, 'body': result}

"""
Health check endpoint for service monitoring.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from tracker_sync.core.config import get_settings
from tracker_sync.core.database import get_db_session
from tracker_sync.core.logging_config import get_logger
from tracker_sync.schemas.api_schemas import HealthResponse

router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check the health status of the service and its database"
)
def health_check(db: Session = Depends(get_db_session)):
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        logger.warning(f"Health check database check failed: {e}")
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "unhealthy",
        database_status=db_status,
        version=get_settings().APP_VERSION
    )

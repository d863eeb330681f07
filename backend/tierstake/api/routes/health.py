"""
Health check and metrics endpoints
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tierstake import __version__
from tierstake.core.config import get_settings
from tierstake.core.database import get_db
from tierstake.core.logging_config import LoggingConfig
from tierstake.core.metrics import get_metrics_response

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """
    Health check with database status

    Returns:
        dict: Health status
    """
    settings = get_settings()
    database = "connected"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Health check: database unreachable: {e}")
        database = "disconnected"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.app_name,
        "version": __version__,
        "environment": settings.app_env,
        "components": {"database": database},
    }


@router.get("/metrics")
async def metrics():
    """Prometheus scrape endpoint"""
    body, content_type = get_metrics_response()
    return Response(content=body, media_type=content_type)

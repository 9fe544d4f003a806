import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from hookscheduler.core.config import get_settings
from hookscheduler.database.connection import engine
from hookscheduler.services.notification_service import broadcaster
from hookscheduler.services.scheduler_service import scheduler_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check():
    database = "ok"
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Health check could not reach the database: %s", exc)
        database = "unavailable"

    payload = {
        "status": "ok" if database == "ok" else "degraded",
        "version": get_settings().backend_version,
        "database": database,
        "active_timers": scheduler_service.registry.active_count(),
        "subscribers": broadcaster.subscriber_count(),
    }
    return JSONResponse(status_code=200 if database == "ok" else 503, content=payload)

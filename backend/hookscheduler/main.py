import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from hookscheduler.api.routes import events, health, logs, schedules
from hookscheduler.core.config import get_settings
from hookscheduler.core.scheduler_manager import start_scheduler, stop_scheduler
from hookscheduler.database.connection import Base, engine
import hookscheduler.database.models.models  # noqa: F401
from hookscheduler.services.notification_service import broadcaster

logger = logging.getLogger(__name__)


async def wait_for_db_connection(retries: int = 10, delay_seconds: float = 3) -> None:
    """Retry database connection to handle startup ordering in containers."""
    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            logger.info("Database connection established.")
            return
        except OperationalError as exc:
            if attempt == retries:
                logger.exception("Database unavailable after %s attempts.", retries)
                raise
            logger.info(
                "Database not ready (attempt %s/%s): %s. Retrying in %.1fs.",
                attempt,
                retries,
                exc,
                delay_seconds,
            )
            await asyncio.sleep(delay_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await wait_for_db_connection(
        retries=settings.database_connect_retries,
        delay_seconds=settings.database_connect_retry_delay_seconds,
    )
    Base.metadata.create_all(bind=engine)
    await start_scheduler()
    yield
    # Shutdown
    await stop_scheduler()
    broadcaster.close_all()


settings = get_settings()

app = FastAPI(
    title="Webhook Scheduler API",
    version=settings.backend_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(schedules.router)
app.include_router(logs.router)
app.include_router(events.router)


@app.get("/config")
async def get_config():
    """Get application configuration."""
    return {
        "scheduler": {
            "enabled": settings.scheduler_enabled,
            "poll_interval_seconds": settings.scheduler_poll_interval_seconds,
            "max_timer_delay_seconds": settings.scheduler_max_timer_delay_seconds,
            "recheck_interval_seconds": settings.scheduler_recheck_interval_seconds,
        },
        "webhooks": {
            "default_timeout_seconds": settings.webhook_default_timeout_seconds,
            "user_agent": settings.webhook_user_agent,
            "max_retries": settings.webhook_max_retries,
            "retry_delay_seconds": settings.webhook_retry_delay_seconds,
        },
        "logs": {
            "retention_days": settings.log_retention_days,
            "cleanup_default_days": settings.log_cleanup_default_days,
            "response_limit": settings.execution_log_response_limit,
        },
        "auth": {
            "enabled": settings.auth_enabled,
        },
    }


@app.get("/")
def root():
    return {"message": "Webhook Scheduler API", "version": settings.backend_version}

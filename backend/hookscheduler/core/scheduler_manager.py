import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from hookscheduler.core.config import get_settings
from hookscheduler.database.connection import SessionLocal
from hookscheduler.database.services import schedule_store
from hookscheduler.services.scheduler_service import scheduler_service

logger = logging.getLogger(__name__)

_maintenance_task: Optional[asyncio.Task] = None
_running: bool = False


async def _maintenance_loop() -> None:
    settings = get_settings()
    poll_interval = settings.scheduler_poll_interval_seconds

    while _running:
        try:
            _tick()
        except Exception as exc:
            logger.exception("Scheduler maintenance tick failed: %s", exc)
        await asyncio.sleep(poll_interval)


def _tick(now: Optional[datetime] = None) -> int:
    """Apply the execution log retention window; returns the number of purged entries."""
    retention_days = get_settings().log_retention_days
    if not retention_days:
        return 0

    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    db = SessionLocal()
    try:
        deleted = schedule_store.delete_logs_older_than(db, cutoff)
    finally:
        db.close()
    if deleted:
        logger.info("Purged %d execution logs older than %d days", deleted, retention_days)
    return deleted


async def start_scheduler() -> None:
    global _maintenance_task, _running
    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("Scheduler is disabled via configuration")
        return
    if _maintenance_task is not None:
        return

    logger.info("Initializing scheduler...")
    armed = scheduler_service.initialize_from_store()
    _running = True
    _maintenance_task = asyncio.create_task(_maintenance_loop())
    logger.info("Scheduler started (%d schedules armed)", armed)


async def stop_scheduler() -> None:
    global _maintenance_task, _running
    _running = False
    scheduler_service.shutdown()
    if _maintenance_task is None:
        return
    _maintenance_task.cancel()
    try:
        await _maintenance_task
    except asyncio.CancelledError:
        pass
    finally:
        _maintenance_task = None
        logger.info("Scheduler stopped")

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hookscheduler.core.config import get_settings
from hookscheduler.database.models import models as db_models
from hookscheduler.database.services import schedule_store
from hookscheduler.schemas.scheduler import (
    DispatchOutcome,
    ExecutionStatus,
    Frequency,
    ScheduleStatus,
    TriggerSource,
)
from hookscheduler.services.next_execution import compute_next_execution, timing_from_schedule

logger = logging.getLogger(__name__)


class ExecutionRecorder:
    """Writes a dispatch outcome back to the schedule and the execution log."""

    def __init__(self, response_limit: Optional[int] = None) -> None:
        self.response_limit = response_limit or get_settings().execution_log_response_limit

    def record(
        self,
        db: Session,
        db_schedule: db_models.Schedule,
        outcome: DispatchOutcome,
        trigger_source: TriggerSource = TriggerSource.SCHEDULED,
        completed_at: Optional[datetime] = None,
    ) -> Optional[db_models.ExecutionLog]:
        if outcome.skipped:
            return None

        completed_at = completed_at or datetime.now(timezone.utc)

        db_schedule.status = (
            ScheduleStatus.EXECUTED.value if outcome.success else ScheduleStatus.FAILED.value
        )
        db_schedule.last_executed = completed_at
        db_schedule.execution_count = (db_schedule.execution_count or 0) + 1
        if db_schedule.frequency == Frequency.ONCE.value:
            db_schedule.next_execution = None
        else:
            db_schedule.next_execution = compute_next_execution(
                timing_from_schedule(db_schedule),
                completed_at,
                last_executed=completed_at,
            )
        db_schedule.updated_at = completed_at

        entry = db_models.ExecutionLog(
            schedule_id=db_schedule.id,
            owner_id=db_schedule.owner_id,
            schedule_name=db_schedule.name,
            webhook_url=db_schedule.webhook_url,
            http_method=db_schedule.http_method,
            status=ExecutionStatus.SUCCESS.value if outcome.success else ExecutionStatus.FAILED.value,
            response_status=outcome.status_code,
            response_data=outcome.body[: self.response_limit] if outcome.body is not None else None,
            error_message=None if outcome.success else outcome.error,
            execution_time_ms=outcome.duration_ms,
            triggered_by=trigger_source.value,
            executed_at=completed_at,
        )

        try:
            db.add(db_schedule)
            schedule_store.append_log(db, entry)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to record execution of schedule %s", db_schedule.id)
            return None

        logger.info(
            "Recorded %s execution of schedule %s (%s, count=%s)",
            trigger_source.value.lower(),
            db_schedule.id,
            db_schedule.status,
            db_schedule.execution_count,
        )
        return entry

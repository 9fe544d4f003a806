import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hookscheduler.core.config import get_settings
from hookscheduler.database.connection import SessionLocal
from hookscheduler.database.models import models as db_models
from hookscheduler.database.services import schedule_store
from hookscheduler.schemas.scheduler import (
    DispatchOutcome,
    Frequency,
    ScheduleBase,
    ScheduleCreate,
    ScheduleEvent,
    ScheduleStatus,
    ScheduleUpdate,
    TimingSpec,
    TriggerSource,
    WebhookRequest,
)
from hookscheduler.services.execution_recorder import ExecutionRecorder
from hookscheduler.services.next_execution import (
    compute_next_execution,
    ensure_utc,
    timing_from_schedule,
)
from hookscheduler.services.notification_service import broadcaster
from hookscheduler.services.timer_registry import TimerRegistry
from hookscheduler.services.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

Publisher = Callable[[str, Dict[str, Any]], Awaitable[Any]]

RECOVERABLE_STATUSES = (
    ScheduleStatus.PENDING.value,
    ScheduleStatus.FAILED.value,
    ScheduleStatus.EXECUTED.value,
)


class SchedulerService:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        dispatcher: Optional[WebhookDispatcher] = None,
        recorder: Optional[ExecutionRecorder] = None,
        publisher: Optional[Publisher] = None,
        registry: Optional[TimerRegistry] = None,
    ) -> None:
        self.settings = get_settings()
        self._session_factory = session_factory
        self.dispatcher = dispatcher or WebhookDispatcher()
        self.recorder = recorder or ExecutionRecorder()
        self.publisher = publisher or broadcaster.publish
        self.registry = registry or TimerRegistry()
        self.max_timer_delay = self.settings.scheduler_max_timer_delay_seconds
        self.recheck_interval = self.settings.scheduler_recheck_interval_seconds
        self._execution_locks: Dict[int, asyncio.Lock] = {}
        self._locks_guard = threading.Lock()

    # --- Next execution ---

    def compute_next_execution(
        self,
        timing: TimingSpec,
        now: Optional[datetime] = None,
        last_executed: Optional[datetime] = None,
    ) -> Optional[datetime]:
        return compute_next_execution(timing, now or datetime.now(timezone.utc), last_executed)

    # --- Timer lifecycle ---

    def arm(
        self,
        db: Session,
        db_schedule: db_models.Schedule,
        now: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """Install the timer for the schedule's next occurrence and return that time."""
        schedule_id = db_schedule.id

        if not db_schedule.is_active:
            self.cancel(schedule_id)
            logger.info("Schedule %s (%s) is paused, not arming", schedule_id, db_schedule.name)
            return None

        now = now or datetime.now(timezone.utc)
        next_at = compute_next_execution(
            timing_from_schedule(db_schedule),
            now,
            last_executed=db_schedule.last_executed,
        )
        self.cancel(schedule_id)
        if next_at is None:
            logger.info("Schedule %s (%s) has no further executions", schedule_id, db_schedule.name)
            return None

        self._persist_next_execution(db, db_schedule, next_at)

        delay = (next_at - now).total_seconds()
        if delay < self.max_timer_delay:
            task = asyncio.create_task(self._run_timer(schedule_id, delay))
            logger.info(
                "Armed schedule %s (%s) for %s (in %ds)",
                schedule_id,
                db_schedule.name,
                next_at.isoformat(),
                max(int(delay), 0),
            )
        else:
            task = asyncio.create_task(self._run_recheck(schedule_id))
            logger.info(
                "Schedule %s (%s) is due %s, beyond the direct timer limit; re-checking in %ds",
                schedule_id,
                db_schedule.name,
                next_at.isoformat(),
                int(self.recheck_interval),
            )
        self.registry.install(schedule_id, task)
        return next_at

    def cancel(self, schedule_id: int) -> bool:
        return self.registry.cancel(schedule_id)

    def is_armed(self, schedule_id: int) -> bool:
        return self.registry.is_armed(schedule_id)

    def shutdown(self) -> int:
        cancelled = self.registry.cancel_all()
        logger.info("Cancelled %d schedule timers", cancelled)
        return cancelled

    async def _run_timer(self, schedule_id: int, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        # From here on the fire is in flight and no longer cancellable through the registry
        self.registry.release(schedule_id, asyncio.current_task())
        await self._fire_and_rearm(schedule_id)

    async def _run_recheck(self, schedule_id: int) -> None:
        await asyncio.sleep(self.recheck_interval)
        self.registry.release(schedule_id, asyncio.current_task())
        try:
            self._reload_and_arm(schedule_id, include_once=True)
        except Exception:
            logger.exception("Failed to re-check schedule %s", schedule_id)

    async def _fire_and_rearm(self, schedule_id: int) -> None:
        try:
            await self.fire(schedule_id, TriggerSource.SCHEDULED)
        except Exception:
            logger.exception("Scheduled execution of schedule %s failed", schedule_id)

        try:
            self._reload_and_arm(schedule_id, include_once=False)
        except Exception:
            logger.exception("Failed to re-arm schedule %s", schedule_id)

    def _reload_and_arm(self, schedule_id: int, include_once: bool) -> Optional[datetime]:
        db = self._session_factory()
        try:
            db_schedule = schedule_store.get_schedule(db, schedule_id)
            if db_schedule is None:
                logger.info("Schedule %s no longer exists, not re-arming", schedule_id)
                return None
            if db_schedule.frequency == Frequency.ONCE.value and not include_once:
                return None
            return self.arm(db, db_schedule)
        finally:
            db.close()

    def _persist_next_execution(
        self,
        db: Session,
        db_schedule: db_models.Schedule,
        next_at: datetime,
    ) -> None:
        db_schedule.next_execution = next_at
        try:
            db.add(db_schedule)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to store next execution for schedule %s", db_schedule.id)

    # --- Execution ---

    def _execution_lock(self, schedule_id: int) -> asyncio.Lock:
        with self._locks_guard:
            lock = self._execution_locks.get(schedule_id)
            if lock is None:
                lock = asyncio.Lock()
                self._execution_locks[schedule_id] = lock
            return lock

    def _forget(self, schedule_id: int) -> None:
        with self._locks_guard:
            self._execution_locks.pop(schedule_id, None)

    async def fire(
        self,
        schedule_id: int,
        trigger_source: TriggerSource = TriggerSource.SCHEDULED,
    ) -> Optional[DispatchOutcome]:
        """Dispatch, record and broadcast one execution of the schedule.

        Executions of the same schedule never overlap: a manual trigger
        arriving while a timer fires waits for it to finish.
        """
        async with self._execution_lock(schedule_id):
            db = self._session_factory()
            try:
                db_schedule = schedule_store.get_schedule(db, schedule_id)
                if db_schedule is None:
                    logger.info("Schedule %s no longer exists, skipping execution", schedule_id)
                    return None

                if not db_schedule.is_active:
                    logger.info("Schedule %s (%s) is paused, skipping", schedule_id, db_schedule.name)
                    return DispatchOutcome(success=False, skipped=True)

                if (
                    trigger_source == TriggerSource.SCHEDULED
                    and db_schedule.frequency == Frequency.ONCE.value
                    and db_schedule.last_executed is not None
                ):
                    logger.info("One-time schedule %s already ran, skipping", schedule_id)
                    return DispatchOutcome(success=False, skipped=True)

                revision = db_schedule.revision or 0
                request = self._to_webhook_request(db_schedule)
                outcome = await self.dispatcher.dispatch(request)

                # Pick up edits made while the request was in flight
                db.expire_all()
                db_schedule = schedule_store.get_schedule(db, schedule_id)
                if db_schedule is None:
                    logger.warning("Schedule %s was deleted during execution, outcome not recorded", schedule_id)
                    return outcome
                if (db_schedule.revision or 0) != revision:
                    logger.warning(
                        "Schedule %s was edited during execution, outcome of the previous definition discarded",
                        schedule_id,
                    )
                    return outcome

                if self.recorder.record(db, db_schedule, outcome, trigger_source) is None:
                    return outcome
                await self._publish(db_schedule, outcome)
                return outcome
            finally:
                db.close()

    async def trigger_now(self, schedule_id: int) -> Optional[DispatchOutcome]:
        """Run the schedule right away without touching its armed timer."""
        return await self.fire(schedule_id, TriggerSource.MANUAL)

    async def _publish(self, db_schedule: db_models.Schedule, outcome: DispatchOutcome) -> None:
        event = ScheduleEvent(
            type="schedule-executed" if outcome.success else "schedule-updated",
            schedule_id=str(db_schedule.id),
            status=db_schedule.status,
            last_executed=ensure_utc(db_schedule.last_executed),
            execution_count=db_schedule.execution_count or 0,
            next_execution=ensure_utc(db_schedule.next_execution),
            frequency=db_schedule.frequency,
        )
        try:
            await self.publisher(db_schedule.owner_id, event.model_dump(mode="json", by_alias=True))
        except Exception:
            logger.exception("Failed to publish event for schedule %s", db_schedule.id)

    def _to_webhook_request(self, db_schedule: db_models.Schedule) -> WebhookRequest:
        return WebhookRequest(
            schedule_id=db_schedule.id,
            name=db_schedule.name,
            webhook_url=db_schedule.webhook_url,
            http_method=db_schedule.http_method,
            json_body=db_schedule.json_body,
            auth_type=db_schedule.auth_type or "none",
            auth_token=db_schedule.auth_token,
            auth_api_key_name=db_schedule.auth_api_key_name,
            auth_api_key_value=db_schedule.auth_api_key_value,
            auth_username=db_schedule.auth_username,
            auth_password=db_schedule.auth_password,
            custom_headers=db_schedule.custom_headers,
            timeout_seconds=db_schedule.timeout_seconds or self.settings.webhook_default_timeout_seconds,
        )

    # --- Recovery ---

    def initialize_from_store(self) -> int:
        """Arm every schedule that should be running after a process start."""
        db = self._session_factory()
        armed = 0
        try:
            schedules = schedule_store.list_schedules_by_status(db, RECOVERABLE_STATUSES)
            logger.info("Initializing %d schedules", len(schedules))
            for db_schedule in schedules:
                if (
                    db_schedule.status == ScheduleStatus.EXECUTED.value
                    and db_schedule.frequency == Frequency.ONCE.value
                ):
                    continue
                try:
                    if db_schedule.status == ScheduleStatus.FAILED.value:
                        db_schedule.status = ScheduleStatus.PENDING.value
                        schedule_store.save_schedule(db, db_schedule)
                    if self.arm(db, db_schedule) is not None:
                        armed += 1
                except Exception:
                    db.rollback()
                    logger.exception("Error initializing schedule %s", db_schedule.id)
        finally:
            db.close()

        logger.info("All schedules initialized (%d active timers)", self.registry.active_count())
        return armed

    # --- Schedule commands ---

    def create_schedule(self, db: Session, owner_id: str, schedule_in: ScheduleCreate) -> db_models.Schedule:
        now = datetime.now(timezone.utc)
        db_schedule = db_models.Schedule(
            owner_id=owner_id,
            status=ScheduleStatus.PENDING.value,
            last_executed=None,
            execution_count=0,
            revision=0,
            created_at=now,
            updated_at=now,
        )
        self._apply_definition(db_schedule, schedule_in)
        db_schedule.next_execution = compute_next_execution(schedule_in, now)
        schedule_store.save_schedule(db, db_schedule)
        logger.info("Schedule created: %s (ID: %s)", db_schedule.name, db_schedule.id)

        self.arm(db, db_schedule)
        return db_schedule

    def update_schedule(
        self,
        db: Session,
        owner_id: str,
        schedule_id: int,
        schedule_in: ScheduleUpdate,
    ) -> Optional[db_models.Schedule]:
        db_schedule = schedule_store.get_schedule_for_owner(db, schedule_id, owner_id)
        if db_schedule is None:
            return None

        self.cancel(schedule_id)
        now = datetime.now(timezone.utc)
        self._apply_definition(db_schedule, schedule_in)
        db_schedule.status = ScheduleStatus.PENDING.value
        db_schedule.last_executed = None
        db_schedule.execution_count = 0
        # In-flight executions of the previous definition must not be recorded
        db_schedule.revision = (db_schedule.revision or 0) + 1
        db_schedule.next_execution = compute_next_execution(schedule_in, now)
        db_schedule.updated_at = now
        schedule_store.save_schedule(db, db_schedule)
        logger.info("Schedule updated: %s (ID: %s)", db_schedule.name, db_schedule.id)

        self.arm(db, db_schedule)
        return db_schedule

    def delete_schedule(self, db: Session, owner_id: str, schedule_id: int) -> bool:
        db_schedule = schedule_store.get_schedule_for_owner(db, schedule_id, owner_id)
        if db_schedule is None:
            return False
        self.cancel(schedule_id)
        schedule_store.delete_schedule(db, db_schedule)
        self._forget(schedule_id)
        logger.info("Schedule deleted: %s", schedule_id)
        return True

    def delete_all_schedules(self, db: Session, owner_id: str) -> int:
        for db_schedule in schedule_store.list_schedules_for_owner(db, owner_id):
            self.cancel(db_schedule.id)
            self._forget(db_schedule.id)
        deleted = schedule_store.delete_schedules_for_owner(db, owner_id)
        logger.info("Deleted %d schedules for owner %s", deleted, owner_id)
        return deleted

    def toggle_schedule(self, db: Session, owner_id: str, schedule_id: int) -> Optional[db_models.Schedule]:
        db_schedule = schedule_store.get_schedule_for_owner(db, schedule_id, owner_id)
        if db_schedule is None:
            return None

        db_schedule.is_active = not db_schedule.is_active
        db_schedule.updated_at = datetime.now(timezone.utc)
        schedule_store.save_schedule(db, db_schedule)

        if db_schedule.is_active:
            self.arm(db, db_schedule)
            logger.info("Schedule %s (%s) enabled", schedule_id, db_schedule.name)
        else:
            self.cancel(schedule_id)
            logger.info("Schedule %s (%s) paused", schedule_id, db_schedule.name)
        return db_schedule

    async def trigger_schedule(
        self,
        db: Session,
        owner_id: str,
        schedule_id: int,
    ) -> Optional[Tuple[db_models.Schedule, DispatchOutcome]]:
        if schedule_store.get_schedule_for_owner(db, schedule_id, owner_id) is None:
            return None

        outcome = await self.trigger_now(schedule_id)
        if outcome is None:
            return None

        db.expire_all()
        db_schedule = schedule_store.get_schedule_for_owner(db, schedule_id, owner_id)
        if db_schedule is None:
            return None
        return db_schedule, outcome

    def _apply_definition(self, db_schedule: db_models.Schedule, schedule_in: ScheduleBase) -> None:
        db_schedule.name = schedule_in.name
        db_schedule.webhook_url = schedule_in.webhook_url
        db_schedule.http_method = schedule_in.http_method.value
        db_schedule.json_body = schedule_in.json_body or "{}"
        db_schedule.auth_type = schedule_in.auth_type.value
        db_schedule.auth_token = schedule_in.auth_token or None
        db_schedule.auth_api_key_name = schedule_in.auth_api_key_name or None
        db_schedule.auth_api_key_value = schedule_in.auth_api_key_value or None
        db_schedule.auth_username = schedule_in.auth_username or None
        db_schedule.auth_password = schedule_in.auth_password or None
        db_schedule.custom_headers = schedule_in.custom_headers or "{}"
        db_schedule.frequency = schedule_in.frequency.value
        db_schedule.interval = schedule_in.interval
        db_schedule.schedule_at = schedule_in.schedule_at
        db_schedule.use_specific_time = schedule_in.use_specific_time
        db_schedule.specific_hour = schedule_in.specific_hour
        db_schedule.specific_minute = schedule_in.specific_minute
        db_schedule.days_of_week = list(schedule_in.days_of_week)
        db_schedule.day_of_month = schedule_in.day_of_month
        db_schedule.timezone = schedule_in.timezone
        db_schedule.timeout_seconds = schedule_in.timeout_seconds
        db_schedule.is_active = schedule_in.is_active


scheduler_service = SchedulerService()

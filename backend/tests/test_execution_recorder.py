from datetime import datetime, timezone
from unittest import mock

from sqlalchemy.exc import OperationalError

from hookscheduler.database.models import models as db_models
from hookscheduler.database.services import schedule_store
from hookscheduler.schemas.scheduler import DispatchOutcome, TriggerSource
from hookscheduler.services.execution_recorder import ExecutionRecorder


def _make_schedule(session, **overrides) -> db_models.Schedule:
    values = {
        "owner_id": "owner-1",
        "name": "billing",
        "webhook_url": "https://hooks.example.com/billing",
        "http_method": "POST",
        "frequency": "hours",
        "interval": 1,
        "schedule_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "status": "Pending",
        "is_active": True,
        "execution_count": 0,
    }
    values.update(overrides)
    schedule = db_models.Schedule(**values)
    return schedule_store.save_schedule(session, schedule)


def test_success_updates_schedule_and_appends_log(db) -> None:
    schedule = _make_schedule(db)
    completed = datetime(2024, 1, 1, 5, 30, tzinfo=timezone.utc)

    entry = ExecutionRecorder().record(
        db,
        schedule,
        DispatchOutcome(success=True, status_code=200, body="ok", duration_ms=12, attempts=1),
        TriggerSource.SCHEDULED,
        completed_at=completed,
    )

    assert entry is not None
    db.refresh(schedule)
    assert schedule.status == "Executed"
    assert schedule.execution_count == 1
    assert schedule.next_execution.replace(tzinfo=timezone.utc) == datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc)

    logs = schedule_store.list_logs_for_owner(db, "owner-1")
    assert len(logs) == 1
    assert logs[0].status == "Success"
    assert logs[0].response_status == 200
    assert logs[0].error_message is None
    assert logs[0].triggered_by == "Scheduled"
    assert logs[0].execution_time_ms == 12


def test_failure_counts_and_keeps_error(db) -> None:
    schedule = _make_schedule(db)

    ExecutionRecorder().record(
        db,
        schedule,
        DispatchOutcome(success=False, status_code=503, body="down", error="Webhook responded with status 503"),
        TriggerSource.MANUAL,
    )

    db.refresh(schedule)
    assert schedule.status == "Failed"
    assert schedule.execution_count == 1

    log = schedule_store.list_logs_for_owner(db, "owner-1")[0]
    assert log.status == "Failed"
    assert log.error_message == "Webhook responded with status 503"
    assert log.triggered_by == "Manual"


def test_skipped_outcome_records_nothing(db) -> None:
    schedule = _make_schedule(db)

    result = ExecutionRecorder().record(db, schedule, DispatchOutcome(success=False, skipped=True))

    assert result is None
    db.refresh(schedule)
    assert schedule.execution_count == 0
    assert schedule.status == "Pending"
    assert schedule_store.list_logs_for_owner(db, "owner-1") == []


def test_one_time_schedule_has_no_next_execution(db) -> None:
    schedule = _make_schedule(db, frequency="once")

    ExecutionRecorder().record(db, schedule, DispatchOutcome(success=True, status_code=204, body=""))

    db.refresh(schedule)
    assert schedule.next_execution is None
    assert schedule.last_executed is not None


def test_response_body_is_truncated(db) -> None:
    schedule = _make_schedule(db)

    ExecutionRecorder(response_limit=10).record(
        db, schedule, DispatchOutcome(success=True, status_code=200, body="x" * 50)
    )

    log = schedule_store.list_logs_for_owner(db, "owner-1")[0]
    assert log.response_data == "x" * 10


def test_persistence_failure_is_rolled_back_and_not_raised(db) -> None:
    schedule = _make_schedule(db)

    with mock.patch.object(db, "commit", side_effect=OperationalError("commit", {}, Exception("locked"))):
        result = ExecutionRecorder().record(db, schedule, DispatchOutcome(success=True, status_code=200))

    assert result is None
    db.expire_all()
    assert schedule_store.list_logs_for_owner(db, "owner-1") == []
    assert schedule_store.get_schedule(db, schedule.id).execution_count == 0

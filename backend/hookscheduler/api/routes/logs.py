from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from hookscheduler.core.auth import get_current_owner_id
from hookscheduler.core.config import get_settings
from hookscheduler.database.services import schedule_store
from hookscheduler.database.services.schedule_store import get_db
from hookscheduler.schemas.scheduler import ExecutionLogEntry, LogCleanupResponse

router = APIRouter(prefix="/logs", tags=["logs"])


@router.get("", response_model=list[ExecutionLogEntry])
def list_logs(
    schedule_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> list[ExecutionLogEntry]:
    return schedule_store.list_logs_for_owner(db, owner_id, schedule_id=schedule_id, limit=limit)


@router.delete("", response_model=LogCleanupResponse)
def purge_logs(
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> LogCleanupResponse:
    deleted = schedule_store.delete_logs_for_owner(db, owner_id)
    return LogCleanupResponse(deleted=deleted, message=f"Deleted {deleted} execution logs")


@router.delete("/cleanup", response_model=LogCleanupResponse)
def cleanup_logs(
    days: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> LogCleanupResponse:
    """Delete the owner's log entries older than ``days`` days."""
    days = days or get_settings().log_cleanup_default_days
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    deleted = schedule_store.delete_logs_older_than(db, cutoff, owner_id=owner_id)
    return LogCleanupResponse(
        deleted=deleted,
        message=f"Deleted {deleted} execution logs older than {days} days",
    )


@router.get("/{log_id}", response_model=ExecutionLogEntry)
def get_log(
    log_id: int,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> ExecutionLogEntry:
    entry = schedule_store.get_log_for_owner(db, log_id, owner_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Execution log not found")
    return entry

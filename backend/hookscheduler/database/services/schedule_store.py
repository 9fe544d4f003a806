from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..connection import SessionLocal
from ..models import models as db_models


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# --- Schedules ---

def get_schedule(db: Session, schedule_id: int) -> Optional[db_models.Schedule]:
    return db.query(db_models.Schedule).filter(db_models.Schedule.id == schedule_id).first()


def get_schedule_for_owner(db: Session, schedule_id: int, owner_id: str) -> Optional[db_models.Schedule]:
    return (
        db.query(db_models.Schedule)
        .filter(db_models.Schedule.id == schedule_id, db_models.Schedule.owner_id == owner_id)
        .first()
    )


def list_schedules_for_owner(db: Session, owner_id: str, limit: Optional[int] = None) -> List[db_models.Schedule]:
    query = (
        db.query(db_models.Schedule)
        .filter(db_models.Schedule.owner_id == owner_id)
        .order_by(db_models.Schedule.created_at.desc(), db_models.Schedule.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def list_schedules_by_status(db: Session, statuses: Iterable[str]) -> List[db_models.Schedule]:
    return (
        db.query(db_models.Schedule)
        .filter(db_models.Schedule.status.in_(list(statuses)))
        .order_by(db_models.Schedule.id)
        .all()
    )


def save_schedule(db: Session, db_schedule: db_models.Schedule) -> db_models.Schedule:
    db.add(db_schedule)
    db.commit()
    db.refresh(db_schedule)
    return db_schedule


def delete_schedule(db: Session, db_schedule: db_models.Schedule) -> None:
    db.delete(db_schedule)
    db.commit()


def delete_schedules_for_owner(db: Session, owner_id: str) -> int:
    deleted = (
        db.query(db_models.Schedule)
        .filter(db_models.Schedule.owner_id == owner_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


# --- Execution logs ---

def append_log(db: Session, entry: db_models.ExecutionLog) -> db_models.ExecutionLog:
    """Stage a log entry; the caller commits it together with the schedule update."""
    db.add(entry)
    return entry


def list_logs_for_owner(
    db: Session,
    owner_id: str,
    schedule_id: Optional[int] = None,
    limit: int = 100,
) -> List[db_models.ExecutionLog]:
    query = db.query(db_models.ExecutionLog).filter(db_models.ExecutionLog.owner_id == owner_id)
    if schedule_id is not None:
        query = query.filter(db_models.ExecutionLog.schedule_id == schedule_id)
    return (
        query.order_by(db_models.ExecutionLog.executed_at.desc(), db_models.ExecutionLog.id.desc())
        .limit(limit)
        .all()
    )


def get_log_for_owner(db: Session, log_id: int, owner_id: str) -> Optional[db_models.ExecutionLog]:
    return (
        db.query(db_models.ExecutionLog)
        .filter(db_models.ExecutionLog.id == log_id, db_models.ExecutionLog.owner_id == owner_id)
        .first()
    )


def delete_logs_for_owner(db: Session, owner_id: str) -> int:
    deleted = (
        db.query(db_models.ExecutionLog)
        .filter(db_models.ExecutionLog.owner_id == owner_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def delete_logs_older_than(db: Session, cutoff: datetime, owner_id: Optional[str] = None) -> int:
    query = db.query(db_models.ExecutionLog).filter(db_models.ExecutionLog.executed_at < cutoff)
    if owner_id is not None:
        query = query.filter(db_models.ExecutionLog.owner_id == owner_id)
    deleted = query.delete(synchronize_session=False)
    db.commit()
    return deleted

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from hookscheduler.core.auth import get_current_owner_id
from hookscheduler.database.services import schedule_store
from hookscheduler.database.services.schedule_store import get_db
from hookscheduler.schemas.scheduler import (
    NextExecutionPreview,
    Schedule,
    ScheduleCreate,
    ScheduleUpdate,
    TimingSpec,
    TriggerResponse,
)
from hookscheduler.services.scheduler_service import scheduler_service

router = APIRouter(prefix="/schedules", tags=["schedules"])


@router.get("", response_model=list[Schedule])
def list_schedules(
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> list[Schedule]:
    return schedule_store.list_schedules_for_owner(db, owner_id)


# Commands that arm or cancel timers run on the event loop; read-only routes stay sync.
@router.post("", response_model=Schedule, status_code=201)
async def create_schedule(
    schedule_in: ScheduleCreate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> Schedule:
    return scheduler_service.create_schedule(db, owner_id, schedule_in)


@router.delete("")
async def delete_all_schedules(
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> dict:
    deleted = scheduler_service.delete_all_schedules(db, owner_id)
    return {"deleted": deleted, "message": f"Deleted {deleted} schedules"}


@router.post("/preview", response_model=NextExecutionPreview)
def preview_next_execution(timing: TimingSpec) -> NextExecutionPreview:
    """Next fire time for a timing definition that has not been saved yet."""
    return NextExecutionPreview(next_execution=scheduler_service.compute_next_execution(timing))


@router.get("/{schedule_id}", response_model=Schedule)
def get_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> Schedule:
    schedule = schedule_store.get_schedule_for_owner(db, schedule_id, owner_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule


@router.put("/{schedule_id}", response_model=Schedule)
async def update_schedule(
    schedule_id: int,
    schedule_in: ScheduleUpdate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> Schedule:
    schedule = scheduler_service.update_schedule(db, owner_id, schedule_id, schedule_in)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule


@router.delete("/{schedule_id}")
async def delete_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> dict:
    success = scheduler_service.delete_schedule(db, owner_id, schedule_id)
    if not success:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return {"message": "Schedule deleted"}


@router.post("/{schedule_id}/toggle", response_model=Schedule)
async def toggle_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> Schedule:
    schedule = scheduler_service.toggle_schedule(db, owner_id, schedule_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule


@router.post("/{schedule_id}/trigger", response_model=TriggerResponse)
async def trigger_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner_id),
) -> TriggerResponse:
    """Run the webhook now; the regular timer keeps its slot."""
    result = await scheduler_service.trigger_schedule(db, owner_id, schedule_id)
    if not result:
        raise HTTPException(status_code=404, detail="Schedule not found")
    schedule, outcome = result
    return TriggerResponse(schedule=Schedule.model_validate(schedule), outcome=outcome)

import json

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from hookscheduler.core.auth import get_current_owner_id
from hookscheduler.core.config import get_settings
from hookscheduler.services.notification_service import broadcaster

router = APIRouter(tags=["events"])


@router.get("/events")
async def stream_events(request: Request, owner_id: str = Depends(get_current_owner_id)):
    """Stream the owner's schedule notifications using Server-Sent Events."""
    heartbeat = get_settings().sse_heartbeat_seconds

    async def event_generator():
        subscription = broadcaster.subscribe(owner_id)
        try:
            yield {"data": json.dumps({"type": "connected", "userId": owner_id})}
            while not subscription.closed:
                if await request.is_disconnected():
                    break
                message = await subscription.get(timeout=heartbeat)
                if message is None:
                    continue
                yield {"data": json.dumps(message)}
        finally:
            broadcaster.unsubscribe(subscription)

    return EventSourceResponse(event_generator(), ping=heartbeat)

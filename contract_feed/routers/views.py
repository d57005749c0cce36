"""
View tracking endpoint:
  POST /views — record that a user (or a logged-out visitor) saw a contract
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from contract_feed.dependencies import get_acting_user_id, get_view_queue
from contract_feed.ingestion.view_queue import ViewIdentityError, ViewQueue
from contract_feed.schemas import ViewAck, ViewEvent

router = APIRouter()


@router.post("/", response_model=ViewAck)
async def record_view(
    body: ViewEvent,
    background_tasks: BackgroundTasks,
    acting_user_id: Optional[str] = Depends(get_acting_user_id),
    queue: ViewQueue = Depends(get_view_queue),
):
    """
    Accept the view and return straight away. The write runs after the
    response is sent (fire-and-forget); failures there are logged only.
    """
    try:
        ack = queue.record(body, acting_user_id)
    except ViewIdentityError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))

    background_tasks.add_task(queue.process)
    return ack

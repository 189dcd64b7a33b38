"""Notification operator routes: queue health and manual intervention."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from ..core import QueueDep
from ..schemas import NotificationTaskResponse, QueueStatsResponse
from ..services.exceptions import NotificationError, NotificationTaskNotFoundError

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/stats", response_model=QueueStatsResponse)
async def get_queue_stats(queue: QueueDep):
    stats = await queue.stats()
    return QueueStatsResponse(
        pending=stats.pending,
        processing=stats.processing,
        sent=stats.sent,
        failed=stats.failed,
        total=stats.total,
    )


@router.get("/failed", response_model=list[NotificationTaskResponse])
async def list_failed_notifications(
    queue: QueueDep,
    limit: int = Query(100, ge=1, le=500),
):
    """Tasks that exhausted their retries and need manual intervention."""
    tasks = await queue.failed_tasks(limit=limit)
    return [NotificationTaskResponse.model_validate(task) for task in tasks]


@router.post("/{task_id}/retry", response_model=NotificationTaskResponse)
async def retry_notification(task_id: UUID, queue: QueueDep):
    """Re-queue a permanently failed task with a fresh retry budget."""
    try:
        task = await queue.requeue(task_id)
    except NotificationTaskNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except NotificationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return NotificationTaskResponse.model_validate(task)

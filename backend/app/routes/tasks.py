"""Task routes - status polling and counts."""

from fastapi import APIRouter, Depends, HTTPException

from app.config import logger
from app.deps import get_task_queue
from app.services.task_queue import TaskQueue
from app.services.task_status import get_task_status

router = APIRouter(tags=["tasks"])


@router.get("/tasks/{task_id}")
async def get_task_status_route(task_id: str, queue: TaskQueue = Depends(get_task_queue)):
    """Polled by clients until the task reaches completed or failed."""
    task = queue.get_task(task_id)
    if task is None:
        logger.info(f"Status requested for unknown task {task_id}")
        raise HTTPException(status_code=404, detail="Task not found")
    return get_task_status(task)


@router.get("/tasks")
async def get_all_tasks(queue: TaskQueue = Depends(get_task_queue)):
    return {
        "status": "success",
        "message": "Task counts",
        "counts": queue.get_tasks_count(),
    }

"""Client-facing projection of a task's state."""

import math
from typing import Any, Dict

from app.models.task import HomeworkTask, TaskStatus

STATUS_MESSAGES = {
    TaskStatus.PENDING: "Task is being processed",
    TaskStatus.PROCESSING: "Task is being processed",
    TaskStatus.COMPLETED: "Task completed",
    TaskStatus.FAILED: "Task failed",
}


def compute_progress(processed: int, total: int) -> float:
    """processed / total clamped to [0, 1]; 0 when total is 0 or the ratio is not finite."""
    if total <= 0:
        return 0.0
    progress = processed / total
    if math.isnan(progress) or math.isinf(progress):
        return 0.0
    return min(max(progress, 0.0), 1.0)


def get_task_status(task: HomeworkTask) -> Dict[str, Any]:
    status = task.status
    response: Dict[str, Any] = {
        "status": status.value,
        "message": STATUS_MESSAGES[status],
        "task_id": task.id,
    }

    if status in (TaskStatus.PENDING, TaskStatus.PROCESSING):
        response.update({
            "total_students": task.total_students,
            "processed": task.processed_count,
            "progress": compute_progress(task.processed_count, task.total_students),
            "start_time": task.start_time.isoformat(),
            "partial_results": [r for r in task.results if r],
        })
    elif status == TaskStatus.COMPLETED:
        response.update({
            "results": list(task.results),
            "end_time": task.end_time.isoformat() if task.end_time else None,
            "total_students": task.total_students,
            "processed": task.processed_count,
            "progress": 1.0,
        })
    else:
        response.update({
            "error": task.error,
            "end_time": task.end_time.isoformat() if task.end_time else None,
            "progress": 0.0,
            "is_error": True,
        })
    return response

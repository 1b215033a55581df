"""Task-related Pydantic models"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class HomeworkTask(BaseModel):
    """
    One trackable unit of asynchronous work.

    Instances held by the TaskQueue are mutated only under its lock; everything
    handed out to callers is a deep copy.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    status: TaskStatus = TaskStatus.PENDING
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    file_path: Optional[str] = None
    homework_type: str = "general"
    pages_per_student: int = 0
    layout: str = "single"
    total_students: int = 0
    processed_count: int = 0
    results: List[str] = []
    error: Optional[str] = None
    params: Dict[str, Any] = {}

    def snapshot(self) -> "HomeworkTask":
        return self.model_copy(deep=True)

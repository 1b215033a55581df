"""
In-memory task registry with a bounded worker pool.

Tasks are registered, queued and picked up by ``worker_count`` asyncio workers.
The registry sits behind one re-entrant lock so handlers running in worker
threads (``asyncio.to_thread``) can update their task safely.
"""

import asyncio
import inspect
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from app.config import logger
from app.errors import HomeworkError, TaskPanic
from app.models.task import HomeworkTask, TaskStatus

TaskHandler = Callable[[HomeworkTask], Union[Awaitable[Any], Any]]

_STATUS_ALIASES = {
    "pending": TaskStatus.PENDING,
    "processing": TaskStatus.PROCESSING,
    "completed": TaskStatus.COMPLETED,
    "failed": TaskStatus.FAILED,
    "error": TaskStatus.FAILED,
}

_ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.PROCESSING, TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.PROCESSING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


def generate_task_id() -> str:
    return f"task_{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex}"


def _coerce_status(status) -> Optional[TaskStatus]:
    if isinstance(status, TaskStatus):
        return status
    return _STATUS_ALIASES.get(str(status).strip().lower())


class TaskQueue:
    """Task registry plus worker pool."""

    def __init__(self, worker_count: int = 5, capacity: int = 100):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.worker_count = worker_count
        self.capacity = capacity
        self._tasks: Dict[str, HomeworkTask] = {}
        self._lock = threading.RLock()
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []

    @classmethod
    def from_settings(cls, settings) -> "TaskQueue":
        return cls(worker_count=settings.worker_count, capacity=settings.queue_capacity)

    # ---- Lifecycle ----

    def _get_queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.capacity)
        return self._queue

    def start(self):
        """Spawn the worker coroutines on the running loop (idempotent)."""
        if self._workers:
            return
        queue = self._get_queue()
        self._workers = [
            asyncio.create_task(self._worker(queue, i + 1), name=f"task-worker-{i + 1}")
            for i in range(self.worker_count)
        ]
        logger.info(f"🚀 Task queue started with {self.worker_count} workers (capacity {self.capacity})")

    async def wait(self):
        """Block until every queued task has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self):
        """Stop the workers after the tasks already queued have run."""
        if not self._workers:
            return
        for _ in self._workers:
            await self._queue.put(None)
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("🛑 Task queue stopped")

    # ---- Submission ----

    def create_task(self, kind: str, message: str = "", params: Optional[Dict[str, Any]] = None,
                    **fields) -> str:
        """Register a pending task without queueing it; returns its id."""
        task_params = {"type": kind, "message": message}
        if params:
            task_params.update(params)
        task = HomeworkTask(id=generate_task_id(), params=task_params, **fields)
        with self._lock:
            self._tasks[task.id] = task
        logger.info(f"Created task {task.id} ({kind})")
        return task.id

    async def add_task(self, task: HomeworkTask, handler: TaskHandler):
        """
        Register ``task`` and queue it for ``handler``; waits only when the queue is full.

        Raises ValueError if a task with the same id is already registered.
        """
        with self._lock:
            if task.id in self._tasks:
                raise ValueError(f"Task {task.id} is already registered")
            self._tasks[task.id] = task
        await self._get_queue().put((task.id, handler))
        logger.info(f"📥 Queued task {task.id} (queue size {self._queue.qsize()})")

    def register_if_absent(self, task: HomeworkTask, **params) -> Optional[HomeworkTask]:
        """
        Register ``task`` unless an unfinished task already matches ``params``.

        Returns a snapshot of the matching task, or None when ``task`` was
        registered. The lookup and the registration happen under one lock.
        """
        with self._lock:
            existing = self.find_active_task(**params)
            if existing is not None:
                return existing
            if task.id in self._tasks:
                raise ValueError(f"Task {task.id} is already registered")
            self._tasks[task.id] = task
        logger.info(f"Registered task {task.id}")
        return None

    async def dispatch(self, task_id: str, handler: TaskHandler):
        """Queue an already registered task."""
        with self._lock:
            if task_id not in self._tasks:
                raise KeyError(task_id)
        await self._get_queue().put((task_id, handler))
        logger.info(f"📥 Queued task {task_id} (queue size {self._queue.qsize()})")

    # ---- Workers ----

    async def _worker(self, queue: asyncio.Queue, worker_id: int):
        while True:
            item = await queue.get()
            try:
                if item is None:
                    return
                task_id, handler = item
                await self._run_handler(worker_id, task_id, handler)
            finally:
                queue.task_done()

    def _claim(self, worker_id: int, task_id: str) -> Optional[HomeworkTask]:
        """Move a pending task to processing; None if it is gone or already claimed."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Worker {worker_id}: task {task_id} no longer exists")
                return None
            if task.status != TaskStatus.PENDING:
                logger.warning(f"Worker {worker_id}: task {task_id} already {task.status.value}, skipping")
                return None
            task.status = TaskStatus.PROCESSING
            return task.snapshot()

    async def _run_handler(self, worker_id: int, task_id: str, handler: TaskHandler):
        task = self._claim(worker_id, task_id)
        if task is None:
            return

        logger.info(f"Worker {worker_id} processing task {task_id}")
        try:
            outcome = handler(task)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"❌ Task {task_id} crashed in worker {worker_id}: {e}", exc_info=True)
            self.fail_task(task_id, TaskPanic())
            return

        current = self.get_task(task_id)
        if current is not None and not current.status.is_terminal:
            self.complete_task(task_id)
        logger.info(f"Worker {worker_id} finished task {task_id}")

    # ---- Mutation ----

    def update_task_status(self, task_id: str, status, message: str = ""):
        new_status = _coerce_status(status)
        if new_status is None:
            logger.warning(f"Ignoring unknown status {status!r} for task {task_id}")
            return
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Status update for unknown task {task_id}")
                return
            if new_status not in _ALLOWED_TRANSITIONS[task.status]:
                logger.warning(
                    f"Refusing to move task {task_id} from {task.status.value} to {new_status.value}"
                )
                return

            task.status = new_status
            if new_status.is_terminal:
                task.end_time = datetime.now(timezone.utc)
            if new_status == TaskStatus.FAILED:
                task.error = message or task.error or "Task failed"
            elif new_status == TaskStatus.COMPLETED:
                # Unfilled result slots are dropped, order is kept
                task.results = [r for r in task.results if r]
                if message:
                    task.results.append(message)
        logger.info(f"Task {task_id} -> {new_status.value}")

    def update_task_total_students(self, task_id: str, total: int):
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Total update for unknown task {task_id}")
                return
            task.total_students = max(0, int(total))

    def increment_processed_count(self, task_id: str):
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Progress update for unknown task {task_id}")
                return
            if task.total_students and task.processed_count >= task.total_students:
                logger.warning(
                    f"Task {task_id} processed count already at total ({task.total_students}), not incrementing"
                )
                return
            task.processed_count += 1
            processed, total = task.processed_count, task.total_students
        logger.info(f"Task {task_id} progress: {processed}/{total}")

    def add_task_result(self, task_id: str, result: str):
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Result for unknown task {task_id}")
                return
            task.results.append(result)

    def set_result_slots(self, task_id: str, count: int):
        """Pre-size the result list so fan-out workers can write by index."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Result slots for unknown task {task_id}")
                return
            task.results = [""] * max(0, count)

    def set_result_slot(self, task_id: str, index: int, result: str):
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Result slot for unknown task {task_id}")
                return
            if not 0 <= index < len(task.results):
                logger.error(f"Result slot {index} out of range for task {task_id} ({len(task.results)} slots)")
                return
            task.results[index] = result

    def complete_task(self, task_id: str, result: str = ""):
        self.update_task_status(task_id, TaskStatus.COMPLETED, result)

    def fail_task(self, task_id: str, error: Union[str, HomeworkError]):
        if isinstance(error, HomeworkError):
            error = error.message
        self.update_task_status(task_id, TaskStatus.FAILED, error)

    # ---- Queries ----

    def get_task(self, task_id: str) -> Optional[HomeworkTask]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.snapshot() if task is not None else None

    def find_active_task(self, **params) -> Optional[HomeworkTask]:
        """The oldest unfinished task whose params contain all of ``params``."""
        with self._lock:
            matches = [
                task for task in self._tasks.values()
                if not task.status.is_terminal
                and all(task.params.get(key) == value for key, value in params.items())
            ]
            if not matches:
                return None
            return min(matches, key=lambda t: t.start_time).snapshot()

    def get_all_tasks(self) -> List[HomeworkTask]:
        with self._lock:
            return [task.snapshot() for task in self._tasks.values()]

    def get_tasks_count(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in TaskStatus}
        with self._lock:
            for task in self._tasks.values():
                counts[task.status.value] += 1
        return counts

    def cleanup_tasks(self, max_age_hours: float) -> int:
        """Drop finished tasks whose end time is older than ``max_age_hours``."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
        with self._lock:
            expired = [
                task_id for task_id, task in self._tasks.items()
                if task.end_time is not None and task.end_time < cutoff
            ]
            for task_id in expired:
                del self._tasks[task_id]
        if expired:
            logger.info(f"🧹 Cleaned up {len(expired)} finished tasks older than {max_age_hours}h")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

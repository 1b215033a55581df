"""
Homework pipeline - split a multi-student PDF, grade every part, aggregate.

The TaskQueue calls ``HomeworkPipeline.process`` for each upload task; the
synchronous marking route calls ``mark_homework`` directly.
"""

import asyncio
import os
import time
from typing import Optional

from app.config import logger
from app.errors import HomeworkError
from app.models.grading import GradingResult
from app.models.task import HomeworkTask
from app.services.grading import GradingInvoker
from app.services.pdf_splitter import split_pdf
from app.services.task_queue import TaskQueue

NO_RESULTS_MESSAGE = "No student homework could be graded"


def student_label(index: int) -> str:
    return f"Student {index + 1}"


class HomeworkPipeline:
    """Task handler for uploaded homework files."""

    def __init__(self, queue: TaskQueue, invoker: GradingInvoker, split_root: str,
                 strict_page_count: bool = False):
        self.queue = queue
        self.invoker = invoker
        self.split_root = str(split_root)
        self.strict_page_count = strict_page_count

    @classmethod
    def from_settings(cls, settings, queue: TaskQueue, invoker: GradingInvoker) -> "HomeworkPipeline":
        return cls(queue, invoker, settings.split_root, strict_page_count=settings.strict_page_count)

    async def process(self, task: HomeworkTask):
        started = time.time()
        is_pdf = (task.file_path or "").lower().endswith(".pdf")
        if is_pdf and task.pages_per_student > 0:
            await self._process_split(task)
        else:
            await self._process_direct(task)
        logger.info(f"Task {task.id} pipeline finished in {time.time() - started:.1f}s")

    async def _process_split(self, task: HomeworkTask):
        logger.info(f"Splitting {task.file_path} at {task.pages_per_student} pages per student")
        try:
            student_files = await asyncio.to_thread(
                split_pdf, task.file_path, task.pages_per_student, self.split_root,
                strict_page_count=self.strict_page_count,
            )
        except HomeworkError as e:
            logger.error(f"❌ Split failed for task {task.id}: {e.message}")
            self.queue.fail_task(task.id, f"Failed to split PDF: {e.message}")
            return

        total = len(student_files)
        self.queue.update_task_total_students(task.id, total)
        self.queue.set_result_slots(task.id, total)
        logger.info(f"Task {task.id}: grading {total} students concurrently")

        async def grade_student(index: int, path: str) -> bool:
            try:
                result = await self.invoker.grade_homework_file(
                    path, task.homework_type, layout=task.layout, student_label=student_label(index),
                )
            except HomeworkError as e:
                logger.error(f"Task {task.id}: {student_label(index)} failed: {e.message}")
                return False
            except Exception as e:
                logger.error(f"Task {task.id}: {student_label(index)} hit an unexpected error: {e}", exc_info=True)
                return False
            self.queue.set_result_slot(task.id, index, result.to_json())
            self.queue.increment_processed_count(task.id)
            return True

        outcomes = await asyncio.gather(*(grade_student(i, path) for i, path in enumerate(student_files)))
        graded = sum(1 for ok in outcomes if ok)
        if graded == 0:
            self.queue.fail_task(task.id, NO_RESULTS_MESSAGE)
            return

        logger.info(f"✅ Task {task.id}: graded {graded}/{total} students")
        self.queue.complete_task(task.id)

    async def _process_direct(self, task: HomeworkTask):
        label = "Student (two-column layout)" if task.layout == "double" else "Student"
        self.queue.update_task_total_students(task.id, 1)
        try:
            result = await self.invoker.grade_homework_file(
                task.file_path, task.homework_type, layout=task.layout, student_label=label,
            )
        except HomeworkError as e:
            logger.error(f"❌ Task {task.id} grading failed: {e.message}")
            self.queue.fail_task(task.id, f"Failed to grade file: {e.message}")
            return

        self.queue.increment_processed_count(task.id)
        self.queue.complete_task(task.id, result.to_json())


async def mark_homework(invoker: GradingInvoker, file_path: str, homework_type: str = "general",
                        layout: str = "single", student: Optional[str] = None) -> GradingResult:
    """Grade a single file in the request path."""
    logger.info(f"Marking {os.path.basename(file_path)} synchronously (type={homework_type}, layout={layout})")
    if student is None:
        student = "Student (two-column layout)" if layout == "double" else "Student"
    return await invoker.grade_homework_file(file_path, homework_type, layout=layout, student_label=student)

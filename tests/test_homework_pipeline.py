import asyncio
import json
import random
import re

from app.models.task import HomeworkTask, TaskStatus
from app.services.grading import GradingInvoker
from app.services.homework import NO_RESULTS_MESSAGE, HomeworkPipeline, mark_homework
from app.services.llm import MockBackend
from app.services.task_queue import TaskQueue, generate_task_id

_STUDENT = re.compile(r"Student (\d+)")


class StudentEchoBackend:
    """Answers with the student number found in the prompt after a random delay."""

    name = "echo"

    def __init__(self, garbage_for=(), seed=3):
        self.garbage_for = set(garbage_for)
        self.rng = random.Random(seed)

    async def generate(self, system_instruction, file_bytes, mime_type, prompt, timeout=None):
        await asyncio.sleep(self.rng.uniform(0, 0.05))
        match = _STUDENT.search(prompt)
        number = int(match.group(1)) if match else 0
        if number in self.garbage_for:
            return "Sorry, the scan is unreadable."
        return json.dumps({
            "answers": [{"questionNumber": "1", "studentAnswer": f"student {number}"}],
            "feedback": f"student {number}",
        })


def run_pipeline(tmp_path, backend, retry, **task_fields):
    queue = TaskQueue(worker_count=2)
    pipeline = HomeworkPipeline(queue, GradingInvoker(backend, retry), str(tmp_path / "split"))
    task = HomeworkTask(id=generate_task_id(), **task_fields)

    async def _run():
        queue.start()
        await queue.add_task(task, pipeline.process)
        await queue.wait()
        await queue.close()

    asyncio.run(_run())
    return queue.get_task(task.id)


def test_results_follow_page_order_under_random_latency(tmp_path, make_pdf, fast_retry):
    task = run_pipeline(tmp_path, StudentEchoBackend(), fast_retry,
                        file_path=make_pdf(6), pages_per_student=1)

    assert task.status == TaskStatus.COMPLETED
    assert task.total_students == 6
    assert task.processed_count == 6
    assert [json.loads(r)["feedback"] for r in task.results] == [f"student {n}" for n in range(1, 7)]


def test_partial_success_is_completed(tmp_path, make_pdf, fast_retry, sleeps):
    task = run_pipeline(tmp_path, StudentEchoBackend(garbage_for={2, 3, 5}), fast_retry,
                        file_path=make_pdf(10), pages_per_student=2)

    assert task.status == TaskStatus.COMPLETED
    assert task.total_students == 5
    assert task.processed_count == 2
    assert [json.loads(r)["feedback"] for r in task.results] == ["student 1", "student 4"]
    assert sleeps.delays == []


def test_every_student_failing_fails_the_task(tmp_path, make_pdf, fast_retry):
    task = run_pipeline(tmp_path, StudentEchoBackend(garbage_for={1, 2}), fast_retry,
                        file_path=make_pdf(2), pages_per_student=1)

    assert task.status == TaskStatus.FAILED
    assert task.error == NO_RESULTS_MESSAGE


def test_split_failure_fails_before_grading(tmp_path, fast_retry):
    bogus = tmp_path / "bogus.pdf"
    bogus.write_bytes(b"")
    task = run_pipeline(tmp_path, StudentEchoBackend(), fast_retry,
                        file_path=str(bogus), pages_per_student=1)

    assert task.status == TaskStatus.FAILED
    assert task.error.startswith("Failed to split PDF")
    assert task.total_students == 0


def test_image_is_graded_directly(tmp_path, make_png, fast_retry):
    task = run_pipeline(tmp_path, MockBackend(), fast_retry,
                        file_path=make_png(), homework_type="english", layout="double")

    assert task.status == TaskStatus.COMPLETED
    assert task.total_students == 1
    assert task.processed_count == 1
    assert len(task.results) == 1
    assert json.loads(task.results[0])["overallScore"] == "85"


def test_direct_grading_failure_is_reported(tmp_path, fast_retry):
    notes = tmp_path / "notes.txt"
    notes.write_text("hello")
    task = run_pipeline(tmp_path, MockBackend(), fast_retry, file_path=str(notes))

    assert task.status == TaskStatus.FAILED
    assert task.error.startswith("Failed to grade file")


def test_mark_homework_grades_single_image(make_png, fast_retry):
    invoker = GradingInvoker(MockBackend(), fast_retry)
    result = asyncio.run(mark_homework(invoker, make_png(), "chinese"))
    assert result.overall_score == "88"


class CrashingBackend(StudentEchoBackend):
    """Raises a plain RuntimeError for the listed students."""

    def __init__(self, crash_for=(), seed=3):
        super().__init__(seed=seed)
        self.crash_for = set(crash_for)

    async def generate(self, system_instruction, file_bytes, mime_type, prompt, timeout=None):
        match = _STUDENT.search(prompt)
        if match and int(match.group(1)) in self.crash_for:
            raise RuntimeError("connection reset by peer")
        return await super().generate(system_instruction, file_bytes, mime_type, prompt, timeout)


def test_unexpected_error_for_one_student_keeps_the_others(tmp_path, make_pdf, fast_retry):
    task = run_pipeline(tmp_path, CrashingBackend(crash_for={2}), fast_retry,
                        file_path=make_pdf(3), pages_per_student=1)

    assert task.status == TaskStatus.COMPLETED
    assert task.total_students == 3
    assert task.processed_count == 2
    assert [json.loads(r)["feedback"] for r in task.results] == ["student 1", "student 3"]

import math
from datetime import datetime, timezone

import pytest

from app.models.task import HomeworkTask, TaskStatus
from app.services.task_status import compute_progress, get_task_status


@pytest.mark.parametrize("processed,total,expected", [
    (0, 0, 0.0),
    (3, 0, 0.0),
    (1, 4, 0.25),
    (4, 4, 1.0),
    (7, 4, 1.0),
    (-1, 4, 0.0),
    (float("nan"), 4, 0.0),
    (float("inf"), 4, 0.0),
])
def test_progress_is_finite_and_clamped(processed, total, expected):
    progress = compute_progress(processed, total)
    assert math.isfinite(progress)
    assert progress == expected


def test_processing_task_reports_partial_results():
    task = HomeworkTask(id="t1", status=TaskStatus.PROCESSING, total_students=4, processed_count=1,
                        results=["", '{"answers": []}', ""])
    status = get_task_status(task)

    assert status["status"] == "processing"
    assert status["progress"] == 0.25
    assert status["processed"] == 1
    assert status["total_students"] == 4
    assert status["partial_results"] == ['{"answers": []}']
    assert "start_time" in status
    assert "results" not in status


def test_completed_task_progress_is_one_even_with_failed_units():
    task = HomeworkTask(id="t2", status=TaskStatus.COMPLETED, total_students=5, processed_count=2,
                        results=["a", "b"], end_time=datetime.now(timezone.utc))
    status = get_task_status(task)

    assert status["progress"] == 1.0
    assert status["results"] == ["a", "b"]
    assert status["end_time"] is not None


def test_failed_task_reports_error():
    task = HomeworkTask(id="t3", status=TaskStatus.FAILED, total_students=5, processed_count=5,
                        error="Failed to split PDF: no pages", end_time=datetime.now(timezone.utc))
    status = get_task_status(task)

    assert status["progress"] == 0.0
    assert status["is_error"] is True
    assert status["error"] == "Failed to split PDF: no pages"
    assert "results" not in status

import asyncio
import io
import json
import time

import fitz
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app.services.llm import MockBackend
from main import create_app


class SlowMockBackend(MockBackend):
    async def generate(self, system_instruction, file_bytes, mime_type, prompt, timeout=None):
        await asyncio.sleep(0.3)
        return await super().generate(system_instruction, file_bytes, mime_type, prompt, timeout)


def pdf_bytes(pages):
    doc = fitz.open()
    for i in range(pages):
        doc.new_page().insert_text((72, 72), f"Page {i + 1}")
    data = doc.tobytes()
    doc.close()
    return data


def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (32, 32), color="white").save(buf, format="PNG")
    return buf.getvalue()


def wait_for_terminal(client, task_id, timeout=10):
    deadline = time.time() + timeout
    while time.time() < deadline:
        body = client.get(f"/api/tasks/{task_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.05)
    raise AssertionError(f"task {task_id} did not finish")


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings, backend=MockBackend())) as c:
        yield c


def test_health_and_version(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert "git_commit" in client.get("/api/version").json()


def test_upload_pdf_is_split_and_graded(client, settings):
    response = client.post(
        "/api/upload/homework",
        files={"file": ("class_3b.pdf", pdf_bytes(4), "application/pdf")},
        data={"type": "math", "layout": "single", "pagesPerStudent": "2"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["task_id"].startswith("task_")

    status = wait_for_terminal(client, body["task_id"])
    assert status["status"] == "completed"
    assert status["total_students"] == 2
    assert status["processed"] == 2
    assert status["progress"] == 1.0
    assert [json.loads(r)["overallScore"] for r in status["results"]] == ["80", "80"]
    assert any(p.name.endswith("_class_3b.pdf") for p in settings.upload_root.iterdir())


def test_upload_image_defaults(client):
    response = client.post("/api/upload/homework", files={"file": ("page.png", png_bytes(), "image/png")})
    status = wait_for_terminal(client, response.json()["task_id"])

    assert status["status"] == "completed"
    assert len(status["results"]) == 1


def test_duplicate_upload_returns_in_flight_task(settings):
    with TestClient(create_app(settings, backend=SlowMockBackend())) as client:
        files = {"file": ("hw.png", png_bytes(), "image/png")}
        first = client.post("/api/upload/homework", files=files).json()
        second = client.post("/api/upload/homework", files=files).json()
        other_params = client.post("/api/upload/homework", files=files, data={"type": "math"}).json()

        assert second["task_id"] == first["task_id"]
        assert other_params["task_id"] != first["task_id"]
        wait_for_terminal(client, first["task_id"])
        wait_for_terminal(client, other_params["task_id"])


def test_upload_rejects_unsupported_type(client):
    response = client.post("/api/upload/homework", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert response.status_code == 400


def test_upload_rejects_oversized_file(settings):
    settings.max_upload_mb = 0
    with TestClient(create_app(settings, backend=MockBackend())) as client:
        response = client.post("/api/upload/homework", files={"file": ("hw.png", png_bytes(), "image/png")})
    assert response.status_code == 400
    assert "too large" in response.json()["detail"]


def test_corrupt_pdf_task_fails_with_message(client):
    response = client.post(
        "/api/upload/homework",
        files={"file": ("broken.pdf", b"%PDF-1.4 garbage", "application/pdf")},
        data={"pagesPerStudent": "1"},
    )
    status = wait_for_terminal(client, response.json()["task_id"])

    assert status["status"] == "failed"
    assert status["is_error"] is True
    assert status["progress"] == 0.0
    assert status["error"].startswith("Failed to split PDF")


def test_unknown_task_is_404(client):
    assert client.get("/api/tasks/task_does_not_exist").status_code == 404


def test_task_counts(client):
    response = client.post("/api/upload/homework", files={"file": ("p.png", png_bytes(), "image/png")})
    wait_for_terminal(client, response.json()["task_id"])

    body = client.get("/api/tasks").json()
    assert body["status"] == "success"
    assert body["counts"]["completed"] >= 1
    assert set(body["counts"]) == {"pending", "processing", "completed", "failed"}


def test_marking_grades_image_synchronously(client):
    response = client.post(
        "/api/marking/homework",
        files={"homework": ("page.png", png_bytes(), "image/png")},
        data={"type": "english", "layout": "double"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["result"]["overallScore"] == "85"
    assert len(body["result"]["answers"]) == 3


def test_marking_rejects_non_image(client):
    response = client.post(
        "/api/marking/homework",
        files={"homework": ("scan.pdf", pdf_bytes(1), "application/pdf")},
    )
    assert response.status_code == 400
    assert response.json()["success"] is False

import fitz
import pytest
from PIL import Image

from app.config import Settings
from app.utils.retry import RetryPolicy


def write_pdf(path, pages, label="Page"):
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page()
        page.insert_text((72, 72), f"{label} {i + 1}")
    doc.save(str(path))
    doc.close()
    return str(path)


class RecordingSleep:
    """Stand-in for asyncio.sleep that only records the requested delays."""

    def __init__(self, on_sleep=None):
        self.delays = []
        self.on_sleep = on_sleep

    async def __call__(self, delay):
        self.delays.append(delay)
        if self.on_sleep is not None:
            self.on_sleep()


@pytest.fixture
def make_pdf(tmp_path):
    def _make(pages, name="homework.pdf"):
        return write_pdf(tmp_path / name, pages)
    return _make


@pytest.fixture
def make_png(tmp_path):
    def _make(name="homework.png"):
        path = tmp_path / name
        Image.new("RGB", (32, 32), color="white").save(path)
        return str(path)
    return _make


@pytest.fixture
def page_texts():
    def _texts(path):
        with fitz.open(path) as doc:
            return [page.get_text().strip() for page in doc]
    return _texts


@pytest.fixture
def recording_sleep():
    return RecordingSleep


@pytest.fixture
def sleeps():
    return RecordingSleep()


@pytest.fixture
def fast_retry(sleeps):
    return RetryPolicy(max_attempts=6, base_delay=0, max_delay=0, jitter=0, sleep=sleeps)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        upload_root=tmp_path / "uploads",
        worker_count=2,
        use_mock_mode=True,
        grading_base_delay=0,
        grading_max_delay=0,
        grading_jitter=0,
        grading_call_timeout=10,
        grading_timeout_step=0,
    )

"""
Configuration - env vars, constants, API key setup.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv
import google.generativeai as genai

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# Logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("homework_grader")

# LLM API Key
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")

if not GEMINI_API_KEY:
    logger.warning("⚠️ No GEMINI_API_KEY found - grading will run against the mock backend")
else:
    genai.configure(api_key=GEMINI_API_KEY)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings, read once from the environment."""
    upload_root: Path = Path("uploads")
    worker_count: int = 5
    queue_capacity: int = 100

    # Grading invoker
    gemini_model: str = "gemini-2.0-flash-001"
    use_mock_mode: bool = False
    grading_max_retries: int = 5
    grading_base_delay: float = 1.0
    grading_max_delay: float = 60.0
    grading_jitter: float = 5.0
    grading_call_timeout: float = 120.0
    grading_timeout_step: float = 30.0
    grading_concurrency: int = 0  # 0 = no cap on in-flight model calls

    # Uploads and splitting
    max_upload_mb: int = 50
    strict_page_count: bool = False

    # Task retention
    task_retention_hours: int = 24
    cleanup_interval_seconds: int = 3600

    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ])

    @property
    def split_root(self) -> Path:
        return self.upload_root / "split"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "Settings":
        cors_origins_env = os.environ.get("CORS_ORIGINS")
        settings = cls(
            upload_root=Path(os.environ.get("UPLOAD_ROOT", "uploads")),
            worker_count=_env_int("WORKER_COUNT", 5),
            queue_capacity=_env_int("QUEUE_CAPACITY", 100),
            gemini_model=os.environ.get("GEMINI_MODEL", "gemini-2.0-flash-001"),
            use_mock_mode=_env_bool("USE_MOCK_MODE"),
            grading_max_retries=_env_int("GRADING_MAX_RETRIES", 5),
            grading_base_delay=_env_float("GRADING_BASE_DELAY", 1.0),
            grading_max_delay=_env_float("GRADING_MAX_DELAY", 60.0),
            grading_jitter=_env_float("GRADING_JITTER", 5.0),
            grading_call_timeout=_env_float("GRADING_CALL_TIMEOUT", 120.0),
            grading_timeout_step=_env_float("GRADING_TIMEOUT_STEP", 30.0),
            grading_concurrency=_env_int("GRADING_CONCURRENCY", 0),
            max_upload_mb=_env_int("MAX_UPLOAD_MB", 50),
            strict_page_count=_env_bool("STRICT_PAGE_COUNT"),
            task_retention_hours=_env_int("TASK_RETENTION_HOURS", 24),
            cleanup_interval_seconds=_env_int("CLEANUP_INTERVAL_SECONDS", 3600),
        )
        if cors_origins_env:
            settings.cors_origins = [origin.strip() for origin in cors_origins_env.split(",")]
        return settings


_settings = None


def get_settings() -> Settings:
    """Process-wide settings, built lazily from the environment."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.info(
            f"Settings loaded: upload_root={_settings.upload_root}, workers={_settings.worker_count}, "
            f"mock_mode={_settings.use_mock_mode}, model={_settings.gemini_model}"
        )
    return _settings


def get_llm_api_key():
    """Get the LLM API key from environment variables."""
    return GEMINI_API_KEY


def get_version_info():
    """Get deployment version information."""
    git_commit = os.environ.get("GIT_COMMIT_SHA")
    if not git_commit:
        try:
            if os.path.exists(".git_commit"):
                with open(".git_commit", "r") as f:
                    git_commit = f.read().strip()
        except OSError:
            pass

    if not git_commit:
        logger.warning("GIT_COMMIT_SHA not set and .git_commit not found. Build pipeline issue?")
        git_commit = "unknown"

    build_time = os.environ.get("BUILD_TIME", "unknown")
    env = os.environ.get("ENV", os.environ.get("ENVIRONMENT", "development"))

    return {
        "git_commit": git_commit,
        "build_time": build_time,
        "environment": env
    }

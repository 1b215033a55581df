"""
Grading service - obtains a structured GradingResult for one file.

Transient model failures are retried through the shared RetryPolicy; safety
rejections fail immediately; the file is re-checked before each replay.
"""

import asyncio
import os
from typing import Optional

from pydantic import ValidationError

from app.config import logger
from app.errors import (
    FileVanished,
    InvalidInput,
    InvalidResponseFormat,
    TransientModelFailure,
)
from app.models.grading import GradingResult
from app.services.file_processing import validate_image_file, validate_pdf_file
from app.services.llm import build_backend
from app.services.prompts import build_text_prompt, get_prompt_for_homework_type, retry_prompt
from app.utils.json_repair import ensure_valid_json, sanitize_utf8
from app.utils.retry import RetryPolicy

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


def detect_mime_type(file_path: str) -> str:
    ext = os.path.splitext(file_path)[1].lower()
    mime_type = MIME_TYPES.get(ext)
    if mime_type is None:
        raise InvalidInput(f"Unsupported file type: {ext or 'none'}")
    return mime_type


def parse_grading_result(raw: str) -> GradingResult:
    """Validate model output against the grading schema, repairing it once if needed."""
    try:
        return GradingResult.model_validate_json(raw)
    except ValidationError as first_error:
        logger.warning(f"Grading output failed validation, attempting repair: {first_error.error_count()} errors")

    repaired = ensure_valid_json(raw)
    if repaired is not None:
        try:
            return GradingResult.model_validate_json(repaired)
        except ValidationError as e:
            logger.error(f"Repaired grading output still invalid: {e.error_count()} errors")

    preview = (raw or "")[:100].replace("\n", " ")
    raise InvalidResponseFormat(f"Could not parse grading result: {preview!r}")


class GradingInvoker:
    """Wraps one grading call to a backend with retry, deadline and validation."""

    def __init__(self, backend, retry_policy: Optional[RetryPolicy] = None,
                 call_timeout: float = 120.0, timeout_step: float = 30.0,
                 max_concurrency: int = 0):
        self.backend = backend
        self.retry_policy = retry_policy or RetryPolicy()
        self.call_timeout = call_timeout
        self.timeout_step = timeout_step
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None

    @classmethod
    def from_settings(cls, settings, backend=None, retry_policy: Optional[RetryPolicy] = None):
        return cls(
            backend=backend or build_backend(settings),
            retry_policy=retry_policy or RetryPolicy.from_settings(settings),
            call_timeout=settings.grading_call_timeout,
            timeout_step=settings.grading_timeout_step,
            max_concurrency=settings.grading_concurrency,
        )

    @staticmethod
    def _read_file(file_path: str) -> bytes:
        with open(file_path, "rb") as f:
            return f.read()

    async def _generate(self, system_instruction, data, mime_type, prompt, timeout):
        if self._semaphore is None:
            return await self.backend.generate(system_instruction, data, mime_type, prompt, timeout)
        async with self._semaphore:
            return await self.backend.generate(system_instruction, data, mime_type, prompt, timeout)

    async def grade_file(self, system_instruction: str, file_path: str, mime_type: str,
                         prompt: str) -> GradingResult:
        """
        Grade ``file_path`` and return the validated result.

        Raises InvalidInput if the file cannot be read up front, FileVanished if
        it disappears between attempts, ContentPolicyRejected on a safety
        refusal, TransientModelFailure once retries are exhausted, and
        InvalidResponseFormat when the answer is not valid grading JSON.
        """
        name = os.path.basename(file_path)
        try:
            payload = {"data": self._read_file(file_path)}
        except OSError as e:
            raise InvalidInput(f"File does not exist or cannot be read: {name}") from e
        if not payload["data"]:
            raise InvalidInput(f"File is empty: {name}")

        system_instruction = sanitize_utf8(system_instruction)
        max_attempts = self.retry_policy.max_attempts
        logger.info(f"Grading {name} ({len(payload['data'])} bytes, {mime_type}) via {getattr(self.backend, 'name', 'backend')}")

        async def call_model(attempt: int) -> str:
            timeout = self.call_timeout + attempt * self.timeout_step
            current_prompt = sanitize_utf8(retry_prompt(prompt, attempt, max_attempts))
            try:
                raw = await asyncio.wait_for(
                    self._generate(system_instruction, payload["data"], mime_type, current_prompt, timeout),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as e:
                raise TransientModelFailure(f"AI call timed out after {timeout:.0f}s") from e
            if not raw or not raw.strip():
                raise TransientModelFailure("AI returned an empty response")
            return raw

        def recheck_file(attempt: int) -> None:
            try:
                payload["data"] = self._read_file(file_path)
            except OSError as e:
                logger.error(f"File check before retry {attempt} failed: {e}")
                raise FileVanished(f"File disappeared before retry: {name}") from e
            if not payload["data"]:
                raise FileVanished(f"File became empty before retry: {name}")

        raw = await self.retry_policy.run(call_model, description=f"grading {name}", before_retry=recheck_file)
        result = parse_grading_result(sanitize_utf8(raw))
        logger.info(f"✅ Graded {name}: {len(result.answers)} answers")
        return result

    async def grade_homework_file(self, file_path: str, homework_type: str = "general",
                                  layout: str = "single", student_label: str = "") -> GradingResult:
        """Pick MIME type, rubric and prompt for ``file_path`` and grade it."""
        mime_type = detect_mime_type(file_path)
        page_count = 1
        if mime_type == "application/pdf":
            page_count = await asyncio.to_thread(validate_pdf_file, file_path)
            if page_count > 1:
                logger.info(f"Multi-page PDF detected: {os.path.basename(file_path)}, {page_count} pages")
        else:
            if not os.path.isfile(file_path):
                raise InvalidInput(f"File does not exist: {os.path.basename(file_path)}")
            await asyncio.to_thread(validate_image_file, file_path)

        system_instruction = get_prompt_for_homework_type(homework_type)
        prompt = build_text_prompt(homework_type, page_count=page_count, layout=layout,
                                   student_label=student_label)
        return await self.grade_file(system_instruction, file_path, mime_type, prompt)

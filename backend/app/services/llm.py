"""
Grading backends: the live Gemini model and a deterministic mock.

Both expose the same coroutine:
    generate(system_instruction, file_bytes, mime_type, prompt, timeout) -> str
and raise ContentPolicyRejected or TransientModelFailure on failure.
"""

import asyncio
import json
from typing import Optional

import google.generativeai as genai

from app.config import logger, get_llm_api_key
from app.errors import ContentPolicyRejected, TransientModelFailure


class GeminiBackend:
    """
    Multimodal grading via the official google-generativeai SDK.

    The SDK call is synchronous, so it runs in the default executor.
    """

    def __init__(self, model_name: str = "gemini-2.0-flash-001", temperature: float = 0.2,
                 top_p: float = 0.8, top_k: int = 40, max_output_tokens: int = 8192):
        self._model_name = model_name
        self._generation_config = {
            "temperature": temperature,
            "top_p": top_p,
            "top_k": top_k,
            "max_output_tokens": max_output_tokens,
        }

    @property
    def name(self) -> str:
        return f"gemini:{self._model_name}"

    def _call(self, system_instruction: str, file_bytes: bytes, mime_type: str, prompt: str,
              timeout: Optional[float]) -> str:
        model = genai.GenerativeModel(
            model_name=self._model_name,
            system_instruction=system_instruction or None,
            generation_config=self._generation_config,
        )
        request_options = {"timeout": timeout} if timeout else None
        try:
            response = model.generate_content(
                [{"mime_type": mime_type, "data": file_bytes}, prompt],
                request_options=request_options,
            )
        except (genai.types.BlockedPromptException, genai.types.StopCandidateException) as e:
            raise ContentPolicyRejected(f"Content rejected by safety policy: {e}") from e
        except Exception as e:
            raise TransientModelFailure(f"AI content generation failed: {type(e).__name__}: {e}") from e

        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", 0):
            raise ContentPolicyRejected(f"Content rejected by safety policy: {feedback.block_reason}")

        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            raise TransientModelFailure("AI returned no candidates")
        finish_reason = getattr(candidates[0], "finish_reason", None)
        if getattr(finish_reason, "name", str(finish_reason)) == "SAFETY":
            raise ContentPolicyRejected("Response stopped by safety policy")

        try:
            text = response.text
        except ValueError as e:
            raise TransientModelFailure(f"AI returned no text content: {e}") from e
        if not text:
            raise TransientModelFailure("AI returned no text content")
        return text

    async def generate(self, system_instruction: str, file_bytes: bytes, mime_type: str, prompt: str,
                       timeout: Optional[float] = None) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, lambda: self._call(system_instruction, file_bytes, mime_type, prompt, timeout)
        )


_MOCK_RESULTS = {
    "english": {
        "answers": [
            {"questionNumber": "1", "studentAnswer": "He is a doctor", "isCorrect": True,
             "explanation": "Correct answer with correct grammar"},
            {"questionNumber": "2", "studentAnswer": "They are student", "isCorrect": False,
             "correctAnswer": "They are students", "explanation": "Plural noun required: students"},
            {"questionNumber": "3", "studentAnswer": "I am 12 years old", "isCorrect": True,
             "explanation": "Age expressed correctly"},
        ],
        "overallScore": "85",
        "feedback": "Most answers are correct. Watch singular and plural noun forms.",
    },
    "math": {
        "answers": [
            {"questionNumber": "1", "studentAnswer": "x = 5", "isCorrect": True,
             "explanation": "Equation solved correctly"},
            {"questionNumber": "2", "studentAnswer": "30 cm²", "isCorrect": False,
             "correctSteps": "Length 4 cm, width 7 cm, area = 4 × 7 = 28 cm²",
             "explanation": "Calculation error: 4 × 7 = 28, not 30"},
            {"questionNumber": "3", "studentAnswer": "64", "isCorrect": True,
             "explanation": "8 squared computed correctly"},
        ],
        "overallScore": "80",
        "feedback": "Concepts are understood; check calculations more carefully.",
    },
    "chinese": {
        "answers": [
            {"questionNumber": "1", "studentAnswer": "春风又绿江南岸，明月何时照我还",
             "evaluation": "Recited correctly with no miswritten characters"},
            {"questionNumber": "2", "studentAnswer": "欲穷千里目，更上一层天",
             "evaluation": "Miswritten character: 天 should be 楼",
             "suggestion": "Recite more carefully"},
        ],
        "overallScore": "88",
        "feedback": "Good overall understanding; recitation needs more accuracy.",
    },
    "general": {
        "answers": [
            {"questionNumber": "1", "studentAnswer": "First answer", "evaluation": "Mostly correct"},
            {"questionNumber": "2", "studentAnswer": "Second answer", "evaluation": "Minor mistakes to fix"},
            {"questionNumber": "3", "studentAnswer": "Third answer", "evaluation": "Fully correct"},
        ],
        "feedback": "Good overall performance; pay attention to details.",
    },
}


class MockBackend:
    """Deterministic canned results keyed on the homework type named in the prompt."""

    name = "mock"

    async def generate(self, system_instruction: str, file_bytes: bytes, mime_type: str, prompt: str,
                       timeout: Optional[float] = None) -> str:
        text = f"{system_instruction}\n{prompt}".lower()
        homework_type = "general"
        for candidate in ("english", "math", "chinese"):
            if candidate in text:
                homework_type = candidate
                break
        logger.info(f"Mock backend returning {homework_type} result ({len(file_bytes)} bytes, {mime_type})")
        return json.dumps(_MOCK_RESULTS[homework_type], ensure_ascii=False)


def build_backend(settings):
    """Mock when requested or when no API key is configured, Gemini otherwise."""
    if settings.use_mock_mode:
        logger.info("Mock mode enabled - grading uses canned results")
        return MockBackend()
    if not get_llm_api_key():
        logger.warning("⚠️ GEMINI_API_KEY missing - falling back to mock grading backend")
        return MockBackend()
    return GeminiBackend(model_name=settings.gemini_model)

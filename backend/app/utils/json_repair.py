"""Best-effort cleanup of model output that should have been a JSON object."""

import json
import re
from typing import Optional

from app.config import logger

_FENCE_START = re.compile(r"^\s*```(?:json|javascript|js)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```\s*$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_UNQUOTED_KEY = re.compile(r'([{,]\s*)([A-Za-z0-9_]+)(\s*:)')
_FLAT_OBJECT = re.compile(r"\{[^{}]*\}")


def sanitize_utf8(text: str) -> str:
    """Drop characters that cannot be encoded as UTF-8 (lone surrogates)."""
    if not text:
        return text
    return text.encode("utf-8", errors="ignore").decode("utf-8")


def strip_code_fences(text: str) -> str:
    if "```" not in text:
        return text.strip()
    text = _FENCE_START.sub("", text)
    text = _FENCE_END.sub("", text)
    return text.strip()


def _loads(text: str) -> Optional[object]:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None


def ensure_valid_json(raw: str) -> Optional[str]:
    """
    Try progressively harder to turn ``raw`` into a JSON object string.

    Returns None when nothing parseable could be recovered.
    """
    if not raw or not raw.strip():
        return None

    text = sanitize_utf8(strip_code_fences(raw))
    if _loads(text) is not None:
        return text

    # Strip leading / trailing chatter around the object
    start = text.find("{")
    end = text.rfind("}")
    if start < 0:
        logger.warning("No JSON object found in model output")
        return None
    text = text[start:end + 1] if end > start else text[start:]

    # Balance braces and brackets the model forgot to close
    missing_brackets = text.count("[") - text.count("]")
    missing_braces = text.count("{") - text.count("}")
    if missing_brackets > 0:
        text += "]" * missing_brackets
    if missing_braces > 0:
        text += "}" * missing_braces

    text = _TRAILING_COMMA.sub(r"\1", text)
    text = _UNQUOTED_KEY.sub(r'\1"\2"\3', text)
    if _loads(text) is not None:
        logger.info(f"Repaired JSON output ({len(text)} chars)")
        return text

    for match in _FLAT_OBJECT.findall(text):
        if _loads(match) is not None:
            logger.info("Recovered a JSON fragment from model output")
            return match

    logger.warning("Could not repair JSON output")
    return None

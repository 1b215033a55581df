"""Hashing utilities for content deduplication."""

import hashlib
import json


def get_bytes_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def get_submission_key(content_hash: str, homework_type: str, layout: str, pages_per_student: int) -> str:
    """Stable key identifying identical content submitted with identical parameters."""
    content = {
        "content": content_hash,
        "type": homework_type,
        "layout": layout,
        "pages_per_student": pages_per_student,
    }
    return hashlib.sha256(json.dumps(content, sort_keys=True).encode()).hexdigest()

"""
Sanitizers for values that end up in storage keys and visualization records.

All helpers return None for values that carry nothing usable, so callers can
drop the field instead of storing an empty string.
"""

import random
import re
import string
import time
from typing import Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_UNSAFE_SEGMENT_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_JOB_ID = re.compile(r"^[A-Za-z0-9._-]+$")

MAX_PATH_SEGMENT = 128
MAX_RECORD_ID = 80
MAX_JOB_ID = 200
MAX_URL = 4000
MAX_INPUT_TEXT = 50000


def safe_path_segment(value) -> str:
    """Object key segment: unsafe characters become underscores."""
    cleaned = _UNSAFE_SEGMENT_CHARS.sub("_", str(value or ""))[:MAX_PATH_SEGMENT]
    return cleaned or "unknown"


def sanitize_text(value, max_length: Optional[int] = None) -> Optional[str]:
    """Replace control characters (tab and newlines are kept) and trim."""
    if not isinstance(value, str):
        return None
    cleaned = _CONTROL_CHARS.sub(" ", value).strip()
    if max_length is not None:
        cleaned = cleaned[:max_length].rstrip()
    return cleaned or None


def sanitize_url(value) -> Optional[str]:
    """Only absolute http(s) URLs are stored."""
    cleaned = sanitize_text(value)
    if not cleaned or len(cleaned) > MAX_URL:
        return None
    if not cleaned.lower().startswith(("http://", "https://")):
        return None
    if any(ch.isspace() for ch in cleaned):
        return None
    return cleaned


def sanitize_job_id(value) -> Optional[str]:
    cleaned = sanitize_text(value)
    if not cleaned or len(cleaned) > MAX_JOB_ID or not _JOB_ID.match(cleaned):
        return None
    return cleaned


def sanitize_record_id(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = _UNSAFE_SEGMENT_CHARS.sub("_", value.strip())[:MAX_RECORD_ID]
    return cleaned or None


def new_record_id() -> str:
    """``{epoch_ms}_{6 random base36 chars}``"""
    alphabet = string.digits + string.ascii_lowercase
    suffix = "".join(random.choice(alphabet) for _ in range(6))
    return f"{int(time.time() * 1000)}_{suffix}"

"""
Error model shared by every stage of the pipeline.

Errors are raised as GenerationError subclasses inside a stage and converted
into ErrorDetail values at asset boundaries, so one kind's failure never
propagates into another kind.
"""

import random
import re
import string
import time
from dataclasses import dataclass
from typing import Optional

# Codes that end in an HTTP status worth retrying: _429 or _5xx
_TRANSIENT_STATUS_SUFFIX = re.compile(r"_(429|5\d\d)$")
# An open breaker rejects the call before it reaches the provider
_TRANSIENT_SUFFIXES = ("_NETWORK_ERROR", "_TIMEOUT", "_CIRCUIT_OPEN")


def is_retryable_status(status_code: int) -> bool:
    """429 and every 5xx are worth one more attempt."""
    return status_code == 429 or 500 <= status_code <= 599


def is_transient_code(code: Optional[str]) -> bool:
    """
    Classify an error code as transient.

    Transient codes denote a network failure or an open circuit breaker,
    or end in a retryable HTTP status (e.g. ``VIDEO_STATUS_503``).
    Everything else is terminal.
    """
    if not code:
        return False
    upper = code.upper()
    if upper in ("NETWORK_ERROR", "TIMEOUT") or upper.endswith(_TRANSIENT_SUFFIXES):
        return True
    return bool(_TRANSIENT_STATUS_SUFFIX.search(upper))


def _base36_suffix(length: int = 6) -> str:
    alphabet = string.digits + string.ascii_lowercase
    return "".join(random.choice(alphabet) for _ in range(length))


def new_correlation_id(prefix: str = "gen") -> str:
    """Correlation id handed to users for support triage."""
    return f"{prefix}_{int(time.time() * 1000)}_{_base36_suffix()}"


@dataclass(frozen=True)
class ErrorDetail:
    """Failure attached to a single asset kind."""
    code: str
    message: str
    correlation_id: str

    @property
    def is_transient(self) -> bool:
        return is_transient_code(self.code)

    def user_message(self, kind: str) -> str:
        """One human-readable line for the user, including the support reference."""
        return f"{kind.capitalize()} generation failed: {self.message} (ref: {self.correlation_id})"

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "correlation_id": self.correlation_id,
        }


class GenerationError(Exception):
    """Base error for the visualization pipeline."""

    def __init__(
        self,
        message: str,
        code: str,
        correlation_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.correlation_id = correlation_id or new_correlation_id()
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        return is_transient_code(self.code)

    def to_detail(self) -> ErrorDetail:
        return ErrorDetail(
            code=self.code,
            message=self.message,
            correlation_id=self.correlation_id,
        )


class InputError(GenerationError):
    """Invalid request. Never retried, never sent to a provider."""


class ProviderError(GenerationError):
    """A generation provider call failed."""


class UploadError(GenerationError):
    """An asset upload path failed."""


class RecordError(GenerationError):
    """A visualization record could not be read or written."""

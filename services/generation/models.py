"""
Generation data model.

Requests, per-kind outcomes and the aggregated GenerationResult. Provider
specific strings never appear here; leaf generators normalize them into the
enums below before returning.
"""

import base64
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from core.errors import ErrorDetail, InputError


class AssetKind(str, Enum):
    """Independently generated pieces of a visualization."""
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


# Fixed invocation order: audio reads the text output
KIND_ORDER = (AssetKind.TEXT, AssetKind.IMAGE, AssetKind.AUDIO, AssetKind.VIDEO)


class AssetStatus(str, Enum):
    IDLE = "idle"
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"  # video only, job still running


class ImageQuality(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"


class VideoJobStatus(str, Enum):
    """Closed set of video job states."""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def from_provider(cls, raw: Optional[str]) -> "VideoJobStatus":
        """Normalize a provider status string."""
        status_map = {
            "queued": cls.QUEUED,
            "pending": cls.QUEUED,
            "submitted": cls.QUEUED,
            "in_progress": cls.IN_PROGRESS,
            "processing": cls.IN_PROGRESS,
            "running": cls.IN_PROGRESS,
            "generating": cls.IN_PROGRESS,
            "completed": cls.COMPLETED,
            "succeeded": cls.COMPLETED,
            "success": cls.COMPLETED,
            "done": cls.COMPLETED,
            "failed": cls.FAILED,
            "error": cls.FAILED,
            "cancelled": cls.FAILED,
            "canceled": cls.FAILED,
        }
        key = (raw or "").strip().lower().replace("-", "_").replace(" ", "_")
        return status_map.get(key, cls.UNKNOWN)

    @property
    def is_terminal(self) -> bool:
        return self in (VideoJobStatus.COMPLETED, VideoJobStatus.FAILED)


@dataclass(frozen=True)
class InlinePayload:
    """Generated bytes returned directly by a provider, not yet stored."""
    data: bytes
    content_type: str

    @classmethod
    def from_data_url(cls, data_url: str) -> Optional["InlinePayload"]:
        """Parse ``data:<mime>;base64,<data>``; None when malformed."""
        if not data_url.startswith("data:") or ";base64," not in data_url:
            return None
        header, _, encoded = data_url.partition(";base64,")
        content_type = header[len("data:"):]
        try:
            data = base64.b64decode(encoded, validate=True)
        except ValueError:
            return None
        if not content_type or not data:
            return None
        return cls(data=data, content_type=content_type)

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"

    def __repr__(self) -> str:
        return f"InlinePayload(content_type={self.content_type!r}, size={len(self.data)})"


@dataclass(frozen=True)
class HostedPayload:
    """Generated asset already reachable at a URL."""
    url: str


MediaPayload = Union[InlinePayload, HostedPayload]
AssetPayload = Union[str, InlinePayload, HostedPayload]


@dataclass
class Profile:
    """Descriptor of the person the visualization depicts."""
    name: Optional[str] = None
    age: Optional[int] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    user_id: Optional[str] = None

    def describe(self) -> str:
        if not self.name:
            return "A determined person"
        description = self.name
        if self.age:
            description += f", a {self.age}yo person"
        if self.location:
            description += f" in {self.location}"
        return description

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Profile"]:
        if not data:
            return None
        return cls(
            name=data.get("name"),
            age=data.get("age"),
            location=data.get("location"),
            bio=data.get("bio"),
            user_id=data.get("user_id") or data.get("googleId"),
        )


@dataclass
class GenerationRequest:
    """One user request for a visualization."""
    prompt: str
    enabled_kinds: frozenset = field(
        default_factory=lambda: frozenset({AssetKind.TEXT, AssetKind.IMAGE, AssetKind.AUDIO})
    )
    reference_images: list = field(default_factory=list)
    profile: Optional[Profile] = None
    image_quality: ImageQuality = ImageQuality.MEDIUM
    video_duration_seconds: int = 4

    # Each attempt carries its own identifier
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self.enabled_kinds = frozenset(AssetKind(kind) for kind in self.enabled_kinds)
        self.image_quality = ImageQuality(self.image_quality)

    def validate(self, max_reference_images: int = 3):
        """Raise InputError for requests that must never reach a provider."""
        if not self.prompt or not self.prompt.strip():
            raise InputError("Prompt must not be empty", code="EMPTY_PROMPT")
        if not self.enabled_kinds:
            raise InputError("At least one asset kind must be enabled", code="NO_KINDS_ENABLED")
        if len(self.reference_images) > max_reference_images:
            raise InputError(
                f"At most {max_reference_images} reference images are allowed",
                code="TOO_MANY_REFERENCE_IMAGES",
            )
        for image in self.reference_images:
            if not isinstance(image, (InlinePayload, HostedPayload)):
                raise InputError("Reference images must be image payloads", code="INVALID_REFERENCE_IMAGE")

    @property
    def ordered_kinds(self) -> list[AssetKind]:
        return [kind for kind in KIND_ORDER if kind in self.enabled_kinds]


@dataclass
class AssetOutcome:
    """Status of one kind within a GenerationResult."""
    status: AssetStatus
    payload: Optional[AssetPayload] = None
    error: Optional[ErrorDetail] = None

    # Video only: job handle kept so the record can be resumed later
    job_id: Optional[str] = None
    job_status: Optional[VideoJobStatus] = None

    @classmethod
    def completed(cls, payload: AssetPayload, job_id: Optional[str] = None) -> "AssetOutcome":
        return cls(
            status=AssetStatus.COMPLETED,
            payload=payload,
            job_id=job_id,
            job_status=VideoJobStatus.COMPLETED if job_id else None,
        )

    @classmethod
    def failed(cls, error: ErrorDetail, job_id: Optional[str] = None) -> "AssetOutcome":
        return cls(
            status=AssetStatus.FAILED,
            error=error,
            job_id=job_id,
            job_status=VideoJobStatus.FAILED if job_id else None,
        )

    @classmethod
    def pending(cls, job_id: str, job_status: VideoJobStatus) -> "AssetOutcome":
        return cls(status=AssetStatus.PENDING, job_id=job_id, job_status=job_status)


@dataclass
class GenerationResult:
    """Per-attempt aggregate. Never stored as-is."""
    request_id: str
    input_text: str
    outcomes: dict = field(default_factory=dict)

    def set(self, kind: AssetKind, outcome: AssetOutcome):
        self.outcomes[AssetKind(kind)] = outcome

    def get(self, kind: AssetKind) -> Optional[AssetOutcome]:
        return self.outcomes.get(AssetKind(kind))

    def status_map(self) -> dict[AssetKind, AssetStatus]:
        return {kind: outcome.status for kind, outcome in self.outcomes.items()}

    @property
    def text(self) -> Optional[str]:
        outcome = self.get(AssetKind.TEXT)
        if outcome and outcome.status == AssetStatus.COMPLETED and isinstance(outcome.payload, str):
            return outcome.payload
        return None

    def failures(self) -> dict[AssetKind, ErrorDetail]:
        return {
            kind: outcome.error
            for kind, outcome in self.outcomes.items()
            if outcome.status == AssetStatus.FAILED and outcome.error is not None
        }

    @property
    def has_pending_video(self) -> bool:
        outcome = self.get(AssetKind.VIDEO)
        return outcome is not None and outcome.status == AssetStatus.PENDING

    def messages(self) -> list[str]:
        """Human readable lines: one per failed kind, plus a pending video hint."""
        lines = [error.user_message(kind.value) for kind, error in self.failures().items()]
        if self.has_pending_video:
            lines.append(
                "Video is still being generated. Save now and use 'check now' to fetch it later."
            )
        return lines


@dataclass
class VideoJob:
    """
    State of one video generation job.

    ``result`` is set exactly when the job is completed. A job completed
    inline at creation may have no job id.
    """
    status: VideoJobStatus
    job_id: Optional[str] = None
    result: Optional[MediaPayload] = None
    error: Optional[ErrorDetail] = None
    request_id: Optional[str] = None

    def __post_init__(self):
        self.status = VideoJobStatus(self.status)
        if self.status == VideoJobStatus.COMPLETED and self.result is None:
            raise ValueError("completed video job requires a result")
        if self.status != VideoJobStatus.COMPLETED and self.result is not None:
            raise ValueError(f"{self.status.value} video job must not carry a result")

    @property
    def result_url(self) -> Optional[str]:
        if isinstance(self.result, HostedPayload):
            return self.result.url
        return None

    @property
    def is_pending(self) -> bool:
        return not self.status.is_terminal

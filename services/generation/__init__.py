"""
Generation Service

Leaf generators for text, image and speech, the shared data model, and the
orchestrator that runs the enabled kinds of one request in order.
"""

from .image import ImageGenerator
from .models import (
    AssetKind,
    AssetOutcome,
    AssetStatus,
    GenerationRequest,
    GenerationResult,
    HostedPayload,
    ImageQuality,
    InlinePayload,
    Profile,
    VideoJob,
    VideoJobStatus,
)
from .orchestrator import GenerationOrchestrator, video_outcome
from .speech import SpeechGenerator
from .text import TextGenerator

__all__ = [
    "AssetKind",
    "AssetOutcome",
    "AssetStatus",
    "GenerationOrchestrator",
    "GenerationRequest",
    "GenerationResult",
    "HostedPayload",
    "ImageGenerator",
    "ImageQuality",
    "InlinePayload",
    "Profile",
    "SpeechGenerator",
    "TextGenerator",
    "VideoJob",
    "VideoJobStatus",
    "video_outcome",
]

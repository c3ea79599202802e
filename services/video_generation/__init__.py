"""
Video Generation Service

Submits video jobs, polls them within a bounded budget and hands back
either a finished video or a job id that can be resumed later.

All provider calls go through the video circuit breaker.
"""

from .client import (
    VideoJobController,
    VideoJobResult,
    VideoStatusPayload,
    build_video_prompt,
)

__all__ = [
    "VideoJobController",
    "VideoJobResult",
    "VideoStatusPayload",
    "build_video_prompt",
]

"""
Generation Orchestrator

Runs the enabled asset kinds of one request in the fixed order
text -> image -> audio -> video and collects one AssetOutcome per kind.

A failure in one kind never stops the next one. The orchestrator performs
no retries of its own; each leaf generator owns its retry policy.
"""

import logging
from typing import Awaitable, Callable, Optional

from core.config import Config, get_config
from core.errors import ErrorDetail, new_correlation_id

from .image import ImageGenerator
from .models import (
    AssetKind,
    AssetOutcome,
    GenerationRequest,
    GenerationResult,
    VideoJob,
    VideoJobStatus,
)
from .speech import SpeechGenerator
from .text import TextGenerator

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, str], None]


class GenerationOrchestrator:
    """
    Sequential multi-asset generation.

    Usage:
        orchestrator = GenerationOrchestrator(text, image, speech, video)

        request = GenerationRequest(
            prompt="Run my first marathon",
            enabled_kinds={"text", "image", "audio"},
        )
        result = await orchestrator.generate(request)
        print(result.status_map())
    """

    def __init__(
        self,
        text: TextGenerator,
        image: ImageGenerator,
        speech: SpeechGenerator,
        video=None,
        config: Optional[Config] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        """
        Args:
            text, image, speech: Leaf generators
            video: VideoJobController, required only when video is requested
            config: Optional config override
            on_progress: Callback for progress updates (request_id, percent, message)
        """
        self.text = text
        self.image = image
        self.speech = speech
        self.video = video
        self.config = config or get_config()
        self.on_progress = on_progress

        self.steps: dict[AssetKind, Callable[..., Awaitable[AssetOutcome]]] = {
            AssetKind.TEXT: self._run_text,
            AssetKind.IMAGE: self._run_image,
            AssetKind.AUDIO: self._run_audio,
            AssetKind.VIDEO: self._run_video,
        }

    def _emit_progress(self, request_id: str, percent: int, message: str):
        """Emit progress update via callback."""
        if self.on_progress:
            try:
                self.on_progress(request_id, percent, message)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    async def _run_text(self, request: GenerationRequest, result: GenerationResult, owner_id: Optional[str]) -> AssetOutcome:
        return await self.text.generate(request.prompt, profile=request.profile)

    async def _run_image(self, request: GenerationRequest, result: GenerationResult, owner_id: Optional[str]) -> AssetOutcome:
        return await self.image.generate(
            request.prompt,
            reference_images=request.reference_images,
            profile=request.profile,
            quality=request.image_quality,
        )

    async def _run_audio(self, request: GenerationRequest, result: GenerationResult, owner_id: Optional[str]) -> AssetOutcome:
        # Narrate the generated text when there is one
        return await self.speech.generate(result.text or request.prompt)

    async def _run_video(self, request: GenerationRequest, result: GenerationResult, owner_id: Optional[str]) -> AssetOutcome:
        if self.video is None:
            return AssetOutcome.failed(ErrorDetail(
                code="VIDEO_UNAVAILABLE",
                message="Video generation is not configured",
                correlation_id=new_correlation_id(AssetKind.VIDEO.value),
            ))

        job = await self.video.generate_video(request, owner_id=owner_id)
        return video_outcome(job)

    async def generate(self, request: GenerationRequest, owner_id: Optional[str] = None) -> GenerationResult:
        """
        Generate every enabled kind.

        Raises:
            InputError: The request is invalid; no provider was called.
        """
        request.validate(max_reference_images=self.config.generation.max_reference_images)

        kinds = request.ordered_kinds
        result = GenerationResult(request_id=request.request_id, input_text=request.prompt)
        logger.info(f"Starting generation {request.request_id}: {[k.value for k in kinds]}")
        self._emit_progress(request.request_id, 0, "Starting generation")

        for index, kind in enumerate(kinds):
            self._emit_progress(request.request_id, index * 100 // len(kinds), f"Generating {kind.value}")
            try:
                outcome = await self.steps[kind](request, result, owner_id)
            except Exception as e:
                correlation_id = new_correlation_id(kind.value)
                logger.exception(f"Unexpected error generating {kind.value} ({correlation_id})")
                outcome = AssetOutcome.failed(ErrorDetail(
                    code=f"{kind.value.upper()}_UNEXPECTED_ERROR",
                    message=f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                    correlation_id=correlation_id,
                ))
            result.set(kind, outcome)
            logger.info(f"{kind.value}: {outcome.status.value}")

        self._emit_progress(request.request_id, 100, "Generation complete")
        return result


def video_outcome(job) -> AssetOutcome:
    """Map a video job (or the error that ended it) onto an AssetOutcome."""
    if isinstance(job, ErrorDetail):
        return AssetOutcome.failed(job)

    if not isinstance(job, VideoJob):
        raise TypeError(f"Unexpected video job result: {type(job).__name__}")

    if job.status == VideoJobStatus.COMPLETED:
        return AssetOutcome.completed(job.result, job_id=job.job_id)

    if job.status == VideoJobStatus.FAILED:
        error = job.error or ErrorDetail(
            code="VIDEO_JOB_FAILED",
            message="Video generation failed",
            correlation_id=new_correlation_id(AssetKind.VIDEO.value),
        )
        return AssetOutcome.failed(error, job_id=job.job_id)

    return AssetOutcome.pending(job.job_id, job.status)

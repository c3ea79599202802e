"""
Video Job Controller

Video generation is asynchronous on the provider side:
- create: submit the prompt, get a job id (or, rarely, a finished video)
- poll: one status check; a completed job without an embedded video
  needs a second call for the mp4
- generate_video: create, then poll every 5s for at most 45s of wall clock

A job that is still running when the budget runs out is returned as
queued / in_progress with its job id so the caller can persist it and
resume later. Running out of budget is never a failure.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from core.errors import ErrorDetail, ProviderError
from services.generation.base import ProviderCall
from services.generation.models import (
    AssetKind,
    GenerationRequest,
    HostedPayload,
    InlinePayload,
    MediaPayload,
    Profile,
    VideoJob,
    VideoJobStatus,
)

logger = logging.getLogger(__name__)

VIDEO_CONTENT_TYPE = "video/mp4"

VideoJobResult = Union[VideoJob, ErrorDetail]


class VideoStatusPayload(BaseModel):
    """Body of a create or status response, across provider field spellings."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "jobId", "job_id"))
    status: Optional[str] = None
    video_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("videoUrl", "video_url", "url")
    )
    video_base64: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("videoBase64", "video_base64", "b64_json")
    )
    video: Optional[dict] = None
    error_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("errorCode", "error_code"))
    error_message: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("errorMessage", "error_message")
    )
    request_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("requestId", "request_id"))
    error: Optional[Any] = None

    def hosted_url(self) -> Optional[str]:
        url = self.video_url or (self.video or {}).get("url")
        if url and url.startswith(("http://", "https://")):
            return url
        return None

    def inline_result(self) -> Optional[InlinePayload]:
        """Video bytes embedded in the body, as a data URL or raw base64."""
        url = self.video_url or (self.video or {}).get("url")
        if url and url.startswith("data:"):
            return InlinePayload.from_data_url(url)
        if self.video_base64:
            return InlinePayload.from_data_url(f"data:{VIDEO_CONTENT_TYPE};base64,{self.video_base64}")
        return None

    def finished_result(self) -> Optional[MediaPayload]:
        inline = self.inline_result()
        if inline is not None:
            return inline
        url = self.hosted_url()
        return HostedPayload(url=url) if url else None

    def failure(self) -> tuple[str, str]:
        """Provider failure code and message, with defaults."""
        code = self.error_code
        message = self.error_message
        if isinstance(self.error, dict):
            code = code or self.error.get("code")
            message = message or self.error.get("message")
        elif isinstance(self.error, str):
            message = message or self.error
        return code or "VIDEO_JOB_FAILED", message or "Video generation failed"


def build_video_prompt(aspiration: str, profile: Optional[Profile]) -> str:
    person = (profile.name if profile and profile.name else None) or "A person"
    return f"Cinematic movie scene of {person} achieving: {aspiration}. High quality, photorealistic, 4k."


class VideoJobController(ProviderCall):
    """
    Drives one video job from submission to a terminal or resumable state.

    Usage:
        controller = VideoJobController(http_client)

        job = await controller.generate_video(request, owner_id="user-1")
        if isinstance(job, ErrorDetail):
            ...  # failed before or while polling
        elif job.is_pending:
            ...  # persist job.job_id and resume later
    """

    kind = AssetKind.VIDEO
    error_prefix = "VIDEO"

    def __init__(
        self,
        http_client,
        config=None,
        breaker=None,
        sleep=asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(http_client, config=config, breaker=breaker, sleep=sleep)
        self._clock = clock

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.config.api.video_key()}"}

    def _parse(self, data: dict, correlation_id: str) -> VideoStatusPayload:
        try:
            return VideoStatusPayload.model_validate(data)
        except ValidationError as e:
            raise self._error("MALFORMED_RESPONSE", f"Unexpected video payload: {e.error_count()} errors", correlation_id)

    async def create(self, request: GenerationRequest, owner_id: Optional[str] = None) -> VideoJobResult:
        """
        Submit a video job.

        Returns:
            A completed VideoJob when the provider answered with the video,
            a queued/in_progress VideoJob with its id otherwise, or an
            ErrorDetail when submission failed.
        """
        correlation_id = self.new_correlation_id()
        base = self.config.api.video_base()
        fields = {
            "model": self.config.models.video_model,
            "prompt": build_video_prompt(request.prompt, request.profile),
            "seconds": str(self.config.clamp_video_duration(request.video_duration_seconds)),
            "size": self.config.models.video_size,
        }
        if owner_id:
            fields["owner_id"] = owner_id

        reference = request.reference_images[0] if request.reference_images else None
        if isinstance(reference, HostedPayload):
            fields["input_reference_url"] = reference.url

        try:
            if isinstance(reference, InlinePayload):
                extension = reference.content_type.split("/")[-1] or "png"
                response = await self.request(
                    "POST",
                    f"{base}/videos",
                    correlation_id=correlation_id,
                    data=fields,
                    files={"input_reference": (f"reference.{extension}", reference.data, reference.content_type)},
                    headers=self._headers(),
                )
            else:
                response = await self.request(
                    "POST",
                    f"{base}/videos",
                    correlation_id=correlation_id,
                    json=fields,
                    headers=self._headers(),
                )
            payload = self._parse(self._json(response, correlation_id), correlation_id)
        except ProviderError as e:
            logger.error(f"Video job submission failed [{e.code}] {e.message} ({e.correlation_id})")
            return e.to_detail()

        status = VideoJobStatus.from_provider(payload.status)
        finished = payload.finished_result()
        if finished is not None:
            logger.info("Video returned inline at submission, no polling needed")
            return VideoJob(
                status=VideoJobStatus.COMPLETED,
                job_id=payload.id,
                result=finished,
                request_id=payload.request_id,
            )

        if status == VideoJobStatus.FAILED:
            code, message = payload.failure()
            return VideoJob(
                status=VideoJobStatus.FAILED,
                job_id=payload.id,
                error=ErrorDetail(code=code, message=message, correlation_id=correlation_id),
                request_id=payload.request_id,
            )

        if not payload.id:
            logger.error(f"Video submission returned no job id ({correlation_id})")
            return ErrorDetail(
                code="VIDEO_ID_MISSING",
                message="Provider did not return a video job id",
                correlation_id=correlation_id,
            )

        # Completed without a body means the content endpoint has it
        if status in (VideoJobStatus.UNKNOWN, VideoJobStatus.COMPLETED):
            status = VideoJobStatus.QUEUED if status == VideoJobStatus.UNKNOWN else VideoJobStatus.IN_PROGRESS

        logger.info(f"Video job created: {payload.id} ({status.value})")
        return VideoJob(status=status, job_id=payload.id, request_id=payload.request_id)

    async def _fetch_content(self, job_id: str, correlation_id: str) -> InlinePayload:
        response = await self.request(
            "GET",
            f"{self.config.api.video_base()}/videos/{job_id}/content",
            correlation_id=correlation_id,
            max_retries=0,
            headers=self._headers(),
        )
        if not response.content:
            raise self._error("EMPTY_RESPONSE", "Video content was empty", correlation_id)
        content_type = response.headers.get("content-type", VIDEO_CONTENT_TYPE).split(";")[0]
        if not content_type.startswith("video/"):
            content_type = VIDEO_CONTENT_TYPE
        return InlinePayload(data=response.content, content_type=content_type)

    async def poll(
        self,
        job_id: str,
        owner_id: Optional[str] = None,
        expected_duration_seconds: Optional[int] = None,
    ) -> VideoJobResult:
        """
        Check a job once.

        Returns a VideoJob for every state the provider reports, or an
        ErrorDetail when the status check itself failed. A completed job
        whose content cannot be fetched is reported as in_progress.
        """
        correlation_id = self.new_correlation_id()
        params = {}
        if owner_id:
            params["owner_id"] = owner_id
        if expected_duration_seconds:
            params["expected_duration_seconds"] = str(expected_duration_seconds)

        try:
            response = await self.request(
                "GET",
                f"{self.config.api.video_base()}/videos/{job_id}",
                correlation_id=correlation_id,
                max_retries=0,
                params=params,
                headers=self._headers(),
            )
            payload = self._parse(self._json(response, correlation_id), correlation_id)
        except ProviderError as e:
            logger.warning(f"Video status check failed for {job_id} [{e.code}] ({e.correlation_id})")
            return e.to_detail()

        status = VideoJobStatus.from_provider(payload.status)

        if status == VideoJobStatus.FAILED:
            code, message = payload.failure()
            logger.error(f"Video job {job_id} failed [{code}] {message}")
            return VideoJob(
                status=VideoJobStatus.FAILED,
                job_id=job_id,
                error=ErrorDetail(code=code, message=message, correlation_id=payload.request_id or correlation_id),
                request_id=payload.request_id,
            )

        if status != VideoJobStatus.COMPLETED:
            return VideoJob(status=status, job_id=job_id, request_id=payload.request_id)

        result = payload.finished_result()
        if result is None:
            try:
                result = await self._fetch_content(job_id, correlation_id)
            except ProviderError as e:
                # The job itself finished; keep it resumable until the content is readable
                logger.warning(f"Video content fetch failed for {job_id} [{e.code}] ({e.correlation_id}), keeping it pending")
                return VideoJob(status=VideoJobStatus.IN_PROGRESS, job_id=job_id, request_id=payload.request_id)

        logger.info(f"Video job {job_id} completed")
        return VideoJob(
            status=VideoJobStatus.COMPLETED,
            job_id=job_id,
            result=result,
            request_id=payload.request_id,
        )

    async def generate_video(self, request: GenerationRequest, owner_id: Optional[str] = None) -> VideoJobResult:
        """Create a job and poll it within the wall-clock budget."""
        created = await self.create(request, owner_id=owner_id)
        if isinstance(created, ErrorDetail) or created.status.is_terminal:
            return created

        gen = self.config.generation
        duration = self.config.clamp_video_duration(request.video_duration_seconds)
        job_id = created.job_id
        last = created
        deadline = self._clock() + gen.video_poll_budget_seconds
        polls = 0

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(gen.video_poll_interval_seconds, remaining))
            polls += 1

            polled = await self.poll(job_id, owner_id=owner_id, expected_duration_seconds=duration)

            if isinstance(polled, ErrorDetail):
                if polled.is_transient:
                    continue
                return polled

            if polled.status == VideoJobStatus.COMPLETED:
                return polled
            if polled.status == VideoJobStatus.FAILED:
                if polled.error is not None and polled.error.is_transient:
                    logger.warning(f"Video job {job_id} reported transient failure [{polled.error.code}], still polling")
                    continue
                return polled

            logger.info(f"Video job {job_id} poll {polls}: {polled.status.value}")
            last = polled

        status = last.status
        if status not in (VideoJobStatus.QUEUED, VideoJobStatus.IN_PROGRESS):
            status = VideoJobStatus.IN_PROGRESS
        logger.info(f"Video job {job_id} still {status.value} after {polls} polls, leaving it pending")
        return VideoJob(status=status, job_id=job_id, request_id=last.request_id)

"""
Record Store - PostgreSQL persistence for visualizations.

A visualization record is created at first save and afterwards changes only
when an asset is promoted or when a pending video job is resumed.

Video status rules:
- ready: video_url is set (the job id is kept)
- pending: video_job_id is set, video_url is not
- failed: the job failed or its result could not be stored
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import asyncpg
from pydantic import BaseModel, ValidationError, field_validator, model_validator

from core.errors import ErrorDetail, RecordError, new_correlation_id
from services.generation.models import (
    AssetKind,
    AssetStatus,
    GenerationResult,
    HostedPayload,
    VideoJob,
    VideoJobStatus,
)

from .assets import PersistedAssets
from .sanitize import (
    MAX_INPUT_TEXT,
    new_record_id,
    sanitize_job_id,
    sanitize_record_id,
    sanitize_text,
    sanitize_url,
)

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS visualizations (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    input_text TEXT NOT NULL,
    text TEXT,
    image_url TEXT,
    audio_url TEXT,
    video_url TEXT,
    video_job_id TEXT,
    video_status TEXT CHECK (video_status IN ('pending', 'ready', 'failed')),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_visualizations_owner_created
    ON visualizations (owner_id, created_at DESC);

CREATE INDEX IF NOT EXISTS idx_visualizations_pending_video
    ON visualizations (video_status) WHERE video_status = 'pending';
"""


class VideoRecordStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Visualization(BaseModel):
    """A stored visualization. Fields are sanitized on construction."""

    id: str
    owner_id: str
    input_text: str
    text: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    video_job_id: Optional[str] = None
    video_status: Optional[VideoRecordStatus] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("id", mode="before")
    @classmethod
    def _clean_id(cls, value):
        cleaned = sanitize_record_id(value)
        if cleaned is None:
            raise ValueError("record id is empty")
        return cleaned

    @field_validator("owner_id", mode="before")
    @classmethod
    def _clean_owner(cls, value):
        cleaned = sanitize_text(value, max_length=128)
        if cleaned is None:
            raise ValueError("owner id is empty")
        return cleaned

    @field_validator("input_text", mode="before")
    @classmethod
    def _clean_input_text(cls, value):
        cleaned = sanitize_text(value, max_length=MAX_INPUT_TEXT)
        if cleaned is None:
            raise ValueError("input text is empty")
        return cleaned

    @field_validator("text", mode="before")
    @classmethod
    def _clean_text(cls, value):
        return sanitize_text(value)

    @field_validator("image_url", "audio_url", "video_url", mode="before")
    @classmethod
    def _clean_url(cls, value):
        return sanitize_url(value)

    @field_validator("video_job_id", mode="before")
    @classmethod
    def _clean_job_id(cls, value):
        return sanitize_job_id(value)

    @model_validator(mode="after")
    def _check_video_state(self):
        if self.video_status == VideoRecordStatus.READY and not self.video_url:
            raise ValueError("ready video requires video_url")
        if self.video_status == VideoRecordStatus.PENDING:
            if not self.video_job_id:
                raise ValueError("pending video requires video_job_id")
            if self.video_url:
                raise ValueError("pending video must not have video_url")
        return self

    @classmethod
    def from_row(cls, row) -> "Visualization":
        return cls.model_validate(dict(row))

    def with_changes(self, **changes) -> "Visualization":
        """Validated copy with ``updated_at`` bumped."""
        data = self.model_dump()
        data.update(changes)
        data["updated_at"] = _now()
        return Visualization.model_validate(data)


def _hosted_urls(result: GenerationResult) -> dict:
    urls = {}
    for kind in (AssetKind.IMAGE, AssetKind.AUDIO, AssetKind.VIDEO):
        outcome = result.get(kind)
        if outcome and outcome.status == AssetStatus.COMPLETED and isinstance(outcome.payload, HostedPayload):
            urls[kind] = outcome.payload.url
    return urls


def build_record(
    result: GenerationResult,
    owner_id: str,
    persisted: Optional[PersistedAssets] = None,
    record_id: Optional[str] = None,
) -> Visualization:
    """Map a GenerationResult (plus stored asset URLs) onto a record."""
    urls = persisted.urls if persisted is not None else _hosted_urls(result)
    now = _now()

    fields = {
        "id": record_id or new_record_id(),
        "owner_id": owner_id,
        "input_text": result.input_text,
        "text": result.text,
        "image_url": urls.get(AssetKind.IMAGE),
        "audio_url": urls.get(AssetKind.AUDIO),
        "created_at": now,
        "updated_at": now,
    }

    video = result.get(AssetKind.VIDEO)
    if video is not None and video.status != AssetStatus.IDLE:
        video_url = sanitize_url(urls.get(AssetKind.VIDEO))
        fields["video_job_id"] = video.job_id
        if video_url:
            fields["video_url"] = video_url
            fields["video_status"] = VideoRecordStatus.READY
        elif video.status == AssetStatus.PENDING and sanitize_job_id(video.job_id):
            fields["video_status"] = VideoRecordStatus.PENDING
        else:
            # Failed job, or a finished video that could not be stored
            fields["video_status"] = VideoRecordStatus.FAILED

    return Visualization.model_validate(fields)


class RecordStore:
    """
    Persists visualization records to PostgreSQL.

    Usage:
        store = RecordStore(db_pool, video_controller=controller, persister=persister)

        # Save a generation attempt
        record = await store.save(result, owner_id, persisted)

        # Later: check a pending video once
        record = await store.resume(record)
    """

    def __init__(self, db_pool: asyncpg.Pool, video_controller=None, persister=None):
        self.db_pool = db_pool
        self.video_controller = video_controller
        self.persister = persister

    async def ensure_schema(self):
        """Create the visualizations table if missing."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Visualization schema ready")

    async def _upsert(self, record: Visualization) -> Visualization:
        correlation_id = new_correlation_id("record")
        try:
            async with self.db_pool.acquire() as conn:
                created_at = await conn.fetchval(
                    """
                    INSERT INTO visualizations (
                        id,
                        owner_id,
                        input_text,
                        text,
                        image_url,
                        audio_url,
                        video_url,
                        video_job_id,
                        video_status,
                        created_at,
                        updated_at
                    ) VALUES (
                        $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11
                    )
                    ON CONFLICT (id) DO UPDATE SET
                        input_text = EXCLUDED.input_text,
                        text = EXCLUDED.text,
                        image_url = EXCLUDED.image_url,
                        audio_url = EXCLUDED.audio_url,
                        video_url = EXCLUDED.video_url,
                        video_job_id = EXCLUDED.video_job_id,
                        video_status = EXCLUDED.video_status,
                        updated_at = EXCLUDED.updated_at
                    WHERE visualizations.owner_id = EXCLUDED.owner_id
                    RETURNING created_at
                    """,
                    record.id,
                    record.owner_id,
                    record.input_text,
                    record.text,
                    record.image_url,
                    record.audio_url,
                    record.video_url,
                    record.video_job_id,
                    record.video_status.value if record.video_status else None,
                    record.created_at,
                    record.updated_at,
                )
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Failed to write visualization {record.id}: {e} ({correlation_id})")
            raise RecordError(
                f"Could not save visualization: {type(e).__name__}",
                code="RECORD_WRITE_FAILED",
                correlation_id=correlation_id,
            )

        if created_at is None:
            # Id exists under another owner
            raise RecordError(
                f"Visualization {record.id} belongs to another owner",
                code="RECORD_OWNER_MISMATCH",
                correlation_id=correlation_id,
            )

        logger.info(f"Saved visualization {record.id} (video: {record.video_status.value if record.video_status else 'none'})")
        return record.model_copy(update={"created_at": created_at})

    async def save(
        self,
        result: GenerationResult,
        owner_id: str,
        persisted: Optional[PersistedAssets] = None,
        record_id: Optional[str] = None,
    ) -> Visualization:
        """
        Create or overwrite the record for a generation attempt.

        Args:
            result: Generation result of the attempt
            owner_id: Owner of the record
            persisted: Durable asset URLs; without it only hosted URLs are stored
            record_id: Existing record id, or None to mint one

        Raises:
            RecordError: The record is invalid or could not be written
        """
        try:
            record = build_record(result, owner_id, persisted, record_id)
        except ValidationError as e:
            raise RecordError(f"Invalid visualization: {e.error_count()} errors", code="RECORD_INVALID")
        return await self._upsert(record)

    async def update(self, record: Visualization) -> Visualization:
        return await self._upsert(record)

    async def get(self, owner_id: str, record_id: str) -> Optional[Visualization]:
        """Get a single record by id, scoped to its owner."""
        record_id = sanitize_record_id(record_id)
        if record_id is None:
            return None
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM visualizations WHERE id = $1 AND owner_id = $2
                """,
                record_id,
                owner_id,
            )
            return Visualization.from_row(row) if row else None

    async def list_for_owner(self, owner_id: str, limit: int = 50) -> list[Visualization]:
        """Newest records first."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM visualizations
                WHERE owner_id = $1
                ORDER BY created_at DESC
                LIMIT $2
                """,
                owner_id,
                limit,
            )
            return [Visualization.from_row(row) for row in rows]

    async def list_pending(self, owner_id: str, limit: int = 20) -> list[Visualization]:
        """Records whose video job has not been resolved yet."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM visualizations
                WHERE owner_id = $1 AND video_status = 'pending'
                ORDER BY created_at ASC
                LIMIT $2
                """,
                owner_id,
                limit,
            )
            return [Visualization.from_row(row) for row in rows]

    async def delete(self, owner_id: str, record_id: str) -> bool:
        async with self.db_pool.acquire() as conn:
            status = await conn.execute(
                """
                DELETE FROM visualizations WHERE id = $1 AND owner_id = $2
                """,
                record_id,
                owner_id,
            )
        return status.endswith(" 1")

    async def resume(self, record: Visualization) -> Visualization:
        """
        Check a pending video once and apply the outcome.

        Records that are not pending are returned as-is without a poll.
        A transient poll error or a still running job leaves the record
        unchanged.
        """
        if record.video_status != VideoRecordStatus.PENDING or not record.video_job_id:
            return record
        if self.video_controller is None:
            raise RecordError("Video polling is not configured", code="RESUME_UNAVAILABLE")

        polled = await self.video_controller.poll(
            record.video_job_id,
            owner_id=record.owner_id,
            expected_duration_seconds=self.video_controller.config.clamp_video_duration(None),
        )

        if isinstance(polled, ErrorDetail):
            if polled.is_transient:
                logger.info(f"Transient error checking {record.id} [{polled.code}], still pending")
                return record
            logger.warning(f"Video for {record.id} marked failed [{polled.code}]")
            return await self.update(record.with_changes(video_status=VideoRecordStatus.FAILED, video_url=None))

        if not isinstance(polled, VideoJob):
            raise TypeError(f"Unexpected poll result: {type(polled).__name__}")

        if polled.status == VideoJobStatus.FAILED:
            code = polled.error.code if polled.error else "VIDEO_JOB_FAILED"
            logger.warning(f"Video for {record.id} failed [{code}]")
            return await self.update(record.with_changes(video_status=VideoRecordStatus.FAILED, video_url=None))

        if polled.status != VideoJobStatus.COMPLETED:
            logger.info(f"Video for {record.id} still {polled.status.value}")
            return record

        if self.persister is not None:
            video_url = await self.persister.promote(AssetKind.VIDEO, polled.result, record.owner_id, record.id)
        else:
            video_url = polled.result_url
        if not video_url:
            logger.warning(f"Video for {record.id} is ready but could not be stored, keeping it pending")
            return record

        return await self.update(record.with_changes(video_status=VideoRecordStatus.READY, video_url=video_url))

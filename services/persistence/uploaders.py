"""
Upload paths for generated assets.

- ObjectStorageUploader: direct put into the R2 bucket (primary)
- ServerUploader: the app backend stores the asset on the user's behalf,
  authenticated with the user's bearer token (fallback)

Both take an inline payload and return the durable public URL, raising
UploadError when the asset could not be stored.
"""

import asyncio
import base64
import functools
import io
import logging
import wave
from typing import Optional

import httpx
from minio import Minio
from minio.error import S3Error

from core.config import StorageConfig
from core.errors import UploadError, new_correlation_id
from services.generation.models import AssetKind, InlinePayload

from .sanitize import safe_path_segment

logger = logging.getLogger(__name__)

# kind -> (file name, stored content type)
ASSET_FILES = {
    AssetKind.IMAGE: ("image.jpg", "image/jpeg"),
    AssetKind.AUDIO: ("audio.wav", "audio/wav"),
    AssetKind.VIDEO: ("video.mp4", "video/mp4"),
}


def asset_key(kind: AssetKind, owner_id: str, record_id: str) -> str:
    """Object key: visualizations/<owner>/<record>/<file>"""
    file_name, _ = ASSET_FILES[AssetKind(kind)]
    return f"visualizations/{safe_path_segment(owner_id)}/{safe_path_segment(record_id)}/{file_name}"


def wav_to_pcm16(data: bytes) -> bytes:
    """Frames of a WAV container; input that is not WAV is returned as-is."""
    try:
        with wave.open(io.BytesIO(data), "rb") as wav:
            return wav.readframes(wav.getnframes())
    except (wave.Error, EOFError):
        return data


class ObjectStorageUploader:
    """Puts assets straight into the public R2 bucket."""

    def __init__(self, client: Optional[Minio], storage: StorageConfig):
        self.client = client
        self.storage = storage

    def _put(self, key: str, data: bytes, content_type: str):
        self.client.put_object(
            bucket_name=self.storage.r2_bucket,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )

    async def upload(self, kind: AssetKind, payload: InlinePayload, owner_id: str, record_id: str) -> str:
        kind = AssetKind(kind)
        prefix = kind.value.upper()
        if self.client is None or not self.storage.is_configured:
            raise UploadError("Object storage is not configured", code=f"{prefix}_STORAGE_UNCONFIGURED")

        key = asset_key(kind, owner_id, record_id)
        _, content_type = ASSET_FILES[kind]

        loop = asyncio.get_running_loop()
        try:
            # minio is blocking; keep it off the event loop
            await loop.run_in_executor(None, functools.partial(self._put, key, payload.data, content_type))
        except S3Error as e:
            raise UploadError(f"Storage rejected {key}: {e.code}", code=f"{prefix}_STORAGE_{e.code}")

        url = f"{self.storage.r2_public_url}/{key}"
        logger.info(f"Uploaded {kind.value} to {key} ({len(payload.data)} bytes)")
        return url


class ServerUploader:
    """Hands the asset to the app backend, which stores it for the user."""

    ENDPOINT = "/api/upload-visualization-asset"

    def __init__(self, http_client: httpx.AsyncClient, api_base: str, auth_token: str):
        self.http_client = http_client
        self.api_base = (api_base or "").rstrip("/")
        self.auth_token = auth_token

    def _body(self, kind: AssetKind, payload: InlinePayload, record_id: str) -> dict:
        body = {"assetType": kind.value, "visualizationId": record_id}
        if kind == AssetKind.AUDIO:
            # The backend wraps raw PCM16 itself
            body["audioData"] = base64.b64encode(wav_to_pcm16(payload.data)).decode("ascii")
        else:
            body["dataUrl"] = payload.to_data_url()
        return body

    async def upload(self, kind: AssetKind, payload: InlinePayload, owner_id: str, record_id: str) -> str:
        kind = AssetKind(kind)
        prefix = kind.value.upper()
        correlation_id = new_correlation_id("upload")
        if not self.api_base or not self.auth_token:
            raise UploadError("Server upload is not configured", code=f"{prefix}_SERVER_UNCONFIGURED")

        try:
            response = await self.http_client.post(
                f"{self.api_base}{self.ENDPOINT}",
                json=self._body(kind, payload, record_id),
                headers={"Authorization": f"Bearer {self.auth_token}"},
            )
        except httpx.RequestError as e:
            raise UploadError(
                f"Server upload failed: {type(e).__name__}: {e}",
                code=f"{prefix}_SERVER_NETWORK_ERROR",
                correlation_id=correlation_id,
            )

        if response.status_code >= 400:
            raise UploadError(
                f"Server upload returned HTTP {response.status_code}",
                code=f"{prefix}_SERVER_{response.status_code}",
                correlation_id=correlation_id,
                status_code=response.status_code,
            )

        try:
            asset_url = response.json().get("assetUrl")
        except (ValueError, AttributeError):
            asset_url = None
        if not asset_url:
            raise UploadError(
                "Server upload returned no asset URL",
                code=f"{prefix}_SERVER_MALFORMED_RESPONSE",
                correlation_id=correlation_id,
            )

        logger.info(f"Uploaded {kind.value} through the app backend for {record_id}")
        return asset_url

"""
Asset Persister Tests - primary upload, fallback upload, retained payloads

Run with:
    python -m pytest tests/test_asset_persister.py -v
"""

import base64
import io
import json
import os
import sys
import wave
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import StorageConfig
from core.errors import ErrorDetail, UploadError
from services.generation.models import (
    AssetKind,
    AssetOutcome,
    GenerationResult,
    HostedPayload,
    InlinePayload,
)
from services.generation.speech import pcm16_to_wav
from services.persistence import AssetPersister, ObjectStorageUploader, ServerUploader, asset_key
from services.persistence.uploaders import wav_to_pcm16

IMAGE = InlinePayload(data=b"jpeg-bytes", content_type="image/jpeg")


def make_result(**outcomes) -> GenerationResult:
    result = GenerationResult(request_id="req-1", input_text="A mountain sunrise")
    for kind, outcome in outcomes.items():
        result.set(AssetKind(kind), outcome)
    return result


def make_uploader(url=None, error=None):
    uploader = MagicMock()
    if error is not None:
        uploader.upload = AsyncMock(side_effect=error)
    else:
        uploader.upload = AsyncMock(return_value=url)
    return uploader


def storage_config() -> StorageConfig:
    return StorageConfig(
        r2_account_id="acct",
        r2_access_key="key",
        r2_secret_key="secret",
        r2_bucket="bucket",
        r2_public_url="https://assets.test",
    )


class TestUploadChain:
    """Primary first, fallback exactly once on failure."""

    @pytest.mark.asyncio
    async def test_primary_success_never_calls_fallback(self):
        primary = make_uploader(url="https://assets.test/visualizations/u/r/image.jpg")
        fallback = make_uploader(url="https://app.test/image.jpg")
        persister = AssetPersister(primary, fallback)

        persisted = await persister.persist(make_result(image=AssetOutcome.completed(IMAGE)), "u", "r")

        assert persisted.url(AssetKind.IMAGE) == "https://assets.test/visualizations/u/r/image.jpg"
        primary.upload.assert_awaited_once_with(AssetKind.IMAGE, IMAGE, "u", "r")
        assert fallback.upload.await_count == 0
        assert persisted.warnings == []

    @pytest.mark.asyncio
    async def test_primary_failure_calls_fallback_once(self):
        primary = make_uploader(error=UploadError("denied", code="IMAGE_STORAGE_AccessDenied"))
        fallback = make_uploader(url="https://app.test/image.jpg")
        persister = AssetPersister(primary, fallback)

        persisted = await persister.persist(make_result(image=AssetOutcome.completed(IMAGE)), "u", "r")

        assert persisted.url(AssetKind.IMAGE) == "https://app.test/image.jpg"
        assert fallback.upload.await_count == 1
        assert persisted.retained_inline == {}

    @pytest.mark.asyncio
    async def test_both_fail_retains_inline_payload(self):
        primary = make_uploader(error=RuntimeError("network down"))
        fallback = make_uploader(error=UploadError("HTTP 500", code="IMAGE_SERVER_500", correlation_id="upload_1"))
        persister = AssetPersister(primary, fallback)

        persisted = await persister.persist(make_result(image=AssetOutcome.completed(IMAGE)), "u", "r")

        assert persisted.url(AssetKind.IMAGE) is None
        assert persisted.retained_inline[AssetKind.IMAGE] == IMAGE
        assert fallback.upload.await_count == 1
        (kind, warning), = persisted.warnings
        assert kind == AssetKind.IMAGE
        assert warning.code == "IMAGE_UPLOAD_FAILED"
        assert warning.correlation_id == "upload_1"
        assert persisted.messages() == ["Could not store image: HTTP 500 (ref: upload_1)"]

    @pytest.mark.asyncio
    async def test_hosted_and_failed_assets_are_not_uploaded(self):
        primary = make_uploader(url="unused")
        persister = AssetPersister(primary, make_uploader(url="unused"))
        result = make_result(
            text=AssetOutcome.completed("narrative"),
            image=AssetOutcome.completed(HostedPayload(url="https://cdn.test/img.jpg")),
            audio=AssetOutcome.failed(ErrorDetail(code="SPEECH_500", message="down", correlation_id="r1")),
        )

        persisted = await persister.persist(result, "u", "r")

        assert persisted.urls == {AssetKind.IMAGE: "https://cdn.test/img.jpg"}
        primary.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_promote_single_asset(self):
        video = InlinePayload(data=b"mp4", content_type="video/mp4")
        primary = make_uploader(error=RuntimeError("down"))
        fallback = make_uploader(error=RuntimeError("down too"))
        persister = AssetPersister(primary, fallback)

        assert await persister.promote(AssetKind.VIDEO, video, "u", "r") is None
        assert await persister.promote(
            AssetKind.VIDEO, HostedPayload(url="https://cdn.test/v.mp4"), "u", "r"
        ) == "https://cdn.test/v.mp4"


class TestObjectStorageUploader:
    """Direct puts into the bucket."""

    def test_asset_key_is_sanitized(self):
        assert asset_key(AssetKind.AUDIO, "user@mail.com", "123_abc") == "visualizations/user_mail_com/123_abc/audio.wav"
        assert asset_key(AssetKind.VIDEO, "", "r") == "visualizations/unknown/r/video.mp4"

    @pytest.mark.asyncio
    async def test_put_object_and_public_url(self):
        client = MagicMock()
        uploader = ObjectStorageUploader(client, storage_config())

        url = await uploader.upload(AssetKind.IMAGE, IMAGE, "user-1", "rec-1")

        assert url == "https://assets.test/visualizations/user-1/rec-1/image.jpg"
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["bucket_name"] == "bucket"
        assert kwargs["object_name"] == "visualizations/user-1/rec-1/image.jpg"
        assert kwargs["length"] == len(IMAGE.data)
        assert kwargs["content_type"] == "image/jpeg"

    @pytest.mark.asyncio
    async def test_unconfigured_storage_raises(self):
        uploader = ObjectStorageUploader(None, StorageConfig(r2_account_id="", r2_public_url=""))

        with pytest.raises(UploadError) as exc_info:
            await uploader.upload(AssetKind.IMAGE, IMAGE, "u", "r")

        assert exc_info.value.code == "IMAGE_STORAGE_UNCONFIGURED"


class TestServerUploader:
    """Server-mediated fallback upload."""

    @pytest.mark.asyncio
    async def test_image_sent_as_data_url(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"assetUrl": "https://assets.test/x/image.jpg"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            uploader = ServerUploader(client, "https://app.test", "user-token")
            url = await uploader.upload(AssetKind.IMAGE, IMAGE, "u", "rec-1")

        assert url == "https://assets.test/x/image.jpg"
        request = requests[0]
        assert str(request.url) == "https://app.test/api/upload-visualization-asset"
        assert request.headers["authorization"] == "Bearer user-token"
        body = json.loads(request.content)
        assert body["assetType"] == "image"
        assert body["visualizationId"] == "rec-1"
        assert body["dataUrl"] == IMAGE.to_data_url()

    @pytest.mark.asyncio
    async def test_audio_sent_as_raw_pcm(self):
        pcm = b"\x10\x00" * 50
        audio = InlinePayload(data=pcm16_to_wav(pcm), content_type="audio/wav")
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"assetUrl": "https://assets.test/x/audio.wav"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            uploader = ServerUploader(client, "https://app.test", "user-token")
            await uploader.upload(AssetKind.AUDIO, audio, "u", "rec-1")

        body = json.loads(requests[0].content)
        assert base64.b64decode(body["audioData"]) == pcm
        assert "dataUrl" not in body

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(413))) as client:
            uploader = ServerUploader(client, "https://app.test", "user-token")
            with pytest.raises(UploadError) as exc_info:
                await uploader.upload(AssetKind.VIDEO, IMAGE, "u", "r")

        assert exc_info.value.code == "VIDEO_SERVER_413"

    @pytest.mark.asyncio
    async def test_missing_token_raises(self):
        uploader = ServerUploader(MagicMock(), "https://app.test", "")
        with pytest.raises(UploadError):
            await uploader.upload(AssetKind.IMAGE, IMAGE, "u", "r")

    def test_wav_to_pcm_passthrough(self):
        assert wav_to_pcm16(b"not a wav") == b"not a wav"
        buffer = io.BytesIO(pcm16_to_wav(b"\x01\x02" * 4))
        with wave.open(buffer, "rb") as wav:
            assert wav.getframerate() == 24000

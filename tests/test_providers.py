"""
Leaf Generator Tests - text, image and speech providers

Covers:
1. Response parsing (inline bytes, hosted URLs, responses API text)
2. Retry policy: one retry, 300ms wait, only for network/429/5xx
3. Reference image handling for the image edits endpoint
4. Speech input cleanup and PCM -> WAV wrapping
5. Circuit breaker fast-fail

Run with:
    python -m pytest tests/test_providers.py -v
"""

import base64
import json
import os
import sys

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from core.config import Config
from services.generation.image import ImageGenerator
from services.generation.models import (
    AssetStatus,
    HostedPayload,
    ImageQuality,
    InlinePayload,
    Profile,
)
from services.generation.speech import SpeechGenerator, pcm16_to_wav
from services.generation.text import TextGenerator, extract_output_text

BASE = "https://provider.test/v1"
JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"


def make_config() -> Config:
    config = Config()
    config.api.openai_api_key = "test-key"
    config.api.openai_api_base = BASE
    return config


class Recorder:
    """Routes requests to queued responses and records what was sent."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        # fresh copy so a repeated response is never reused across requests
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def image_body() -> dict:
    return {"data": [{"b64_json": base64.b64encode(JPEG_BYTES).decode()}]}


class TestTextGenerator:
    """Narrative text generation."""

    @pytest.mark.asyncio
    async def test_output_text_field(self):
        recorder = Recorder(httpx.Response(200, json={"output_text": "  I crossed the line.  "}))
        async with make_client(recorder) as client:
            generator = TextGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate("Run a marathon", profile=Profile(bio="Runner"))

        assert outcome.status == AssetStatus.COMPLETED
        assert outcome.payload == "I crossed the line."

        request = recorder.requests[0]
        assert str(request.url) == f"{BASE}/responses"
        assert request.headers["authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body["model"] == "gpt-4o-mini"
        assert "Run a marathon" in body["input"]
        assert "Runner" in body["input"]

    def test_output_parts(self):
        data = {
            "output": [
                {"type": "reasoning", "content": []},
                {"type": "message", "content": [{"type": "output_text", "text": "Deep breath."}]},
            ]
        }
        assert extract_output_text(data) == "Deep breath."
        assert extract_output_text({}) == ""

    @pytest.mark.asyncio
    async def test_empty_response(self):
        recorder = Recorder(httpx.Response(200, json={"output": []}))
        async with make_client(recorder) as client:
            generator = TextGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate("Run a marathon")

        assert outcome.status == AssetStatus.FAILED
        assert outcome.error.code == "TEXT_EMPTY_RESPONSE"

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        recorder = Recorder(httpx.Response(200, text="<html>oops</html>"))
        async with make_client(recorder) as client:
            generator = TextGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate("Run a marathon")

        assert outcome.error.code == "TEXT_MALFORMED_RESPONSE"

    @pytest.mark.asyncio
    async def test_network_error_retried_once(self):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        recorder = Recorder(fail)
        sleep = FakeSleep()
        async with make_client(recorder) as client:
            generator = TextGenerator(client, config=make_config(), sleep=sleep)
            outcome = await generator.generate("Run a marathon")

        assert outcome.status == AssetStatus.FAILED
        assert outcome.error.code == "TEXT_NETWORK_ERROR"
        assert outcome.error.correlation_id.startswith("text_")
        assert len(recorder.requests) == 2
        assert sleep.calls == [pytest.approx(0.3)]


class TestRetryPolicy:
    """At most one retry, only for transient statuses."""

    @pytest.mark.asyncio
    async def test_retry_after_500_then_success(self):
        recorder = Recorder(httpx.Response(500, json={"error": "overloaded"}), httpx.Response(200, json=image_body()))
        sleep = FakeSleep()
        async with make_client(recorder) as client:
            generator = ImageGenerator(client, config=make_config(), sleep=sleep)
            outcome = await generator.generate("A mountain sunrise")

        assert outcome.status == AssetStatus.COMPLETED
        assert len(recorder.requests) == 2
        assert sleep.calls == [pytest.approx(0.3)]

    @pytest.mark.asyncio
    async def test_500_twice_fails_with_status_code(self):
        recorder = Recorder(httpx.Response(500, json={"error": {"message": "boom"}}))
        sleep = FakeSleep()
        async with make_client(recorder) as client:
            generator = ImageGenerator(client, config=make_config(), sleep=sleep)
            outcome = await generator.generate("A mountain sunrise")

        assert outcome.status == AssetStatus.FAILED
        assert outcome.error.code == "IMAGE_500"
        assert "boom" in outcome.error.message
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_429_is_retried(self):
        recorder = Recorder(httpx.Response(429, json={}), httpx.Response(200, json=image_body()))
        async with make_client(recorder) as client:
            generator = ImageGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate("A mountain sunrise")

        assert outcome.status == AssetStatus.COMPLETED
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_400_is_terminal(self):
        recorder = Recorder(httpx.Response(400, json={"error": {"message": "bad prompt"}}))
        sleep = FakeSleep()
        async with make_client(recorder) as client:
            generator = ImageGenerator(client, config=make_config(), sleep=sleep)
            outcome = await generator.generate("A mountain sunrise")

        assert outcome.error.code == "IMAGE_400"
        assert len(recorder.requests) == 1
        assert sleep.calls == []


class TestImageGenerator:
    """Image generation with and without references."""

    @pytest.mark.asyncio
    async def test_generations_endpoint_without_references(self):
        recorder = Recorder(httpx.Response(200, json=image_body()))
        async with make_client(recorder) as client:
            generator = ImageGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate(
                "A mountain sunrise",
                profile=Profile(name="Mia", age=31, location="Oslo"),
                quality=ImageQuality.HIGH,
            )

        assert isinstance(outcome.payload, InlinePayload)
        assert outcome.payload.data == JPEG_BYTES
        assert outcome.payload.content_type == "image/jpeg"

        request = recorder.requests[0]
        assert str(request.url) == f"{BASE}/images/generations"
        body = json.loads(request.content)
        assert body["quality"] == "high"
        assert body["output_format"] == "jpeg"
        assert "Mia, a 31yo person in Oslo" in body["prompt"]

    @pytest.mark.asyncio
    async def test_hosted_url_response(self):
        recorder = Recorder(httpx.Response(200, json={"data": [{"url": "https://cdn.test/img.jpg"}]}))
        async with make_client(recorder) as client:
            generator = ImageGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate("A mountain sunrise")

        assert outcome.payload == HostedPayload(url="https://cdn.test/img.jpg")

    @pytest.mark.asyncio
    async def test_empty_data(self):
        recorder = Recorder(httpx.Response(200, json={"data": []}))
        async with make_client(recorder) as client:
            generator = ImageGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate("A mountain sunrise")

        assert outcome.error.code == "IMAGE_EMPTY_RESPONSE"

    @pytest.mark.asyncio
    async def test_edits_endpoint_skips_unreadable_reference(self):
        def handler(request):
            if request.url.host == "photos.test":
                if request.url.path == "/missing.png":
                    return httpx.Response(404)
                return httpx.Response(200, content=b"png-bytes", headers={"content-type": "image/png"})
            return httpx.Response(200, json=image_body())

        recorder = Recorder(handler)
        references = [
            HostedPayload(url="https://photos.test/face.png"),
            HostedPayload(url="https://photos.test/missing.png"),
            InlinePayload(data=b"inline-bytes", content_type="image/jpeg"),
        ]
        async with make_client(recorder) as client:
            generator = ImageGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate("A mountain sunrise", reference_images=references)

        assert outcome.status == AssetStatus.COMPLETED

        edit_request = recorder.requests[-1]
        assert str(edit_request.url) == f"{BASE}/images/edits"
        assert edit_request.headers["content-type"].startswith("multipart/form-data")
        assert edit_request.content.count(b'name="image[]"') == 2
        assert b"png-bytes" in edit_request.content
        assert b"inline-bytes" in edit_request.content

    @pytest.mark.asyncio
    async def test_all_references_unreadable_falls_back_to_generations(self):
        def handler(request):
            if request.url.host == "photos.test":
                return httpx.Response(500)
            return httpx.Response(200, json=image_body())

        recorder = Recorder(handler)
        async with make_client(recorder) as client:
            generator = ImageGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate(
                "A mountain sunrise",
                reference_images=[HostedPayload(url="https://photos.test/a.png")],
            )

        assert outcome.status == AssetStatus.COMPLETED
        assert str(recorder.requests[-1].url) == f"{BASE}/images/generations"


class TestSpeechGenerator:
    """Narration synthesis."""

    @pytest.mark.asyncio
    async def test_empty_input_never_calls_provider(self):
        recorder = Recorder(httpx.Response(200, content=b"\x00\x00"))
        async with make_client(recorder) as client:
            generator = SpeechGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate(" ** ** ")

        assert outcome.status == AssetStatus.FAILED
        assert outcome.error.code == "SPEECH_EMPTY_INPUT"
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_pcm_wrapped_into_wav(self):
        pcm = b"\x01\x00" * 240
        recorder = Recorder(httpx.Response(200, content=pcm, headers={"content-type": "application/octet-stream"}))
        async with make_client(recorder) as client:
            generator = SpeechGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate("I **finally** made it.")

        assert outcome.status == AssetStatus.COMPLETED
        assert outcome.payload.content_type == "audio/wav"
        assert outcome.payload.data == pcm16_to_wav(pcm, 24000)
        assert outcome.payload.data[:4] == b"RIFF"

        body = json.loads(recorder.requests[0].content)
        assert body["input"] == "I finally made it."
        assert body["response_format"] == "pcm"
        assert body["voice"] == "onyx"

    @pytest.mark.asyncio
    async def test_json_hosted_audio(self):
        recorder = Recorder(httpx.Response(200, json={"url": "https://cdn.test/a.wav"}))
        async with make_client(recorder) as client:
            generator = SpeechGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate("Breathe in.")

        assert outcome.payload == HostedPayload(url="https://cdn.test/a.wav")

    @pytest.mark.asyncio
    async def test_empty_audio_body(self):
        recorder = Recorder(httpx.Response(200, content=b"", headers={"content-type": "audio/pcm"}))
        async with make_client(recorder) as client:
            generator = SpeechGenerator(client, config=make_config(), sleep=FakeSleep())
            outcome = await generator.generate("Breathe in.")

        assert outcome.error.code == "SPEECH_EMPTY_RESPONSE"

    def test_wav_header(self):
        wav = pcm16_to_wav(b"\x00\x00" * 10, sample_rate=24000)
        assert wav[:4] == b"RIFF"
        assert wav[8:12] == b"WAVE"
        # 44 byte header + 20 bytes of frames
        assert len(wav) == 64


class TestCircuitBreakerIntegration:
    """Provider calls fail fast once the breaker opens."""

    @pytest.mark.asyncio
    async def test_open_breaker_fails_fast(self):
        recorder = Recorder(httpx.Response(503, json={}))
        breaker = CircuitBreaker(
            "text",
            CircuitBreakerConfig(
                failure_threshold=1,
                recovery_timeout=60.0,
                is_failure=lambda e: getattr(e, "is_transient", False),
            ),
        )
        async with make_client(recorder) as client:
            generator = TextGenerator(client, config=make_config(), breaker=breaker, sleep=FakeSleep())
            first = await generator.generate("Run a marathon")
            second = await generator.generate("Run a marathon")

        assert first.error.code == "TEXT_503"
        assert second.error.code == "TEXT_CIRCUIT_OPEN"
        # Two attempts for the first call, none for the second
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_terminal_errors_do_not_open_breaker(self):
        recorder = Recorder(httpx.Response(400, json={}))
        breaker = CircuitBreaker(
            "text",
            CircuitBreakerConfig(
                failure_threshold=1,
                is_failure=lambda e: getattr(e, "is_transient", False),
            ),
        )
        async with make_client(recorder) as client:
            generator = TextGenerator(client, config=make_config(), breaker=breaker, sleep=FakeSleep())
            await generator.generate("Run a marathon")
            second = await generator.generate("Run a marathon")

        assert second.error.code == "TEXT_400"
        assert not breaker.is_open

"""
Narrated audio generation.

The provider returns raw PCM16 (24 kHz, mono); it is wrapped into a WAV
container so the payload is directly playable and uploadable as audio/wav.
"""

import base64
import binascii
import io
import logging
import wave

from core.errors import ProviderError

from .base import ProviderCall
from .models import AssetKind, AssetOutcome, HostedPayload, InlinePayload

logger = logging.getLogger(__name__)

WAV_CONTENT_TYPE = "audio/wav"


def clean_speech_text(text: str) -> str:
    """Strip markdown emphasis the narrator should not read aloud."""
    return (text or "").replace("**", "").strip()


def pcm16_to_wav(pcm: bytes, sample_rate: int = 24000, channels: int = 1) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


class SpeechGenerator(ProviderCall):
    """Synchronous call to the speech synthesis provider."""

    kind = AssetKind.AUDIO
    error_prefix = "SPEECH"

    def _parse_json_audio(self, data: dict, correlation_id: str):
        url = data.get("url") or data.get("audio_url") or data.get("audioUrl")
        if url:
            return HostedPayload(url=url)

        encoded = data.get("audio_base64") or data.get("audioData")
        if not encoded:
            raise self._error("EMPTY_RESPONSE", "Provider returned no audio", correlation_id)
        try:
            pcm = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise self._error("MALFORMED_RESPONSE", "Audio payload is not valid base64", correlation_id)
        return self._wrap_pcm(pcm, correlation_id)

    def _wrap_pcm(self, pcm: bytes, correlation_id: str) -> InlinePayload:
        if not pcm:
            raise self._error("EMPTY_RESPONSE", "Provider returned no audio", correlation_id)
        wav = pcm16_to_wav(pcm, sample_rate=self.config.models.speech_sample_rate)
        return InlinePayload(data=wav, content_type=WAV_CONTENT_TYPE)

    async def generate(self, text: str) -> AssetOutcome:
        """
        Synthesize narration.

        Args:
            text: Narrative text when the text kind completed, else the raw prompt
        """
        correlation_id = self.new_correlation_id()
        clean_text = clean_speech_text(text)
        if not clean_text:
            error = self._error("EMPTY_INPUT", "Nothing to narrate", correlation_id)
            return self._failed(error)

        payload = {
            "model": self.config.models.speech_model,
            "voice": self.config.models.speech_voice,
            "input": clean_text,
            "instructions": "Speak slowly in a deep, calm voice.",
            "response_format": "pcm",
        }

        try:
            response = await self.request(
                "POST",
                f"{self.config.api.openai_api_base}/audio/speech",
                correlation_id=correlation_id,
                json=payload,
                headers=self._headers(),
            )
            content_type = response.headers.get("content-type", "")
            if content_type.startswith("application/json"):
                audio = self._parse_json_audio(self._json(response, correlation_id), correlation_id)
            else:
                audio = self._wrap_pcm(response.content, correlation_id)
        except ProviderError as e:
            return self._failed(e)

        logger.info(f"Speech generated for {len(clean_text)} chars")
        return AssetOutcome.completed(audio)

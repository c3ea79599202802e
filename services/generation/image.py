"""
Still image generation.

Without reference images the generations endpoint is used. With 1-3
reference images (face likeness, objects, style) the edits endpoint receives
them as multipart files; hosted references are downloaded first and
unreadable ones are skipped.
"""

import base64
import binascii
import logging
from typing import Optional

import httpx

from core.errors import ProviderError

from .base import ProviderCall
from .models import (
    AssetKind,
    AssetOutcome,
    HostedPayload,
    ImageQuality,
    InlinePayload,
    MediaPayload,
    Profile,
)

logger = logging.getLogger(__name__)

IMAGE_SIZE = "1024x1024"
IMAGE_CONTENT_TYPE = "image/jpeg"


def build_image_prompt(aspiration: str, profile: Optional[Profile], with_references: bool) -> str:
    person = profile.describe() if profile else "A determined person"
    if with_references:
        return (
            f'Photorealistic, cinematic image of {person} embodying: "{aspiration}". '
            "Use the provided reference images as visual context (face likeness, objects, style). "
            "No text overlay. 8k resolution."
        )
    return (
        f'Photorealistic, cinematic image of {person} having already achieved: "{aspiration}". '
        "Show a concrete, specific scene, aspirational and warm. Soft cinematic lighting. "
        "Absolutely no text, letters, words, or watermarks in the image."
    )


class ImageGenerator(ProviderCall):
    """Synchronous call to the image provider."""

    kind = AssetKind.IMAGE
    error_prefix = "IMAGE"

    async def _load_reference(self, reference: MediaPayload) -> Optional[InlinePayload]:
        if isinstance(reference, InlinePayload):
            if not reference.content_type.startswith("image/"):
                return None
            return reference
        try:
            response = await self.http_client.get(reference.url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Skipping unreadable reference image {reference.url}: {e}")
            return None
        content_type = response.headers.get("content-type", "image/png").split(";")[0]
        return InlinePayload(data=response.content, content_type=content_type)

    async def _reference_files(self, references: list) -> list:
        files = []
        for index, reference in enumerate(references):
            loaded = await self._load_reference(reference)
            if loaded is None:
                continue
            extension = loaded.content_type.split("/")[-1] or "png"
            files.append(("image[]", (f"ref-{index}.{extension}", loaded.data, loaded.content_type)))
        return files

    def _parse_image(self, data: dict, correlation_id: str) -> MediaPayload:
        items = data.get("data") or []
        first = items[0] if items and isinstance(items[0], dict) else {}

        b64 = first.get("b64_json")
        if b64:
            try:
                raw = base64.b64decode(b64, validate=True)
            except (binascii.Error, ValueError):
                raise self._error("MALFORMED_RESPONSE", "Image payload is not valid base64", correlation_id)
            return InlinePayload(data=raw, content_type=IMAGE_CONTENT_TYPE)

        url = first.get("url")
        if url:
            return HostedPayload(url=url)

        raise self._error("EMPTY_RESPONSE", "Provider returned no image", correlation_id)

    async def generate(
        self,
        prompt: str,
        reference_images: Optional[list] = None,
        profile: Optional[Profile] = None,
        quality: ImageQuality = ImageQuality.MEDIUM,
    ) -> AssetOutcome:
        correlation_id = self.new_correlation_id()
        base = self.config.api.openai_api_base
        quality = ImageQuality(quality)

        try:
            files = await self._reference_files(reference_images or [])
            fields = {
                "model": self.config.models.image_model,
                "prompt": build_image_prompt(prompt, profile, with_references=bool(files)),
                "size": IMAGE_SIZE,
                "quality": quality.value,
                "output_format": "jpeg",
            }

            if files:
                response = await self.request(
                    "POST",
                    f"{base}/images/edits",
                    correlation_id=correlation_id,
                    data=fields,
                    files=files,
                    headers=self._headers(),
                )
            else:
                response = await self.request(
                    "POST",
                    f"{base}/images/generations",
                    correlation_id=correlation_id,
                    json=fields,
                    headers=self._headers(),
                )
            image = self._parse_image(self._json(response, correlation_id), correlation_id)
        except ProviderError as e:
            return self._failed(e)

        logger.info(f"Image generated ({'inline' if isinstance(image, InlinePayload) else 'hosted'})")
        return AssetOutcome.completed(image)

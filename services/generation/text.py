"""Narrative text generation."""

import logging
from typing import Optional

from core.errors import ProviderError

from .base import ProviderCall
from .models import AssetKind, AssetOutcome, Profile

logger = logging.getLogger(__name__)

NARRATIVE_MAX_CHARS = 1000


def build_narrative_prompt(aspiration: str, profile: Optional[Profile]) -> str:
    """Prompt for a short first-person script of the aspiration already achieved."""
    background = (profile.bio or "") if profile else ""
    return "\n".join([
        "You are a calm, encouraging guided-visualization coach.",
        "Read the user's aspiration and write a short first-person script that lets them",
        "vividly feel a future in which it has already been achieved.",
        "Rules:",
        f"- at most {NARRATIVE_MAX_CHARS} characters",
        "- no exaggeration, fear, or medical claims",
        "",
        f"Aspiration:\n{aspiration}",
        f"Background:\n{background}",
    ])


def extract_output_text(data: dict) -> str:
    """Read text from a responses API body (convenience field or output parts)."""
    text = data.get("output_text")
    if isinstance(text, str) and text.strip():
        return text.strip()

    for item in data.get("output") or []:
        if not isinstance(item, dict):
            continue
        for part in item.get("content") or []:
            if isinstance(part, dict) and part.get("type") == "output_text":
                value = part.get("text") or ""
                if value.strip():
                    return value.strip()
    return ""


class TextGenerator(ProviderCall):
    """Synchronous call to the narrative provider."""

    kind = AssetKind.TEXT
    error_prefix = "TEXT"

    async def generate(self, prompt: str, profile: Optional[Profile] = None) -> AssetOutcome:
        correlation_id = self.new_correlation_id()
        payload = {
            "model": self.config.models.text_model,
            "input": build_narrative_prompt(prompt, profile),
        }

        try:
            response = await self.request(
                "POST",
                f"{self.config.api.openai_api_base}/responses",
                correlation_id=correlation_id,
                json=payload,
                headers=self._headers(),
            )
            text = extract_output_text(self._json(response, correlation_id))
            if not text:
                raise self._error("EMPTY_RESPONSE", "Provider returned no narrative text", correlation_id)
        except ProviderError as e:
            return self._failed(e)

        logger.info(f"Narrative generated ({len(text)} chars)")
        return AssetOutcome.completed(text)

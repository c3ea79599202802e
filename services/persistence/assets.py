"""
Asset Persister

Turns inline payloads from a GenerationResult into durable URLs.

Each inline asset goes to the primary uploader; only when that raises is the
fallback tried, exactly once. If both fail the inline payload is kept and a
<KIND>_UPLOAD_FAILED warning is recorded. Persisting never raises because
of an upload.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from core.errors import ErrorDetail, new_correlation_id
from services.generation.models import (
    AssetKind,
    AssetStatus,
    GenerationResult,
    HostedPayload,
    InlinePayload,
)

logger = logging.getLogger(__name__)

PERSISTED_KINDS = (AssetKind.IMAGE, AssetKind.AUDIO, AssetKind.VIDEO)


@dataclass
class PersistedAssets:
    """Durable URLs per kind, plus anything that stayed inline."""
    urls: dict = field(default_factory=dict)
    retained_inline: dict = field(default_factory=dict)
    warnings: list = field(default_factory=list)

    def url(self, kind: AssetKind) -> Optional[str]:
        return self.urls.get(AssetKind(kind))

    def messages(self) -> list[str]:
        return [
            f"Could not store {kind.value}: {warning.message} (ref: {warning.correlation_id})"
            for kind, warning in self.warnings
        ]


class AssetPersister:
    """
    Two-stage upload chain.

    Usage:
        persister = AssetPersister(primary=ObjectStorageUploader(...), fallback=ServerUploader(...))
        persisted = await persister.persist(result, owner_id, record_id)
    """

    def __init__(self, primary, fallback=None):
        self.primary = primary
        self.fallback = fallback

    async def _upload(self, kind: AssetKind, payload: InlinePayload, owner_id: str, record_id: str):
        """Returns (url, None) on success or (None, warning)."""
        try:
            return await self.primary.upload(kind, payload, owner_id, record_id), None
        except Exception as primary_error:
            logger.warning(f"Primary upload of {kind.value} failed: {primary_error}")
            last_error = primary_error

        if self.fallback is not None:
            try:
                url = await self.fallback.upload(kind, payload, owner_id, record_id)
                logger.info(f"Stored {kind.value} through the fallback path")
                return url, None
            except Exception as fallback_error:
                logger.warning(f"Fallback upload of {kind.value} failed: {fallback_error}")
                last_error = fallback_error

        warning = ErrorDetail(
            code=f"{kind.value.upper()}_UPLOAD_FAILED",
            message=str(last_error) or type(last_error).__name__,
            correlation_id=getattr(last_error, "correlation_id", None) or new_correlation_id("upload"),
        )
        logger.error(f"{kind.value} kept inline, no upload path succeeded ({warning.correlation_id})")
        return None, warning

    async def promote(self, kind: AssetKind, payload, owner_id: str, record_id: str) -> Optional[str]:
        """Durable URL for one payload; None when it could not be stored."""
        if isinstance(payload, HostedPayload):
            return payload.url
        url, _ = await self._upload(AssetKind(kind), payload, owner_id, record_id)
        return url

    async def persist(self, result: GenerationResult, owner_id: str, record_id: str) -> PersistedAssets:
        persisted = PersistedAssets()

        for kind in PERSISTED_KINDS:
            outcome = result.get(kind)
            if outcome is None or outcome.status != AssetStatus.COMPLETED:
                continue

            payload = outcome.payload
            if isinstance(payload, HostedPayload):
                persisted.urls[kind] = payload.url
                continue
            if not isinstance(payload, InlinePayload):
                continue

            url, warning = await self._upload(kind, payload, owner_id, record_id)
            if url:
                persisted.urls[kind] = url
            else:
                persisted.retained_inline[kind] = payload
                persisted.warnings.append((kind, warning))

        return persisted

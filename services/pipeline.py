"""
Visualization Pipeline

Wires generation, asset persistence and the record store together:

    orchestrator.generate -> persister.persist -> store.save

and resumes pending video jobs of saved records.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from core.clients import ServiceClients
from core.errors import RecordError
from services.generation import (
    GenerationOrchestrator,
    GenerationRequest,
    GenerationResult,
    ImageGenerator,
    SpeechGenerator,
    TextGenerator,
)
from services.persistence import (
    AssetPersister,
    ObjectStorageUploader,
    PersistedAssets,
    RecordStore,
    ServerUploader,
    Visualization,
)
from services.persistence.sanitize import new_record_id
from services.video_generation import VideoJobController

logger = logging.getLogger(__name__)


@dataclass
class PipelineOutcome:
    """Everything one generate-and-save call produced."""
    result: GenerationResult
    record: Optional[Visualization] = None
    persisted: Optional[PersistedAssets] = None
    messages: list = field(default_factory=list)


class VisualizationPipeline:
    """
    Usage:
        clients = ServiceClients()
        pipeline = await VisualizationPipeline.from_clients(clients)

        outcome = await pipeline.generate_and_save(request, owner_id="user-1")
        for line in outcome.messages:
            print(line)

        await clients.close()
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        persister: AssetPersister,
        store: Optional[RecordStore] = None,
    ):
        self.orchestrator = orchestrator
        self.persister = persister
        self.store = store

    @classmethod
    async def from_clients(
        cls,
        clients: ServiceClients,
        on_progress=None,
        with_store: bool = True,
    ) -> "VisualizationPipeline":
        """Build every stage from one ServiceClients instance."""
        config = clients.config
        http = await clients.http()

        video = VideoJobController(http, config=config, breaker=clients.breaker("video"))
        orchestrator = GenerationOrchestrator(
            text=TextGenerator(http, config=config, breaker=clients.breaker("text")),
            image=ImageGenerator(http, config=config, breaker=clients.breaker("image")),
            speech=SpeechGenerator(http, config=config, breaker=clients.breaker("speech")),
            video=video,
            config=config,
            on_progress=on_progress,
        )

        storage_client = clients.storage() if config.storage.is_configured else None
        persister = AssetPersister(
            primary=ObjectStorageUploader(storage_client, config.storage),
            fallback=ServerUploader(http, config.api.app_api_base, config.api.auth_token),
        )

        store = None
        if with_store:
            store = RecordStore(await clients.db_pool(), video_controller=video, persister=persister)

        return cls(orchestrator, persister, store)

    async def generate(self, request: GenerationRequest, owner_id: Optional[str] = None) -> GenerationResult:
        return await self.orchestrator.generate(request, owner_id=owner_id)

    async def generate_and_save(self, request: GenerationRequest, owner_id: str) -> PipelineOutcome:
        """
        Generate, upload and save one visualization.

        Raises:
            InputError: The request is invalid
            RecordError: The record could not be written
        """
        result = await self.generate(request, owner_id=owner_id)
        if self.store is None:
            return PipelineOutcome(result=result, messages=result.messages())

        record_id = new_record_id()
        persisted = await self.persister.persist(result, owner_id, record_id)
        record = await self.store.save(result, owner_id, persisted=persisted, record_id=record_id)

        logger.info(f"Visualization {record.id} saved for request {result.request_id}")
        return PipelineOutcome(
            result=result,
            record=record,
            persisted=persisted,
            messages=result.messages() + persisted.messages(),
        )

    async def resume(self, owner_id: str, record_id: str) -> Visualization:
        """Check the pending video of a saved record once."""
        if self.store is None:
            raise RecordError("Record store is not configured", code="RESUME_UNAVAILABLE")
        record = await self.store.get(owner_id, record_id)
        if record is None:
            raise RecordError(f"Visualization {record_id} not found", code="RECORD_NOT_FOUND")
        return await self.store.resume(record)

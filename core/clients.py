"""
Lazily constructed service clients.

One ServiceClients object owns the HTTP client, the object storage client,
the database pool and the provider circuit breakers. Each is built on first
use behind a single guard; nothing is created at import time.

Usage:
    clients = ServiceClients()
    http = await clients.http()
    pool = await clients.db_pool()
    ...
    await clients.close()
"""

import asyncio
import logging
from typing import Optional

import asyncpg
import httpx
from minio import Minio

from .circuit_breaker import CircuitBreaker, build_provider_breakers
from .config import Config, get_config

logger = logging.getLogger(__name__)


class ServiceClients:
    """Owns every external client used by the pipeline."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()

        self._http_client: Optional[httpx.AsyncClient] = None
        self._storage_client: Optional[Minio] = None
        self._db_pool: Optional[asyncpg.Pool] = None
        self._breakers: Optional[dict[str, CircuitBreaker]] = None

        self._init_lock = asyncio.Lock()

    async def http(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None:
            async with self._init_lock:
                if self._http_client is None:
                    timeout = httpx.Timeout(self.config.generation.request_timeout_seconds)
                    self._http_client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        return self._http_client

    def storage(self) -> Minio:
        """Get or create the S3-compatible storage client (Cloudflare R2)."""
        if self._storage_client is None:
            storage = self.config.storage
            self._storage_client = Minio(
                endpoint=storage.endpoint,
                access_key=storage.r2_access_key,
                secret_key=storage.r2_secret_key,
                region="auto",
                secure=True,
            )
        return self._storage_client

    async def db_pool(self) -> asyncpg.Pool:
        """Get or create the PostgreSQL pool."""
        if self._db_pool is None:
            async with self._init_lock:
                if self._db_pool is None:
                    db = self.config.database
                    self._db_pool = await asyncpg.create_pool(
                        db.url,
                        min_size=db.pool_min_size,
                        max_size=db.pool_max_size,
                    )
                    logger.info("Database pool created")
        return self._db_pool

    def breaker(self, provider: str) -> CircuitBreaker:
        """Circuit breaker for a generation provider (text, image, speech, video)."""
        if self._breakers is None:
            self._breakers = build_provider_breakers()
        return self._breakers[provider]

    async def close(self):
        """Release the HTTP client and database pool."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        if self._db_pool is not None:
            await self._db_pool.close()
            self._db_pool = None

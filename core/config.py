"""
Configuration management for the visualization pipeline.

Centralizes all configuration including:
- Provider API keys and endpoints
- Object storage (R2) and database settings
- Model selections
- Retry, polling and timeout budgets
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class APIConfig:
    """API configuration for generation providers and the app backend."""

    # OpenAI-compatible provider for text, image and speech
    openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", "").strip())
    openai_api_base: str = field(
        default_factory=lambda: os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1").rstrip("/")
    )

    # Video job API (create / status / content). Defaults to the OpenAI base.
    video_api_key: str = field(default_factory=lambda: os.getenv("VIDEO_API_KEY", "").strip())
    video_api_base: str = field(default_factory=lambda: os.getenv("VIDEO_API_BASE", "").rstrip("/"))

    # App backend used for the server-mediated upload fallback
    app_api_base: str = field(default_factory=lambda: os.getenv("APP_API_BASE", "").rstrip("/"))

    # Bearer token of the signed-in user (issued by the auth service)
    auth_token: str = field(default_factory=lambda: os.getenv("APP_AUTH_TOKEN", "").strip())

    def video_base(self) -> str:
        return self.video_api_base or self.openai_api_base

    def video_key(self) -> str:
        return self.video_api_key or self.openai_api_key


@dataclass
class DatabaseConfig:
    """Database configuration."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_min_size: int = 1
    pool_max_size: int = 5


@dataclass
class StorageConfig:
    """Storage configuration for generated assets."""
    # env vars can carry trailing newlines when set through hosting dashboards
    r2_account_id: str = field(default_factory=lambda: os.getenv("R2_ACCOUNT_ID", "").strip())
    r2_access_key: str = field(default_factory=lambda: os.getenv("R2_ACCESS_KEY_ID", "").strip())
    r2_secret_key: str = field(default_factory=lambda: os.getenv("R2_SECRET_ACCESS_KEY", "").strip())
    r2_bucket: str = field(
        default_factory=lambda: os.getenv("R2_BUCKET_NAME", "visualization-assets").strip()
    )
    r2_public_url: str = field(default_factory=lambda: os.getenv("R2_PUBLIC_URL", "").strip().rstrip("/"))

    @property
    def endpoint(self) -> str:
        """S3 endpoint host for the R2 account (no scheme, as minio expects)."""
        return f"{self.r2_account_id}.r2.cloudflarestorage.com"

    @property
    def is_configured(self) -> bool:
        return bool(self.r2_account_id and self.r2_access_key and self.r2_secret_key and self.r2_public_url)


@dataclass
class ModelConfig:
    """Model selection configuration."""
    text_model: str = "gpt-4o-mini"
    image_model: str = "gpt-image-1.5"
    speech_model: str = "gpt-4o-mini-tts"
    speech_voice: str = "onyx"
    speech_sample_rate: int = 24000
    video_model: str = "sora-2"
    video_size: str = "1280x720"


@dataclass
class GenerationConfig:
    """Retry, polling and timeout budgets."""

    # Leaf provider calls: one retry, waiting backoff * attempt number
    provider_max_retries: int = 1
    retry_backoff_seconds: float = 0.3

    # Bounded video poll loop
    video_poll_interval_seconds: float = 5.0
    video_poll_budget_seconds: float = 45.0

    video_min_duration_seconds: int = 2
    video_max_duration_seconds: int = 6
    video_default_duration_seconds: int = 4

    max_reference_images: int = 3

    # Transport timeout for every provider request
    request_timeout_seconds: float = 120.0


@dataclass
class Config:
    """Main configuration class."""

    api: APIConfig = field(default_factory=APIConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def clamp_video_duration(self, seconds: Optional[int]) -> int:
        """Clamp a requested video duration into the supported range."""
        gen = self.generation
        if seconds is None:
            seconds = gen.video_default_duration_seconds
        return max(gen.video_min_duration_seconds, min(gen.video_max_duration_seconds, int(seconds)))

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.api.openai_api_key:
            issues.append("OPENAI_API_KEY not configured")

        if not self.database.url:
            issues.append("DATABASE_URL not configured")

        if not self.storage.is_configured:
            issues.append("R2 storage not fully configured (uploads will use the fallback path)")

        if not self.api.app_api_base:
            issues.append("APP_API_BASE not configured (upload fallback unavailable)")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()

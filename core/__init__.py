"""
Visualization Pipeline Core Components

Provides foundational infrastructure for the generation-and-persistence pipeline:
- Configuration loaded from the environment
- Error model shared by all stages
- Circuit breakers for provider resilience
- Lazily constructed service clients
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerOpen, CircuitState
from .clients import ServiceClients
from .config import Config, get_config
from .errors import (
    ErrorDetail,
    GenerationError,
    InputError,
    ProviderError,
    RecordError,
    UploadError,
    is_transient_code,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "CircuitState",
    "ServiceClients",
    "Config",
    "get_config",
    "ErrorDetail",
    "GenerationError",
    "InputError",
    "ProviderError",
    "RecordError",
    "UploadError",
    "is_transient_code",
]

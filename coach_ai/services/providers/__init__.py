"""Provider transports, the provider registry and its circuit breakers."""

from .base import ChatModelProvider, GeminiProvider, Provider
from .circuit_breaker import CircuitBreaker
from .registry import ProviderRegistry, build_default_registry

__all__ = [
    "ChatModelProvider",
    "GeminiProvider",
    "Provider",
    "CircuitBreaker",
    "ProviderRegistry",
    "build_default_registry",
]

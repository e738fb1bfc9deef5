from __future__ import annotations
import logging
import time
from typing import Callable, Dict, Iterable, List

from coach_ai.core.config import Settings, settings
from coach_ai.core.exceptions import ConfigurationError
from coach_ai.core.prompts import LANGUAGE_NAMES
from coach_ai.schemas.generation import GenerationKind, ProviderDescriptor, ProviderHealth
from coach_ai.services.providers.base import ChatModelProvider, GeminiProvider, Provider
from coach_ai.services.providers.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

# Languages SeaLion models are trained for
SEALION_LANGUAGES = frozenset({"en", "id", "ms", "th", "vi", "tl", "fil", "my", "km", "lo", "zh-sg"})


class ProviderRegistry:
    """
    Static registry of providers, each guarded by a circuit breaker.

    ``ordered_for`` filters by capability, language and availability, then
    ranks: language specialists listing the language explicitly, then
    general-purpose ('*') providers, then providers that only speak the
    default language; ties broken by priority and name.
    """

    def __init__(
        self,
        providers: Iterable[Provider] = (),
        *,
        default_language: str = "en",
        failure_threshold: int = 3,
        recovery_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_language = default_language
        self._failure_threshold = failure_threshold
        self._recovery_seconds = recovery_seconds
        self._clock = clock
        self._providers: Dict[str, Provider] = {}
        self._breakers: Dict[str, CircuitBreaker] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: Provider) -> None:
        name = provider.descriptor.name
        if name in self._providers:
            raise ValueError(f"Provider {name!r} is already registered")
        self._providers[name] = provider
        self._breakers[name] = CircuitBreaker(
            name, self._failure_threshold, self._recovery_seconds, clock=self._clock
        )
        logger.info(f"Registered provider {name} (priority {provider.descriptor.priority})")

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def get(self, name: str) -> Provider:
        return self._providers[name]

    def _tier(self, descriptor: ProviderDescriptor) -> int:
        if descriptor.supported_languages == {self.default_language}:
            return 2
        if descriptor.is_general_purpose:
            return 1
        return 0

    def descriptors(self) -> List[ProviderDescriptor]:
        """Descriptors of every provider, with current availability."""
        return [
            provider.descriptor.model_copy(update={"is_available": self._breakers[name].is_available()})
            for name, provider in self._providers.items()
        ]

    def ordered_for(self, kind: GenerationKind, language: str) -> List[Provider]:
        candidates = [
            descriptor for descriptor in self.descriptors()
            if descriptor.is_available and descriptor.supports(kind, language)
        ]
        candidates.sort(key=lambda d: (self._tier(d), d.priority, d.name))
        return [self._providers[descriptor.name] for descriptor in candidates]

    def record_success(self, name: str) -> None:
        self._breakers[name].record_success()

    def record_failure(self, name: str) -> None:
        self._breakers[name].record_failure()

    def health(self) -> List[ProviderHealth]:
        return [self._breakers[name].health() for name in sorted(self._breakers)]

    def reset_circuit_breakers(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
        logger.info("All circuit breakers reset")

    async def aclose(self) -> None:
        """Close provider clients that hold connections."""
        for provider in self._providers.values():
            client = getattr(provider, "client", None)
            aio = getattr(client, "aio", None)
            closer = getattr(aio, "aclose", None)
            if closer is not None:
                await closer()


def build_default_registry(config: Settings = settings) -> ProviderRegistry:
    """
    Register every provider whose API key is configured.

    Raises ConfigurationError when DEFAULT_LANGUAGE is not a supported language.
    """
    from coach_ai.core import llm

    if config.DEFAULT_LANGUAGE not in LANGUAGE_NAMES:
        raise ConfigurationError(
            f"Unsupported DEFAULT_LANGUAGE: {config.DEFAULT_LANGUAGE}",
            details={"supported": sorted(LANGUAGE_NAMES)},
        )

    registry = ProviderRegistry(
        default_language=config.DEFAULT_LANGUAGE,
        failure_threshold=config.CIRCUIT_FAILURE_THRESHOLD,
        recovery_seconds=config.CIRCUIT_RECOVERY_SECONDS,
    )
    if config.SEALION_API_KEY:
        registry.register(ChatModelProvider(
            ProviderDescriptor(name="sealion", priority=config.SEALION_PRIORITY,
                               supported_languages=SEALION_LANGUAGES),
            llm.build_sealion_chat(config),
        ))
    if config.OPENAI_API_KEY:
        registry.register(ChatModelProvider(
            ProviderDescriptor(name="openai", priority=config.OPENAI_PRIORITY),
            llm.build_openai_chat(config),
        ))
    if config.GROQ_API_KEY:
        registry.register(ChatModelProvider(
            ProviderDescriptor(name="groq", priority=config.GROQ_PRIORITY),
            llm.build_groq_chat(config),
        ))
    if config.GEMINI_API_KEY:
        registry.register(GeminiProvider(
            ProviderDescriptor(name="gemini", priority=config.GEMINI_PRIORITY),
            llm.build_genai_client(config),
            config.GEMINI_MODEL,
        ))
    if not len(registry):
        logger.warning("No provider API keys configured; every request will use template fallback")
    return registry

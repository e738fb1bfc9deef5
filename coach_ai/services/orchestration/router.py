from __future__ import annotations
import asyncio
import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

from coach_ai.core.config import Settings, settings
from coach_ai.core.exceptions import InvalidRequestError
from coach_ai.core.prompts import REQUIRED_CONTEXT, build_provider_call
from coach_ai.schemas.generation import (
    GenerationKind,
    GenerationRequest,
    NormalizedResult,
    ProviderCall,
)
from coach_ai.services.orchestration.cache import BoundedCache
from coach_ai.services.orchestration.normalizer import ParseError, ResponseNormalizer
from coach_ai.services.orchestration.rate_limiter import ServiceRateLimiter
from coach_ai.services.orchestration.retry_executor import (
    FailureKind,
    RetryExecutor,
    RetryPolicy,
    classify_failure,
    parse_retry_after,
)
from coach_ai.services.orchestration.templates import TemplateTable
from coach_ai.services.providers import Provider, ProviderRegistry

logger = logging.getLogger(__name__)

CACHE_SOURCE = "cache"
TEMPLATE_SOURCE = "template"


def fingerprint(request: GenerationRequest) -> str:
    """Cache key from kind, prompt content and language. Session id is not part of it."""
    canonical = json.dumps(dict(request.prompt_context), sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{request.kind.value}:{request.target_language}:{digest}"


def validate_request(request: GenerationRequest) -> None:
    """Raise InvalidRequestError for requests the calling layer built wrongly."""
    if not isinstance(request, GenerationRequest):
        raise InvalidRequestError(f"Expected GenerationRequest, got {type(request).__name__}")
    missing = [
        key for key in REQUIRED_CONTEXT[request.kind]
        if not str(request.prompt_context.get(key, "")).strip()
    ]
    if missing:
        raise InvalidRequestError(
            f"{request.kind.value} request is missing prompt fields: {', '.join(missing)}",
            details={"missing": missing, "kind": request.kind.value},
        )


@dataclass
class RouterMetrics:
    """Counters operators watch: fallback rate and retry rate first."""
    requests: int = 0
    cache_hits: int = 0
    provider_calls: int = 0
    upstream_attempts: int = 0
    retries: int = 0
    provider_failures: int = 0
    parse_failures: int = 0
    fallbacks: int = 0
    deadline_expired: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, **counts: int) -> None:
        with self._lock:
            for name, amount in counts.items():
                setattr(self, name, getattr(self, name) + amount)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            data = {
                "requests": self.requests,
                "cache_hits": self.cache_hits,
                "provider_calls": self.provider_calls,
                "upstream_attempts": self.upstream_attempts,
                "retries": self.retries,
                "provider_failures": self.provider_failures,
                "parse_failures": self.parse_failures,
                "fallbacks": self.fallbacks,
                "deadline_expired": self.deadline_expired,
            }
        data["fallback_rate"] = round(self.fallbacks / self.requests, 4) if self.requests else 0.0
        data["retry_rate"] = (
            round(self.retries / self.upstream_attempts, 4) if self.upstream_attempts else 0.0
        )
        return data


class ProviderRouter:
    """
    Turns a GenerationRequest into a NormalizedResult, whatever upstream does.

    Cache first; then each candidate provider in order through the retry
    executor and the normalizer; finally the static template. Provider and
    parse failures are absorbed here. Only malformed requests raise.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: BoundedCache,
        *,
        executor: Optional[RetryExecutor] = None,
        normalizer: Optional[ResponseNormalizer] = None,
        templates: Optional[TemplateTable] = None,
        rate_limiter: Optional[ServiceRateLimiter] = None,
        policy: Optional[RetryPolicy] = None,
        cache_ttls: Optional[Dict[GenerationKind, float]] = None,
        fallback_ttl: float = 60.0,
        deadline_seconds: Optional[float] = 40.0,
    ):
        self.registry = registry
        self.cache = cache
        self.executor = executor or RetryExecutor(policy)
        self.policy = policy or self.executor.policy
        self.normalizer = normalizer or ResponseNormalizer()
        self.templates = templates or TemplateTable(registry.default_language)
        self.rate_limiter = rate_limiter
        self.cache_ttls = dict(cache_ttls or {})
        self.fallback_ttl = fallback_ttl
        self.deadline_seconds = deadline_seconds
        self.metrics = RouterMetrics()

    @classmethod
    def from_settings(cls, registry: ProviderRegistry, cache: BoundedCache,
                      config: Settings = settings) -> "ProviderRouter":
        return cls(
            registry,
            cache,
            templates=TemplateTable(config.DEFAULT_LANGUAGE),
            rate_limiter=ServiceRateLimiter.from_settings(config),
            policy=RetryPolicy.from_settings(config),
            cache_ttls={
                GenerationKind.QUESTION: config.CACHE_TTL_QUESTION,
                GenerationKind.PERSONA: config.CACHE_TTL_PERSONA,
                GenerationKind.ASSESSMENT: config.CACHE_TTL_ASSESSMENT,
                GenerationKind.TRANSLATION: config.CACHE_TTL_TRANSLATION,
            },
            fallback_ttl=config.FALLBACK_CACHE_TTL,
            deadline_seconds=config.GENERATION_DEADLINE_SECONDS,
        )

    def ttl_for(self, kind: GenerationKind) -> Optional[float]:
        return self.cache_ttls.get(kind)

    async def generate(self, request: GenerationRequest) -> NormalizedResult:
        validate_request(request)
        self.metrics.increment(requests=1)
        key = fingerprint(request)

        cached = self.cache.get(key)
        if cached is not None:
            self.metrics.increment(cache_hits=1)
            logger.info(f"Cache hit for {request.kind.value} ({request.target_language})")
            return cached.model_copy(update={"source_provider": CACHE_SOURCE, "used_fallback": False})

        result: Optional[NormalizedResult] = None
        try:
            if self.deadline_seconds:
                result = await asyncio.wait_for(
                    self._generate_from_providers(request, key), timeout=self.deadline_seconds
                )
            else:
                result = await self._generate_from_providers(request, key)
        except asyncio.TimeoutError:
            self.metrics.increment(deadline_expired=1)
            logger.warning(
                f"Generation deadline of {self.deadline_seconds}s expired for {request.kind.value}; "
                "using template fallback"
            )

        if result is None:
            result = self._template_result(request)
            self.cache.set(key, result, self.fallback_ttl)
        return result

    async def _generate_from_providers(self, request: GenerationRequest, key: str) -> Optional[NormalizedResult]:
        providers = self.registry.ordered_for(request.kind, request.target_language)
        if not providers:
            logger.warning(f"No available provider for {request.kind.value} in {request.target_language}")
            return None

        call = build_provider_call(request)
        deadline = (
            self.executor.now() + self.deadline_seconds if self.deadline_seconds else None
        )
        for provider in providers:
            result = await self._try_provider(provider, call, request, deadline)
            if result is not None:
                self.cache.set(key, result, self.ttl_for(request.kind))
                return result
        return None

    async def _try_provider(self, provider: Provider, call: ProviderCall, request: GenerationRequest,
                            deadline: Optional[float]) -> Optional[NormalizedResult]:
        name = provider.name
        self.metrics.increment(provider_calls=1)

        async def acquire() -> None:
            await self.rate_limiter.acquire_slot(name)

        async def attempt() -> str:
            try:
                return await provider.invoke(call)
            except Exception as e:
                # Tell the limiter to hold everyone else back for as long as the server asked
                if self.rate_limiter is not None and classify_failure(e) is FailureKind.THROTTLED:
                    await self.rate_limiter.block_service(name, parse_retry_after(e))
                raise

        outcome = await self.executor.execute(
            attempt, self.policy, provider_name=name, deadline=deadline,
            before_attempt=acquire if self.rate_limiter is not None else None,
        )
        self.metrics.increment(upstream_attempts=outcome.attempts, retries=max(0, outcome.attempts - 1))

        if not outcome.ok:
            self.metrics.increment(provider_failures=1)
            self.registry.record_failure(name)
            logger.warning(
                f"Provider {name} failed for {request.kind.value}: {outcome.failure.describe()}",
                extra={"extra_data": {
                    "event": "provider_failed",
                    "provider": name,
                    "failure": outcome.failure.kind.value,
                    "attempts": outcome.attempts,
                }},
            )
            return None

        normalized = self.normalizer.normalize(outcome.completion, request.kind, request.target_language)
        if isinstance(normalized, ParseError):
            self.metrics.increment(parse_failures=1)
            self.registry.record_failure(name)
            logger.warning(f"Discarding completion: {normalized}")
            return None

        self.registry.record_success(name)
        return normalized

    def _template_result(self, request: GenerationRequest) -> NormalizedResult:
        self.metrics.increment(fallbacks=1)
        logger.warning(
            f"All providers failed for {request.kind.value} ({request.target_language}); using template",
            extra={"extra_data": {
                "event": "template_fallback",
                "kind": request.kind.value,
                "language": request.target_language,
            }},
        )
        fields = self.templates.render(request.kind, request.target_language, request.prompt_context)
        return NormalizedResult(
            kind=request.kind,
            fields=fields,
            source_provider=TEMPLATE_SOURCE,
            used_fallback=True,
        )

    async def aclose(self) -> None:
        await self.registry.aclose()

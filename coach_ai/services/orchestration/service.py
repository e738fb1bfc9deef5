from __future__ import annotations
import logging
from typing import Dict, List, Optional

from coach_ai.core.config import Settings, settings
from coach_ai.core.exceptions import SessionClosedError
from coach_ai.core.logger import log_async_execution_time, reset_correlation_id, set_correlation_id
from coach_ai.schemas.generation import (
    CacheStats,
    GenerationRequest,
    NormalizedResult,
    ProviderHealth,
    SessionGateState,
)
from coach_ai.services.orchestration.cache import BoundedCache
from coach_ai.services.orchestration.router import ProviderRouter
from coach_ai.services.orchestration.session_gate import SessionProgressGate
from coach_ai.services.providers import ProviderRegistry, build_default_registry

logger = logging.getLogger(__name__)


class GenerationService:
    """
    Entry point for the interview session logic.

    Checks the session gate, routes the request and counts the call against
    the session once a result (provider, cache or template) is produced.
    """

    def __init__(self, router: ProviderRouter, gate: SessionProgressGate):
        self.router = router
        self.gate = gate

    @classmethod
    def from_settings(cls, config: Settings = settings,
                      registry: Optional[ProviderRegistry] = None) -> "GenerationService":
        registry = registry if registry is not None else build_default_registry(config)
        router = ProviderRouter.from_settings(registry, BoundedCache.from_settings(config), config)
        return cls(router, SessionProgressGate.from_settings(config))

    @property
    def registry(self) -> ProviderRegistry:
        return self.router.registry

    @log_async_execution_time
    async def generate(self, request: GenerationRequest) -> NormalizedResult:
        if not self.gate.can_generate(request.session_id):
            state = self.gate.status(request.session_id)
            raise SessionClosedError(
                f"Session {request.session_id} is {state.status.value}; no further generation allowed",
                details={"session_id": request.session_id, "status": state.status.value},
            )

        token = set_correlation_id(request.session_id)
        try:
            result = await self.router.generate(request)
            self.gate.record_call(request.session_id)
        finally:
            reset_correlation_id(token)
        logger.info(
            f"Generated {request.kind.value} for session {request.session_id} via {result.source_provider}",
            extra={"extra_data": {
                "event": "generation",
                "kind": request.kind.value,
                "language": request.target_language,
                "source": result.source_provider,
                "fallback": result.used_fallback,
            }},
        )
        return result

    def cache_stats(self) -> CacheStats:
        return self.router.cache.stats()

    def session_status(self, session_id: str) -> Optional[SessionGateState]:
        return self.gate.status(session_id)

    def mark_completed(self, session_id: str) -> SessionGateState:
        return self.gate.mark_completed(session_id)

    def provider_health(self) -> List[ProviderHealth]:
        return self.registry.health()

    def reset_circuit_breakers(self) -> None:
        self.registry.reset_circuit_breakers()

    def metrics(self) -> Dict[str, float]:
        return self.router.metrics.snapshot()

    async def close(self) -> None:
        await self.router.aclose()

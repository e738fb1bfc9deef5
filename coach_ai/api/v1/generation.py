import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from coach_ai.api.deps import get_generation_service
from coach_ai.schemas.generation import (
    CacheStats,
    GenerationRequest,
    NormalizedResult,
    ProviderHealth,
    SessionGateState,
)
from coach_ai.services.orchestration import GenerationService

logger = logging.getLogger(__name__)

generation_router = APIRouter()


@generation_router.post("/generate", response_model=NormalizedResult)
async def generate(
    generation_request: GenerationRequest,
    service: GenerationService = Depends(get_generation_service),
):
    """
    Generates a question, persona, assessment or translation.

    Always answers with content: provider output, a cached result, or a
    static template when every provider failed (``used_fallback``).
    Errors: 422 for malformed requests, 409 once the session is closed.
    """
    return await service.generate(generation_request)


@generation_router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(service: GenerationService = Depends(get_generation_service)):
    return service.cache_stats()


@generation_router.get("/sessions/{session_id}", response_model=SessionGateState)
async def session_status(session_id: str, service: GenerationService = Depends(get_generation_service)):
    state = service.session_status(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return state


@generation_router.post("/sessions/{session_id}/complete", response_model=SessionGateState)
async def complete_session(session_id: str, service: GenerationService = Depends(get_generation_service)):
    """Marks the session completed; later generation requests get 409."""
    state = service.mark_completed(session_id)
    logger.info(f"Session {session_id} now {state.status.value}")
    return state


@generation_router.get("/providers/health", response_model=List[ProviderHealth])
async def provider_health(service: GenerationService = Depends(get_generation_service)):
    return service.provider_health()


@generation_router.post("/providers/reset", response_model=List[ProviderHealth])
async def reset_providers(service: GenerationService = Depends(get_generation_service)):
    service.reset_circuit_breakers()
    return service.provider_health()


@generation_router.get("/metrics")
async def metrics(service: GenerationService = Depends(get_generation_service)):
    return service.metrics()

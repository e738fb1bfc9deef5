from fastapi import Request

from coach_ai.services.orchestration import GenerationService


def get_generation_service(request: Request) -> GenerationService:
    """
    Dependency providing the GenerationService built at application startup.
    Its cache, session gate and circuit breakers live for the whole process.
    """
    return request.app.state.generation_service

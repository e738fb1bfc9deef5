import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from coach_ai.api.v1.generation import generation_router
from coach_ai.core.config import settings
from coach_ai.core.exceptions import (
    AppError,
    app_error_handler,
    global_exception_handler,
    http_exception_handler,
)
from coach_ai.core.logger import setup_logger
from coach_ai.services.orchestration import GenerationService

logger = logging.getLogger(__name__)


def create_app(service: Optional[GenerationService] = None) -> FastAPI:
    """
    Build the FastAPI app. A prebuilt ``service`` (tests) replaces the one
    constructed from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup: coach-ai generation layer")
        app.state.generation_service = service or GenerationService.from_settings(settings)
        yield
        await app.state.generation_service.close()
        logger.info("Application shutdown")

    app = FastAPI(
        title="Coach AI",
        description="AI provider orchestration for interview coaching.",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins for simplicity in development
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(generation_router, prefix="/api/v1", tags=["generation"])
    return app


# Setup logger with fresh log file on startup
setup_logger(clear_log=True, log_level=logging.DEBUG if settings.DEBUG_MODE else logging.INFO,
             use_json=settings.LOG_JSON)

app = create_app()

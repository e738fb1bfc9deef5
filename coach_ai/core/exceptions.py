"""
Custom exceptions for the coach-ai orchestration layer.

Provider errors are operational: they are classified, retried or skipped by
the router and never reach the end user. The remaining errors signal a bug or
a closed session in the calling layer and propagate.
"""
import logging
from typing import Optional
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ============================================================================
# Custom Exception Classes
# ============================================================================

class AppError(Exception):
    """Base exception for all application errors."""
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Exception raised when configuration is invalid or missing."""
    pass


class InvalidRequestError(AppError):
    """A generation request is malformed or misses required prompt fields."""
    status_code = 422


class SessionClosedError(AppError):
    """The session gate refuses further generation for this session."""
    status_code = 409


# --- Upstream provider errors ---

class ProviderError(AppError):
    """Base for failures raised by a provider transport."""

    def __init__(self, message: str, provider: str = "unknown", details: Optional[dict] = None,
                 retry_after: Optional[float] = None):
        super().__init__(message, details)
        self.provider = provider
        self.retry_after = retry_after


class ProviderThrottledError(ProviderError):
    """HTTP 429 or an explicit throttling response."""
    pass


class ProviderTimeoutError(ProviderError):
    pass


class ProviderUnavailableError(ProviderError):
    """5xx responses and network failures."""
    pass


class ProviderAuthError(ProviderError):
    pass


class ProviderBadRequestError(ProviderError):
    pass


class ProviderQuotaExceededError(ProviderError):
    """The account quota is exhausted; retrying will not help."""
    pass


# ============================================================================
# FastAPI Exception Handlers
# ============================================================================

async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"Application error: {exc.message}", exc_info=True)
    else:
        logger.warning(f"Request rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **({"context": exc.details} if exc.details else {})},
    )

async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error", "error": str(exc)},
    )

async def http_exception_handler(request: Request, exc: HTTPException):
    logger.warning(f"HTTP exception: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

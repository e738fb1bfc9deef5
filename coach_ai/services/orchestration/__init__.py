"""
AI Provider Orchestration Package

Architecture:
- retry_executor.py: Backoff and failure classification for one upstream call
- rate_limiter.py: Per-provider RPM window and penalty box
- normalizer.py: Raw completion text to structured fields
- cache.py: Bounded TTL cache of normalized results
- session_gate.py: Per-session call limit
- templates.py: Static fallback content
- router.py: Cache, provider fallback chain and template fallback
- service.py: Facade used by the API layer
"""

from .cache import BoundedCache
from .normalizer import ParseError, ResponseNormalizer
from .rate_limiter import ServiceRateLimiter
from .retry_executor import FailureKind, RetryExecutor, RetryPolicy, classify_failure
from .router import ProviderRouter, fingerprint
from .service import GenerationService
from .session_gate import SessionProgressGate
from .templates import TemplateTable

__all__ = [
    'BoundedCache',
    'ParseError',
    'ResponseNormalizer',
    'ServiceRateLimiter',
    'FailureKind',
    'RetryExecutor',
    'RetryPolicy',
    'classify_failure',
    'ProviderRouter',
    'fingerprint',
    'GenerationService',
    'SessionProgressGate',
    'TemplateTable',
]

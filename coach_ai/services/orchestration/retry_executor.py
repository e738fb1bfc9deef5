from __future__ import annotations
import asyncio
import logging
import random
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union

from google.api_core.exceptions import (
    ClientError as GoogleClientError,
    DeadlineExceeded,
    Forbidden,
    GatewayTimeout,
    ServerError as GoogleServerError,
    TooManyRequests,
    Unauthorized,
)
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.stop import stop_base

from coach_ai.core.config import settings
from coach_ai.core.exceptions import (
    ProviderAuthError,
    ProviderBadRequestError,
    ProviderError,
    ProviderQuotaExceededError,
    ProviderThrottledError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from coach_ai.schemas.generation import RawCompletion

logger = logging.getLogger(__name__)

AttemptFn = Callable[[], Awaitable[Union[str, RawCompletion]]]


class FailureKind(str, Enum):
    THROTTLED = "throttled"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    BAD_REQUEST = "bad_request"
    AUTH = "auth"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset({FailureKind.THROTTLED, FailureKind.TIMEOUT, FailureKind.UNAVAILABLE})

# A 429 carrying one of these is a plan/billing limit, not a burst limit
_HARD_QUOTA_KEYWORDS = ('billing', 'upgrade', 'daily limit', 'insufficient_quota')

_THROTTLE_PATTERNS = ('rate limit', 'ratelimit', 'throttl', 'too many requests')
_TIMEOUT_PATTERNS = ('timed out', 'timeout')
_TRANSIENT_PATTERNS = (
    "internal server error",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "connection reset",
    "connection refused",
    "connection error",
    "temporary failure",
    "overloaded",
)
_AUTH_PATTERNS = ('unauthorized', 'invalid api key', 'authentication', 'permission denied')

_PROVIDER_ERROR_KINDS = (
    (ProviderQuotaExceededError, FailureKind.QUOTA_EXCEEDED),
    (ProviderThrottledError, FailureKind.THROTTLED),
    (ProviderTimeoutError, FailureKind.TIMEOUT),
    (ProviderUnavailableError, FailureKind.UNAVAILABLE),
    (ProviderAuthError, FailureKind.AUTH),
    (ProviderBadRequestError, FailureKind.BAD_REQUEST),
)


def _status_code(exc: BaseException) -> Optional[int]:
    """HTTP status of an SDK error (openai/groq use status_code, google uses code)."""
    candidates = [getattr(exc, "status_code", None), getattr(exc, "code", None)]
    response = getattr(exc, "response", None)
    if response is not None:
        candidates.append(getattr(response, "status_code", None))
    for value in candidates:
        if isinstance(value, int) and not isinstance(value, bool) and 100 <= value < 600:
            return int(value)
    return None


def _is_hard_quota(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(keyword in message for keyword in _HARD_QUOTA_KEYWORDS)


def _throttled_or_quota(exc: BaseException) -> FailureKind:
    return FailureKind.QUOTA_EXCEEDED if _is_hard_quota(exc) else FailureKind.THROTTLED


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an upstream exception to a failure kind."""
    for error_type, kind in _PROVIDER_ERROR_KINDS:
        if isinstance(exc, error_type):
            if kind is FailureKind.THROTTLED:
                return _throttled_or_quota(exc)
            return kind
    if isinstance(exc, ProviderError):
        return FailureKind.UNKNOWN

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, DeadlineExceeded, GatewayTimeout)):
        return FailureKind.TIMEOUT
    if isinstance(exc, TooManyRequests):
        return _throttled_or_quota(exc)
    if isinstance(exc, GoogleServerError):
        return FailureKind.UNAVAILABLE
    if isinstance(exc, (Unauthorized, Forbidden)):
        return FailureKind.AUTH
    if isinstance(exc, GoogleClientError):
        return FailureKind.BAD_REQUEST
    if isinstance(exc, ConnectionError):
        return FailureKind.UNAVAILABLE

    status = _status_code(exc)
    if status is not None:
        if status == 429:
            return _throttled_or_quota(exc)
        if status == 408:
            return FailureKind.TIMEOUT
        if status in (401, 403):
            return FailureKind.AUTH
        if status >= 500:
            return FailureKind.UNAVAILABLE
        if 400 <= status < 500:
            return FailureKind.BAD_REQUEST

    # SDKs without a status (connection/timeout wrappers) only tell us in the message
    message = f"{type(exc).__name__} {exc}".lower()
    if any(pattern in message for pattern in _THROTTLE_PATTERNS):
        return _throttled_or_quota(exc)
    if any(pattern in message for pattern in _TIMEOUT_PATTERNS):
        return FailureKind.TIMEOUT
    if any(pattern in message for pattern in _TRANSIENT_PATTERNS):
        return FailureKind.UNAVAILABLE
    if any(pattern in message for pattern in _AUTH_PATTERNS):
        return FailureKind.AUTH
    return FailureKind.UNKNOWN


def parse_retry_after(exception: Optional[BaseException]) -> float:
    """Extracts the server's wait hint in seconds, defaulting to 0 if not found."""
    if exception is None:
        return 0.0
    try:
        if isinstance(exception, ProviderError) and exception.retry_after:
            return float(exception.retry_after)

        # Check standard Retry-After header
        response = getattr(exception, 'response', None)
        if response is not None:
            headers = getattr(response, 'headers', None) or {}
            val = headers.get('Retry-After') or headers.get('retry-after')
            if val:
                if val.isdigit():
                    return float(val)
                return (parsedate_to_datetime(val) - datetime.now(timezone.utc)).total_seconds()

        # Check Google Metadata
        metadata = getattr(exception, 'metadata', None)
        if isinstance(metadata, dict):
            if ms := metadata.get('retry-after-ms'):
                return float(ms) / 1000.0

        # Gemini puts it in the message
        retry_match = re.search(r'retry in ([\d.]+)s', str(exception), re.IGNORECASE)
        if retry_match:
            return float(retry_match.group(1))
    except (TypeError, ValueError, AttributeError):
        return 0.0
    return 0.0


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters, in seconds."""
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 1.0
    attempt_timeout: Optional[float] = 15.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < self.base_delay or self.jitter < 0:
            raise ValueError("invalid retry delays")

    @classmethod
    def from_settings(cls, config=settings) -> "RetryPolicy":
        return cls(
            max_attempts=config.RETRY_MAX_ATTEMPTS,
            base_delay=config.RETRY_BASE_DELAY,
            max_delay=config.RETRY_MAX_DELAY,
            jitter=config.RETRY_JITTER,
            attempt_timeout=config.PROVIDER_TIMEOUT_SECONDS,
        )

    def scheduled_delay(self, attempt: int) -> float:
        """Delay before the jitter, after the given (1-based) failed attempt."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


@dataclass
class Failure:
    kind: FailureKind
    error: BaseException
    attempts: int
    exhausted: bool = False

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def describe(self) -> str:
        return f"{self.kind.value} after {self.attempts} attempt(s): {self.error}"


@dataclass
class ExecutionResult:
    completion: Optional[RawCompletion] = None
    failure: Optional[Failure] = None
    attempts: int = 0
    delays: List[float] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.completion is not None


class _stop_at_deadline(stop_base):
    """Stop once the absolute deadline on the executor's clock has passed."""

    def __init__(self, deadline: float, clock: Callable[[], float]):
        self.deadline = deadline
        self.clock = clock

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self.clock() >= self.deadline


class RetryExecutor:
    """
    Runs one upstream call with bounded exponential backoff and jitter.

    Retryable failures (throttling, timeouts, transient 5xx/network) sleep
    ``min(base * 2^(attempt-1), max) + uniform(0, jitter)`` and try again.
    Fatal failures stop at once. The result is never raised: callers get an
    ``ExecutionResult`` holding either the completion or the failure.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def _wait(self, policy: RetryPolicy) -> Callable[[RetryCallState], float]:
        exponential = wait_exponential(multiplier=policy.base_delay, max=policy.max_delay)

        def wait(retry_state: RetryCallState) -> float:
            return exponential(retry_state) + self._rng.uniform(0, policy.jitter)

        return wait

    def _before_sleep(self, provider_name: str, policy: RetryPolicy, delays: List[float]):
        def before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            delays.append(delay)
            exc = retry_state.outcome.exception()
            kind = classify_failure(exc)
            logger.info(
                f"[{provider_name}] {kind.value} on attempt {retry_state.attempt_number}/{policy.max_attempts}. "
                f"Retrying in {delay:.2f}s",
                extra={"extra_data": {
                    "event": "provider_retry",
                    "provider": provider_name,
                    "attempt": retry_state.attempt_number,
                    "failure": kind.value,
                    "delay_seconds": round(delay, 3),
                }},
            )
        return before_sleep

    async def _run_attempt(self, attempt_fn: AttemptFn, provider_name: str, attempt: int,
                           policy: RetryPolicy,
                           before_attempt: Optional[Callable[[], Awaitable[Any]]] = None) -> RawCompletion:
        # Slot waits stay outside the attempt timeout
        if before_attempt is not None:
            await before_attempt()
        start = time.perf_counter()
        try:
            if policy.attempt_timeout:
                output = await asyncio.wait_for(attempt_fn(), timeout=policy.attempt_timeout)
            else:
                output = await attempt_fn()
        except Exception as e:
            kind = classify_failure(e)
            logger.warning(
                f"[{provider_name}] attempt {attempt}/{policy.max_attempts} failed ({kind.value}): {str(e)[:200]}",
                extra={"extra_data": {
                    "event": "provider_attempt",
                    "provider": provider_name,
                    "attempt": attempt,
                    "outcome": kind.value,
                    "elapsed_ms": int((time.perf_counter() - start) * 1000),
                }},
            )
            raise

        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"[{provider_name}] attempt {attempt} succeeded in {latency_ms}ms",
            extra={"extra_data": {
                "event": "provider_attempt",
                "provider": provider_name,
                "attempt": attempt,
                "outcome": "ok",
                "elapsed_ms": latency_ms,
            }},
        )
        if isinstance(output, RawCompletion):
            return output
        return RawCompletion(text=output, provider_name=provider_name, latency_ms=latency_ms)

    async def execute(
        self,
        attempt_fn: AttemptFn,
        policy: Optional[RetryPolicy] = None,
        *,
        provider_name: str = "default",
        deadline: Optional[float] = None,
        before_attempt: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> ExecutionResult:
        """
        Execute ``attempt_fn`` under ``policy``.

        Args:
            attempt_fn: Zero-argument coroutine function returning the raw text.
            policy: Overrides the executor's default policy.
            provider_name: Used for logging and for the RawCompletion.
            deadline: Absolute time on the executor's clock after which no new
                attempt is started.
            before_attempt: Awaited before each attempt, outside its timeout.
        """
        policy = policy or self.policy
        delays: List[float] = []
        attempts = 0

        stop = stop_after_attempt(policy.max_attempts)
        if deadline is not None:
            stop = stop | _stop_at_deadline(deadline, self._clock)

        retryer = AsyncRetrying(
            stop=stop,
            wait=self._wait(policy),
            retry=retry_if_exception(lambda e: classify_failure(e).retryable),
            before_sleep=self._before_sleep(provider_name, policy, delays),
            sleep=self._sleep,
            reraise=True,
        )

        completion: Optional[RawCompletion] = None
        try:
            async for attempt in retryer:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    completion = await self._run_attempt(
                        attempt_fn, provider_name, attempts, policy, before_attempt
                    )
        except Exception as e:
            kind = classify_failure(e)
            failure = Failure(kind=kind, error=e, attempts=attempts, exhausted=kind.retryable)
            if failure.exhausted:
                logger.error(f"[{provider_name}] retries exhausted: {failure.describe()}")
            else:
                logger.error(f"[{provider_name}] non-retryable failure: {failure.describe()}")
            return ExecutionResult(failure=failure, attempts=attempts, delays=delays)

        return ExecutionResult(completion=completion, attempts=attempts, delays=delays)

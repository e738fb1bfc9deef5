import logging
import threading
import time
from typing import Callable, Optional

from coach_ai.schemas.generation import ProviderHealth

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    Consecutive-failure counter for one provider.

    Opens after ``failure_threshold`` failures; once ``recovery_seconds``
    have passed since the last failure the counter resets and the provider
    is tried again.
    """

    def __init__(self, name: str, failure_threshold: int = 3, recovery_seconds: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_seconds = recovery_seconds
        self._clock = clock
        self._failures = 0
        self._last_failure: Optional[float] = None
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        with self._lock:
            if self._failures < self.failure_threshold:
                return True
            if self._last_failure is not None and self._clock() - self._last_failure > self.recovery_seconds:
                logger.info(f"Resetting circuit breaker for {self.name}")
                self._failures = 0
                self._last_failure = None
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._last_failure = None

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure = self._clock()
            failures = self._failures
        logger.info(f"Service failure recorded for {self.name}: {failures}/{self.failure_threshold}")
        if failures == self.failure_threshold:
            logger.warning(f"Circuit breaker open for {self.name} ({failures} failures)")

    def reset(self) -> None:
        self.record_success()

    def health(self) -> ProviderHealth:
        available = self.is_available()
        with self._lock:
            return ProviderHealth(
                name=self.name,
                available=available,
                failures=self._failures,
                last_failure_at=self._last_failure,
            )

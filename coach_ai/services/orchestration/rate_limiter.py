from __future__ import annotations
import asyncio
import logging
from collections import deque, defaultdict
from datetime import datetime, timezone, timedelta
from typing import Dict, Optional

from coach_ai.core.config import settings

logger = logging.getLogger(__name__)


class ServiceRateLimiter:
    """
    Per-provider requests-per-minute window plus a "penalty box".

    Does NOT handle retries or errors, just counts. A provider that answered
    with a throttling hint is blocked for everyone until the hint expires.
    """
    def __init__(self, limits: Optional[Dict[str, int]] = None, default_rpm: int = settings.DEFAULT_RPM,
                 window_seconds: float = 60.0):
        # RPM tracking (sliding window)
        self._services: Dict[str, deque] = defaultdict(deque)
        self._limits = dict(limits or {})
        self._default_rpm = default_rpm
        self._window = timedelta(seconds=window_seconds)
        self._blocked_until: Dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, config=settings) -> "ServiceRateLimiter":
        return cls(
            limits={
                'sealion': config.SEALION_RPM,
                'openai': config.OPENAI_RPM,
                'groq': config.GROQ_RPM,
                'gemini': config.GEMINI_RPM,
            },
            default_rpm=config.DEFAULT_RPM,
        )

    def limit_for(self, service: str) -> int:
        return self._limits.get(service, self._default_rpm)

    async def acquire_slot(self, service: str):
        """Blocks until a slot is available for the given service."""
        while True:
            async with self._lock:
                now = datetime.now(timezone.utc)
                wait_time = self._blocked_for(service, now)
                if wait_time == 0:
                    wait_time = self._check_rpm_and_acquire(service, now)
                    if wait_time == 0:
                        return

            # Sleep outside the lock
            await asyncio.sleep(wait_time)

    def _blocked_for(self, service: str, now: datetime) -> float:
        blocked_until = self._blocked_until.get(service)
        if blocked_until is None:
            return 0.0
        if now < blocked_until:
            wait_time = (blocked_until - now).total_seconds()
            logger.warning(f"Service {service} is blocked. Waiting {wait_time:.1f}s...")
            return wait_time
        del self._blocked_until[service]  # Release block
        return 0.0

    def _check_rpm_and_acquire(self, service: str, now: datetime) -> float:
        """Check RPM limits and acquire slot if available."""
        history = self._services[service]
        limit = self.limit_for(service)

        while history and history[0] <= now - self._window:
            history.popleft()

        # If full, wait for the oldest request to expire
        if len(history) >= limit:
            wait_time = (history[0] + self._window - now).total_seconds()
            if wait_time > 0:
                logger.info(f"RPM limit for {service}. Waiting {wait_time:.2f}s")
                return wait_time

        history.append(now)
        return 0.0

    async def block_service(self, service: str, seconds: float):
        """Blocks a service after a throttling response carrying a retry hint."""
        if seconds <= 0:
            return
        async with self._lock:
            logger.warning(f"Blocking {service} for {seconds:.1f}s due to API rejection.")
            self._blocked_until[service] = datetime.now(timezone.utc) + timedelta(seconds=seconds)

    def in_window(self, service: str) -> int:
        """Number of requests recorded for the service in the current window."""
        return len(self._services[service])

import random
from typing import List, Optional, Sequence, Union

import pytest

from coach_ai.schemas.generation import GenerationKind, ProviderCall, ProviderDescriptor
from coach_ai.services.orchestration import (
    BoundedCache,
    ProviderRouter,
    RetryExecutor,
    RetryPolicy,
    ServiceRateLimiter,
)
from coach_ai.services.providers import ProviderRegistry

QUESTION_JSON = (
    '{"questionText": "Tell me about a time you led a team through a tight deadline?", '
    '"questionCategory": "leadership", "difficultyLevel": "intermediate"}'
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep: records delays, returns immediately."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.delays: List[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeProvider:
    """
    Scripted provider. Each invoke pops the next outcome: an exception
    instance is raised, a string is returned. The last outcome repeats.
    """

    def __init__(self, name: str, outcomes: Sequence[Union[str, BaseException]], priority: int = 100,
                 languages=frozenset({"*"}), capabilities=frozenset(GenerationKind)):
        self.descriptor = ProviderDescriptor(
            name=name, priority=priority, supported_languages=frozenset(languages), capabilities=capabilities
        )
        self.outcomes = list(outcomes)
        self.calls: List[ProviderCall] = []

    @property
    def name(self) -> str:
        return self.descriptor.name

    async def invoke(self, call: ProviderCall) -> str:
        self.calls.append(call)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class StatusError(Exception):
    """SDK-style error carrying an HTTP status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=60.0, jitter=1.0, attempt_timeout=None)


@pytest.fixture
def executor(policy, sleep, clock) -> RetryExecutor:
    return RetryExecutor(policy, sleep=sleep, rng=random.Random(7), clock=clock)


@pytest.fixture
def make_router(executor, policy, clock):
    """Build a router over the given fake providers with instant sleeps."""

    def factory(*providers, capacity: int = 100, deadline_seconds: Optional[float] = None,
                rate_limiter: Optional[ServiceRateLimiter] = None, **kwargs) -> ProviderRouter:
        registry = ProviderRegistry(providers, clock=clock)
        return ProviderRouter(
            registry,
            BoundedCache(capacity=capacity, clock=clock),
            executor=executor,
            policy=policy,
            rate_limiter=rate_limiter,
            deadline_seconds=deadline_seconds,
            **kwargs,
        )

    return factory

import asyncio
import time

import pytest

from coach_ai.core.exceptions import InvalidRequestError, ProviderAuthError, ProviderThrottledError
from coach_ai.schemas.generation import GenerationKind, GenerationRequest
from coach_ai.services.orchestration import (
    BoundedCache,
    ProviderRouter,
    RetryExecutor,
    RetryPolicy,
    ServiceRateLimiter,
    TemplateTable,
    fingerprint,
)
from coach_ai.services.orchestration.router import CACHE_SOURCE, TEMPLATE_SOURCE
from coach_ai.services.providers import ProviderRegistry
from coach_ai.tests.conftest import QUESTION_JSON, FakeProvider, StatusError

PERSONA_JSON = '{"name": "Mei Ling", "title": "Engineering Manager"}'


def question_request(session_id: str = "s1", **context) -> GenerationRequest:
    prompt_context = {"job_position": "Backend Engineer", **context}
    return GenerationRequest(kind=GenerationKind.QUESTION, prompt_context=prompt_context, session_id=session_id)


async def test_throttled_then_fatal_falls_through_to_next_provider(make_router, sleep):
    primary = FakeProvider("primary", [
        ProviderThrottledError("429"), ProviderThrottledError("429"), ProviderThrottledError("429"),
        ProviderAuthError("key revoked"), QUESTION_JSON,
    ], priority=1)
    secondary = FakeProvider("secondary", [QUESTION_JSON], priority=2)
    router = make_router(primary, secondary)

    result = await router.generate(question_request())

    assert len(primary.calls) == 4
    assert len(secondary.calls) == 1
    assert result.source_provider == "secondary"
    assert not result.used_fallback
    assert result.fields["question_text"] == "Tell me about a time you led a team through a tight deadline?"
    assert len(sleep.delays) == 3

    metrics = router.metrics.snapshot()
    assert metrics["retries"] == 3
    assert metrics["provider_failures"] == 1
    assert metrics["fallbacks"] == 0


async def test_all_providers_failing_returns_template(make_router):
    failing = [
        FakeProvider("a", [ProviderAuthError("bad key")], priority=1),
        FakeProvider("b", [StatusError("invalid", 400)], priority=2),
    ]
    router = make_router(*failing)

    result = await router.generate(question_request())

    assert result.used_fallback
    assert result.source_provider == TEMPLATE_SOURCE
    assert result.fields["question_text"] == (
        "Tell me about yourself and why you are interested in the Backend Engineer position."
    )
    assert router.metrics.snapshot()["fallback_rate"] == 1.0


async def test_no_registered_provider_returns_template(make_router):
    router = make_router()
    request = GenerationRequest(
        kind=GenerationKind.PERSONA,
        prompt_context={"job_position": "Analyst", "company": "Acme"},
        session_id="s1",
    )

    result = await router.generate(request)

    assert result.used_fallback
    assert result.fields["title"] == "Hiring Manager, Acme"


async def test_unparseable_completion_tries_next_provider(make_router):
    chatty = FakeProvider("chatty", ["OK"], priority=1)
    solid = FakeProvider("solid", [QUESTION_JSON], priority=2)
    router = make_router(chatty, solid)

    result = await router.generate(question_request())

    assert result.source_provider == "solid"
    assert len(chatty.calls) == 1
    assert router.metrics.snapshot()["parse_failures"] == 1
    assert {h.name: h.failures for h in router.registry.health()}["chatty"] == 1


async def test_repeated_request_is_served_from_cache(make_router):
    provider = FakeProvider("p", [QUESTION_JSON])
    router = make_router(provider)

    first = await router.generate(question_request(session_id="s1"))
    second = await router.generate(question_request(session_id="s2"))

    assert len(provider.calls) == 1
    assert second.fields == first.fields
    assert first.source_provider == "p"
    assert second.source_provider == CACHE_SOURCE
    assert router.metrics.snapshot()["cache_hits"] == 1


async def test_cached_result_is_isolated_from_callers(make_router):
    router = make_router(FakeProvider("p", [QUESTION_JSON]))

    first = await router.generate(question_request())
    first.fields["question_text"] = "changed"
    second = await router.generate(question_request())

    assert second.fields["question_text"] != "changed"


async def test_template_result_expires_quickly(make_router, clock):
    provider = FakeProvider("p", [ProviderAuthError("bad"), QUESTION_JSON])
    router = make_router(provider, fallback_ttl=60.0)

    assert (await router.generate(question_request())).used_fallback
    assert (await router.generate(question_request())).source_provider == CACHE_SOURCE
    assert len(provider.calls) == 1

    clock.advance(61)
    result = await router.generate(question_request())
    assert result.source_provider == "p"


async def test_different_language_is_a_different_key():
    base = question_request()
    other = GenerationRequest(
        kind=GenerationKind.QUESTION, prompt_context=dict(base.prompt_context), target_language="ID", session_id="x"
    )
    assert other.target_language == "id"
    assert fingerprint(base) != fingerprint(other)
    assert fingerprint(base) == fingerprint(question_request(session_id="other"))


def test_request_context_is_frozen_at_construction():
    context = {"job_position": "Backend Engineer"}
    request = GenerationRequest(kind=GenerationKind.QUESTION, prompt_context=context, session_id="s1")
    key = fingerprint(request)

    context["job_position"] = "Chef"
    assert request.prompt_context["job_position"] == "Backend Engineer"
    assert fingerprint(request) == key

    with pytest.raises(TypeError):
        request.prompt_context["job_position"] = "Chef"
    assert request.model_dump()["prompt_context"] == {"job_position": "Backend Engineer"}


async def test_deadline_returns_template(make_router):
    class Hanging(FakeProvider):
        async def invoke(self, call):
            self.calls.append(call)
            await asyncio.sleep(5)
            return QUESTION_JSON

    router = make_router(Hanging("slow", ["unused"]), deadline_seconds=0.05)

    start = time.perf_counter()
    result = await router.generate(question_request())

    assert time.perf_counter() - start < 2
    assert result.used_fallback
    assert router.metrics.snapshot()["deadline_expired"] == 1


async def test_missing_prompt_field_raises(make_router):
    provider = FakeProvider("p", [QUESTION_JSON])
    router = make_router(provider)
    request = GenerationRequest(kind=GenerationKind.ASSESSMENT, prompt_context={"question": "Why?"}, session_id="s1")

    with pytest.raises(InvalidRequestError) as exc_info:
        await router.generate(request)

    assert exc_info.value.details["missing"] == ["response"]
    assert provider.calls == []


async def test_open_circuit_skips_provider(make_router):
    broken = FakeProvider("broken", [ProviderAuthError("bad key")], priority=1)
    healthy = FakeProvider("healthy", [PERSONA_JSON], priority=2)
    router = make_router(broken, healthy)

    for company in ("A", "B", "C", "D"):
        request = GenerationRequest(
            kind=GenerationKind.PERSONA,
            prompt_context={"job_position": "Engineer", "company": company},
            session_id="s1",
        )
        result = await router.generate(request)
        assert result.source_provider == "healthy"

    assert len(broken.calls) == 3
    assert len(healthy.calls) == 4


async def test_throttle_hint_blocks_provider_in_rate_limiter(make_router):
    limiter = ServiceRateLimiter(window_seconds=10)
    provider = FakeProvider("p", [ProviderThrottledError("slow down", retry_after=0.1), QUESTION_JSON])
    router = make_router(provider, rate_limiter=limiter)

    start = time.perf_counter()
    result = await router.generate(question_request())

    assert result.source_provider == "p"
    assert len(provider.calls) == 2
    assert time.perf_counter() - start >= 0.08


async def test_slot_wait_does_not_count_against_attempt_timeout(sleep, clock):
    limiter = ServiceRateLimiter(window_seconds=10)
    await limiter.block_service("p", 0.1)
    provider = FakeProvider("p", [QUESTION_JSON])
    policy = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=60.0, jitter=1.0, attempt_timeout=0.05)
    router = ProviderRouter(
        ProviderRegistry([provider], clock=clock),
        BoundedCache(clock=clock),
        executor=RetryExecutor(policy, sleep=sleep, clock=clock),
        policy=policy,
        rate_limiter=limiter,
    )

    result = await router.generate(question_request())

    assert result.source_provider == "p"
    assert len(provider.calls) == 1
    assert sleep.delays == []
    assert router.metrics.snapshot()["retries"] == 0


@pytest.mark.parametrize("kind, context", [
    (GenerationKind.QUESTION, {"job_position": "Nurse"}),
    (GenerationKind.PERSONA, {"job_position": "Nurse", "company": "Acme"}),
    (GenerationKind.ASSESSMENT, {"question": "Why nursing?", "response": "I like helping people."}),
    (GenerationKind.TRANSLATION, {"text": "Tell me about yourself."}),
])
async def test_non_english_default_without_providers_returns_template(clock, kind, context):
    router = ProviderRouter(
        ProviderRegistry(default_language="th", clock=clock),
        BoundedCache(clock=clock),
        templates=TemplateTable("th"),
    )
    request = GenerationRequest(kind=kind, prompt_context=context, target_language="th", session_id="s1")

    result = await router.generate(request)

    assert result.used_fallback
    assert result.source_provider == TEMPLATE_SOURCE
    assert result.fields

import pytest

from coach_ai.schemas.generation import GenerationKind
from coach_ai.services.providers import CircuitBreaker, ProviderRegistry
from coach_ai.tests.conftest import FakeProvider

SEA_LANGUAGES = {"en", "id", "ms", "th", "vi", "zh-sg"}


@pytest.fixture
def registry(clock):
    return ProviderRegistry(
        [
            FakeProvider("gemini", ["x"], priority=4),
            FakeProvider("groq", ["x"], priority=3),
            FakeProvider("sealion", ["x"], priority=1, languages=SEA_LANGUAGES),
            FakeProvider("openai", ["x"], priority=2),
            FakeProvider("english-only", ["x"], priority=0, languages={"en"}),
        ],
        clock=clock,
    )


def names(providers):
    return [provider.name for provider in providers]


def test_language_specialist_ranks_first(registry):
    assert names(registry.ordered_for(GenerationKind.QUESTION, "id")) == ["sealion", "openai", "groq", "gemini"]


def test_default_language_only_provider_ranks_last(registry):
    assert names(registry.ordered_for(GenerationKind.QUESTION, "en")) == [
        "sealion", "openai", "groq", "gemini", "english-only",
    ]


def test_unsupported_language_skips_specialists(registry):
    assert names(registry.ordered_for(GenerationKind.QUESTION, "ja")) == ["openai", "groq", "gemini"]


def test_capability_filter(clock):
    registry = ProviderRegistry(
        [
            FakeProvider("translator", ["x"], capabilities=frozenset({GenerationKind.TRANSLATION})),
            FakeProvider("general", ["x"], priority=200),
        ],
        clock=clock,
    )
    assert names(registry.ordered_for(GenerationKind.QUESTION, "en")) == ["general"]
    assert names(registry.ordered_for(GenerationKind.TRANSLATION, "en")) == ["translator", "general"]


def test_ties_broken_by_name(clock):
    registry = ProviderRegistry([FakeProvider("b", ["x"]), FakeProvider("a", ["x"])], clock=clock)
    assert names(registry.ordered_for(GenerationKind.PERSONA, "en")) == ["a", "b"]


def test_duplicate_registration_rejected(registry):
    with pytest.raises(ValueError):
        registry.register(FakeProvider("groq", ["x"]))


def test_open_circuit_removes_provider_until_recovery(registry, clock):
    for _ in range(3):
        registry.record_failure("sealion")

    assert "sealion" not in names(registry.ordered_for(GenerationKind.QUESTION, "id"))
    health = {h.name: h for h in registry.health()}
    assert not health["sealion"].available
    assert health["sealion"].failures == 3

    clock.advance(301)
    assert names(registry.ordered_for(GenerationKind.QUESTION, "id"))[0] == "sealion"


def test_success_resets_failures(registry):
    registry.record_failure("groq")
    registry.record_failure("groq")
    registry.record_success("groq")
    registry.record_failure("groq")

    assert "groq" in names(registry.ordered_for(GenerationKind.QUESTION, "en"))


def test_reset_circuit_breakers(registry):
    for _ in range(3):
        registry.record_failure("openai")
    registry.reset_circuit_breakers()

    assert all(h.available and h.failures == 0 for h in registry.health())


def test_descriptors_reflect_availability(registry):
    for _ in range(3):
        registry.record_failure("gemini")
    availability = {d.name: d.is_available for d in registry.descriptors()}
    assert availability["gemini"] is False
    assert availability["groq"] is True


def test_circuit_breaker_threshold(clock):
    breaker = CircuitBreaker("p", failure_threshold=2, recovery_seconds=10, clock=clock)
    breaker.record_failure()
    assert breaker.is_available()
    breaker.record_failure()
    assert not breaker.is_available()

    clock.advance(10)
    assert not breaker.is_available()
    clock.advance(0.1)
    assert breaker.is_available()
    assert breaker.health().failures == 0

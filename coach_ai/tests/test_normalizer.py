import pytest

from coach_ai.schemas.generation import GenerationKind, NormalizedResult, RawCompletion
from coach_ai.services.orchestration.normalizer import (
    ParseError,
    ResponseNormalizer,
    ensure_terminal_punctuation,
    iter_balanced_objects,
    strip_reasoning,
)


@pytest.fixture
def normalizer() -> ResponseNormalizer:
    return ResponseNormalizer()


def raw(text: str, provider: str = "sealion") -> RawCompletion:
    return RawCompletion(text=text, provider_name=provider)


# --- reasoning stripping ---

def test_reasoning_block_is_removed_before_heuristics(normalizer):
    text = (
        "<think>\nThe candidate is a backend engineer. Maybe ask about {debugging}?\n</think>\n"
        "Tell me about a challenge you solved."
    )
    result = normalizer.normalize(raw(text), GenerationKind.QUESTION)

    assert isinstance(result, NormalizedResult)
    assert result.fields["question_text"] == "Tell me about a challenge you solved."
    assert result.source_provider == "sealion"
    assert not result.used_fallback


def test_quoted_statement_after_reasoning(normalizer):
    text = (
        "<think>The user wants one behavioral question. Keep it short.</think>\n"
        "\"Tell me about a challenge you solved.\" This is a good behavioral question."
    )
    result = normalizer.normalize(raw(text), GenerationKind.QUESTION)
    assert result.fields["question_text"] == "Tell me about a challenge you solved."


def test_strip_reasoning_variants():
    assert strip_reasoning("<thinking>plan</thinking>Answer") == "Answer"
    assert strip_reasoning("leaked plan</think>\nWhat is your greatest strength?") == "What is your greatest strength?"
    assert strip_reasoning("Answer first <reasoning>never closed") == "Answer first"
    assert strip_reasoning("No tags here") == "No tags here"


def test_only_reasoning_is_a_parse_error(normalizer):
    result = normalizer.normalize(raw("<think>still reasoning about what to ask"), GenerationKind.QUESTION)

    assert isinstance(result, ParseError)
    assert result.provider_name == "sealion"
    assert "empty" in result.reason


# --- structured extraction ---

def test_json_inside_fences_and_commentary(normalizer):
    text = (
        "Sure! Here is the question:\n```json\n"
        '{"questionText": "How do you prioritise tasks", "difficultyLevel": "hard"}\n'
        "```\nGood luck!"
    )
    result = normalizer.normalize(raw(text, "groq"), GenerationKind.QUESTION)

    assert result.fields["question_text"] == "How do you prioritise tasks?"
    assert result.fields["difficulty_level"] == "hard"
    assert result.fields["question_type"] == "behavioral"
    assert result.source_provider == "groq"


def test_invalid_outer_object_falls_back_to_inner(normalizer):
    text = '{"meta": {"questionText": "Why this company?"}, "score": 1}'
    fields = normalizer.extract_structured(text, GenerationKind.QUESTION)
    assert fields["question_text"] == "Why this company?"


def test_braces_inside_strings_do_not_split_objects():
    text = 'prefix {"a": "x } y", "b": {"c": 1}} suffix'
    spans = list(iter_balanced_objects(text))
    assert (text.index("{"), text.rindex("}") + 1) in spans


def test_persona_json(normalizer):
    text = 'Persona:\n{"name": "Mei Ling", "title": "Engineering Manager", "style": "direct"}'
    result = normalizer.normalize(raw(text, "openai"), GenerationKind.PERSONA)

    assert result.fields["name"] == "Mei Ling"
    assert result.fields["style"] == "direct"
    assert result.fields["personality"] == "friendly and structured"


def test_persona_without_json_is_a_parse_error(normalizer):
    result = normalizer.normalize(raw("The interviewer is Mei Ling, a manager."), GenerationKind.PERSONA)
    assert isinstance(result, ParseError)


def test_assessment_json(normalizer):
    text = (
        '{"overall": 4.5, "situation": 4, "action": 5, "qualitative": "Clear structure.", '
        '"strengths": ["specific metrics"], "improvements": []}'
    )
    result = normalizer.normalize(raw(text), GenerationKind.ASSESSMENT)

    assert result.fields["overall"] == 4.5
    assert result.fields["task"] is None
    assert result.fields["strengths"] == ["specific metrics"]


def test_translation_requires_json(normalizer):
    ok = normalizer.normalize(raw('{"translatedText": "Ceritakan tentang diri Anda."}'), GenerationKind.TRANSLATION)
    assert ok.fields["translated_text"] == "Ceritakan tentang diri Anda."

    failed = normalizer.normalize(raw("Ceritakan tentang diri Anda."), GenerationKind.TRANSLATION)
    assert isinstance(failed, ParseError)


def test_chinese_question_gets_fullwidth_mark(normalizer):
    fields = normalizer.extract_structured('{"question_text": "请描述一次你解决冲突的经历"}', GenerationKind.QUESTION, "zh-sg")
    assert fields["question_text"] == "请描述一次你解决冲突的经历？"


# --- question heuristics ---

def test_quoted_question_is_preferred(normalizer):
    text = 'Here is a good one: "What motivates you to join our team?" Let me know if you need more.'
    assert normalizer.extract_question(text) == "What motivates you to join our team?"


def test_starter_line_after_list_and_label_prefixes(normalizer):
    text = (
        "Sure, here's an interview question for you.\n\n"
        "1. **Question:** Describe a time you resolved a conflict at work.\n\n"
        "This assesses teamwork."
    )
    assert normalizer.extract_question(text) == "Describe a time you resolved a conflict at work."


def test_line_with_question_mark(normalizer):
    text = "Great question to consider.\nIn your last role, what was the hardest bug you fixed? Explain briefly."
    assert normalizer.extract_question(text) == "In your last role, what was the hardest bug you fixed?"


def test_longest_sentence_like_line(normalizer):
    text = "Leadership under pressure\nThe candidate should walk through a production incident they handled"
    assert normalizer.extract_question(text) == (
        "The candidate should walk through a production incident they handled."
    )


def test_localized_starter(normalizer):
    question = normalizer.extract_question("Ceritakan pengalaman Anda memimpin tim", "id")
    assert question == "Ceritakan pengalaman Anda memimpin tim?"


def test_too_short_text_is_rejected(normalizer):
    assert normalizer.extract_question("OK") is None
    assert isinstance(normalizer.normalize(raw("OK"), GenerationKind.QUESTION), ParseError)


@pytest.mark.parametrize("text", ["", "{" * 500, "}{}{", "```", "<think></think>", "\x00\x01"])
def test_normalize_never_raises(normalizer, text):
    for kind in GenerationKind:
        result = normalizer.normalize(raw(text), kind)
        assert isinstance(result, (ParseError, NormalizedResult))


@pytest.mark.parametrize("text, language, expected", [
    ("Tell me more", "en", "Tell me more?"),
    ("This is a statement", "en", "This is a statement."),
    ("Already done!", "en", "Already done!"),
    ("你好", "zh-sg", "你好？"),
])
def test_ensure_terminal_punctuation(text, language, expected):
    assert ensure_terminal_punctuation(text, language) == expected

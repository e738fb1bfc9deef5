from typing import Dict, Tuple

from coach_ai.schemas.generation import ChatMessage, GenerationKind, GenerationRequest, ProviderCall

LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "id": "Bahasa Indonesia",
    "ms": "Bahasa Melayu",
    "th": "Thai",
    "vi": "Vietnamese",
    "tl": "Filipino",
    "fil": "Filipino",
    "my": "Burmese",
    "km": "Khmer",
    "lo": "Lao",
    "zh-sg": "Chinese (Singapore)",
}

# Prompt keys a caller must supply for each kind
REQUIRED_CONTEXT: Dict[GenerationKind, Tuple[str, ...]] = {
    GenerationKind.QUESTION: ("job_position",),
    GenerationKind.PERSONA: ("job_position", "company"),
    GenerationKind.ASSESSMENT: ("question", "response"),
    GenerationKind.TRANSLATION: ("text",),
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def language_instruction(code: str) -> str:
    if code == "en":
        return "Respond in English."
    instruction = f"Respond in {language_name(code)}. Do not add explanations or translations."
    if code == "zh-sg":
        instruction += " Use Chinese characters only: no pinyin, no English, no bracketed notes."
    return instruction


def generate_question_prompt(context: Dict[str, str], language: str) -> Tuple[str, str]:
    """
    Generate the prompt for the next interview question.

    Args:
        context: Prompt context; ``job_position`` is required.
        language: Target language code.

    Returns:
        (system prompt, user prompt)
    """
    system = (
        "You are an expert interview coach with deep knowledge of hiring practices "
        "in Southeast Asian job markets. Ask exactly ONE interview question. "
        "Do not include your reasoning. " + language_instruction(language)
    )
    user = (
        "Generate the next interview question.\n\n"
        "Context:\n"
        f"- Job Position: {context['job_position']}\n"
        f"- Company: {context.get('company', 'Tech company')}\n"
        f"- Interview Stage: {context.get('interview_stage', 'behavioral')}\n"
        f"- Experience Level: {context.get('experience_level', 'mid-level')}\n"
        f"- Difficulty: {context.get('difficulty_level', 'intermediate')}\n"
        f"- Question Number: {context.get('question_number', '1')}\n"
        f"- Focus Areas: {context.get('focus_areas', 'general')}\n"
        f"- Previous Questions: {context.get('previous_questions', 'none')}\n\n"
        "Return ONLY a JSON object with this structure:\n"
        "{\"questionText\": \"...\", \"questionTextTranslated\": \"...\", "
        "\"questionCategory\": \"leadership|problem-solving|teamwork|technical|cultural\", "
        "\"questionType\": \"behavioral|situational|technical|cultural\", "
        "\"difficultyLevel\": \"beginner|intermediate|advanced\", \"expectedAnswerTime\": 180, "
        "\"culturalContext\": \"...\", \"starMethodRelevant\": true}"
    )
    return system, user


def generate_persona_prompt(context: Dict[str, str], language: str) -> Tuple[str, str]:
    system = (
        "You generate realistic interviewer personas for job interview practice, matched "
        "to the actual role and company culture. " + language_instruction(language)
    )
    user = (
        "Create an interviewer persona for:\n"
        f"- Interview Stage: {context.get('interview_stage', 'behavioral')}\n"
        f"- Target Role: {context['job_position']}\n"
        f"- Target Company: {context['company']}\n\n"
        "Return ONLY a JSON object with this structure:\n"
        "{\"name\": \"...\", \"title\": \"...\", \"style\": \"...\", \"personality\": \"...\"}"
    )
    return system, user


def generate_assessment_prompt(context: Dict[str, str], language: str) -> Tuple[str, str]:
    system = (
        "You are an expert interview coach evaluating answers with the STAR method "
        "(Situation, Task, Action, Result). Score each part from 1 to 5. "
        + language_instruction(language)
    )
    user = (
        f"Position: {context.get('job_position', 'Professional role')}\n"
        f"Company: {context.get('company', 'Technology company')}\n\n"
        f"QUESTION: {context['question']}\n\n"
        f"CANDIDATE ANSWER: {context['response']}\n\n"
        "Return ONLY a JSON object with this structure:\n"
        "{\"situation\": 3, \"task\": 3, \"action\": 3, \"result\": 3, \"flow\": 3, \"overall\": 3, "
        "\"qualitative\": \"...\", \"strengths\": [\"...\"], \"improvements\": [\"...\"], "
        "\"recommendations\": [\"...\"]}"
    )
    return system, user


def generate_translation_prompt(context: Dict[str, str], language: str) -> Tuple[str, str]:
    source = context.get("source_language", "en")
    system = (
        "You are a professional translator for interview coaching content. "
        "Translate faithfully and keep the tone professional."
    )
    user = (
        f"Translate the following text from {language_name(source)} to {language_name(language)}.\n\n"
        f"TEXT:\n{context['text']}\n\n"
        "Return ONLY a JSON object with this structure:\n"
        "{\"translatedText\": \"...\", \"sourceLanguage\": \"" + source + "\", "
        "\"targetLanguage\": \"" + language + "\"}"
    )
    return system, user


_BUILDERS = {
    GenerationKind.QUESTION: generate_question_prompt,
    GenerationKind.PERSONA: generate_persona_prompt,
    GenerationKind.ASSESSMENT: generate_assessment_prompt,
    GenerationKind.TRANSLATION: generate_translation_prompt,
}


def build_provider_call(request: GenerationRequest) -> ProviderCall:
    """Build the transport payload for a validated request."""
    system, user = _BUILDERS[request.kind](request.prompt_context, request.target_language)
    return ProviderCall(
        system_prompt=system,
        messages=[ChatMessage(role="user", content=user)],
        max_tokens=request.max_tokens,
        temperature=request.temperature,
    )

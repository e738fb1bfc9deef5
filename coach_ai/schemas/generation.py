from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator

# --- Request / result models ---

class GenerationKind(str, Enum):
    QUESTION = "question"
    PERSONA = "persona"
    ASSESSMENT = "assessment"
    TRANSLATION = "translation"


class GenerationRequest(BaseModel):
    """A single content-generation request. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    kind: GenerationKind
    prompt_context: Mapping[str, str] = Field(
        default_factory=dict,
        validate_default=True,
        description="Caller-supplied prompt inputs (job position, company, answer text, ...)."
    )
    target_language: str = Field(default="en", min_length=1)
    session_id: str = Field(..., min_length=1)
    max_tokens: int = Field(default=1000, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    @field_validator("target_language")
    @classmethod
    def _normalize_language(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("prompt_context")
    @classmethod
    def _freeze_context(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        # Read-only copy, detached from the caller's dict
        return MappingProxyType(dict(value))

    @field_serializer("prompt_context")
    def _dump_context(self, value: Mapping[str, str]) -> dict[str, str]:
        return dict(value)


class ChatMessage(BaseModel):
    """Single chat turn: user or assistant."""
    role: str
    content: str


class ProviderCall(BaseModel):
    """Transport payload handed to a provider."""
    system_prompt: str
    messages: list[ChatMessage]
    max_tokens: int
    temperature: float


class ProviderDescriptor(BaseModel):
    """Read-only configuration of one provider."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    priority: int = 100
    supported_languages: frozenset[str] = Field(
        default=frozenset({"*"}),
        description="Language codes served; '*' marks a general-purpose provider."
    )
    capabilities: frozenset[GenerationKind] = frozenset(GenerationKind)
    is_available: bool = True

    @property
    def is_general_purpose(self) -> bool:
        return "*" in self.supported_languages

    def supports(self, kind: GenerationKind, language: str) -> bool:
        if kind not in self.capabilities:
            return False
        return self.is_general_purpose or language in self.supported_languages


class RawCompletion(BaseModel):
    text: str
    provider_name: str
    latency_ms: int = 0


class NormalizedResult(BaseModel):
    """The unit returned to callers and stored in the cache."""
    kind: GenerationKind
    fields: dict[str, Any]
    source_provider: str
    used_fallback: bool = False


# --- Gate / cache / health state ---

class SessionStatus(str, Enum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    COMPLETED = "completed"


class SessionGateState(BaseModel):
    session_id: str
    calls_made: int = 0
    call_limit: int
    status: SessionStatus = SessionStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status is not SessionStatus.ACTIVE


class CacheStats(BaseModel):
    size: int
    capacity: int
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0


class ProviderHealth(BaseModel):
    name: str
    available: bool
    failures: int
    last_failure_at: Optional[float] = None


# --- Per-kind field schemas validated by the response normalizer ---

class _FieldsModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class QuestionFields(_FieldsModel):
    question_text: str = Field(..., validation_alias=AliasChoices("question_text", "questionText", "question"))
    question_text_translated: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("question_text_translated", "questionTextTranslated")
    )
    question_category: str = Field(default="general", validation_alias=AliasChoices("question_category", "questionCategory"))
    question_type: str = Field(default="behavioral", validation_alias=AliasChoices("question_type", "questionType"))
    difficulty_level: str = Field(default="intermediate", validation_alias=AliasChoices("difficulty_level", "difficultyLevel"))
    expected_answer_time: int = Field(default=180, validation_alias=AliasChoices("expected_answer_time", "expectedAnswerTime"))
    cultural_context: str = Field(default="", validation_alias=AliasChoices("cultural_context", "culturalContext"))
    star_method_relevant: bool = Field(default=True, validation_alias=AliasChoices("star_method_relevant", "starMethodRelevant"))

    @field_validator("question_text")
    @classmethod
    def _question_not_blank(cls, value: str) -> str:
        value = " ".join(value.split())
        if not value:
            raise ValueError("question_text is empty")
        return value


class PersonaFields(_FieldsModel):
    name: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    style: str = "professional"
    personality: str = "friendly and structured"


class AssessmentFields(_FieldsModel):
    """STAR assessment of one candidate answer."""
    overall: float
    situation: Optional[float] = None
    task: Optional[float] = None
    action: Optional[float] = None
    result: Optional[float] = None
    flow: Optional[float] = None
    qualitative: str = ""
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class TranslationFields(_FieldsModel):
    translated_text: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("translated_text", "translatedText", "translation")
    )
    source_language: Optional[str] = Field(default=None, validation_alias=AliasChoices("source_language", "sourceLanguage"))
    target_language: Optional[str] = Field(default=None, validation_alias=AliasChoices("target_language", "targetLanguage"))


FIELD_SCHEMAS: dict[GenerationKind, type[_FieldsModel]] = {
    GenerationKind.QUESTION: QuestionFields,
    GenerationKind.PERSONA: PersonaFields,
    GenerationKind.ASSESSMENT: AssessmentFields,
    GenerationKind.TRANSLATION: TranslationFields,
}

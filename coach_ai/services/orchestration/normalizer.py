"""
Tolerant parsing of raw model completions.

Providers return free text that may carry reasoning blocks, markdown fences,
commentary around a JSON object, or several candidate questions. The
normalizer tries, in order: reasoning stripping, structured (JSON) extraction
validated against the kind's schema, and for questions a line-based
heuristic. It never raises; failures come back as ``ParseError``.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Tuple, Union

from pydantic import ValidationError

from coach_ai.schemas.generation import (
    FIELD_SCHEMAS,
    GenerationKind,
    NormalizedResult,
    RawCompletion,
)

logger = logging.getLogger(__name__)

_REASONING_TAGS = ("think", "thinking", "reasoning", "reflection")
_CLOSED_BLOCK = re.compile(
    r"<(%s)\b[^>]*>.*?</\1\s*>" % "|".join(_REASONING_TAGS), re.IGNORECASE | re.DOTALL
)
_UNCLOSED_OPEN = re.compile(r"<(?:%s)\b[^>]*>.*\Z" % "|".join(_REASONING_TAGS), re.IGNORECASE | re.DOTALL)
_ORPHAN_CLOSE = re.compile(r"\A.*</(?:%s)\s*>" % "|".join(_REASONING_TAGS), re.IGNORECASE | re.DOTALL)
_CODE_FENCE = re.compile(r"```[a-zA-Z]*")

# Quoted segments, straight or typographic quotes
_QUOTED = re.compile(r'"([^"\n]+)"|“([^”\n]+)”|「([^」\n]+)」')
_LINE_PREFIX = re.compile(
    r"^(?:[-*•>#]+\s*|\d+[.)]\s*|\*\*|"
    r"(?:question|q\d*|interviewer|pertanyaan|soalan|câu hỏi|tanong|คำถาม|问题)\s*\d*\s*[:：]\s*)+",
    re.IGNORECASE,
)
_SENTENCE_END = re.compile(r"^(.+?[.?!。？！])(?=[\s\"'”’」*]|$)")
_TERMINAL = ("." , "?", "!", "。", "？", "！")
_STRIP_CHARS = " \t\"'“”‘’「」*`"

MAX_JSON_CANDIDATES = 25
MIN_QUESTION_LENGTH = 10

# Interrogative and prompt-style sentence starters per language
QUESTION_STARTERS = {
    "en": ("How", "Tell", "Describe", "What", "Why", "When", "Where", "Which", "Who", "Can you",
           "Could you", "Would you", "Walk me through", "Share", "Give me", "Explain", "Have you",
           "Imagine", "Suppose"),
    "id": ("Bagaimana", "Ceritakan", "Berikan", "Jelaskan", "Apa", "Mengapa", "Bisakah", "Kapan",
           "Di mana", "Siapa"),
    "ms": ("Bagaimana", "Ceritakan", "Berikan", "Terangkan", "Apakah", "Apa", "Mengapa", "Bolehkah",
           "Bila", "Kongsikan"),
    "th": ("คุณ", "อะไร", "ทำไม", "อย่างไร", "ช่วย", "เล่า", "หาก", "ถ้า"),
    "vi": ("Bạn", "Hãy", "Tại sao", "Làm thế nào", "Như thế nào", "Điều gì", "Khi nào", "Kể"),
    "tl": ("Paano", "Ano", "Bakit", "Maaari", "Ikuwento", "Ilarawan", "Kailan", "Sino"),
    "zh-sg": ("请", "你", "您", "为什么", "如何", "怎么", "什么", "描述", "谈谈"),
}
QUESTION_STARTERS["fil"] = QUESTION_STARTERS["tl"]
QUESTION_STARTERS["zh"] = QUESTION_STARTERS["zh-sg"]


@dataclass
class ParseError:
    """Local, recoverable normalization failure."""
    kind: GenerationKind
    provider_name: str
    reason: str
    excerpt: str = ""

    def __str__(self) -> str:
        return f"{self.provider_name}: cannot normalize {self.kind.value}: {self.reason}"


NormalizeOutcome = Union[NormalizedResult, ParseError]


def strip_reasoning(text: str) -> str:
    """Remove model reasoning blocks such as ``<think>...</think>``."""
    cleaned = _CLOSED_BLOCK.sub("", text)
    cleaned = _ORPHAN_CLOSE.sub("", cleaned)
    cleaned = _UNCLOSED_OPEN.sub("", cleaned)
    return cleaned.strip()


def iter_balanced_objects(text: str) -> Iterator[Tuple[int, int]]:
    """
    Yield (start, end) spans of every balanced ``{...}`` substring.

    Braces inside JSON string literals are ignored once an object is open.
    """
    stack: List[int] = []
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and stack:
            in_string = True
        elif char == "{":
            stack.append(index)
        elif char == "}" and stack:
            start = stack.pop()
            yield start, index + 1


def ensure_terminal_punctuation(text: str, language: str = "en") -> str:
    text = text.strip()
    if not text or text.endswith(_TERMINAL):
        return text
    if language.startswith("zh"):
        return text + "？"
    if _starts_with_starter(text, language) or _looks_interrogative(text):
        return text + "?"
    return text + "."


def _starters_for(language: str) -> Tuple[str, ...]:
    starters = QUESTION_STARTERS.get(language, ())
    if language != "en":
        starters = starters + QUESTION_STARTERS["en"]
    return starters


def _starts_with_starter(line: str, language: str) -> bool:
    lowered = line.lower()
    for starter in _starters_for(language):
        if lowered.startswith(starter.lower()):
            rest = line[len(starter):len(starter) + 1]
            # Whole-word match for space-delimited scripts
            if not rest or not (rest.isalpha() and starter[-1].isascii()):
                return True
    return False


def _looks_interrogative(text: str) -> bool:
    return "?" in text or "？" in text


def _clean_line(line: str) -> str:
    line = line.strip()
    previous = None
    while previous != line:
        previous = line
        line = _LINE_PREFIX.sub("", line).strip()
        line = line.lstrip(_STRIP_CHARS).strip()
    return line


def _first_sentence(line: str) -> str:
    match = _SENTENCE_END.match(line)
    sentence = match.group(1) if match else line
    return sentence.strip(_STRIP_CHARS)


def _sentence_with_question_mark(line: str) -> str:
    parts = re.split(r"(?<=[.?!。？！])\s+", line)
    for part in parts:
        if _looks_interrogative(part):
            return part.strip(_STRIP_CHARS)
    return line.strip(_STRIP_CHARS)


def _is_sentence_like(line: str) -> bool:
    if not any(char.isalpha() for char in line):
        return False
    return len(line.split()) >= 4 or len(line) >= 20


class ResponseNormalizer:
    """Turns a RawCompletion into a validated NormalizedResult, or a ParseError."""

    def __init__(self, max_json_candidates: int = MAX_JSON_CANDIDATES):
        self.max_json_candidates = max_json_candidates

    def normalize(self, raw: RawCompletion, kind: GenerationKind, language: str = "en") -> NormalizeOutcome:
        try:
            return self._normalize(raw, kind, language)
        except Exception as e:
            # Malformed input must never escape as an exception
            logger.error(f"Unexpected error normalizing {kind.value} from {raw.provider_name}: {e}", exc_info=True)
            return ParseError(kind, raw.provider_name, f"unexpected error: {e}", raw.text[:200])

    def _normalize(self, raw: RawCompletion, kind: GenerationKind, language: str) -> NormalizeOutcome:
        text = strip_reasoning(raw.text or "")
        if not text:
            return ParseError(kind, raw.provider_name, "empty completion after removing reasoning", raw.text[:200])

        fields = self.extract_structured(text, kind, language)
        if fields is not None:
            logger.debug(f"Structured {kind.value} extracted from {raw.provider_name}")
            return NormalizedResult(kind=kind, fields=fields, source_provider=raw.provider_name)

        if kind is GenerationKind.QUESTION:
            question = self.extract_question(text, language)
            if question:
                logger.debug(f"Heuristic question extracted from {raw.provider_name}")
                return NormalizedResult(
                    kind=kind,
                    fields=FIELD_SCHEMAS[kind](question_text=question).model_dump(),
                    source_provider=raw.provider_name,
                )

        logger.warning(f"Could not normalize {kind.value} from {raw.provider_name}: {text[:120]!r}")
        return ParseError(kind, raw.provider_name, "no strategy produced a valid result", text[:200])

    def extract_structured(self, text: str, kind: GenerationKind, language: str = "en") -> Optional[dict]:
        """Parse the largest balanced JSON object that validates for ``kind``."""
        text = _CODE_FENCE.sub("", text)
        spans = sorted(iter_balanced_objects(text), key=lambda span: span[1] - span[0], reverse=True)
        schema = FIELD_SCHEMAS[kind]
        for start, end in spans[:self.max_json_candidates]:
            try:
                data: Any = json.loads(text[start:end])
            except json.JSONDecodeError:
                continue
            if not isinstance(data, dict):
                continue
            try:
                fields = schema.model_validate(data).model_dump()
            except ValidationError as e:
                logger.debug(f"Candidate object rejected for {kind.value}: {e.error_count()} error(s)")
                continue
            if kind is GenerationKind.QUESTION:
                fields["question_text"] = ensure_terminal_punctuation(fields["question_text"], language)
            return fields
        return None

    def extract_question(self, text: str, language: str = "en") -> Optional[str]:
        """
        Pick one interview question out of free text.

        Preference: quoted sentence with a question mark, a line opening with
        an interrogative starter, a line with a question mark, the longest
        sentence-like line.
        """
        text = _CODE_FENCE.sub("", text)

        quoted = []
        for groups in _QUOTED.findall(text):
            segment = next((g for g in groups if g), "").strip()
            if _looks_interrogative(segment) and len(segment) > MIN_QUESTION_LENGTH:
                quoted.append(segment)
        if quoted:
            return ensure_terminal_punctuation(max(quoted, key=len), language)

        lines = [_clean_line(line) for line in text.splitlines()]
        lines = [line for line in lines if line]

        candidate = None
        opening = [_first_sentence(line) for line in lines if _starts_with_starter(line, language)]
        if opening:
            # "What a great role!" style openers lose to an actual question
            candidate = next((s for s in opening if _looks_interrogative(s)), opening[0])
        if candidate is None:
            for line in lines:
                if _looks_interrogative(line):
                    candidate = _sentence_with_question_mark(line)
                    break
        if candidate is None:
            sentence_like = [line for line in lines if _is_sentence_like(line)]
            if sentence_like:
                candidate = max(sentence_like, key=len).strip(_STRIP_CHARS)

        if not candidate:
            return None
        candidate = " ".join(candidate.split())
        if len(candidate) < MIN_QUESTION_LENGTH:
            return None
        return ensure_terminal_punctuation(candidate, language)

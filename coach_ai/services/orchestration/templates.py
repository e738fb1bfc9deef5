"""Static fallback content, keyed by (kind, language)."""
import logging
from typing import Any, Dict, Mapping, Tuple

from coach_ai.schemas.generation import GenerationKind

logger = logging.getLogger(__name__)


class _SafeDict(dict):
    """format_map helper leaving unknown placeholders readable."""

    def __missing__(self, key: str) -> str:
        return {
            "job_position": "this role",
            "company": "our company",
        }.get(key, "")


QUESTION_TEMPLATES: Dict[str, Tuple[str, ...]] = {
    "en": (
        "Tell me about yourself and why you are interested in the {job_position} position.",
        "Tell me about a time when you had to lead a team through a difficult project.",
        "Describe a challenging problem you solved at work and how you approached it.",
        "Can you share an example of how you contributed to a cross-functional team?",
        "How do you balance quality and speed when working in a fast-paced environment?",
    ),
    "id": (
        "Ceritakan tentang diri Anda dan mengapa Anda tertarik dengan posisi {job_position}.",
        "Bisakah Anda menceritakan proyek di mana Anda berperan penting dalam kolaborasi tim?",
        "Bagaimana pandangan Anda tentang tantangan bekerja di lingkungan multikultural?",
    ),
    "ms": (
        "Ceritakan tentang diri anda dan mengapa anda berminat dengan jawatan {job_position}.",
        "Bolehkah anda ceritakan projek di mana anda memainkan peranan penting dalam kerjasama pasukan?",
        "Bagaimanakah pandangan anda tentang cabaran bekerja dalam persekitaran pelbagai budaya?",
    ),
    "th": (
        "กรุณาแนะนำตัวเองและเล่าว่าทำไมคุณถึงสนใจตำแหน่ง {job_position}?",
        "คุณช่วยเล่าโครงการที่คุณมีบทบาทสำคัญในการทำงานร่วมกันเป็นทีมได้ไหม?",
    ),
    "vi": (
        "Hãy giới thiệu về bản thân và lý do bạn quan tâm đến vị trí {job_position}.",
        "Bạn có thể chia sẻ một ví dụ cụ thể về cách bạn đóng góp cho một nhóm đa chức năng không?",
    ),
    "tl": (
        "Ikuwento ang tungkol sa iyong sarili at kung bakit ka interesado sa posisyong {job_position}.",
        "Maaari mo bang ibahagi kung paano ka nag-ambag sa isang cross-functional team?",
    ),
    "zh-sg": (
        "请介绍一下您自己，以及您为什么对{job_position}这个职位感兴趣？",
        "请分享一个您在跨部门团队中做出贡献的具体例子。",
    ),
}
QUESTION_TEMPLATES["fil"] = QUESTION_TEMPLATES["tl"]

PERSONA_TEMPLATES: Dict[str, Dict[str, str]] = {
    "en": {
        "name": "Alex Tan",
        "title": "Hiring Manager, {company}",
        "style": "professional",
        "personality": "friendly, structured and encouraging",
    },
}

ASSESSMENT_TEMPLATES: Dict[str, str] = {
    "en": (
        "Your answer has been recorded. Automated feedback is temporarily unavailable; "
        "review it against the STAR structure: Situation, Task, Action, Result."
    ),
    "id": (
        "Jawaban Anda telah direkam. Umpan balik otomatis sementara tidak tersedia; "
        "tinjau jawaban Anda dengan struktur STAR: Situasi, Tugas, Tindakan, Hasil."
    ),
    "ms": (
        "Jawapan anda telah direkodkan. Maklum balas automatik tidak tersedia buat sementara waktu; "
        "semak jawapan anda dengan struktur STAR: Situasi, Tugas, Tindakan, Hasil."
    ),
}


class TemplateTable:
    """
    Safe default content for every (kind, language).

    Unknown languages fall back to ``default_language``, then to English when
    the table has no entry for the default either. Translation falls back to
    the untranslated source text.
    """

    def __init__(self, default_language: str = "en"):
        self.default_language = default_language

    def _pick(self, table: Mapping[str, Any], language: str) -> Any:
        return table.get(language) or table.get(self.default_language) or table["en"]

    def render(self, kind: GenerationKind, language: str, context: Mapping[str, str]) -> Dict[str, Any]:
        values = _SafeDict(context)
        if kind is GenerationKind.QUESTION:
            templates = self._pick(QUESTION_TEMPLATES, language)
            index = self._question_index(context.get("question_number"), len(templates))
            return {
                "question_text": templates[index].format_map(values),
                "question_text_translated": None,
                "question_category": "general",
                "question_type": "behavioral",
                "difficulty_level": context.get("difficulty_level", "intermediate"),
                "expected_answer_time": 180,
                "cultural_context": "",
                "star_method_relevant": True,
            }
        if kind is GenerationKind.PERSONA:
            persona = self._pick(PERSONA_TEMPLATES, language)
            return {key: value.format_map(values) for key, value in persona.items()}
        if kind is GenerationKind.ASSESSMENT:
            return {
                "overall": 3.0,
                "situation": None,
                "task": None,
                "action": None,
                "result": None,
                "flow": None,
                "qualitative": self._pick(ASSESSMENT_TEMPLATES, language),
                "strengths": [],
                "improvements": [],
                "recommendations": [],
            }
        if kind is GenerationKind.TRANSLATION:
            return {
                "translated_text": context.get("text", ""),
                "source_language": context.get("source_language"),
                "target_language": language,
            }
        raise ValueError(f"No template for kind {kind!r}")

    @staticmethod
    def _question_index(question_number, count: int) -> int:
        try:
            return (int(question_number) - 1) % count
        except (TypeError, ValueError):
            return 0

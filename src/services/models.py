"""Study domain records and tolerant conversion from backend JSON."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

VALID_SOURCE_TYPES = {"notes", "pdf"}
VALID_ROLES = {"user", "assistant"}


class StudyValidationError(ValueError):
    """Raised when study input or a backend record fails validation."""


class ChatContext(str, Enum):
    """Which tab a chat conversation belongs to."""

    DOCUMENT = "document"
    QUIZ = "quiz"

    @classmethod
    def from_tab(cls, tab: str) -> "ChatContext":
        return cls.QUIZ if str(tab or "").strip().lower() == "quiz" else cls.DOCUMENT


def _str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


@dataclass
class Topic:
    """Ordered unit of a study's content."""

    id: str
    title: str
    content: str = ""
    icon: str = ""
    order: int = 0
    learned: bool = False
    video_url: str | None = None
    video_generating: bool = False

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Topic":
        return cls(
            id=_str(raw.get("id")),
            title=_str(raw.get("title")),
            content=_str(raw.get("content")),
            icon=_str(raw.get("icon")),
            order=_safe_int(raw.get("order")),
            learned=bool(raw.get("learned")),
            video_url=raw.get("videoUrl") or None,
            video_generating=bool(raw.get("videoGenerating")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "icon": self.icon,
            "content": self.content,
            "order": self.order,
            "learned": self.learned,
            "videoUrl": self.video_url,
            "videoGenerating": self.video_generating,
        }


@dataclass
class QuizQuestion:
    """Multiple-choice question; correct_answer indexes into options."""

    question: str
    options: list[str]
    correct_answer: int
    explanation: str = ""
    hint: str | None = None
    topic_id: str | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.correct_answer < len(self.options):
            raise StudyValidationError(
                f"correctAnswer {self.correct_answer} out of range for {len(self.options)} options"
            )

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "QuizQuestion":
        return cls(
            question=_str(raw.get("question")),
            options=_str_list(raw.get("options")),
            correct_answer=_safe_int(raw.get("correctAnswer"), -1),
            explanation=_str(raw.get("explanation")),
            hint=raw.get("hint") or None,
            topic_id=raw.get("topicId") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "question": self.question,
            "options": list(self.options),
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
        }
        if self.hint:
            out["hint"] = self.hint
        if self.topic_id:
            out["topicId"] = self.topic_id
        return out

    def option_text(self, index: int | None) -> str | None:
        if index is None or not 0 <= index < len(self.options):
            return None
        return self.options[index]


@dataclass(frozen=True)
class QuizAnswer:
    """One question's outcome inside a completed attempt."""

    question: str
    options: tuple[str, ...]
    correct_answer: int
    user_answer: int
    is_correct: bool
    topic_id: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "QuizAnswer":
        return cls(
            question=_str(raw.get("question")),
            options=tuple(_str_list(raw.get("options"))),
            correct_answer=_safe_int(raw.get("correctAnswer"), -1),
            user_answer=_safe_int(raw.get("userAnswer"), -1),
            is_correct=bool(raw.get("isCorrect")),
            topic_id=raw.get("topicId") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "question": self.question,
            "options": list(self.options),
            "correctAnswer": self.correct_answer,
            "userAnswer": self.user_answer,
            "isCorrect": self.is_correct,
        }
        if self.topic_id:
            out["topicId"] = self.topic_id
        return out

    @property
    def correct_text(self) -> str:
        if 0 <= self.correct_answer < len(self.options):
            return self.options[self.correct_answer]
        return ""

    @property
    def user_text(self) -> str:
        if 0 <= self.user_answer < len(self.options):
            return self.options[self.user_answer]
        return "Not answered"


@dataclass(frozen=True)
class QuizHistoryEntry:
    """Immutable snapshot of one completed quiz attempt."""

    id: str
    taken_at: str
    total_questions: int
    correct_count: int
    wrong_count: int
    percentage: float
    selected_topics: tuple[str, ...] = ()
    answers: tuple[QuizAnswer, ...] = ()

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "QuizHistoryEntry":
        answers = raw.get("answers") if isinstance(raw.get("answers"), list) else []
        return cls(
            id=_str(raw.get("id") or raw.get("_id")),
            taken_at=_str(raw.get("takenAt")),
            total_questions=_safe_int(raw.get("totalQuestions")),
            correct_count=_safe_int(raw.get("correctCount")),
            wrong_count=_safe_int(raw.get("wrongCount")),
            percentage=_safe_float(raw.get("percentage")),
            selected_topics=tuple(_str_list(raw.get("selectedTopics"))),
            answers=tuple(QuizAnswer.from_dict(a) for a in answers if isinstance(a, dict)),
        )


@dataclass
class ChatMessage:
    role: str
    content: str
    timestamp: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ChatMessage":
        role = _str(raw.get("role"), "user").strip().lower()
        if role not in VALID_ROLES:
            role = "user"
        return cls(role=role, content=_str(raw.get("content")), timestamp=raw.get("timestamp"))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.timestamp:
            out["timestamp"] = self.timestamp
        return out


@dataclass(frozen=True)
class VideoProgress:
    status: str
    progress: float | None = None
    error: str | None = None


@dataclass
class Study:
    """A user's learning unit plus everything derived from it."""

    id: str
    title: str
    content: str
    source_type: str = "notes"
    description: str = ""
    pdf_file_names: list[str] = field(default_factory=list)
    topics: list[Topic] = field(default_factory=list)
    quiz_questions: list[QuizQuestion] = field(default_factory=list)
    chat_histories: dict[ChatContext, list[ChatMessage]] = field(
        default_factory=lambda: {ChatContext.DOCUMENT: [], ChatContext.QUIZ: []}
    )
    quiz_history: list[QuizHistoryEntry] = field(default_factory=list)
    created_at: str = ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Study":
        source_type = _str(raw.get("sourceType"), "notes").strip().lower()
        if source_type not in VALID_SOURCE_TYPES:
            source_type = "notes"
        topics = raw.get("topics") if isinstance(raw.get("topics"), list) else []
        questions = raw.get("quizQuestions") if isinstance(raw.get("quizQuestions"), list) else []
        history = raw.get("quizHistory") if isinstance(raw.get("quizHistory"), list) else []
        return cls(
            id=_str(raw.get("_id") or raw.get("id")),
            title=_str(raw.get("title")),
            description=_str(raw.get("description")),
            content=_str(raw.get("content")),
            source_type=source_type,
            pdf_file_names=_str_list(raw.get("pdfFileNames")),
            topics=sorted(
                (Topic.from_dict(t) for t in topics if isinstance(t, dict)),
                key=lambda t: t.order,
            ),
            quiz_questions=parse_questions(questions),
            chat_histories={
                ChatContext.DOCUMENT: _messages(raw.get("documentChatHistory")),
                ChatContext.QUIZ: _messages(raw.get("quizChatHistory")),
            },
            quiz_history=[QuizHistoryEntry.from_dict(h) for h in history if isinstance(h, dict)],
            created_at=_str(raw.get("createdAt")),
        )

    def topic(self, topic_id: str | None) -> Topic | None:
        if not topic_id:
            return None
        return next((t for t in self.topics if t.id == topic_id), None)

    def topic_index(self, topic_id: str | None) -> int:
        for i, t in enumerate(self.topics):
            if t.id == topic_id:
                return i
        return -1


def parse_questions(raw: Any) -> list[QuizQuestion]:
    """Convert backend question dicts, skipping entries whose answer index is invalid."""
    if not isinstance(raw, list):
        return []
    out: list[QuizQuestion] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            out.append(QuizQuestion.from_dict(item))
        except StudyValidationError:
            continue
    return out


def _messages(raw: Any) -> list[ChatMessage]:
    if not isinstance(raw, list):
        return []
    return [ChatMessage.from_dict(m) for m in raw if isinstance(m, dict)]

"""Quiz history aggregation: mastered concepts, known-concept exclusion, focus on mistakes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from services.models import QuizHistoryEntry, Topic

FOCUS_MIN_QUESTIONS = 5
FOCUS_MAX_QUESTIONS = 15


@dataclass(frozen=True)
class MasteredConcept:
    """A question/answer pair answered correctly at least once."""

    answer: str
    question: str
    count: int
    topic_id: str | None = None
    topic_title: str | None = None


def mastered_concepts(
    history: Iterable[QuizHistoryEntry], topics: Iterable[Topic] = ()
) -> list[MasteredConcept]:
    """
    Aggregate correct answers across all attempts.

    Concepts are keyed by (correct-answer text, question text); repeats bump the
    count. Result is sorted by count descending; ties keep first-seen order.
    """
    titles = {t.id: t.title for t in topics}
    order: list[tuple[str, str]] = []
    counts: dict[tuple[str, str], int] = {}
    origin: dict[tuple[str, str], str | None] = {}
    for entry in history:
        for ans in entry.answers:
            if not ans.is_correct:
                continue
            key = (ans.correct_text, ans.question)
            if key in counts:
                counts[key] += 1
                continue
            counts[key] = 1
            origin[key] = ans.topic_id
            order.append(key)

    concepts = [
        MasteredConcept(
            answer=key[0],
            question=key[1],
            count=counts[key],
            topic_id=origin[key],
            topic_title=titles.get(origin[key]) if origin[key] else None,
        )
        for key in order
    ]
    return sorted(concepts, key=lambda c: -c.count)


def known_concepts(history: Iterable[QuizHistoryEntry], enabled: bool = True) -> list[str] | None:
    """Distinct correctly-answered question texts, or None when disabled or empty."""
    if not enabled:
        return None
    seen: dict[str, None] = {}
    for entry in history:
        for ans in entry.answers:
            if ans.is_correct:
                seen.setdefault(ans.question, None)
    return list(seen) or None


def focus_question_count(wrong_count: int) -> int:
    return min(FOCUS_MAX_QUESTIONS, max(FOCUS_MIN_QUESTIONS, int(wrong_count) * 2))


def previous_results_from_history(
    history: Iterable[QuizHistoryEntry], selected_ids: Iterable[str]
) -> dict[str, Any] | None:
    """Summarize wrong answers of the selected attempts; None when there are none."""
    wanted = set(selected_ids)
    chosen = [h for h in history if h.id in wanted]
    wrong_questions = [
        {
            "question": a.question,
            "userAnswer": a.user_text,
            "correctAnswer": a.correct_text,
            "isCorrect": False,
        }
        for h in chosen
        for a in h.answers
        if not a.is_correct
    ]
    if not wrong_questions:
        return None
    correct = sum(h.correct_count for h in chosen)
    wrong = sum(h.wrong_count for h in chosen)
    return {
        "correct": correct,
        "wrong": wrong,
        "total": correct + wrong,
        "wrongQuestions": wrong_questions,
    }


def previous_results_from_session(results: list[dict[str, Any]]) -> dict[str, Any]:
    """Summarize the current attempt's result rows (see QuizSession.question_results)."""
    wrong_questions = [
        {
            "question": r["question"],
            "userAnswer": r["userAnswer"],
            "correctAnswer": r["correctAnswer"],
            "isCorrect": False,
        }
        for r in results
        if not r.get("isCorrect")
    ]
    return {
        "correct": len(results) - len(wrong_questions),
        "wrong": len(wrong_questions),
        "total": len(results),
        "wrongQuestions": wrong_questions,
    }


def build_quiz_request(
    num_questions: int,
    selected_topics: list[str],
    history: list[QuizHistoryEntry],
    selected_history_ids: list[str],
    avoid_known: bool = False,
    focus_on_mistakes: bool = False,
    session_results: list[dict[str, Any]] | None = None,
    wrong_topic_ids: list[str] | None = None,
) -> dict[str, Any]:
    """
    Assemble the quiz-generation body.

    Selected history entries take precedence over the current quiz as the
    source of mistakes. Focusing on the current quiz narrows topics to those
    answered wrongly and sizes the quiz from the wrong count.
    """
    topics = list(selected_topics)
    count = int(num_questions)
    previous: dict[str, Any] | None = None

    if selected_history_ids:
        previous = previous_results_from_history(history, selected_history_ids)
    elif focus_on_mistakes and session_results:
        previous = previous_results_from_session(session_results)
        if wrong_topic_ids:
            topics = list(wrong_topic_ids)
        count = focus_question_count(previous["wrong"])

    return {
        "numQuestions": count,
        "selectedTopics": topics,
        "previousResults": previous,
        "knownConcepts": known_concepts(history, enabled=avoid_known),
    }


class QuizHistoryLog:
    """Displayed attempts (newest first) plus the ids picked for focus-on-mistakes."""

    def __init__(self, entries: Iterable[QuizHistoryEntry] = ()) -> None:
        self.entries: list[QuizHistoryEntry] = list(entries)
        self.selected_ids: list[str] = []

    def __len__(self) -> int:
        return len(self.entries)

    def add(self, entry: QuizHistoryEntry) -> None:
        self.entries.insert(0, entry)

    def toggle_selected(self, history_id: str) -> None:
        if history_id in self.selected_ids:
            self.selected_ids = [i for i in self.selected_ids if i != history_id]
        elif any(e.id == history_id for e in self.entries):
            self.selected_ids.append(history_id)

    def clear_selection(self) -> None:
        self.selected_ids = []

    def remove(self, history_id: str) -> bool:
        """Drop one entry from the list and from the focus selection."""
        before = len(self.entries)
        self.entries = [e for e in self.entries if e.id != history_id]
        self.selected_ids = [i for i in self.selected_ids if i != history_id]
        return len(self.entries) < before

    def get(self, history_id: str) -> QuizHistoryEntry | None:
        return next((e for e in self.entries if e.id == history_id), None)


def fallback_analysis(results: list[dict[str, Any]]) -> str:
    """Local markdown report used when the AI analysis call fails."""
    correct = sum(1 for r in results if r.get("isCorrect"))
    total = len(results)
    percentage = round(correct / total * 100) if total else 0

    lines = ["## 📊 Quiz Analysis", "", f"You scored **{correct}/{total}** ({percentage}%)", ""]
    if percentage >= 80:
        lines += ["### ✅ Great job!", "You have a strong understanding of this material.", ""]
    elif percentage >= 60:
        lines += ["### 💡 Good effort!", "You're on the right track, but there's room for improvement.", ""]
    else:
        lines += ["### 📚 Keep studying!", "Review the material and try again.", ""]

    wrong = [r for r in results if not r.get("isCorrect")]
    if wrong:
        lines.append("### ⚠️ Areas to Review:")
        lines += [f"- {r.get('question', '')}" for r in wrong]
    return "\n".join(lines) + "\n"

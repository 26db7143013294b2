"""
Quiz session: current question, per-question answers, navigation and scoring.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from config import QUIZ_TRANSITION_DELAY_S
from services.models import QuizAnswer, QuizQuestion

LOGGER = logging.getLogger("study.quiz")


class QuizStateError(ValueError):
    """Raised when an operation is not valid in the session's current state."""


@dataclass(frozen=True)
class QuizScore:
    correct: int
    total: int

    @property
    def wrong(self) -> int:
        return self.total - self.correct

    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.correct / self.total * 100)


class QuizSession:
    """
    State machine over a fixed question sequence.

    Each question is unanswered until an option is selected; selection shows
    right/wrong immediately but can be changed. advance() on the last
    question enters the results state and fires on_complete once.
    """

    def __init__(
        self,
        questions: list[QuizQuestion] | None = None,
        on_complete: Callable[["QuizSession"], Any] | None = None,
        sleep: Callable[[float], Any] = time.sleep,
        transition_delay: float = QUIZ_TRANSITION_DELAY_S,
    ) -> None:
        self._on_complete = on_complete
        self._sleep = sleep
        self.transition_delay = transition_delay
        self.load_questions(questions or [])

    # ---------- lifecycle ----------

    def load_questions(self, questions: list[QuizQuestion]) -> None:
        """Start a fresh attempt over *questions*."""
        self.questions: list[QuizQuestion] = list(questions)
        self.selected_answers: list[int | None] = [None] * len(self.questions)
        self.answered: list[bool] = [False] * len(self.questions)
        self.current_index = 0
        self.show_hint = False
        self.show_results = False
        self.is_transitioning = False
        self._completion_saved = False

    def regenerate(self) -> None:
        """Drop the question set and return to the pre-generation state."""
        self.load_questions([])

    @property
    def has_questions(self) -> bool:
        return bool(self.questions)

    @property
    def current_question(self) -> QuizQuestion | None:
        if not self.questions:
            return None
        return self.questions[self.current_index]

    @property
    def is_last(self) -> bool:
        return self.current_index >= len(self.questions) - 1

    @property
    def current_answered(self) -> bool:
        return bool(self.questions) and self.answered[self.current_index]

    @property
    def current_selection(self) -> int | None:
        if not self.questions:
            return None
        return self.selected_answers[self.current_index]

    # ---------- answering ----------

    def select_answer(self, option_index: int) -> bool:
        """Record a choice for the current question and return whether it is correct."""
        question = self._require_active()
        if self.is_transitioning:
            raise QuizStateError("Cannot answer while moving between questions")
        if not 0 <= option_index < len(question.options):
            raise QuizStateError(f"Option {option_index} out of range")
        self.selected_answers[self.current_index] = option_index
        self.answered[self.current_index] = True
        self.show_hint = False
        return option_index == question.correct_answer

    def toggle_hint(self) -> bool:
        question = self._require_active()
        if not question.hint:
            return False
        self.show_hint = not self.show_hint
        return self.show_hint

    # ---------- navigation ----------

    def advance(self) -> None:
        """Move to the next question, or finish the quiz from the last one."""
        self._require_active()
        if not self.is_last:
            self._transition_to(self.current_index + 1)
            return
        self.show_results = True
        if not self._completion_saved:
            self._completion_saved = True
            score = self.score()
            LOGGER.info("quiz.complete(correct=%s,total=%s)", score.correct, score.total)
            if self._on_complete is not None:
                self._on_complete(self)

    def previous(self) -> None:
        self._require_active()
        if self.current_index > 0:
            self._transition_to(self.current_index - 1)

    def go_to(self, index: int) -> None:
        """Jump to any question, answered or not."""
        if not self.questions:
            raise QuizStateError("No quiz loaded")
        if not 0 <= index < len(self.questions):
            raise QuizStateError(f"Question {index} out of range")
        self.show_results = False
        self._transition_to(index)

    def _transition_to(self, index: int) -> None:
        self.is_transitioning = True
        try:
            self._sleep(self.transition_delay)
            self.current_index = index
            self.show_hint = False
        finally:
            self.is_transitioning = False

    def _require_active(self) -> QuizQuestion:
        if not self.questions:
            raise QuizStateError("No quiz loaded")
        if self.show_results:
            raise QuizStateError("Quiz already completed")
        return self.questions[self.current_index]

    # ---------- results ----------

    def score(self) -> QuizScore:
        correct = sum(
            1 for q, sel in zip(self.questions, self.selected_answers) if sel == q.correct_answer
        )
        return QuizScore(correct=correct, total=len(self.questions))

    def history_answers(self) -> list[QuizAnswer]:
        """Per-question records for the quiz-history log; unanswered -> -1."""
        out: list[QuizAnswer] = []
        for q, sel in zip(self.questions, self.selected_answers):
            out.append(
                QuizAnswer(
                    question=q.question,
                    options=tuple(q.options),
                    correct_answer=q.correct_answer,
                    user_answer=sel if sel is not None else -1,
                    is_correct=sel == q.correct_answer,
                    topic_id=q.topic_id,
                )
            )
        return out

    def question_results(self) -> list[dict[str, Any]]:
        """Result rows sent to quiz analysis and used for focus-on-mistakes."""
        return [
            {
                "question": q.question,
                "userAnswer": q.option_text(sel) or "Not answered",
                "correctAnswer": q.options[q.correct_answer],
                "isCorrect": sel == q.correct_answer,
                "topicId": q.topic_id,
            }
            for q, sel in zip(self.questions, self.selected_answers)
        ]

    def wrong_topic_ids(self) -> list[str]:
        """Distinct topic ids of wrongly answered questions, in question order."""
        seen: dict[str, None] = {}
        for row in self.question_results():
            if not row["isCorrect"] and row["topicId"]:
                seen.setdefault(row["topicId"], None)
        return list(seen)

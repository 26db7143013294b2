"""Question-count recommendation and quiz topic selection modes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from services.models import Topic

QUESTIONS_PER_TOPIC = 10
MIN_QUESTIONS_PER_TOPIC = 5
MAX_QUESTIONS_PER_TOPIC = 15
MIN_QUESTIONS = 5

VALID_MODES = ("all", "to_learn", "review", "custom")


@dataclass(frozen=True)
class QuestionRecommendation:
    min: int
    max: int
    suggested: int
    label: str


def _normalize_mode(mode: str) -> str:
    clean = str(mode or "").strip().lower()
    if clean not in VALID_MODES:
        raise ValueError(f"mode must be one of {', '.join(VALID_MODES)}")
    return clean


def recommend_question_count(mode: str, selected_count: int, total_topics: int) -> QuestionRecommendation:
    """
    Scale the question range with the number of topics in play.

    Args:
        mode: One of "all", "to_learn", "review", "custom".
        selected_count: Number of explicitly selected topics.
        total_topics: Number of topics in the study (0 is treated as 1).

    Returns:
        min = max(5, k*5), max = k*15, suggested = k*10, where k is the topic
        count for the mode. An empty custom selection uses k = 1 and the
        "Select topics" label.
    """
    mode = _normalize_mode(mode)
    total = max(1, int(total_topics))
    selected = max(0, int(selected_count))
    if mode == "all":
        k = total
    elif mode == "custom" and selected == 0:
        k = 1
    else:
        k = selected or total

    if mode == "all":
        label = f"All {total} topics"
    elif mode == "custom" and selected == 0:
        label = "Select topics"
    else:
        label = f"{k} of {total} topics"

    return QuestionRecommendation(
        min=max(MIN_QUESTIONS, k * MIN_QUESTIONS_PER_TOPIC),
        max=k * MAX_QUESTIONS_PER_TOPIC,
        suggested=k * QUESTIONS_PER_TOPIC,
        label=label,
    )


@dataclass
class TopicSelection:
    """Which topics the next quiz covers; only custom mode allows toggling."""

    topics: list[Topic]
    mode: str = "all"
    selected_ids: list[str] = field(default_factory=list)

    def _ids(self, learned: bool | None = None) -> list[str]:
        return [t.id for t in self.topics if learned is None or t.learned == learned]

    def set_mode(self, mode: str) -> None:
        mode = _normalize_mode(mode)
        if mode == "all":
            self.selected_ids = []
        elif mode == "to_learn":
            self.selected_ids = self._ids(learned=False)
        elif mode == "review":
            self.selected_ids = self._ids(learned=True)
        elif self.mode != "custom":
            self.selected_ids = []
        self.mode = mode

    def mode_available(self, mode: str) -> bool:
        mode = _normalize_mode(mode)
        if mode == "to_learn":
            return bool(self._ids(learned=False))
        if mode == "review":
            return bool(self._ids(learned=True))
        return True

    def toggle(self, topic_id: str) -> None:
        if self.mode != "custom":
            return
        if topic_id in self.selected_ids:
            self.selected_ids = [i for i in self.selected_ids if i != topic_id]
        elif any(t.id == topic_id for t in self.topics):
            self.selected_ids = [*self.selected_ids, topic_id]

    def select_all(self) -> None:
        self.selected_ids = self._ids()

    def clear(self) -> None:
        self.selected_ids = []

    def select_not_learned(self) -> None:
        self.selected_ids = self._ids(learned=False)

    def select_learned(self) -> None:
        self.selected_ids = self._ids(learned=True)

    def includes(self, topic_id: str) -> bool:
        return self.mode == "all" or topic_id in self.selected_ids

    def recommendation(self) -> QuestionRecommendation:
        return recommend_question_count(self.mode, len(self.selected_ids), len(self.topics))


class QuestionCountState:
    """Holds the question count; a user-entered value survives until the selection changes."""

    def __init__(self, recommendation: QuestionRecommendation) -> None:
        self.recommendation = recommendation
        self.count = recommendation.suggested
        self.user_set = False

    def set_count(self, value: int) -> int:
        rec = self.recommendation
        self.count = max(rec.min, min(rec.max, int(value)))
        self.user_set = True
        return self.count

    def update(self, recommendation: QuestionRecommendation) -> int:
        """Recompute on a mode/selection change; an unchanged suggestion keeps the user's count."""
        if recommendation.suggested != self.recommendation.suggested or not self.user_set:
            self.count = recommendation.suggested
            self.user_set = False
        self.recommendation = recommendation
        return self.count


def learned_progress(topics: Iterable[Topic]) -> tuple[int, int]:
    """Return (learned, total) topic counts."""
    items = list(topics)
    return sum(1 for t in items if t.learned), len(items)

"""Tests for services/question_recommender — count formulas, modes and user overrides."""

from __future__ import annotations

import pytest

from services.models import Topic
from services.question_recommender import (
    QuestionCountState,
    TopicSelection,
    learned_progress,
    recommend_question_count,
)


def _topics() -> list[Topic]:
    return [
        Topic(id="a", title="A", learned=True),
        Topic(id="b", title="B"),
        Topic(id="c", title="C"),
        Topic(id="d", title="D", learned=True),
    ]


class TestRecommendQuestionCount:
    def test_all_mode_uses_total(self):
        rec = recommend_question_count("all", 0, 4)
        assert (rec.min, rec.max, rec.suggested) == (20, 60, 40)
        assert rec.label == "All 4 topics"

    def test_custom_empty_selection(self):
        rec = recommend_question_count("custom", 0, 4)
        assert (rec.min, rec.max, rec.suggested) == (5, 15, 10)
        assert rec.label == "Select topics"

    def test_partial_selection_label(self):
        rec = recommend_question_count("to_learn", 2, 4)
        assert rec.suggested == 20
        assert rec.label == "2 of 4 topics"

    def test_zero_topics_treated_as_one(self):
        rec = recommend_question_count("all", 0, 0)
        assert (rec.min, rec.max, rec.suggested) == (5, 15, 10)

    @pytest.mark.parametrize("k", [1, 2, 5, 9])
    def test_formula(self, k):
        rec = recommend_question_count("custom", k, 10)
        assert rec.min == max(5, 5 * k)
        assert rec.max == 15 * k
        assert rec.suggested == 10 * k
        assert rec.min <= rec.suggested <= rec.max

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            recommend_question_count("everything", 1, 1)


class TestTopicSelection:
    def test_to_learn_selects_unlearned(self):
        sel = TopicSelection(_topics())
        sel.set_mode("to_learn")
        assert sel.selected_ids == ["b", "c"]

    def test_review_selects_learned(self):
        sel = TopicSelection(_topics())
        sel.set_mode("review")
        assert sel.selected_ids == ["a", "d"]

    def test_toggle_only_in_custom(self):
        sel = TopicSelection(_topics())
        sel.toggle("a")
        assert sel.selected_ids == []
        sel.set_mode("custom")
        sel.toggle("a")
        sel.toggle("zzz")
        assert sel.selected_ids == ["a"]
        sel.toggle("a")
        assert sel.selected_ids == []

    def test_mode_availability(self):
        sel = TopicSelection([Topic(id="x", title="X")])
        assert sel.mode_available("to_learn")
        assert not sel.mode_available("review")

    def test_includes_all(self):
        sel = TopicSelection(_topics())
        assert sel.includes("c")

    def test_bulk_helpers(self):
        sel = TopicSelection(_topics(), mode="custom")
        sel.select_all()
        assert len(sel.selected_ids) == 4
        sel.select_not_learned()
        assert sel.selected_ids == ["b", "c"]
        sel.clear()
        assert sel.recommendation().label == "Select topics"

    def test_learned_progress(self):
        assert learned_progress(_topics()) == (2, 4)


class TestQuestionCountState:
    def test_set_count_clamps(self):
        state = QuestionCountState(recommend_question_count("custom", 1, 4))
        assert state.set_count(100) == 15
        assert state.set_count(1) == 5

    def test_user_value_survives_same_suggestion(self):
        rec = recommend_question_count("custom", 2, 4)
        state = QuestionCountState(rec)
        state.set_count(25)
        assert state.update(recommend_question_count("to_learn", 2, 4)) == 25

    def test_changed_selection_resets(self):
        state = QuestionCountState(recommend_question_count("custom", 2, 4))
        state.set_count(25)
        assert state.update(recommend_question_count("custom", 3, 4)) == 30
        assert state.user_set is False

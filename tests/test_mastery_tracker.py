"""Tests for services/mastery_tracker — mastered concepts, known concepts and quiz requests."""

from __future__ import annotations

from conftest import history_payload
from services.mastery_tracker import (
    QuizHistoryLog,
    build_quiz_request,
    fallback_analysis,
    focus_question_count,
    known_concepts,
    mastered_concepts,
)
from services.models import QuizHistoryEntry, Topic


def _entry(entry_id: str, answers: list[tuple[str, bool]], topic_id: str = "t1") -> QuizHistoryEntry:
    return QuizHistoryEntry.from_dict(history_payload(entry_id, answers, topic_id))


class TestMasteredConcepts:
    def test_counts_repeats_and_sorts(self):
        history = [
            _entry("h1", [("Q1", True), ("Q2", True)]),
            _entry("h2", [("Q2", True), ("Q3", False)]),
        ]
        concepts = mastered_concepts(history, [Topic(id="t1", title="Cells")])
        assert [(c.question, c.count) for c in concepts] == [("Q2", 2), ("Q1", 1)]
        assert concepts[0].answer == "Q2-right"
        assert concepts[0].topic_title == "Cells"

    def test_wrong_answers_ignored(self):
        assert mastered_concepts([_entry("h1", [("Q1", False)])]) == []

    def test_idempotent(self):
        history = [_entry("h1", [("Q1", True)]), _entry("h2", [("Q1", True), ("Q9", True)])]
        assert mastered_concepts(history) == mastered_concepts(history)

    def test_ties_keep_first_seen_order(self):
        history = [_entry("h1", [("B", True), ("A", True)])]
        assert [c.question for c in mastered_concepts(history)] == ["B", "A"]


class TestKnownConcepts:
    def test_disabled_returns_none(self):
        assert known_concepts([_entry("h1", [("Q1", True)])], enabled=False) is None

    def test_empty_returns_none(self):
        assert known_concepts([_entry("h1", [("Q1", False)])]) is None

    def test_distinct_questions(self):
        history = [_entry("h1", [("Q1", True)]), _entry("h2", [("Q1", True), ("Q2", True)])]
        assert known_concepts(history) == ["Q1", "Q2"]


class TestBuildQuizRequest:
    def test_plain_request(self):
        body = build_quiz_request(20, ["t1"], [], [])
        assert body == {
            "numQuestions": 20,
            "selectedTopics": ["t1"],
            "previousResults": None,
            "knownConcepts": None,
        }

    def test_selected_history_takes_precedence(self):
        history = [_entry("h1", [("Q1", False), ("Q2", True)]), _entry("h2", [("Q3", False)])]
        session_results = [
            {"question": "S1", "userAnswer": "x", "correctAnswer": "y", "isCorrect": False, "topicId": "t9"}
        ]
        body = build_quiz_request(
            10,
            ["t1"],
            history,
            ["h1"],
            focus_on_mistakes=True,
            session_results=session_results,
            wrong_topic_ids=["t9"],
        )
        prev = body["previousResults"]
        assert prev["wrongQuestions"] == [
            {"question": "Q1", "userAnswer": "Q1-wrong", "correctAnswer": "Q1-right", "isCorrect": False}
        ]
        assert prev["total"] == 2
        assert body["selectedTopics"] == ["t1"]
        assert body["numQuestions"] == 10

    def test_history_without_mistakes_gives_none(self):
        body = build_quiz_request(10, [], [_entry("h1", [("Q1", True)])], ["h1"])
        assert body["previousResults"] is None

    def test_focus_on_current_quiz(self):
        results = [
            {"question": "S1", "userAnswer": "x", "correctAnswer": "y", "isCorrect": False, "topicId": "t2"},
            {"question": "S2", "userAnswer": "y", "correctAnswer": "y", "isCorrect": True, "topicId": "t1"},
        ]
        body = build_quiz_request(
            30, ["t1", "t2"], [], [], focus_on_mistakes=True, session_results=results, wrong_topic_ids=["t2"]
        )
        assert body["selectedTopics"] == ["t2"]
        assert body["numQuestions"] == 5
        assert body["previousResults"]["wrong"] == 1
        assert body["previousResults"]["correct"] == 1

    def test_avoid_known(self):
        body = build_quiz_request(10, [], [_entry("h1", [("Q1", True)])], [], avoid_known=True)
        assert body["knownConcepts"] == ["Q1"]

    def test_focus_count_bounds(self):
        assert focus_question_count(1) == 5
        assert focus_question_count(4) == 8
        assert focus_question_count(20) == 15


class TestQuizHistoryLog:
    def test_add_puts_newest_first(self):
        log = QuizHistoryLog([_entry("h1", [("Q", True)])])
        log.add(_entry("h2", [("Q", True)]))
        assert [e.id for e in log.entries] == ["h2", "h1"]

    def test_remove_drops_from_list_and_selection(self):
        log = QuizHistoryLog([_entry("h1", [("Q", True)]), _entry("h2", [("Q", False)])])
        log.toggle_selected("h1")
        log.toggle_selected("h2")
        assert log.remove("h1") is True
        assert [e.id for e in log.entries] == ["h2"]
        assert log.selected_ids == ["h2"]
        assert log.get("h1") is None

    def test_toggle_unknown_id_ignored(self):
        log = QuizHistoryLog()
        log.toggle_selected("missing")
        assert log.selected_ids == []


class TestFallbackAnalysis:
    def test_low_score_lists_review_items(self):
        text = fallback_analysis(
            [{"question": "What is ATP?", "isCorrect": False}, {"question": "Q2", "isCorrect": True}]
        )
        assert "**1/2** (50%)" in text
        assert "Keep studying" in text
        assert "### ⚠️ Areas to Review:" in text
        assert "- What is ATP?" in text

    def test_high_score(self):
        text = fallback_analysis([{"question": "Q", "isCorrect": True}])
        assert "Great job" in text
        assert "Areas to Review" not in text

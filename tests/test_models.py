"""Tests for services/models — tolerant parsing of backend records."""

from __future__ import annotations

import pytest

from conftest import history_payload, question_payload, study_payload
from services.models import (
    ChatContext,
    QuizAnswer,
    QuizHistoryEntry,
    QuizQuestion,
    Study,
    StudyValidationError,
    Topic,
    parse_questions,
)


class TestStudyFromDict:
    def test_topics_sorted_by_order(self):
        study = Study.from_dict(study_payload())
        assert [t.id for t in study.topics] == ["t1", "t2"]

    def test_chat_histories_split_by_context(self):
        study = Study.from_dict(study_payload())
        assert study.chat_histories[ChatContext.DOCUMENT][0].content == "hi"
        assert study.chat_histories[ChatContext.QUIZ] == []

    def test_unknown_source_type_falls_back_to_notes(self):
        study = Study.from_dict(study_payload(sourceType="video"))
        assert study.source_type == "notes"

    def test_missing_lists_default_empty(self):
        study = Study.from_dict({"_id": "x", "title": "T", "content": "c"})
        assert study.topics == []
        assert study.quiz_questions == []
        assert study.quiz_history == []

    def test_topic_lookup(self):
        study = Study.from_dict(study_payload())
        assert study.topic("t2").title == "Membranes"
        assert study.topic("nope") is None
        assert study.topic_index("t2") == 1
        assert study.topic_index("nope") == -1


class TestQuizQuestion:
    def test_correct_answer_out_of_range_rejected(self):
        with pytest.raises(StudyValidationError):
            QuizQuestion(question="Q", options=["a", "b"], correct_answer=2)

    def test_parse_questions_skips_invalid(self):
        bad = question_payload(2)
        bad["correctAnswer"] = 9
        parsed = parse_questions([question_payload(1), bad, "junk"])
        assert [q.question for q in parsed] == ["Q1?"]

    def test_to_dict_uses_camel_case(self):
        q = QuizQuestion.from_dict(question_payload(1))
        out = q.to_dict()
        assert out["correctAnswer"] == 0
        assert out["topicId"] == "t1"

    def test_option_text_bounds(self):
        q = QuizQuestion.from_dict(question_payload(1))
        assert q.option_text(1) == "B1"
        assert q.option_text(None) is None
        assert q.option_text(7) is None


class TestQuizHistoryEntry:
    def test_answers_parsed(self):
        entry = QuizHistoryEntry.from_dict(history_payload("h1", [("Q", True), ("R", False)]))
        assert entry.correct_count == 1
        assert entry.wrong_count == 1
        assert entry.answers[1].user_text == "R-wrong"
        assert entry.answers[0].correct_text == "Q-right"

    def test_unanswered_text(self):
        ans = QuizAnswer(question="Q", options=("a",), correct_answer=0, user_answer=-1, is_correct=False)
        assert ans.user_text == "Not answered"


class TestTopic:
    def test_round_trip_keys(self):
        topic = Topic.from_dict({"id": "t", "title": "T", "videoUrl": "http://v", "order": "3"})
        assert topic.order == 3
        assert topic.to_dict()["videoUrl"] == "http://v"

    def test_chat_context_from_tab(self):
        assert ChatContext.from_tab("Quiz") is ChatContext.QUIZ
        assert ChatContext.from_tab("document") is ChatContext.DOCUMENT
        assert ChatContext.from_tab("") is ChatContext.DOCUMENT

"""Quiz tab orchestration: generation requests, history recording, analysis."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from services.mastery_tracker import (
    MasteredConcept,
    QuizHistoryLog,
    build_quiz_request,
    fallback_analysis,
    known_concepts,
    mastered_concepts,
)
from services.models import Study
from services.question_recommender import QuestionCountState, TopicSelection
from services.quiz_session import QuizSession
from services.study_api import ApiError, StudyApiClient
from services.study_store import (
    AddHistoryEntry,
    RemoveHistoryEntry,
    SetQuizQuestions,
    StudyStore,
)
from utils.metrics import log_metric

LOGGER = logging.getLogger("study.quiz")

GENERATION_MODES = ("new", "same_topics", "wrong_concepts")


class QuizWorkspace:
    """Everything the quiz tab needs for one study, wired to the shared store."""

    def __init__(self, api: StudyApiClient, store: StudyStore, sleep: Callable[[float], Any] = time.sleep) -> None:
        study = store.study
        if study is None:
            raise ValueError("store has no study loaded")
        self.api = api
        self.store = store
        self.session = QuizSession(study.quiz_questions, on_complete=self._save_history, sleep=sleep)
        self.selection = TopicSelection(topics=study.topics)
        self.count = QuestionCountState(self.selection.recommendation())
        self.history = QuizHistoryLog(study.quiz_history)
        self.avoid_known = False
        self.analysis: str | None = None
        self.wrong_topic_ids: list[str] = []
        self.last_error: str | None = None
        store.subscribe(self._on_study_change)

    def _on_study_change(self, study: Study | None) -> None:
        if study is not None:
            self.selection.topics = study.topics

    @property
    def study_id(self) -> str:
        return self.store.study.id if self.store.study else ""

    # ---------- topic selection ----------

    def set_mode(self, mode: str) -> int:
        self.selection.set_mode(mode)
        return self.count.update(self.selection.recommendation())

    def toggle_topic(self, topic_id: str) -> int:
        self.selection.toggle(topic_id)
        return self.count.update(self.selection.recommendation())

    def select_preset(self, preset: str) -> int:
        """Bulk custom selection: all, none, not_learned or learned."""
        actions = {
            "all": self.selection.select_all,
            "none": self.selection.clear,
            "not_learned": self.selection.select_not_learned,
            "learned": self.selection.select_learned,
        }
        if preset not in actions:
            raise ValueError(f"preset must be one of {', '.join(actions)}")
        actions[preset]()
        return self.count.update(self.selection.recommendation())

    def refresh_recommendation(self) -> int:
        return self.count.update(self.selection.recommendation())

    # ---------- history ----------

    def mastered(self) -> list[MasteredConcept]:
        topics = self.store.study.topics if self.store.study else []
        return mastered_concepts(self.history.entries, topics)

    def known(self) -> list[str] | None:
        return known_concepts(self.history.entries, enabled=self.avoid_known)

    def _save_history(self, session: QuizSession) -> None:
        answers = [a.to_dict() for a in session.history_answers()]
        started = time.perf_counter()
        try:
            entry = self.api.record_quiz_history(self.study_id, answers, self.selection.selected_ids)
        except ApiError:
            LOGGER.exception("Failed to save quiz history (study=%s)", self.study_id)
            return
        self.history.add(entry)
        self.store.dispatch(AddHistoryEntry(entry))
        log_metric("history", time.perf_counter() - started, study_id=self.study_id)

    def delete_history(self, history_id: str) -> bool:
        try:
            self.api.delete_quiz_history(self.study_id, history_id)
        except ApiError:
            LOGGER.exception("Failed to delete history entry %s", history_id)
            return False
        self.history.remove(history_id)
        self.store.dispatch(RemoveHistoryEntry(history_id))
        return True

    # ---------- generation ----------

    def generate(self, mode: str = "new") -> bool:
        """Request a new question set; returns False when generation failed."""
        if mode not in GENERATION_MODES:
            raise ValueError(f"mode must be one of {', '.join(GENERATION_MODES)}")
        self.analysis = None
        self.last_error = None
        focus = mode == "wrong_concepts" and self.session.has_questions
        request = build_quiz_request(
            num_questions=self.count.count,
            selected_topics=self.selection.selected_ids,
            history=self.history.entries,
            selected_history_ids=self.history.selected_ids,
            avoid_known=self.avoid_known,
            focus_on_mistakes=focus,
            session_results=self.session.question_results() if focus else None,
            wrong_topic_ids=self.session.wrong_topic_ids() if focus else None,
        )
        LOGGER.info(
            "quiz.generate(mode=%s,numQuestions=%s,topics=%s)",
            mode,
            request["numQuestions"],
            len(request["selectedTopics"]),
        )
        started = time.perf_counter()
        try:
            questions = self.api.generate_quiz(self.study_id, request)
        except ApiError as e:
            LOGGER.error("Failed to generate quiz: %s", e)
            self.last_error = str(e)
            return False
        finally:
            log_metric("quiz", time.perf_counter() - started, study_id=self.study_id, mode=mode)
        self.store.dispatch(SetQuizQuestions(tuple(questions)))
        self.session.load_questions(questions)
        self.wrong_topic_ids = []
        self.history.clear_selection()
        return True

    def regenerate(self) -> None:
        """Throw the current quiz away and go back to the generation screen."""
        self.session.regenerate()
        self.store.dispatch(SetQuizQuestions(()))
        self.analysis = None
        self.wrong_topic_ids = []

    # ---------- analysis ----------

    def analyze(self) -> str:
        """AI analysis of the finished quiz, with a local report when the call fails."""
        results = self.session.question_results()
        self.wrong_topic_ids = self.session.wrong_topic_ids()
        started = time.perf_counter()
        try:
            self.analysis = self.api.analyze_quiz(self.study_id, results)
        except ApiError as e:
            LOGGER.error("Failed to analyze quiz: %s", e)
            self.analysis = fallback_analysis(results)
        finally:
            log_metric("analysis", time.perf_counter() - started, study_id=self.study_id)
        return self.analysis

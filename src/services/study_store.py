"""Single shared Study state with typed actions and optimistic backend sync."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any, Union

from services.models import QuizHistoryEntry, QuizQuestion, Study
from services.study_api import ApiError, StudyApiClient

LOGGER = logging.getLogger("study.store")


@dataclass(frozen=True)
class SetStudy:
    study: Study


@dataclass(frozen=True)
class SetTopicLearned:
    topic_id: str
    learned: bool


@dataclass(frozen=True)
class SetTopicsLearned:
    learned_by_id: tuple[tuple[str, bool], ...]


@dataclass(frozen=True)
class SetQuizQuestions:
    questions: tuple[QuizQuestion, ...]


@dataclass(frozen=True)
class SetTopicVideo:
    topic_id: str
    video_url: str | None


@dataclass(frozen=True)
class SetTopicVideoGenerating:
    topic_id: str
    generating: bool


@dataclass(frozen=True)
class AddHistoryEntry:
    entry: QuizHistoryEntry


@dataclass(frozen=True)
class RemoveHistoryEntry:
    history_id: str


Action = Union[
    SetStudy,
    SetTopicLearned,
    SetTopicsLearned,
    SetQuizQuestions,
    SetTopicVideo,
    SetTopicVideoGenerating,
    AddHistoryEntry,
    RemoveHistoryEntry,
]


def _with_topics(study: Study, fn: Callable[[Any], Any]) -> Study:
    return replace(study, topics=[fn(t) for t in study.topics])


def reduce(study: Study | None, action: Action) -> Study | None:
    """Return the next Study for *action*; never mutates *study*."""
    if isinstance(action, SetStudy):
        return action.study
    if study is None:
        return None
    if isinstance(action, SetTopicLearned):
        return _with_topics(
            study, lambda t: replace(t, learned=action.learned) if t.id == action.topic_id else t
        )
    if isinstance(action, SetTopicsLearned):
        mapping = dict(action.learned_by_id)
        return _with_topics(
            study, lambda t: replace(t, learned=mapping[t.id]) if t.id in mapping else t
        )
    if isinstance(action, SetQuizQuestions):
        return replace(study, quiz_questions=list(action.questions))
    if isinstance(action, SetTopicVideo):
        return _with_topics(
            study,
            lambda t: replace(t, video_url=action.video_url, video_generating=False)
            if t.id == action.topic_id
            else t,
        )
    if isinstance(action, SetTopicVideoGenerating):
        return _with_topics(
            study,
            lambda t: replace(t, video_generating=action.generating) if t.id == action.topic_id else t,
        )
    if isinstance(action, AddHistoryEntry):
        return replace(study, quiz_history=[action.entry, *study.quiz_history])
    if isinstance(action, RemoveHistoryEntry):
        return replace(study, quiz_history=[h for h in study.quiz_history if h.id != action.history_id])
    raise TypeError(f"unknown action {type(action).__name__}")


class StudyStore:
    """Owns the in-memory Study; every change goes through dispatch()."""

    def __init__(self, study: Study | None = None) -> None:
        self.study = study
        self._listeners: list[Callable[[Study | None], Any]] = []

    def subscribe(self, listener: Callable[[Study | None], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def dispatch(self, action: Action) -> Study | None:
        self.study = reduce(self.study, action)
        for listener in list(self._listeners):
            listener(self.study)
        return self.study


def toggle_topic_learned(store: StudyStore, api: StudyApiClient, topic_id: str, learned: bool) -> bool:
    """
    Flip one topic's learned flag now and persist it.

    On a failed write the previous flag is restored. Returns True when the
    backend accepted the change.
    """
    study = store.study
    topic = study.topic(topic_id) if study else None
    if study is None or topic is None:
        return False
    previous = topic.learned
    store.dispatch(SetTopicLearned(topic_id, learned))
    try:
        api.set_topic_learned(study.id, topic_id, learned)
    except ApiError:
        LOGGER.exception("Failed to sync topic status (topic=%s)", topic_id)
        store.dispatch(SetTopicLearned(topic_id, previous))
        return False
    return True


def mark_all_topics_learned(store: StudyStore, api: StudyApiClient, learned: bool) -> bool:
    study = store.study
    if study is None or not study.topics:
        return False
    previous = tuple((t.id, t.learned) for t in study.topics)
    store.dispatch(SetTopicsLearned(tuple((t.id, learned) for t in study.topics)))
    try:
        api.set_topics_learned(study.id, [t.id for t in study.topics], learned)
    except ApiError:
        LOGGER.exception("Failed to sync topics status (study=%s)", study.id)
        store.dispatch(SetTopicsLearned(previous))
        return False
    return True

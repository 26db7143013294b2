"""Streaming chat: per-context message lists rebuilt token by token from an SSE body."""

from __future__ import annotations

import codecs
import json
import logging
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from services.models import ChatContext, ChatMessage, QuizQuestion, Topic
from services.study_api import ApiError
from utils.metrics import log_metric

LOGGER = logging.getLogger("study.chat")

EVENT_PREFIX = "data: "
FAILURE_MESSAGE = "Sorry, I couldn't process your question. Please try again."

QUIZ_QUICK_ACTIONS: list[tuple[str, str]] = [
    ("Explain this question", "Can you explain this question to me?"),
    ("Give me a hint", "Give me a hint without revealing the answer"),
    ("Why is this correct?", "Why is the correct answer correct? Explain the concept."),
]
DOCUMENT_QUICK_ACTIONS: list[tuple[str, str]] = [
    ("Summarize this", "Give me a concise summary of this document"),
    ("Key concepts", "What are the key concepts I should understand from this material?"),
    ("Quiz me", "Ask me some questions to test my understanding"),
]


class ChatBusyError(RuntimeError):
    """Raised when a context already has a reply streaming in."""


class StreamError(RuntimeError):
    """Raised when the server reports an error inside the event stream."""


class SSELineDecoder:
    """
    Turns raw body chunks into JSON payloads.

    Bytes are decoded incrementally so multi-byte characters may straddle
    chunks. A line cut at a chunk boundary is held until its newline arrives.
    Lines without the event prefix, or whose JSON does not parse, are dropped.
    """

    def __init__(self, prefix: str = EVENT_PREFIX) -> None:
        self.prefix = prefix
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes | str) -> list[dict[str, Any]]:
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        lines = (self._pending + text).split("\n")
        self._pending = lines.pop()
        return [p for p in (self._parse(line) for line in lines) if p is not None]

    def flush(self) -> list[dict[str, Any]]:
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        payload = self._parse(tail)
        return [payload] if payload is not None else []

    def _parse(self, line: str) -> dict[str, Any] | None:
        line = line.rstrip("\r")
        if not line.startswith(self.prefix):
            return None
        try:
            parsed = json.loads(line[len(self.prefix):])
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None


def iter_tokens(chunks: Iterable[bytes | str]) -> Iterator[str]:
    """Yield content tokens; raise StreamError on an error payload."""
    decoder = SSELineDecoder()

    def _tokens(payloads: list[dict[str, Any]]) -> Iterator[str]:
        for payload in payloads:
            if payload.get("error"):
                raise StreamError(str(payload["error"]))
            content = payload.get("content")
            if content:
                yield str(content)

    for chunk in chunks:
        yield from _tokens(decoder.feed(chunk))
    yield from _tokens(decoder.flush())


def quiz_question_context(
    question: QuizQuestion | None, selected: int | None, has_answered: bool
) -> dict[str, Any] | None:
    """Describe the question on screen so the assistant can help without spoiling it."""
    if question is None:
        return None
    is_correct = None if selected is None else selected == question.correct_answer
    return {
        "question": question.question,
        "options": list(question.options),
        "hasAnswered": bool(has_answered),
        "selectedOption": question.option_text(selected),
        "isCorrect": is_correct,
        "correctAnswer": question.options[question.correct_answer] if has_answered else None,
    }


def chat_payload(
    context: ChatContext, message: str, question_context: dict[str, Any] | None = None
) -> dict[str, Any]:
    return {
        "message": message,
        "activeTab": context.value,
        "currentQuizQuestion": question_context if context is ChatContext.QUIZ else None,
    }


def quick_actions(
    context: ChatContext, topic_index: int | None = None, topics: list[Topic] | None = None
) -> list[tuple[str, str]]:
    """(label, message) shortcuts offered for the active context."""
    if context is ChatContext.QUIZ:
        return list(QUIZ_QUICK_ACTIONS)
    actions: list[tuple[str, str]] = []
    if topic_index is not None and topics and 0 <= topic_index < len(topics):
        unit = topic_index + 1
        actions.append((f"Teach me Unit {unit}", f"Teach me about Unit {unit}: {topics[topic_index].title}"))
    return actions + DOCUMENT_QUICK_ACTIONS


class ChatReassembler:
    """
    Keeps one message list per chat context and streams assistant replies into it.

    A send appends the user message, then an empty assistant placeholder,
    then replaces that last entry with the accumulated reply after every
    token. Only the list for the send's context is touched.
    """

    def __init__(
        self,
        histories: dict[ChatContext, list[ChatMessage]] | None = None,
        on_update: Callable[[ChatContext, list[ChatMessage]], Any] | None = None,
    ) -> None:
        self.messages: dict[ChatContext, list[ChatMessage]] = {c: [] for c in ChatContext}
        for context, items in (histories or {}).items():
            self.messages[ChatContext(context)] = list(items)
        self._in_flight: set[ChatContext] = set()
        self.on_update = on_update

    def is_streaming(self, context: ChatContext) -> bool:
        return context in self._in_flight

    def load_history(self, context: ChatContext, messages: list[ChatMessage]) -> None:
        self.messages[context] = list(messages)
        self._notify(context)

    def refresh(self, context: ChatContext, fetch: Callable[[], list[ChatMessage]]) -> bool:
        """
        Replace *context*'s list with the server's history.

        Skipped while a reply is streaming there. A failed fetch keeps the
        current list and returns False.
        """
        if context in self._in_flight:
            return False
        try:
            messages = fetch()
        except ApiError:
            LOGGER.exception("chat.history fetch failed (context=%s)", context.value)
            return False
        self.load_history(context, messages)
        return True

    def clear(self, context: ChatContext) -> None:
        self.messages[context] = []
        self._notify(context)

    def send(
        self,
        context: ChatContext,
        message: str,
        open_stream: Callable[[], Iterable[bytes | str]],
    ) -> ChatMessage:
        """
        Stream one reply into *context* and return the final assistant message.

        Raises:
            ChatBusyError: If *context* already has a reply in flight.
            ValueError: If *message* is blank.
        """
        text = (message or "").strip()
        if not text:
            raise ValueError("message is required")
        if context in self._in_flight:
            raise ChatBusyError(f"A reply is already streaming in the {context.value} chat")

        self._in_flight.add(context)
        started = time.perf_counter()
        full = ""
        try:
            self._append(context, ChatMessage(role="user", content=text))
            self._append(context, ChatMessage(role="assistant", content=""))
            try:
                for token in iter_tokens(open_stream()):
                    full += token
                    self._replace_last(context, ChatMessage(role="assistant", content=full))
            except Exception:  # noqa: BLE001
                LOGGER.exception("chat.stream failed (context=%s)", context.value)
                self._replace_last(context, ChatMessage(role="assistant", content=FAILURE_MESSAGE))
        finally:
            self._in_flight.discard(context)
            log_metric("chat", time.perf_counter() - started, context=context.value, chars=len(full))
        return self.messages[context][-1]

    def _append(self, context: ChatContext, msg: ChatMessage) -> None:
        self.messages[context] = [*self.messages[context], msg]
        self._notify(context)

    def _replace_last(self, context: ChatContext, msg: ChatMessage) -> None:
        updated = list(self.messages[context])
        updated[-1] = msg
        self.messages[context] = updated
        self._notify(context)

    def _notify(self, context: ChatContext) -> None:
        if self.on_update is not None:
            self.on_update(context, self.messages[context])

"""
In-document search: debounced query, match counting, keyboard shortcuts and
highlight indexing for the document tab.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Iterable, Union

from config import SEARCH_DEBOUNCE_S

LOGGER = logging.getLogger("study.search")


def _pattern(query: str) -> re.Pattern[str]:
    return re.compile(re.escape(query), re.IGNORECASE)


def _searchable(query: str) -> bool:
    return bool(query and query.strip())


def count_matches(text: str, query: str) -> int:
    """Case-insensitive literal occurrences of *query* in *text*; blank queries match nothing."""
    if not _searchable(query):
        return 0
    return len(_pattern(query).findall(text or ""))


@dataclass(frozen=True)
class Highlight:
    """A matched run of text; index is its position among all matches in the render."""

    text: str
    index: int
    current: bool


Segment = Union[str, Highlight]


class Debouncer:
    """Holds the latest value and releases it once it has been stable for *delay* seconds."""

    def __init__(self, delay: float = SEARCH_DEBOUNCE_S, clock: Callable[[], float] = time.monotonic) -> None:
        self.delay = delay
        self._clock = clock
        self._value: str | None = None
        self._since = 0.0

    def push(self, value: str) -> None:
        self._value = value
        self._since = self._clock()

    def cancel(self) -> None:
        self._value = None

    @property
    def pending(self) -> bool:
        return self._value is not None

    def poll(self) -> str | None:
        if self._value is None or self._clock() - self._since < self.delay:
            return None
        value, self._value = self._value, None
        return value


class DocumentSearch:
    """Search bar state for the document tab."""

    def __init__(self, debouncer: Debouncer | None = None) -> None:
        self.debouncer = debouncer or Debouncer()
        self.is_open = False
        self.focus_requested = False
        self.query = ""
        self.active_query = ""
        self.current_index = 0
        self.total = 0
        self._content = ""

    # ---------- bar lifecycle ----------

    def open(self) -> None:
        self.is_open = True
        self.focus_requested = True

    def take_focus_request(self) -> bool:
        """Return and reset the pending focus request raised by Ctrl/Cmd+F."""
        requested, self.focus_requested = self.focus_requested, False
        return requested

    def close(self) -> None:
        self.is_open = False
        self.focus_requested = False
        self.query = ""
        self.active_query = ""
        self.current_index = 0
        self.total = 0
        self.debouncer.cancel()

    def handle_key(self, key: str, ctrl: bool = False, meta: bool = False, shift: bool = False) -> bool:
        """Apply a keyboard shortcut; returns True when the key was consumed."""
        if (ctrl or meta) and key.lower() == "f":
            self.open()
            return True
        if not self.is_open:
            return False
        if key == "Escape":
            self.close()
            return True
        if key == "Enter":
            if shift:
                self.prev()
            else:
                self.next()
            return True
        return False

    # ---------- query ----------

    def set_content(self, content: str) -> None:
        """Switch the searched text (whole document or one topic); recounts only when it changed."""
        content = content or ""
        if content == self._content:
            return
        self._content = content
        if self.active_query:
            self._activate(self.active_query)

    def type_query(self, query: str) -> None:
        self.query = query
        if self.is_open:
            self.debouncer.push(query)

    def tick(self) -> bool:
        """Promote the debounced query once it settles; True when highlighting changed."""
        if not self.is_open:
            return False
        value = self.debouncer.poll()
        if value is None:
            return False
        self._activate(value)
        return True

    def _activate(self, query: str) -> None:
        self.active_query = query
        self.current_index = 0
        self.total = count_matches(self._content, query)
        LOGGER.debug("search.activate(query=%r,total=%s)", query, self.total)

    @property
    def position_label(self) -> str:
        if self.total == 0:
            return "0/0"
        return f"{self.current_index + 1}/{self.total}"

    # ---------- navigation ----------

    def next(self) -> int:
        if self.total:
            self.current_index = (self.current_index + 1) % self.total
        return self.current_index

    def prev(self) -> int:
        if self.total:
            self.current_index = (self.current_index - 1) % self.total
        return self.current_index

    # ---------- highlighting ----------

    def highlight(self, nodes: Iterable[str]) -> list[list[Segment]]:
        """
        Split each rendered text node into plain and highlighted segments.

        Indexes run across all nodes in document order, starting at 0 for
        every call, so they line up with current_index.
        """
        counter = 0
        out: list[list[Segment]] = []
        for node in nodes:
            text = str(node)
            if not _searchable(self.active_query):
                out.append([text])
                continue
            segments: list[Segment] = []
            last = 0
            for match in _pattern(self.active_query).finditer(text):
                if match.start() > last:
                    segments.append(text[last:match.start()])
                segments.append(Highlight(match.group(0), counter, counter == self.current_index))
                counter += 1
                last = match.end()
            if last < len(text) or not segments:
                segments.append(text[last:])
            out.append(segments)
        return out

"""Tests for services/video_service — socket progress handling and topic video lifecycle."""

from __future__ import annotations

import json

import pytest
from websockets.exceptions import ConnectionClosedError

from conftest import study_payload
from services.models import Study, VideoProgress
from services.study_api import ApiError
from services.study_store import StudyStore
from services.video_service import (
    REQUEST_TYPE,
    VideoGenerationError,
    VideoGenerator,
    video_progress_message,
)


class FakeSocket:
    def __init__(self, messages: list, clock=None, step: float = 0.0) -> None:
        self.messages = list(messages)
        self.sent: list[dict] = []
        self.closed = False
        self.clock = clock
        self.step = step

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False

    def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    def recv(self, timeout=None):
        if self.clock is not None:
            self.clock.now += self.step
        if not self.messages:
            raise TimeoutError
        item = self.messages.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item if isinstance(item, str) else json.dumps(item)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeVideoApi:
    def __init__(self) -> None:
        self.saved: list[tuple] = []
        self.deleted: list[str] = []
        self.fail_script_for: set[str] = set()

    def get_topic_script(self, study_id, topic_id):
        if topic_id in self.fail_script_for:
            raise ApiError("Failed to generate script", status=500)
        return f"script for {topic_id}"

    def set_topic_video(self, study_id, topic_id, url):
        self.saved.append((study_id, topic_id, url))

    def delete_topic_video(self, study_id, topic_id):
        self.deleted.append(topic_id)


def _complete(url: str = "https://cdn/v.mp4") -> dict:
    return {"type": REQUEST_TYPE, "status": "complete", "progress": 100, "videoUrl": url}


def _generator(sockets: list[FakeSocket], api=None, timeout: float = 300.0, clock=None):
    store = StudyStore(Study.from_dict(study_payload()))
    pending = list(sockets)
    opened: list[str] = []

    def _connect(url, open_timeout=None):
        opened.append(url)
        return pending.pop(0)

    gen = VideoGenerator(
        api or FakeVideoApi(), store, "wss://render.test", timeout=timeout, connect=_connect, clock=clock or FakeClock()
    )
    return gen, store, opened


class TestRender:
    def test_progress_then_url(self):
        sock = FakeSocket(
            [
                {"status": "pong"},
                {"status": "queued"},
                {"type": REQUEST_TYPE, "status": "generating_audio", "progress": 40},
                "not json",
                _complete(),
            ]
        )
        gen, _, _ = _generator([sock])
        updates: list[VideoProgress] = []
        assert gen.render("hello", updates.append) == "https://cdn/v.mp4"
        assert sock.sent == [{"type": REQUEST_TYPE, "script": "hello"}]
        assert [u.status for u in updates] == ["started", "queued", "generating_audio", "complete"]
        assert updates[2].progress == 40.0
        assert sock.closed

    def test_error_status(self):
        sock = FakeSocket([{"type": REQUEST_TYPE, "status": "error", "error": "render farm down"}])
        gen, _, _ = _generator([sock])
        with pytest.raises(VideoGenerationError, match="render farm down"):
            gen.render("s")
        assert sock.closed

    def test_timeout(self):
        clock = FakeClock()
        sock = FakeSocket([{"status": "queued"}] * 10, clock=clock, step=40.0)
        gen, _, _ = _generator([sock], timeout=100.0, clock=clock)
        with pytest.raises(VideoGenerationError, match="timed out"):
            gen.render("s")
        assert sock.closed

    def test_connection_drop(self):
        sock = FakeSocket([ConnectionClosedError(None, None)])
        gen, _, _ = _generator([sock])
        with pytest.raises(VideoGenerationError, match="Connection error"):
            gen.render("s")

    def test_complete_without_url(self):
        gen, _, _ = _generator([FakeSocket([_complete(url="")])])
        with pytest.raises(VideoGenerationError):
            gen.render("s")


class TestGenerate:
    def test_generate_saves_and_updates_store(self, tmp_db):
        api = FakeVideoApi()
        gen, store, opened = _generator([FakeSocket([_complete()])], api=api)
        seen = []
        store.subscribe(lambda s: seen.append(s.topic("t1").video_generating))
        assert gen.generate("t1") == "https://cdn/v.mp4"
        assert api.saved == [("s1", "t1", "https://cdn/v.mp4")]
        assert store.study.topic("t1").video_url == "https://cdn/v.mp4"
        assert seen == [True, False]
        assert opened == ["wss://render.test"]

    def test_failure_resets_generating_flag(self):
        gen, store, _ = _generator([FakeSocket([{"type": REQUEST_TYPE, "status": "error"}])])
        with pytest.raises(VideoGenerationError):
            gen.generate("t1")
        topic = store.study.topic("t1")
        assert not topic.video_generating
        assert topic.video_url is None

    def test_unknown_topic(self):
        gen, _, _ = _generator([])
        with pytest.raises(VideoGenerationError):
            gen.generate("zz")

    def test_generate_all_skips_failures(self):
        api = FakeVideoApi()
        api.fail_script_for = {"t1"}
        gen, store, _ = _generator([FakeSocket([_complete("https://cdn/t2.mp4")])], api=api)
        progress = []
        results = gen.generate_all(lambda tid, p: progress.append((tid, p.status)))
        assert results == {"t2": "https://cdn/t2.mp4"}
        assert ("t1", "generating_script") in progress
        assert ("t2", "complete") in progress
        assert store.study.topic("t1").video_url is None

    def test_delete(self):
        api = FakeVideoApi()
        gen, store, _ = _generator([FakeSocket([_complete()])], api=api)
        gen.generate("t1")
        assert gen.delete("t1") is True
        assert store.study.topic("t1").video_url is None
        assert api.deleted == ["t1"]


class TestProgressMessage:
    def test_known_statuses(self):
        assert video_progress_message("rendering", 42.7) == "🎥 Rendering: 42%"
        assert video_progress_message("error", error="bad") == "❌ Error: bad"

    def test_unknown_status_passes_through(self):
        assert video_progress_message("queued") == "queued"
        assert video_progress_message("") == "⏳ Waiting in queue..."

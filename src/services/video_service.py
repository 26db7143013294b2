"""Short narrated video generation over the external WebSocket service."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

from websockets.exceptions import WebSocketException
from websockets.sync.client import connect as ws_connect

from config import VIDEO_TIMEOUT_S
from services.models import VideoProgress
from services.study_api import ApiError, StudyApiClient
from services.study_store import SetTopicVideo, SetTopicVideoGenerating, StudyStore
from utils.metrics import log_metric

LOGGER = logging.getLogger("study.video")

REQUEST_TYPE = "generate-rant-for-study"
PROGRESS_STATUSES = (
    "generating_script",
    "started",
    "generating_audio",
    "audio_complete",
    "generating_captions",
    "bundling",
    "rendering",
    "complete",
    "error",
)


class VideoGenerationError(RuntimeError):
    """Raised when the video pipeline reports an error, times out, or disconnects."""


def video_progress_message(status: str, progress: float | None = None, error: str | None = None) -> str:
    pct = int(progress or 0)
    messages = {
        "generating_script": "✍️ AI is writing your TikTok script...",
        "started": "🎬 Starting video generation...",
        "generating_audio": f"🎵 Generating audio... {pct}%",
        "audio_complete": "✅ Audio generation complete",
        "generating_captions": f"🔄 Generating captions... {pct}%",
        "bundling": f"📦 AI editing the video... {pct}%",
        "rendering": f"🎥 Rendering: {pct}%",
        "complete": "✨ Rendering complete!",
        "error": "❌ Error: " + (error or "Unknown error"),
    }
    return messages.get(status, status or "⏳ Waiting in queue...")


def _progress_value(raw: Any) -> float | None:
    try:
        return float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


class VideoGenerator:
    """Runs one topic at a time through script -> socket render -> saved URL."""

    def __init__(
        self,
        api: StudyApiClient,
        store: StudyStore,
        ws_url: str,
        timeout: float = VIDEO_TIMEOUT_S,
        connect: Callable[..., Any] = ws_connect,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api = api
        self.store = store
        self.ws_url = ws_url
        self.timeout = timeout
        self._connect = connect
        self._clock = clock

    def render(self, script: str, on_progress: Callable[[VideoProgress], Any] | None = None) -> str:
        """
        Send *script* to the render service and wait for the final video URL.

        The whole exchange is bounded by self.timeout; the socket is closed on
        every exit path.
        """
        notify = on_progress or (lambda _p: None)
        deadline = self._clock() + self.timeout
        try:
            with self._connect(self.ws_url, open_timeout=min(30.0, self.timeout)) as ws:
                notify(VideoProgress(status="started"))
                ws.send(json.dumps({"type": REQUEST_TYPE, "script": script}))
                while True:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        raise TimeoutError
                    raw = ws.recv(timeout=remaining)
                    try:
                        message = json.loads(raw)
                    except (TypeError, ValueError):
                        LOGGER.error("Error parsing WebSocket message: %r", raw)
                        continue
                    if not isinstance(message, dict):
                        continue
                    status = str(message.get("status") or "")
                    if message.get("type") == REQUEST_TYPE:
                        notify(
                            VideoProgress(
                                status=status or "started",
                                progress=_progress_value(message.get("progress")),
                                error=message.get("error"),
                            )
                        )
                        if status == "complete":
                            url = str(message.get("videoUrl") or "")
                            if not url:
                                raise VideoGenerationError("Video generation finished without a URL")
                            return url
                        if status == "error":
                            raise VideoGenerationError(str(message.get("error") or "Video generation failed"))
                    elif status and status != "pong":
                        notify(VideoProgress(status=status, progress=_progress_value(message.get("progress"))))
        except TimeoutError as e:
            raise VideoGenerationError("Video generation timed out") from e
        except (OSError, WebSocketException) as e:
            LOGGER.error("WebSocket error: %s", e)
            raise VideoGenerationError("Connection error") from e

    def generate(self, topic_id: str, on_progress: Callable[[VideoProgress], Any] | None = None) -> str:
        """Generate, persist, and attach a video for one topic of the current study."""
        study = self.store.study
        if study is None or study.topic(topic_id) is None:
            raise VideoGenerationError(f"Unknown topic {topic_id}")
        notify = on_progress or (lambda _p: None)
        started = time.perf_counter()
        self.store.dispatch(SetTopicVideoGenerating(topic_id, True))
        notify(VideoProgress(status="generating_script"))
        try:
            script = self.api.get_topic_script(study.id, topic_id)
            url = self.render(script, notify)
            self.api.set_topic_video(study.id, topic_id, url)
        except (ApiError, VideoGenerationError):
            LOGGER.exception("Video generation error (topic=%s)", topic_id)
            self.store.dispatch(SetTopicVideoGenerating(topic_id, False))
            log_metric("video", time.perf_counter() - started, topic_id=topic_id, ok=False)
            raise
        self.store.dispatch(SetTopicVideo(topic_id, url))
        log_metric("video", time.perf_counter() - started, topic_id=topic_id, ok=True)
        return url

    def generate_all(self, on_progress: Callable[[str, VideoProgress], Any] | None = None) -> dict[str, str]:
        """
        Sequentially render every topic that has no video and is not already rendering.

        A failed topic is skipped; the returned mapping holds only topics that
        received a URL.
        """
        study = self.store.study
        if study is None:
            return {}
        pending = [t.id for t in study.topics if not t.video_url and not t.video_generating]
        results: dict[str, str] = {}
        for topic_id in pending:
            callback = (lambda p, tid=topic_id: on_progress(tid, p)) if on_progress else None
            try:
                results[topic_id] = self.generate(topic_id, callback)
            except (ApiError, VideoGenerationError):
                continue
        return results

    def delete(self, topic_id: str) -> bool:
        study = self.store.study
        if study is None:
            return False
        try:
            self.api.delete_topic_video(study.id, topic_id)
        except ApiError:
            LOGGER.exception("Delete video error (topic=%s)", topic_id)
            return False
        self.store.dispatch(SetTopicVideo(topic_id, None))
        return True

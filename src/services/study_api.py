"""REST client for the study backend (cookie-authenticated JSON API)."""

from __future__ import annotations

import http.cookiejar
import json
import logging
import urllib.error
import urllib.request
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, BinaryIO
from urllib.parse import quote
from uuid import uuid4

from config import MAX_PDF_FILES
from services.models import (
    ChatContext,
    ChatMessage,
    QuizHistoryEntry,
    QuizQuestion,
    Study,
    StudyValidationError,
    parse_questions,
)

LOGGER = logging.getLogger("study.api")

PDF_MIME = "application/pdf"
STREAM_READ_SIZE = 4096


class ApiError(RuntimeError):
    """Raised when the backend answers with an error status or cannot be reached."""

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = status


class AuthenticationError(ApiError):
    """Raised on 401: invalid credentials or a missing/expired session cookie."""


@dataclass
class UploadFile:
    """A file selected for a PDF study."""

    name: str
    data: bytes
    content_type: str = PDF_MIME

    @classmethod
    def from_stream(cls, name: str, stream: BinaryIO, content_type: str = PDF_MIME) -> "UploadFile":
        return cls(name=name, data=stream.read(), content_type=content_type)


def _seg(value: str) -> str:
    return quote(str(value), safe="")


def validate_notes_study(title: str, notes: str) -> None:
    if not (title or "").strip() or not (notes or "").strip():
        raise StudyValidationError("Title and notes are required")


def validate_pdf_study(title: str, files: list[UploadFile]) -> None:
    if not (title or "").strip():
        raise StudyValidationError("Title is required")
    if not files:
        raise StudyValidationError("Please upload at least one PDF")
    if len(files) > MAX_PDF_FILES:
        raise StudyValidationError(f"Maximum {MAX_PDF_FILES} PDF files allowed")
    for f in files:
        if f.content_type != PDF_MIME:
            raise StudyValidationError(f"Only PDF files are allowed: {f.name}")


def _encode_multipart(fields: dict[str, str], files: list[tuple[str, UploadFile]]) -> tuple[bytes, str]:
    boundary = f"----studylens{uuid4().hex}"
    parts: list[bytes] = []
    for name, value in fields.items():
        parts.append(
            (
                f"--{boundary}\r\n"
                f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
                f"{value}\r\n"
            ).encode("utf-8")
        )
    for name, upload in files:
        header = (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{name}"; filename="{upload.name}"\r\n'
            f"Content-Type: {upload.content_type}\r\n\r\n"
        ).encode("utf-8")
        parts.append(header + upload.data + b"\r\n")
    parts.append(f"--{boundary}--\r\n".encode("utf-8"))
    return b"".join(parts), f"multipart/form-data; boundary={boundary}"


class StudyApiClient:
    """Thin wrapper over the backend endpoints; one instance per signed-in user."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        opener: urllib.request.OpenerDirector | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cookies = http.cookiejar.CookieJar()
        self._opener = opener or urllib.request.build_opener(
            urllib.request.HTTPCookieProcessor(self.cookies)
        )

    # ---------- transport ----------

    def _open(
        self,
        method: str,
        endpoint: str,
        payload: Any = None,
        body: bytes | None = None,
        content_type: str | None = None,
    ):
        if payload is not None:
            body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
            content_type = "application/json"
        req = urllib.request.Request(f"{self.base_url}{endpoint}", data=body, method=method)
        if content_type:
            req.add_header("Content-Type", content_type)
        try:
            return self._opener.open(req, timeout=self.timeout)
        except urllib.error.HTTPError as e:
            raise self._error_from_response(e) from e
        except urllib.error.URLError as e:
            raise ApiError(f"Network error: {e.reason}") from e

    @staticmethod
    def _error_from_response(err: urllib.error.HTTPError) -> ApiError:
        message = "API request failed"
        try:
            data = json.loads(err.read().decode("utf-8") or "{}")
            if isinstance(data, dict) and data.get("error"):
                message = str(data["error"])
        except (ValueError, OSError):
            pass
        if err.code == 401:
            return AuthenticationError(message, status=err.code)
        return ApiError(message, status=err.code)

    def _json(self, method: str, endpoint: str, payload: Any = None, **kwargs: Any) -> dict[str, Any]:
        with self._open(method, endpoint, payload=payload, **kwargs) as resp:
            raw = resp.read()
        if not raw:
            return {}
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise ApiError(f"Invalid JSON from {endpoint}") from e
        return data if isinstance(data, dict) else {}

    # ---------- auth ----------

    def login(self, email: str, password: str) -> dict[str, Any]:
        if not (email or "").strip() or not password:
            raise StudyValidationError("Email and password are required")
        data = self._json("POST", "/auth/login", {"email": email.strip().lower(), "password": password})
        return data.get("user") if isinstance(data.get("user"), dict) else {}

    def logout(self) -> None:
        try:
            self._json("POST", "/auth/logout", {})
        finally:
            self.cookies.clear()

    def me(self) -> dict[str, Any]:
        data = self._json("GET", "/auth/me")
        return data.get("user") if isinstance(data.get("user"), dict) else {}

    # ---------- studies ----------

    def list_studies(self) -> list[Study]:
        data = self._json("GET", "/studies")
        rows = data.get("studies") if isinstance(data.get("studies"), list) else []
        return [Study.from_dict(s) for s in rows if isinstance(s, dict)]

    def get_study(self, study_id: str) -> tuple[Study, dict[str, Any] | None]:
        """Return the study and the server's initial question recommendation, if any."""
        data = self._json("GET", f"/studies/{_seg(study_id)}")
        raw = data.get("study")
        if not isinstance(raw, dict):
            raise ApiError("Failed to fetch study")
        rec = data.get("questionRecommendation")
        return Study.from_dict(raw), rec if isinstance(rec, dict) else None

    def create_study_from_notes(self, title: str, description: str, notes: str) -> Study:
        validate_notes_study(title, notes)
        data = self._json(
            "POST",
            "/studies",
            {"title": title.strip(), "description": (description or "").strip(), "content": notes},
        )
        return Study.from_dict(data.get("study") if isinstance(data.get("study"), dict) else {})

    def create_study_from_pdfs(self, title: str, description: str, files: list[UploadFile]) -> Study:
        validate_pdf_study(title, files)
        body, content_type = _encode_multipart(
            {"title": title.strip(), "description": (description or "").strip()},
            [("pdfs", f) for f in files],
        )
        data = self._json("POST", "/studies/upload", body=body, content_type=content_type)
        return Study.from_dict(data.get("study") if isinstance(data.get("study"), dict) else {})

    # ---------- chat ----------

    def get_chat_history(self, study_id: str, context: ChatContext) -> list[ChatMessage]:
        data = self._json("GET", f"/studies/{_seg(study_id)}/chat/{context.value}")
        rows = data.get("messages") if isinstance(data.get("messages"), list) else []
        return [ChatMessage.from_dict(m) for m in rows if isinstance(m, dict)]

    def clear_chat_history(self, study_id: str, context: ChatContext) -> None:
        self._json("DELETE", f"/studies/{_seg(study_id)}/chat/{context.value}")

    def stream_chat(self, study_id: str, payload: dict[str, Any]) -> Iterator[bytes]:
        """Open the streaming chat endpoint and yield raw body chunks as they arrive."""
        resp = self._open("POST", f"/studies/{_seg(study_id)}/chat/stream", payload=payload)

        def _chunks() -> Iterator[bytes]:
            try:
                while True:
                    chunk = resp.read1(STREAM_READ_SIZE)
                    if not chunk:
                        break
                    yield chunk
            finally:
                resp.close()

        return _chunks()

    # ---------- quiz ----------

    def generate_quiz(self, study_id: str, request: dict[str, Any]) -> list[QuizQuestion]:
        data = self._json("POST", f"/studies/{_seg(study_id)}/quiz", request)
        questions = parse_questions(data.get("questions"))
        if not questions:
            raise ApiError("Failed to generate quiz")
        return questions

    def analyze_quiz(self, study_id: str, results: list[dict[str, Any]]) -> str:
        data = self._json("POST", f"/studies/{_seg(study_id)}/analyze-quiz", {"results": results})
        analysis = str(data.get("analysis") or "").strip()
        if not analysis:
            raise ApiError("Failed to analyze quiz")
        return analysis

    def record_quiz_history(
        self, study_id: str, answers: list[dict[str, Any]], selected_topics: list[str]
    ) -> QuizHistoryEntry:
        data = self._json(
            "POST",
            f"/studies/{_seg(study_id)}/quiz-history",
            {"answers": answers, "selectedTopics": list(selected_topics)},
        )
        entry = data.get("historyEntry")
        if not isinstance(entry, dict):
            raise ApiError("Failed to save quiz history")
        return QuizHistoryEntry.from_dict(entry)

    def delete_quiz_history(self, study_id: str, history_id: str) -> None:
        self._json("DELETE", f"/studies/{_seg(study_id)}/quiz-history/{_seg(history_id)}")

    # ---------- topics ----------

    def set_topic_learned(self, study_id: str, topic_id: str, learned: bool) -> None:
        self._json(
            "PATCH",
            f"/studies/{_seg(study_id)}/topics/{_seg(topic_id)}/learned",
            {"learned": bool(learned)},
        )

    def set_topics_learned(self, study_id: str, topic_ids: list[str], learned: bool) -> None:
        self._json(
            "PATCH",
            f"/studies/{_seg(study_id)}/topics/learned",
            {"topicIds": list(topic_ids), "learned": bool(learned)},
        )

    def set_topic_video(self, study_id: str, topic_id: str, video_url: str) -> None:
        self._json(
            "PATCH",
            f"/studies/{_seg(study_id)}/topics/{_seg(topic_id)}/video",
            {"videoUrl": video_url},
        )

    def delete_topic_video(self, study_id: str, topic_id: str) -> None:
        self._json("DELETE", f"/studies/{_seg(study_id)}/topics/{_seg(topic_id)}/video")

    def get_topic_script(self, study_id: str, topic_id: str) -> str:
        data = self._json("GET", f"/studies/{_seg(study_id)}/topics/{_seg(topic_id)}/script")
        script = str(data.get("script") or "").strip()
        if not script:
            raise ApiError("Failed to generate script")
        return script

"""Shared pytest fixtures for the Study Lens test suite."""

from __future__ import annotations

import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import pytest

# Ensure src/ is on the path so all service imports resolve.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


@pytest.fixture(autouse=True)
def _isolated_metrics(tmp_path, monkeypatch):
    """Point metrics at a throwaway file so no test writes data/app.db."""
    import utils.metrics as metrics_mod

    monkeypatch.setattr(metrics_mod, "DB_PATH", tmp_path / "unmigrated.db")


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    """Temporary SQLite DB with all migrations applied, wired into utils.metrics."""
    from migrations.migrate import migrate_to_latest
    import utils.metrics as metrics_mod

    db_file = tmp_path / "test_app.db"
    migrate_to_latest(db_file)
    monkeypatch.setattr(metrics_mod, "DB_PATH", db_file)
    return db_file


# ──────────────────────────────────────────────────────────────────────────────
# Fake backend
# ──────────────────────────────────────────────────────────────────────────────


class FakeBackend:
    """
    Route table plus request log behind a real HTTP server.

    Handlers are keyed by (method, path) and return (status, body, headers).
    A bytes list body is written chunk by chunk with a flush between chunks.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.requests: list[dict[str, Any]] = []
        self.server: ThreadingHTTPServer | None = None

    @property
    def url(self) -> str:
        host, port = self.server.server_address[:2]
        return f"http://{host}:{port}/api"

    def route(self, method: str, path: str, status: int = 200, body: Any = None, headers: dict | None = None):
        self.routes[(method, "/api" + path)] = (status, {} if body is None else body, headers or {})

    def last(self, method: str, path: str) -> dict[str, Any]:
        for req in reversed(self.requests):
            if req["method"] == method and req["path"] == "/api" + path:
                return req
        raise AssertionError(f"no {method} {path} request recorded")


def _make_handler(backend: FakeBackend):
    class Handler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
            return

        def _handle(self) -> None:
            length = int(self.headers.get("Content-Length") or 0)
            raw = self.rfile.read(length) if length else b""
            parsed: Any = None
            if raw and (self.headers.get("Content-Type") or "").startswith("application/json"):
                parsed = json.loads(raw.decode("utf-8"))
            backend.requests.append(
                {
                    "method": self.command,
                    "path": self.path,
                    "json": parsed,
                    "body": raw,
                    "headers": dict(self.headers),
                }
            )
            entry = backend.routes.get((self.command, self.path))
            if entry is None:
                status, body, headers = 404, {"error": "Not found"}, {}
            else:
                status, body, headers = entry
            if callable(body):
                body = body(parsed, dict(self.headers))

            if isinstance(body, list) and body and isinstance(body[0], bytes):
                self.send_response(status)
                self.send_header("Content-Type", "text/event-stream")
                for k, v in headers.items():
                    self.send_header(k, v)
                self.end_headers()
                for chunk in body:
                    self.wfile.write(chunk)
                    self.wfile.flush()
                self.close_connection = True
                return

            payload = json.dumps(body).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(payload)))
            for k, v in headers.items():
                self.send_header(k, v)
            self.end_headers()
            self.wfile.write(payload)

        do_GET = _handle
        do_POST = _handle
        do_PATCH = _handle
        do_DELETE = _handle

    return Handler


@pytest.fixture
def fake_backend():
    backend = FakeBackend()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(backend))
    backend.server = server
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield backend
    finally:
        server.shutdown()
        server.server_close()


# ──────────────────────────────────────────────────────────────────────────────
# Sample records
# ──────────────────────────────────────────────────────────────────────────────


def study_payload(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "_id": "s1",
        "title": "Cell Biology",
        "description": "Week 1",
        "content": "The cell is the unit of life. The cell membrane controls transport.",
        "sourceType": "notes",
        "topics": [
            {"id": "t2", "title": "Membranes", "content": "Lipid bilayer", "icon": "🧱", "order": 1},
            {"id": "t1", "title": "Cells", "content": "Basic unit", "icon": "🔬", "order": 0, "learned": True},
        ],
        "quizQuestions": [],
        "documentChatHistory": [{"role": "user", "content": "hi"}],
        "quizChatHistory": [],
        "quizHistory": [],
        "createdAt": "2024-01-01T00:00:00Z",
    }
    data.update(overrides)
    return data


def question_payload(n: int, topic_id: str = "t1", correct: int = 0) -> dict[str, Any]:
    return {
        "question": f"Q{n}?",
        "options": [f"A{n}", f"B{n}", f"C{n}", f"D{n}"],
        "correctAnswer": correct,
        "explanation": f"Because {n}",
        "hint": f"Think about {n}",
        "topicId": topic_id,
    }


def history_payload(
    entry_id: str, answers: list[tuple[str, bool]], topic_id: str = "t1"
) -> dict[str, Any]:
    """answers: (question, is_correct); the correct option is always index 0."""
    rows = [
        {
            "question": q,
            "options": [f"{q}-right", f"{q}-wrong"],
            "correctAnswer": 0,
            "userAnswer": 0 if ok else 1,
            "isCorrect": ok,
            "topicId": topic_id,
        }
        for q, ok in answers
    ]
    correct = sum(1 for _, ok in answers if ok)
    return {
        "id": entry_id,
        "takenAt": "2024-01-02T00:00:00Z",
        "totalQuestions": len(rows),
        "correctCount": correct,
        "wrongCount": len(rows) - correct,
        "percentage": round(correct / len(rows) * 100) if rows else 0,
        "selectedTopics": [],
        "answers": rows,
    }

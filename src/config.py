"""
Global settings for Study Lens.
Display constants live at module level; network endpoints are loaded into Settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# Page
PAGE_TITLE = "Study Lens"
PAGE_ICON = "📖"

# Sidebar
SIDEBAR_TITLE = "Studies"

# Tabs
TAB_DOCUMENT = "Document"
TAB_QUIZ = "Quiz"
TAB_VIDEO = "TikTok Video"

# Timing (seconds)
QUIZ_TRANSITION_DELAY_S = 0.3
SEARCH_DEBOUNCE_S = 0.15
VIDEO_TIMEOUT_S = 300.0

# Upload limits
MAX_PDF_FILES = 20

DEFAULT_API_URL = "http://localhost:3005/api"
DEFAULT_VIDEO_WS_URL = "wss://backend.korpi.ai"
DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "data" / "app.db"


@dataclass(frozen=True)
class Settings:
    """Endpoints and timeouts injected into the network clients."""

    api_url: str = DEFAULT_API_URL
    video_ws_url: str = DEFAULT_VIDEO_WS_URL
    db_path: Path = DEFAULT_DB_PATH
    http_timeout_s: float = 60.0
    video_timeout_s: float = VIDEO_TIMEOUT_S


def load_settings(env: dict[str, str] | None = None) -> Settings:
    """Build Settings from environment variables, falling back to defaults."""
    source = os.environ if env is None else env
    try:
        timeout = float(source.get("STUDY_HTTP_TIMEOUT") or 60.0)
    except ValueError:
        timeout = 60.0
    return Settings(
        api_url=(source.get("STUDY_API_URL") or DEFAULT_API_URL).rstrip("/"),
        video_ws_url=source.get("STUDY_VIDEO_WS_URL") or DEFAULT_VIDEO_WS_URL,
        db_path=Path(source.get("STUDY_DB_PATH") or DEFAULT_DB_PATH),
        http_timeout_s=timeout,
    )

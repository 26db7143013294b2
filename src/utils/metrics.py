"""Operation timing log for network-bound study actions, stored in SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from config import DEFAULT_DB_PATH

LOGGER = logging.getLogger("study.metrics")

# Tests and the app entry point repoint this via configure().
DB_PATH: Path = DEFAULT_DB_PATH

KNOWN_OPERATIONS = ("quiz", "analysis", "chat", "video", "history")


def configure(db_path: str | Path) -> None:
    global DB_PATH
    DB_PATH = Path(db_path)


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None).isoformat()


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def log_metric(operation: str, elapsed_s: float, study_id: str = "", **meta: Any) -> None:
    """Record how long one operation took.

    Never raises; a broken metrics table must not interrupt studying.

    Args:
        operation: One of KNOWN_OPERATIONS (others are stored as given).
        elapsed_s: Wall-clock seconds.
        study_id: Optional study the operation ran against.
        **meta: Extra fields stored as JSON (e.g. context="quiz", chars=120).
    """
    try:
        with _connect() as conn:
            conn.execute(
                """
                INSERT INTO operation_metrics (operation, study_id, elapsed_s, meta_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    operation,
                    study_id or "",
                    round(float(elapsed_s), 3),
                    json.dumps(meta, ensure_ascii=False, default=str),
                    _now_iso(),
                ),
            )
    except (sqlite3.Error, TypeError, ValueError) as e:
        LOGGER.debug("metric dropped (%s): %s", operation, e)


def get_recent_metrics(limit: int = 50, operation: str = "") -> list[dict[str, Any]]:
    """Newest-first metric rows, optionally for one operation; [] when unavailable."""
    where = "WHERE operation=?" if operation else ""
    params: tuple[Any, ...] = (operation, max(1, limit)) if operation else (max(1, limit),)
    try:
        with _connect() as conn:
            rows = conn.execute(
                f"""
                SELECT id, operation, study_id, elapsed_s, meta_json, created_at
                FROM operation_metrics
                {where}
                ORDER BY id DESC
                LIMIT ?
                """,
                params,
            ).fetchall()
    except sqlite3.Error:
        return []
    out: list[dict[str, Any]] = []
    for row in rows:
        item = dict(row)
        try:
            item["meta"] = json.loads(item.pop("meta_json") or "{}")
        except ValueError:
            item["meta"] = {}
        out.append(item)
    return out


def get_metrics_summary() -> dict[str, dict[str, Any]]:
    """Per-operation count and latency stats; {} when unavailable."""
    try:
        with _connect() as conn:
            rows = conn.execute(
                """
                SELECT operation,
                       COUNT(*)       AS total,
                       AVG(elapsed_s) AS avg_s,
                       MAX(elapsed_s) AS max_s,
                       MAX(created_at) AS last_at
                FROM operation_metrics
                GROUP BY operation
                ORDER BY total DESC
                """
            ).fetchall()
    except sqlite3.Error:
        return {}
    return {
        row["operation"]: {
            "total": row["total"],
            "avg_s": round(row["avg_s"], 2),
            "max_s": round(row["max_s"], 2),
            "last_at": row["last_at"],
        }
        for row in rows
    }

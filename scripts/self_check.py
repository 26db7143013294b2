"""Minimal stability self-check for migrations, metrics and offline quiz logic."""

from __future__ import annotations

import sqlite3
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from config import load_settings
from migrations.migrate import latest_migration_version, migrate_to_latest
from services.chat_stream import iter_tokens
from services.question_recommender import recommend_question_count
from utils import metrics


def check_migrations_idempotent(db_path: Path) -> None:
    first = migrate_to_latest(db_path)
    second = migrate_to_latest(db_path)
    latest = latest_migration_version()
    assert second == first, f"migrate_to_latest not idempotent: {first} vs {second}"
    assert second == latest, f"schema version not latest: {second} vs {latest}"

    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        assert row is not None, "meta.schema_version row missing"
        assert int(row[0]) == latest, f"DB schema_version != latest ({row[0]} vs {latest})"
    finally:
        conn.close()


def check_metrics_round_trip(db_path: Path) -> None:
    metrics.configure(db_path)
    metrics.log_metric("self_check", 0.001)
    conn = sqlite3.connect(db_path)
    try:
        rows = conn.execute("SELECT id FROM operation_metrics WHERE operation='self_check'").fetchall()
        assert rows, "metric row not written"
        conn.execute("DELETE FROM operation_metrics WHERE operation='self_check'")
        conn.commit()
    finally:
        conn.close()


def check_offline_logic() -> None:
    rec = recommend_question_count("all", 0, 3)
    assert (rec.min, rec.max, rec.suggested) == (15, 45, 30), f"unexpected recommendation {rec}"
    chunks = [b'data: {"content": "Hel"}\n', b'data: {"content": "lo"}\n']
    assert "".join(iter_tokens(chunks)) == "Hello", "stream reassembly failed"


def main() -> None:
    db_path = load_settings().db_path
    check_migrations_idempotent(db_path)
    check_metrics_round_trip(db_path)
    check_offline_logic()
    print("self_check: OK")


if __name__ == "__main__":
    main()

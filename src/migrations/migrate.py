"""Numbered-SQL schema migrations for the local metrics database."""

from __future__ import annotations

import re
import shutil
import sqlite3
from datetime import datetime
from pathlib import Path

from config import DEFAULT_DB_PATH

MIGRATIONS_SQL_DIR = Path(__file__).resolve().parent / "sql"


class MigrationError(RuntimeError):
    """Raised when a migration fails and its transaction was rolled back."""


class MigrationInProgressError(RuntimeError):
    """Raised when another process holds the migration lock."""


def _list_migrations() -> list[tuple[int, Path]]:
    out: list[tuple[int, Path]] = []
    for path in sorted(MIGRATIONS_SQL_DIR.glob("[0-9][0-9][0-9]_*.sql")):
        match = re.match(r"^(\d{3})_", path.name)
        if match:
            out.append((int(match.group(1)), path))
    out.sort(key=lambda x: x[0])
    return out


def latest_migration_version() -> int:
    migrations = _list_migrations()
    return migrations[-1][0] if migrations else 0


def read_schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='meta'").fetchone()
    if row is None:
        return 0
    row = conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
    try:
        return int(row[0]) if row else 0
    except (TypeError, ValueError):
        return 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        """
        INSERT INTO meta(key, value) VALUES('schema_version', ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (str(version),),
    )


def _backup(db_path: Path) -> None:
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backups = db_path.parent / "backups"
    backups.mkdir(parents=True, exist_ok=True)
    shutil.copy2(db_path, backups / f"{db_path.stem}_{stamp}{db_path.suffix}")


def migrate_to_latest(db_path: str | Path = DEFAULT_DB_PATH) -> int:
    """
    Apply pending migrations to *db_path* and return the resulting schema version.

    Creates the database when missing. An existing database is copied into a
    sibling backups/ directory before the first pending migration runs.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path = db_path.with_name(db_path.name + ".migrate.lock")
    try:
        lock_path.touch(exist_ok=False)
    except FileExistsError as e:
        raise MigrationInProgressError("migration in progress") from e

    existed = db_path.exists()
    conn = sqlite3.connect(db_path)
    try:
        current = read_schema_version(conn)
        pending = [(v, p) for v, p in _list_migrations() if v > current]
        if not pending:
            return current
        if existed:
            _backup(db_path)
        for version, sql_path in pending:
            try:
                # executescript() commits any open transaction first, so BEGIN goes inside the script.
                conn.executescript("BEGIN IMMEDIATE;\n" + sql_path.read_text(encoding="utf-8"))
                _set_schema_version(conn, version)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise MigrationError(f"Migration failed at {sql_path.name}. Rolled back.") from e
        return pending[-1][0]
    finally:
        conn.close()
        lock_path.unlink(missing_ok=True)

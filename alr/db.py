from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from .settings import settings

logit = logging.getLogger("alr")


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (eg a bind mount that Docker created
    as a directory), the DB file is placed inside it.
    """
    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "alr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS resources (
              key TEXT PRIMARY KEY,
              app_id TEXT NOT NULL,
              state_json TEXT NOT NULL,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              app_name TEXT,
              app_id TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, app_name: str | None = None, app_id: str | None = None) -> None:
    """Record an event in the events table and mirror it to the `alr` logger."""
    level = level.upper()
    logit.log(getattr(logging, level, logging.INFO), message)
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, app_name, app_id, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level, app_name, app_id, message),
        )


@dataclass(frozen=True)
class ResourceRow:
    key: str
    app_id: str
    state_json: str
    created_at: str
    updated_at: str


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def save_resource(key: str, app_id: str, state_json: str) -> ResourceRow:
    now = utc_now()
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO resources (key, app_id, state_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
              app_id=excluded.app_id,
              state_json=excluded.state_json,
              updated_at=excluded.updated_at
            """,
            (key, app_id, state_json, now, now),
        )
        row = conn.execute("SELECT * FROM resources WHERE key=?", (key,)).fetchone()
        return ResourceRow(**dict(row))


def get_resource(key: str) -> ResourceRow | None:
    with connect() as conn:
        row = conn.execute("SELECT * FROM resources WHERE key=?", (key,)).fetchone()
        return ResourceRow(**dict(row)) if row else None


def list_resources() -> list[ResourceRow]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM resources ORDER BY key").fetchall()
        return _rows_to_dataclass(rows, ResourceRow)


def delete_resource(key: str) -> None:
    with connect() as conn:
        conn.execute("DELETE FROM resources WHERE key=?", (key,))


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]

from __future__ import annotations

import json
import os
import sqlite3
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (e.g. a bind mount created by
    Docker for a missing file), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "dvr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service_name TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              overall TEXT NOT NULL,
              timed_out INTEGER NOT NULL DEFAULT 0,
              verdict_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_runs_ts ON runs(ts);
            """
        )


_initialized: set[str] = set()


def _ensure_db() -> None:
    path = _resolve_db_path()
    if path not in _initialized:
        init_db()
        _initialized.add(path)


def log_event(level: str, message: str, service_name: str | None = None) -> None:
    _ensure_db()
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, service_name, message) VALUES (?, ?, ?, ?)",
            (utc_now(), level.upper(), service_name, message),
        )


# Raised by an unusable event database (locked, unwritable).
DB_ERRORS = (sqlite3.Error, OSError)


def try_log_event(level: str, message: str, service_name: str | None = None) -> bool:
    """Like log_event, but an unusable event log only drops the entry."""
    try:
        log_event(level, message, service_name=service_name)
        return True
    except DB_ERRORS as e:
        print(f"event log unavailable ({type(e).__name__}: {e}); dropped: {level} {message}", file=sys.stderr)
        return False


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    _ensure_db()
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


@dataclass(frozen=True)
class RunRow:
    id: int
    ts: str
    overall: str
    timed_out: bool
    verdict: dict[str, Any]


def record_run(verdict: dict[str, Any]) -> int:
    """Persist a serialized verdict (see ``DeploymentVerdict.to_dict``)."""
    _ensure_db()
    with connect() as conn:
        cur = conn.execute(
            "INSERT INTO runs (ts, overall, timed_out, verdict_json) VALUES (?, ?, ?, ?)",
            (utc_now(), verdict["overall"], int(bool(verdict.get("timed_out"))), json.dumps(verdict)),
        )
        return int(cur.lastrowid)


def latest_runs(limit: int = 20) -> list[RunRow]:
    _ensure_db()
    with connect() as conn:
        rows = conn.execute("SELECT * FROM runs ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
    return [
        RunRow(
            id=r["id"],
            ts=r["ts"],
            overall=r["overall"],
            timed_out=bool(r["timed_out"]),
            verdict=json.loads(r["verdict_json"]),
        )
        for r in rows
    ]

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Protocol

from .models import CleanupState
from .utils import utc_now_iso

CLEANUP_KEY = "cleanup"
SERVICE_ID_KEY = "service_id"
PROJECT_ID_KEY = "project_id"
API_KEY_KEY = "api_key"

REQUIRED_CLEANUP_FIELDS = (SERVICE_ID_KEY, PROJECT_ID_KEY, API_KEY_KEY)


class StateBackend(Protocol):
    def save(self, entries: dict[str, str]) -> None: ...

    def load_all(self) -> dict[str, str]: ...

    def clear(self) -> None: ...


class StateStore:
    """Key/value hand-off between the fork and cleanup invocations."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        self.conn.close()

    def init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS workflow_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                written_at TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    def save(self, entries: dict[str, str]) -> None:
        now = utc_now_iso()
        self.conn.executemany(
            """
            INSERT INTO workflow_state(key, value, written_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                written_at = excluded.written_at
            """,
            [(key, value, now) for key, value in entries.items()],
        )
        self.conn.commit()

    def get(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM workflow_state WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return str(row["value"])

    def load_all(self) -> dict[str, str]:
        rows = self.conn.execute("SELECT key, value FROM workflow_state ORDER BY key").fetchall()
        return {str(row["key"]): str(row["value"]) for row in rows}

    def clear(self) -> None:
        self.conn.execute("DELETE FROM workflow_state")
        self.conn.commit()


def write_cleanup_state(store: StateBackend, state: CleanupState) -> None:
    store.save(
        {
            CLEANUP_KEY: "true" if state.enabled else "false",
            SERVICE_ID_KEY: state.service_id,
            PROJECT_ID_KEY: state.project_id,
            API_KEY_KEY: state.api_key,
        }
    )


def cleanup_enabled(entries: dict[str, str]) -> bool:
    return entries.get(CLEANUP_KEY, "").strip().lower() == "true"


def read_cleanup_state(entries: dict[str, str]) -> tuple[CleanupState | None, list[str]]:
    """Return the persisted cleanup state, or ``None`` with the names of missing fields."""
    missing = [key for key in REQUIRED_CLEANUP_FIELDS if not entries.get(key)]
    if missing:
        return None, missing
    state = CleanupState(
        enabled=cleanup_enabled(entries),
        service_id=entries[SERVICE_ID_KEY],
        project_id=entries[PROJECT_ID_KEY],
        api_key=entries[API_KEY_KEY],
    )
    return state, []

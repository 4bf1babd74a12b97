"""
SQLite-backed local store for client-side conversation state.

Plays the part browser storage plays for the embedded widget: two fixed keys,
the rendered chat history and the thread id, read on start and cleared
together when the user clears the conversation. Single portable file.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from portalassist.models import Message

logger = logging.getLogger(__name__)

HISTORY_KEY = "chat_history"
THREAD_KEY = "thread_id"

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


class LocalStore:
    """Key/value store for the history list and the thread id."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("Local store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Raw keys
    # ------------------------------------------------------------------

    def get(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str):
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO kv (key, value, updated_at) VALUES (?, ?, datetime('now'))
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                  updated_at = excluded.updated_at""",
                (key, value),
            )

    def delete(self, *keys: str):
        with self._connect() as conn:
            conn.executemany("DELETE FROM kv WHERE key = ?", [(k,) for k in keys])

    # ------------------------------------------------------------------
    # Conversation state
    # ------------------------------------------------------------------

    def load_thread_id(self) -> str | None:
        return self.get(THREAD_KEY) or None

    def save_thread_id(self, thread_id: str | None):
        if thread_id:
            self.set(THREAD_KEY, thread_id)
        else:
            self.delete(THREAD_KEY)

    def load_history(self) -> list[Message]:
        raw = self.get(HISTORY_KEY)
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Stored chat history is corrupt, starting fresh: %s", e)
            return []
        return [Message.from_dict(m) for m in items if isinstance(m, dict)]

    def save_history(self, messages: list[Message]):
        self.set(HISTORY_KEY, json.dumps([m.to_dict() for m in messages], ensure_ascii=False))

    def clear(self):
        """Remove both keys together."""
        self.delete(THREAD_KEY, HISTORY_KEY)
        logger.info("Local conversation state cleared")

import json
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from .config import settings

USER_CARTS_KEY = "userCarts"
SESSION_KEY = "user"
PROFILE_IMAGE_KEY = "profileImage"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TEXT NOT NULL
)
"""


class LocalStore:
    """
    Device-local key/value storage (JSON values) in a single SQLite file.
    Each call opens its own connection so writes can run on a worker thread.
    """

    def __init__(self, path: str = ""):
        self.path = path or settings.local_store_path
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        self._init_db()

    def _connect(self):
        return sqlite3.connect(self.path)

    def _init_db(self):
        with self._connect() as conn:
            conn.execute(_SCHEMA)
            conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT value FROM kv WHERE key = ?", (key,))
            r = cur.fetchone()
        if not r:
            return default
        try:
            return json.loads(r[0])
        except Exception:
            return default

    def set(self, key: str, value: Any) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, json.dumps(value, default=str), now),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()

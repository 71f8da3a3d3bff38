from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any
import json
from datetime import datetime, timezone

from .errors import StorageError


STEP1_POSTS = "step1_posts"
STEP2_ANALYSES = "step2_analyses"
STEP3_FILTERED = "step3_filtered"
STEP4_CONTEXT = "step4_context"
STEP5_DIGESTS = "step5_digests"

STEPS = [STEP1_POSTS, STEP2_ANALYSES, STEP3_FILTERED, STEP4_CONTEXT, STEP5_DIGESTS]


SCHEMA = """
CREATE TABLE IF NOT EXISTS checkpoints (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  namespace TEXT NOT NULL,
  created_at TEXT NOT NULL,
  payload_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_checkpoints_ns ON checkpoints(namespace, id);

CREATE TABLE IF NOT EXISTS llm_exchanges (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  created_at TEXT NOT NULL,
  provider TEXT NOT NULL,
  model TEXT NOT NULL,
  prompt TEXT NOT NULL,
  response TEXT NOT NULL,
  error TEXT
);
"""


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Store:
    """Checkpoints of each pipeline step's output, plus a log of LLM calls."""

    def __init__(self, db_path: str):
        self.db_path = str(Path(db_path))
        self._ensure()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure(self) -> None:
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            with self._conn() as conn:
                conn.executescript(SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"could not open {self.db_path}: {e}") from e

    def _location(self, table: str, row_id: int) -> str:
        return f"{self.db_path}#{table}/{row_id}"

    def save(self, namespace: str, payload: Any) -> str:
        """Store a JSON-serialisable payload; returns where it went."""
        try:
            body = json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"{namespace} payload is not JSON-serialisable: {e}") from e
        try:
            with self._conn() as conn:
                cur = conn.execute(
                    "INSERT INTO checkpoints(namespace, created_at, payload_json) VALUES(?,?,?)",
                    (namespace, now_iso(), body),
                )
                row_id = cur.lastrowid
        except sqlite3.Error as e:
            raise StorageError(f"could not save {namespace}: {e}") from e
        return self._location(namespace, row_id)

    def load_latest(self, namespace: str) -> tuple[Any, str]:
        try:
            with self._conn() as conn:
                row = conn.execute(
                    "SELECT id, payload_json FROM checkpoints WHERE namespace=? ORDER BY id DESC LIMIT 1",
                    (namespace,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"could not read {namespace}: {e}") from e
        if row is None:
            raise StorageError(f"no cached output for step {namespace}")
        try:
            return json.loads(row["payload_json"]), self._location(namespace, row["id"])
        except ValueError as e:
            raise StorageError(f"cached {namespace} is unreadable: {e}") from e

    def list_checkpoints(self, namespace: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
        q = "SELECT id, namespace, created_at, length(payload_json) AS size FROM checkpoints"
        params: list[Any] = []
        if namespace:
            q += " WHERE namespace=?"
            params.append(namespace)
        q += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        try:
            with self._conn() as conn:
                rows = conn.execute(q, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"could not list checkpoints: {e}") from e
        return [dict(r) for r in rows]

    def save_llm_exchange(
        self, provider: str, model: str, prompt: str, response: str, error: str | None = None
    ) -> str:
        try:
            with self._conn() as conn:
                cur = conn.execute(
                    "INSERT INTO llm_exchanges(created_at, provider, model, prompt, response, error) "
                    "VALUES(?,?,?,?,?,?)",
                    (now_iso(), provider, model, prompt, response, error),
                )
                row_id = cur.lastrowid
        except sqlite3.Error as e:
            raise StorageError(f"could not log LLM exchange: {e}") from e
        return self._location("llm_exchanges", row_id)

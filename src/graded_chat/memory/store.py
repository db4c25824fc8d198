from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger

from graded_chat.errors import StorageError


class MemoryStore:
    """SQLite persistence for sessions, graded messages and the event trail."""

    def __init__(self, db_path: str):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._initialize_schema()
        except sqlite3.Error as ex:
            raise StorageError(f"Cannot open database {self._db_path}: {ex}") from ex

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        self._conn.close()

    def execute(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        return self._conn.execute(query, params)

    def executemany(self, query: str, seq_of_params: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        return self._conn.executemany(query, seq_of_params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        try:
            self._conn.rollback()
        except sqlite3.Error as ex:
            logger.warning(f"Rollback failed: {ex}")

    @contextmanager
    def transaction(self, operation: str = "storage operation") -> Iterator[None]:
        """Commit on success; roll back and raise ``StorageError`` on any sqlite failure."""
        try:
            yield
            self._conn.commit()
        except sqlite3.Error as ex:
            self.rollback()
            logger.error(f"{operation} failed: {ex}")
            raise StorageError(f"{operation} failed: {ex}") from ex
        except BaseException:
            self.rollback()
            raise

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                total_input_tokens INTEGER NOT NULL DEFAULT 0,
                total_output_tokens INTEGER NOT NULL DEFAULT 0,
                context_threshold INTEGER NOT NULL DEFAULT 0
                    CHECK (context_threshold BETWEEN 0 AND 5),
                is_default INTEGER NOT NULL DEFAULT 0 CHECK (is_default IN (0, 1))
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE ON UPDATE CASCADE,
                seq INTEGER NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                content TEXT NOT NULL,
                created_at TEXT NOT NULL,
                turn_id TEXT NOT NULL DEFAULT '',
                is_final_response INTEGER NOT NULL DEFAULT 1 CHECK (is_final_response IN (0, 1)),
                text_grade INTEGER NOT NULL DEFAULT 5 CHECK (text_grade BETWEEN 0 AND 5),
                image_grade INTEGER NOT NULL DEFAULT 5 CHECK (image_grade BETWEEN 0 AND 5),
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                model_used TEXT NOT NULL DEFAULT '',
                tip TEXT NOT NULL DEFAULT '',
                is_edited INTEGER NOT NULL DEFAULT 0 CHECK (is_edited IN (0, 1)),
                UNIQUE(session_id, seq)
            );

            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                type TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_session_seq
                ON messages(session_id, seq);
            CREATE INDEX IF NOT EXISTS idx_messages_turn
                ON messages(turn_id);
            CREATE INDEX IF NOT EXISTS idx_events_session_created
                ON events(session_id, created_at);
            """
        )
        self._conn.commit()

from __future__ import annotations

import sqlite3
from datetime import datetime
from uuid import uuid4

from loguru import logger

from graded_chat.memory.events import EventEmitter, utc_now
from graded_chat.memory.models import ASSISTANT, USER, Message, SessionInfo, clamp_grade
from graded_chat.memory.store import MemoryStore

_MESSAGE_COLUMNS = (
    "id, role, content, created_at, turn_id, is_final_response, text_grade, image_grade, "
    "input_tokens, output_tokens, model_used, tip, is_edited"
)


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        role=row["role"],
        content=row["content"],
        timestamp=datetime.fromisoformat(row["created_at"]),
        turn_id=row["turn_id"],
        is_final_response=bool(row["is_final_response"]),
        text_grade=int(row["text_grade"]),
        image_grade=int(row["image_grade"]),
        input_tokens=int(row["input_tokens"]),
        output_tokens=int(row["output_tokens"]),
        model_used=row["model_used"],
        tip=row["tip"],
        is_edited=bool(row["is_edited"]),
    )


def _row_to_session(row: sqlite3.Row) -> SessionInfo:
    return SessionInfo(
        id=row["id"],
        total_input_tokens=int(row["total_input_tokens"]),
        total_output_tokens=int(row["total_output_tokens"]),
        context_threshold=int(row["context_threshold"]),
        is_default=bool(row["is_default"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SessionManager:
    """Named sessions and their graded, turn-grouped messages.

    Session ids are the user-visible session names. Every mutation runs in a
    ``MemoryStore.transaction`` so sqlite failures surface as ``StorageError``
    and an audit event is written alongside the change.
    """

    def __init__(self, store: MemoryStore, events: EventEmitter, *, default_session: str = "Scratch Pad"):
        self._store = store
        self._events = events
        self._default_session = default_session

    @property
    def default_session(self) -> str:
        return self._default_session

    # -- sessions -----------------------------------------------------------

    def get_session(self, session_id: str) -> SessionInfo | None:
        with self._store.transaction("Loading session"):
            row = self._store.execute(
                "SELECT * FROM sessions WHERE id = ? LIMIT 1",
                (session_id,),
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_sessions(self) -> list[SessionInfo]:
        with self._store.transaction("Listing sessions"):
            rows = self._store.execute(
                "SELECT * FROM sessions ORDER BY is_default DESC, updated_at DESC, created_at DESC"
            ).fetchall()
        return [_row_to_session(row) for row in rows]

    def create_session(self, name: str, *, is_default: bool = False) -> SessionInfo:
        name = name.strip()
        if not name:
            raise ValueError("Session name must not be empty")
        if self.get_session(name) is not None:
            raise ValueError(f"Session already exists: {name}")

        now = utc_now()
        with self._store.transaction("Creating session"):
            self._store.execute(
                """
                INSERT INTO sessions (id, created_at, updated_at, is_default)
                VALUES (?, ?, ?, ?)
                """,
                (name, now, now, 1 if is_default else 0),
            )
            self._events.emit(name, "session.created", {"session_id": name, "is_default": is_default})
        return SessionInfo(
            id=name,
            total_input_tokens=0,
            total_output_tokens=0,
            context_threshold=0,
            is_default=is_default,
            created_at=now,
            updated_at=now,
        )

    def load_or_create(self, name: str) -> SessionInfo:
        session = self.get_session(name)
        if session is not None:
            return session
        return self.create_session(name)

    def ensure_default_session(self) -> SessionInfo:
        session = self.get_session(self._default_session)
        if session is None:
            logger.info(f"Creating default session '{self._default_session}'")
            return self.create_session(self._default_session, is_default=True)
        if not session.is_default:
            with self._store.transaction("Marking default session"):
                self._store.execute("UPDATE sessions SET is_default = 1 WHERE id = ?", (session.id,))
            return self.get_session(session.id) or session
        return session

    def save_session_metadata(
        self,
        session_id: str,
        input_tokens: int,
        output_tokens: int,
        is_default: bool | None = None,
    ) -> None:
        """Store the session's running token totals (absolute values, not increments)."""
        now = utc_now()
        with self._store.transaction("Saving session metadata"):
            if is_default is None:
                self._store.execute(
                    """
                    UPDATE sessions SET total_input_tokens = ?, total_output_tokens = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (max(0, input_tokens), max(0, output_tokens), now, session_id),
                )
            else:
                self._store.execute(
                    """
                    UPDATE sessions
                    SET total_input_tokens = ?, total_output_tokens = ?, is_default = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (max(0, input_tokens), max(0, output_tokens), 1 if is_default else 0, now, session_id),
                )

    def delete_session(self, session_id: str) -> None:
        session = self.get_session(session_id)
        if session is None:
            raise ValueError(f"Session does not exist: {session_id}")
        if session.is_default:
            raise ValueError(f"The default session '{session_id}' cannot be deleted")

        with self._store.transaction("Deleting session"):
            self._store.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            self._store.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            self._events.emit(session_id, "session.deleted", {"session_id": session_id})

    def rename_session(self, old_name: str, new_name: str) -> SessionInfo:
        new_name = new_name.strip()
        session = self.get_session(old_name)
        if session is None:
            raise ValueError(f"Session does not exist: {old_name}")
        if session.is_default:
            raise ValueError(f"The default session '{old_name}' cannot be renamed")
        if not new_name:
            raise ValueError("Session name must not be empty")
        if new_name == old_name:
            return session
        if self.get_session(new_name) is not None:
            raise ValueError(f"Session already exists: {new_name}")

        now = utc_now()
        with self._store.transaction("Renaming session"):
            # messages follow through ON UPDATE CASCADE
            self._store.execute(
                "UPDATE sessions SET id = ?, updated_at = ? WHERE id = ?",
                (new_name, now, old_name),
            )
            self._store.execute("UPDATE events SET session_id = ? WHERE session_id = ?", (new_name, old_name))
            self._events.emit(new_name, "session.renamed", {"old_name": old_name, "new_name": new_name})
        return self.get_session(new_name) or session

    def clear_session(self, session_id: str) -> None:
        now = utc_now()
        with self._store.transaction("Clearing session"):
            self._store.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            self._store.execute(
                """
                UPDATE sessions SET total_input_tokens = 0, total_output_tokens = 0, updated_at = ?
                WHERE id = ?
                """,
                (now, session_id),
            )
            self._events.emit(session_id, "session.cleared", {"session_id": session_id})

    def recent_events(self, session_id: str, limit: int = 20) -> list[dict]:
        """Newest first."""
        return self._events.list_events(session_id, limit=limit)

    def get_threshold(self, session_id: str) -> int:
        session = self.get_session(session_id)
        return session.context_threshold if session is not None else 0

    def set_threshold(self, session_id: str, value: int) -> int:
        threshold = clamp_grade(value)
        with self._store.transaction("Saving threshold"):
            self._store.execute(
                "UPDATE sessions SET context_threshold = ? WHERE id = ?",
                (threshold, session_id),
            )
            self._events.emit(session_id, "threshold.changed", {"threshold": threshold})
        return threshold

    # -- messages -----------------------------------------------------------

    def load_messages(self, session_id: str) -> list[Message]:
        with self._store.transaction("Loading messages"):
            rows = self._store.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? ORDER BY seq ASC",
                (session_id,),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def get_message(self, message_id: str) -> Message | None:
        with self._store.transaction("Loading message"):
            row = self._store.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ? LIMIT 1",
                (message_id,),
            ).fetchone()
        return _row_to_message(row) if row is not None else None

    def save_message(self, session_id: str, message: Message) -> int:
        """Append ``message`` to the session and return its sequence number."""
        now = utc_now()
        with self._store.transaction("Saving message"):
            row = self._store.execute(
                "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            next_seq = int(row["max_seq"]) + 1
            self._store.execute(
                f"""
                INSERT INTO messages (session_id, seq, {_MESSAGE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    next_seq,
                    message.id,
                    message.role,
                    message.content,
                    message.timestamp.isoformat(),
                    message.turn_id,
                    1 if message.is_final_response else 0,
                    clamp_grade(message.text_grade),
                    clamp_grade(message.image_grade),
                    max(0, message.input_tokens),
                    max(0, message.output_tokens),
                    message.model_used,
                    message.tip,
                    1 if message.is_edited else 0,
                ),
            )
            self._store.execute("UPDATE sessions SET updated_at = ? WHERE id = ?", (now, session_id))
            self._events.emit(
                session_id,
                "message.saved",
                {"message_id": message.id, "seq": next_seq, "role": message.role, "turn_id": message.turn_id},
            )
        return next_seq

    def update_message_content(self, message_id: str, content: str) -> None:
        with self._store.transaction("Updating message"):
            cursor = self._store.execute(
                "UPDATE messages SET content = ?, is_edited = 1 WHERE id = ?",
                (content, message_id),
            )
            if cursor.rowcount == 0:
                raise ValueError(f"Message does not exist: {message_id}")

    def set_grade(self, message_id: str, grade: int) -> int:
        """Grade one message. Text and image grades are always written together."""
        value = clamp_grade(grade)
        with self._store.transaction("Saving grade"):
            row = self._store.execute(
                "SELECT session_id FROM messages WHERE id = ? LIMIT 1",
                (message_id,),
            ).fetchone()
            if row is None:
                raise ValueError(f"Message does not exist: {message_id}")
            self._store.execute(
                "UPDATE messages SET text_grade = ?, image_grade = ? WHERE id = ?",
                (value, value, message_id),
            )
            self._events.emit(row["session_id"], "grade.changed", {"message_id": message_id, "grade": value})
        return value

    def set_turn_grade(self, turn_id: str, grade: int) -> int:
        value = clamp_grade(grade)
        with self._store.transaction("Saving turn grade"):
            row = self._store.execute(
                "SELECT session_id FROM messages WHERE turn_id = ? LIMIT 1",
                (turn_id,),
            ).fetchone()
            if row is None:
                raise ValueError(f"Turn does not exist: {turn_id}")
            self._store.execute(
                "UPDATE messages SET text_grade = ?, image_grade = ? WHERE turn_id = ?",
                (value, value, turn_id),
            )
            self._events.emit(row["session_id"], "grade.changed", {"turn_id": turn_id, "grade": value})
        return value

    def set_all_grades(self, session_id: str, grade: int) -> int:
        value = clamp_grade(grade)
        with self._store.transaction("Saving grades"):
            self._store.execute(
                "UPDATE messages SET text_grade = ?, image_grade = ? WHERE session_id = ?",
                (value, value, session_id),
            )
            self._events.emit(session_id, "grade.bulk_changed", {"grade": value})
        return value

    # -- migrations ---------------------------------------------------------

    def backfill_turn_ids(self) -> int:
        """Group legacy messages that have no turn id into positional turns.

        Each user message opens a group and the assistant messages that follow
        it join that group. Only the last assistant message of a group stays
        final. The assignment is persisted, so a second run finds nothing to do.
        Returns the number of messages updated.
        """
        updates: list[tuple[str, int, str]] = []
        with self._store.transaction("Backfilling turn ids"):
            rows = self._store.execute(
                "SELECT id, session_id, role FROM messages WHERE turn_id = '' ORDER BY session_id, seq"
            ).fetchall()

            current_session: str | None = None
            group: list[tuple[str, str]] = []

            def flush() -> None:
                if not group:
                    return
                turn_id = str(uuid4())
                assistant_ids = [mid for mid, role in group if role == ASSISTANT]
                last_assistant = assistant_ids[-1] if assistant_ids else None
                for mid, role in group:
                    final = role == USER or mid == last_assistant
                    updates.append((turn_id, 1 if final else 0, mid))
                group.clear()

            for row in rows:
                if row["session_id"] != current_session or row["role"] == USER:
                    flush()
                    current_session = row["session_id"]
                group.append((row["id"], row["role"]))
            flush()

            if updates:
                self._store.executemany(
                    "UPDATE messages SET turn_id = ?, is_final_response = ? WHERE id = ?",
                    updates,
                )
        if updates:
            logger.info(f"Backfilled turn ids for {len(updates)} message(s)")
        return len(updates)

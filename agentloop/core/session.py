"""
Conversation session storage.

The orchestrator only needs something with ``append(message)``. ``SessionStore``
is the SQLite implementation used by the CLI: one row per session, one row per
message with the parts stored as JSON in wire form.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from .messages import Message, Role

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionPersistence(Protocol):
    def append(self, message: Message) -> None:
        ...


class SessionStore:
    """SQLite-backed sessions and their messages."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self):
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                title TEXT DEFAULT 'New Session',
                created_at TEXT,
                updated_at TEXT,
                message_count INTEGER DEFAULT 0
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT,
                timestamp TEXT,
                role TEXT,
                parts TEXT,
                FOREIGN KEY (session_id) REFERENCES sessions(id)
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_messages_session_id ON messages(session_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions(updated_at DESC)')

        conn.commit()
        conn.close()

    def create_session(self, title: str = "New Session") -> str:
        """Create a new session and return its ID."""
        session_id = str(uuid.uuid4())
        now = datetime.now().isoformat()

        conn = self._connect()
        conn.execute('''
            INSERT INTO sessions (id, title, created_at, updated_at)
            VALUES (?, ?, ?, ?)
        ''', (session_id, title, now, now))
        conn.commit()
        conn.close()
        return session_id

    def exists(self, session_id: str) -> bool:
        conn = self._connect()
        row = conn.execute('SELECT 1 FROM sessions WHERE id = ?', (session_id,)).fetchone()
        conn.close()
        return row is not None

    def resolve_id(self, prefix: str) -> Optional[str]:
        """Full session ID for an exact ID or a unique prefix of one.

        Returns None when nothing matches. Raises ValueError when the prefix
        matches more than one session.
        """
        if not prefix:
            return None
        if self.exists(prefix):
            return prefix
        conn = self._connect()
        rows = conn.execute(
            'SELECT id FROM sessions WHERE substr(id, 1, ?) = ? LIMIT 2',
            (len(prefix), prefix),
        ).fetchall()
        conn.close()
        if len(rows) > 1:
            raise ValueError(f"Ambiguous session ID: {prefix}")
        return rows[0][0] if rows else None

    def append(self, session_id: str, message: Message) -> int:
        """Append one message to a session."""
        now = datetime.now().isoformat()
        # Tool data may hold datetimes, paths and the like
        parts = json.dumps(message.to_dict()["parts"], default=str)

        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO messages (session_id, timestamp, role, parts)
            VALUES (?, ?, ?, ?)
        ''', (session_id, now, message.role.value, parts))
        message_id = cursor.lastrowid

        cursor.execute('''
            UPDATE sessions SET updated_at = ?, message_count = message_count + 1
            WHERE id = ?
        ''', (now, session_id))

        # Title new sessions after their first user message
        if message.role == Role.USER and message.text.strip():
            cursor.execute('''
                UPDATE sessions SET title = ?
                WHERE id = ? AND title = 'New Session'
            ''', (message.text.strip()[:60], session_id))

        conn.commit()
        conn.close()
        return message_id

    def load(self, session_id: str) -> List[Message]:
        """Load a session's history in append order."""
        conn = self._connect()
        rows = conn.execute('''
            SELECT role, parts FROM messages
            WHERE session_id = ?
            ORDER BY id ASC
        ''', (session_id,)).fetchall()
        conn.close()
        return [Message.from_dict({"role": role, "parts": json.loads(parts)}) for role, parts in rows]

    def get_session(self, session_id: str) -> Optional[Dict]:
        conn = self._connect()
        row = conn.execute('''
            SELECT id, title, created_at, updated_at, message_count
            FROM sessions WHERE id = ?
        ''', (session_id,)).fetchone()
        conn.close()
        if not row:
            return None
        return {
            "id": row[0],
            "title": row[1],
            "created_at": row[2],
            "updated_at": row[3],
            "message_count": row[4],
        }

    def list_sessions(self, limit: int = 50, search: str = None) -> List[Dict]:
        """List sessions, most recently updated first."""
        conn = self._connect()
        if search:
            rows = conn.execute('''
                SELECT id, title, created_at, updated_at, message_count
                FROM sessions
                WHERE title LIKE ?
                ORDER BY updated_at DESC
                LIMIT ?
            ''', (f'%{search}%', limit)).fetchall()
        else:
            rows = conn.execute('''
                SELECT id, title, created_at, updated_at, message_count
                FROM sessions
                ORDER BY updated_at DESC
                LIMIT ?
            ''', (limit,)).fetchall()
        conn.close()
        return [
            {"id": r[0], "title": r[1], "created_at": r[2], "updated_at": r[3], "message_count": r[4]}
            for r in rows
        ]

    def latest_session_id(self) -> Optional[str]:
        sessions = self.list_sessions(limit=1)
        return sessions[0]["id"] if sessions else None

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and its messages."""
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute('DELETE FROM messages WHERE session_id = ?', (session_id,))
        cursor.execute('DELETE FROM sessions WHERE id = ?', (session_id,))
        affected = cursor.rowcount
        conn.commit()
        conn.close()
        return affected > 0

    def writer(self, session_id: str) -> "SessionWriter":
        return SessionWriter(self, session_id)


class SessionWriter:
    """Binds a store to one session, satisfying SessionPersistence."""

    def __init__(self, store: SessionStore, session_id: str):
        self.store = store
        self.session_id = session_id

    def append(self, message: Message) -> None:
        self.store.append(self.session_id, message)
        logger.debug("Persisted %s message to session %s", message.role.value, self.session_id)

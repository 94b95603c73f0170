"""Session storage: the store interface, its backends, and per-session locks.

Stores are last-write-wins upserts keyed by session uid with no locking
of their own. Callers that read, modify and write back a session hold the
session's lock from ``SessionLocks`` for the whole cycle so concurrent
requests for the same session (two browser tabs) cannot overwrite each
other's changes.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from jsonschema import ValidationError, validate
from schema import USER_SESSION_SCHEMA

from session.errors import SessionNotFound, StoreError
from session.models import UserSession

logger = logging.getLogger(__name__)

MAX_TRACKED_LOCKS = 10_000


class SessionStore(ABC):
    """Durable keyed storage for UserSession records."""

    @abstractmethod
    def create(self, usess: UserSession) -> None:
        """Insert or replace the session stored under ``usess.uid``.

        Raises:
            StoreError: If the record could not be written.
        """

    @abstractmethod
    def fetch_by_id(self, session_id: str) -> UserSession:
        """Return the session stored under ``session_id``.

        Raises:
            SessionNotFound: If no record exists.
            StoreError: If the record could not be read or is corrupt.
        """


def _decode_record(session_id: str, payload: Dict[str, Any]) -> UserSession:
    try:
        validate(instance=payload, schema=USER_SESSION_SCHEMA)
    except ValidationError as e:
        raise StoreError(f"Stored session {session_id} is invalid: {e.message}") from e
    return UserSession.from_dict(payload)


class InMemorySessionStore(SessionStore):
    """Process-local store, used for development and tests.

    Records are kept serialized so callers never share a reference with the
    stored copy.
    """

    def __init__(self):
        self._records: Dict[str, str] = {}
        self._lock = threading.Lock()

    def create(self, usess: UserSession) -> None:
        payload = usess.to_dict()
        try:
            validate(instance=payload, schema=USER_SESSION_SCHEMA)
        except ValidationError as e:
            raise StoreError(f"Refusing to store invalid session {usess.uid}: {e.message}") from e
        with self._lock:
            self._records[usess.uid] = json.dumps(payload)

    def fetch_by_id(self, session_id: str) -> UserSession:
        with self._lock:
            raw = self._records.get(session_id)
        if raw is None:
            raise SessionNotFound(f"Session not found: {session_id}")
        return _decode_record(session_id, json.loads(raw))

    def __len__(self) -> int:
        return len(self._records)


class SQLiteSessionStore(SessionStore):
    """Persistent session storage backed by SQLite."""

    def __init__(self, storage_path: str):
        self.storage_path = storage_path
        os.makedirs(self.storage_path, mode=0o755, exist_ok=True)
        self.db_path = os.path.join(self.storage_path, "sessions.db")
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS user_sessions (
                        uid TEXT PRIMARY KEY,
                        payload TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_sessions_updated_at "
                    "ON user_sessions(updated_at)"
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize session database {self.db_path}: {e}")
            raise StoreError(f"Failed to initialize session database: {e}") from e

    def create(self, usess: UserSession) -> None:
        """Upsert a session by uid."""
        payload = usess.to_dict()
        try:
            validate(instance=payload, schema=USER_SESSION_SCHEMA)
        except ValidationError as e:
            logger.error(f"Invalid session payload for {usess.uid}: {e.message}")
            raise StoreError(f"Refusing to store invalid session {usess.uid}: {e.message}") from e

        updated_at = datetime.now(timezone.utc).isoformat()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO user_sessions (uid, payload, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(uid) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                    """,
                    (usess.uid, json.dumps(payload), updated_at),
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to store session {usess.uid} in SQLite: {e}")
            raise StoreError(f"Failed to store session: {e}") from e

    def fetch_by_id(self, session_id: str) -> UserSession:
        """Get a session by uid from SQLite."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT payload FROM user_sessions WHERE uid = ?",
                    (session_id,),
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to read session {session_id} from SQLite: {e}")
            raise StoreError(f"Failed to read session: {e}") from e

        if row is None:
            raise SessionNotFound(f"Session not found: {session_id}")

        try:
            payload = json.loads(row["payload"])
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt session payload for {session_id}: {e}")
            raise StoreError(f"Corrupt session payload: {e}") from e
        return _decode_record(session_id, payload)


def create_session_store(config: Dict[str, Any]) -> SessionStore:
    """Build the session store selected by the ``session_store`` config section."""
    store_config = config.get("session_store", {})
    backend = store_config.get("backend", "memory")
    if backend == "sqlite":
        path = store_config.get("path", "./data/sessions")
        logger.info(f"Using SQLite session store at {path}")
        return SQLiteSessionStore(path)
    if backend != "memory":
        logger.warning(f"Unknown session store backend '{backend}', using in-memory store")
    logger.info("Using in-memory session store")
    return InMemorySessionStore()


class SessionLocks:
    """One lock per session id, so each session has a single writer.

    Locks are tracked in an LRU map bounded by ``max_size``; a lock that is
    currently held is never evicted.
    """

    def __init__(self, max_size: int = MAX_TRACKED_LOCKS):
        self.max_size = max_size
        self._locks: "OrderedDict[str, threading.Lock]" = OrderedDict()
        self._guard = threading.Lock()

    def _get(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is not None:
                self._locks.move_to_end(session_id)
                return lock

            if len(self._locks) >= self.max_size:
                for key in list(self._locks):
                    if len(self._locks) < self.max_size:
                        break
                    if not self._locks[key].locked():
                        del self._locks[key]

            lock = threading.Lock()
            self._locks[session_id] = lock
            return lock

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        """Hold the lock for ``session_id`` for the duration of the block."""
        lock = self._get(session_id)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)

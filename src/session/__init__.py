"""
Session Module.

Holds the UserSession data model, the session store interface with its
in-memory and SQLite backends, and the error taxonomy shared by the auth
and composer layers.

Usage:
    >>> from session import UserSession, create_session_store
    >>> store = create_session_store(config)
    >>> store.create(UserSession.new(me, client_id, redirect_uri))
"""

from session.errors import AdminError, StoreError, SessionNotFound, TransportError
from session.models import ComposerData, HCard, Location, MediaUpload, UserSession
from session.store import (
    InMemorySessionStore,
    SQLiteSessionStore,
    SessionLocks,
    SessionStore,
    create_session_store,
)

__all__ = [
    "AdminError",
    "StoreError",
    "SessionNotFound",
    "TransportError",
    "ComposerData",
    "HCard",
    "Location",
    "MediaUpload",
    "UserSession",
    "InMemorySessionStore",
    "SQLiteSessionStore",
    "SessionLocks",
    "SessionStore",
    "create_session_store",
]

"""
Pytest configuration and shared fixtures for all tests.

This module provides shared fixtures for the test suite, including:
- An isolated configuration dictionary
- An in-memory session store
- Factories for pending and authenticated sessions
- A helper for fake requests responses
"""

from unittest.mock import MagicMock

import pytest

from session.models import HCard, UserSession
from session.store import InMemorySessionStore


ME = "https://example.com/"
CLIENT_ID = "https://admin.example.org/"
REDIRECT_URI = "https://admin.example.org/login-callback"


def make_http_response(status_code=200, json_data=None, text="", headers=None):
    """Build a MagicMock standing in for a requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    elif json_data is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = json_data
    return response


def make_http_session():
    """Build a MagicMock standing in for a requests.Session used as a context manager."""
    session = MagicMock()
    session.__enter__.return_value = session
    session.__exit__.return_value = False
    return session


@pytest.fixture
def config():
    """Configuration that never touches config.yml or the environment."""
    return {
        "indieauth": {
            "client_id": CLIENT_ID,
            "redirect_uri": REDIRECT_URI,
            "token_endpoint": "",
        },
        "session_store": {"backend": "memory"},
        "http": {"timeout": 5},
        "server": {"bind": "127.0.0.1:8080"},
        "cors": {"enabled": False, "origins": []},
    }


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def pending_session(store):
    """A stored session waiting for its IndieAuth callback."""
    usess = UserSession.new(ME, CLIENT_ID, REDIRECT_URI).with_endpoints(
        authorization_endpoint="https://auth.example.com/auth",
        token_endpoint="https://tokens.example.com/token",
        micropub_endpoint="https://example.com/micropub",
        media_endpoint="https://media.example.com/upload",
    )
    store.create(usess)
    return usess


@pytest.fixture
def authed_session(store, pending_session):
    """A stored, logged in session with an author h-card."""
    usess = pending_session.with_token("tok-123", "Bearer").with_hcard(
        HCard(name="Jay", url=ME, photo="https://example.com/me.jpg")
    )
    store.create(usess)
    return usess

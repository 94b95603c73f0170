"""
Unit Tests for Configuration Module.

This test suite validates configuration loading, defaults, environment
overrides and Docker secret handling.
"""
import os
import tempfile

import pytest

from config import (
    DEFAULT_HTTP_TIMEOUT,
    apply_env_overrides,
    get_default_config,
    get_http_timeout,
    load_config,
    merge_with_defaults,
    read_secret_file,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("CLIENT_ID", "CALLBACK_URL", "TOKEN_ENDPOINT", "SESSION_STORE_PATH"):
        monkeypatch.delenv(name, raising=False)


def test_get_default_config():
    """Test default configuration values."""
    config = get_default_config()

    assert config["indieauth"]["client_id"] == ""
    assert config["session_store"]["backend"] == "memory"
    assert config["http"]["timeout"] == DEFAULT_HTTP_TIMEOUT
    assert config["server"]["bind"] == "0.0.0.0:8080"
    assert config["cors"]["enabled"] is False


def test_load_config_with_explicit_path():
    """Test loading config from explicit path."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yml", delete=False) as f:
        f.write("""
indieauth:
  client_id: https://admin.example.org/
  redirect_uri: https://admin.example.org/login-callback
session_store:
  backend: sqlite
""")
        temp_path = f.name

    try:
        config = load_config(temp_path)
        assert config["indieauth"]["client_id"] == "https://admin.example.org/"
        assert config["session_store"]["backend"] == "sqlite"
        # Missing keys are filled from defaults
        assert config["session_store"]["path"] == "./data/sessions"
        assert config["http"]["timeout"] == DEFAULT_HTTP_TIMEOUT
    finally:
        os.unlink(temp_path)


def test_load_config_file_not_found():
    """Test loading config when file doesn't exist."""
    config = load_config("/nonexistent/path/config.yml")

    assert config == get_default_config()


def test_load_config_invalid_yaml():
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yml", delete=False) as f:
        f.write("indieauth: [unclosed\n")
        temp_path = f.name

    try:
        assert load_config(temp_path) == get_default_config()
    finally:
        os.unlink(temp_path)


def test_merge_with_defaults_keeps_unknown_sections():
    merged = merge_with_defaults({"extra": {"a": 1}, "http": {"timeout": 3}})

    assert merged["extra"] == {"a": 1}
    assert merged["http"]["timeout"] == 3
    assert merged["indieauth"]["client_id"] == ""


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CLIENT_ID", "https://env.example.org/")
    monkeypatch.setenv("CALLBACK_URL", "https://env.example.org/cb")
    monkeypatch.setenv("SESSION_STORE_PATH", "/tmp/sessions")

    config = apply_env_overrides(get_default_config())

    assert config["indieauth"]["client_id"] == "https://env.example.org/"
    assert config["indieauth"]["redirect_uri"] == "https://env.example.org/cb"
    assert config["session_store"]["path"] == "/tmp/sessions"


def test_token_endpoint_read_from_secret_file():
    with tempfile.NamedTemporaryFile(mode="w", delete=False) as f:
        f.write("https://tokens.example.com/token\n")
        temp_path = f.name

    try:
        config = get_default_config()
        config["indieauth"]["token_endpoint_file"] = temp_path
        config = apply_env_overrides(config)
        assert config["indieauth"]["token_endpoint"] == "https://tokens.example.com/token"
    finally:
        os.unlink(temp_path)


@pytest.mark.parametrize("raw, expected", [
    (5, 5.0),
    ("2.5", 2.5),
    (0, DEFAULT_HTTP_TIMEOUT),
    (-1, DEFAULT_HTTP_TIMEOUT),
    ("soon", DEFAULT_HTTP_TIMEOUT),
    (None, DEFAULT_HTTP_TIMEOUT),
])
def test_get_http_timeout(raw, expected):
    assert get_http_timeout({"http": {"timeout": raw}}) == expected


def test_get_http_timeout_missing_section():
    assert get_http_timeout({}) == DEFAULT_HTTP_TIMEOUT


def test_read_secret_file_success():
    """Test reading a Docker secret file."""
    with tempfile.NamedTemporaryFile(mode="w", delete=False) as f:
        f.write("test_secret_value\n")
        temp_path = f.name

    try:
        secret = read_secret_file(temp_path)
        assert secret == "test_secret_value"  # Should be stripped
    finally:
        os.unlink(temp_path)


def test_read_secret_file_not_found():
    """Test reading a secret file that doesn't exist."""
    secret = read_secret_file("/nonexistent/secret/file")
    assert secret is None

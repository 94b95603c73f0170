"""
Configuration Module for the Micropub admin.

This module provides configuration loading for the admin application.
Configuration is loaded from config.yml, may be overridden from the
environment, and supports Docker secrets for the values that should not
live in the file.

Usage:
    >>> from config import load_config, get_http_timeout
    >>> config = load_config()
    >>> timeout = get_http_timeout(config)
"""
import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional


logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 10.0

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "CLIENT_ID": ("indieauth", "client_id"),
    "CALLBACK_URL": ("indieauth", "redirect_uri"),
    "TOKEN_ENDPOINT": ("indieauth", "token_endpoint"),
    "SESSION_STORE_PATH": ("session_store", "path"),
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from config.yml file.

    Args:
        config_path: Path to config.yml file. If None, looks in current directory
                    and parent directories.

    Returns:
        Dictionary containing configuration settings, with defaults filled in
        for missing sections and environment overrides applied.

    Example:
        >>> config = load_config()
        >>> client_id = config["indieauth"]["client_id"]
    """
    if config_path is None:
        current = Path.cwd()
        for parent in [current] + list(current.parents):
            candidate = parent / "config.yml"
            if candidate.exists():
                config_path = str(candidate)
                break

        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            candidate = project_root / "config.yml"
            if candidate.exists():
                config_path = str(candidate)

    if config_path is None:
        logger.warning("config.yml not found, using default configuration")
        return apply_env_overrides(get_default_config())

    try:
        with open(config_path, "r") as f:
            loaded = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"Configuration file not found: {config_path}")
        return apply_env_overrides(get_default_config())
    except yaml.YAMLError as e:
        logger.error(f"Error parsing configuration file: {e}")
        return apply_env_overrides(get_default_config())

    if not isinstance(loaded, dict):
        logger.warning("Configuration root must be a mapping, using default configuration")
        return apply_env_overrides(get_default_config())

    config = merge_with_defaults(loaded)
    logger.info(f"Loaded configuration from {config_path}")
    return apply_env_overrides(config)


def get_default_config() -> Dict[str, Any]:
    """Return default configuration when config.yml is not available.

    Returns:
        Dictionary with default configuration values
    """
    return {
        "indieauth": {
            "client_id": "",
            "redirect_uri": "",
            "token_endpoint": "",
            "token_endpoint_file": "",
        },
        "session_store": {
            "backend": "memory",
            "path": "./data/sessions",
        },
        "http": {
            "timeout": DEFAULT_HTTP_TIMEOUT,
        },
        "server": {
            "bind": "0.0.0.0:8080",
        },
        "cors": {
            "enabled": False,
            "origins": [],
        },
    }


def merge_with_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in any section or key missing from a loaded configuration."""
    merged = get_default_config()
    for section, values in config.items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values
    return merged


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides on top of file configuration."""
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            config.setdefault(section, {})[key] = value
            logger.debug(f"Configuration {section}.{key} overridden from {env_name}")

    indieauth = config.get("indieauth", {})
    if not indieauth.get("token_endpoint") and indieauth.get("token_endpoint_file"):
        indieauth["token_endpoint"] = read_secret_file(indieauth["token_endpoint_file"]) or ""
    return config


def get_http_timeout(config: Dict[str, Any]) -> float:
    """Return a validated, positive outbound request timeout in seconds."""
    raw = config.get("http", {}).get("timeout", DEFAULT_HTTP_TIMEOUT)
    try:
        timeout = float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid http.timeout {raw!r}; falling back to {DEFAULT_HTTP_TIMEOUT}")
        return DEFAULT_HTTP_TIMEOUT

    if timeout <= 0:
        logger.warning(f"http.timeout must be positive, got {timeout}; falling back to {DEFAULT_HTTP_TIMEOUT}")
        return DEFAULT_HTTP_TIMEOUT
    return timeout


def read_secret_file(filepath: str) -> Optional[str]:
    """Read a Docker secret from a file.

    Docker secrets are mounted as files in /run/secrets/ directory.

    Args:
        filepath: Path to the secret file

    Returns:
        Content of the secret file (stripped of whitespace), or None if file doesn't exist

    Example:
        >>> endpoint = read_secret_file("/run/secrets/token_endpoint")
    """
    try:
        with open(filepath, "r") as f:
            return f.read().strip()
    except FileNotFoundError:
        logger.debug(f"Secret file not found: {filepath}")
        return None
    except Exception as e:
        logger.error(f"Error reading secret file {filepath}: {e}")
        return None

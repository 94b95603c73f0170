"""
IndieAuth Module.

This module lets a person log in to the admin with their own website.
It discovers the endpoints a profile URL declares, runs the
authorization-code flow against them, and verifies access tokens.

Features:
    - authorization_endpoint / token_endpoint / micropub discovery from
      HTTP Link headers or <link> elements
    - media endpoint discovery through the micropub ``q=config`` query
    - representative h-card extraction
    - fail-closed authorization callback
    - access token introspection

Usage:
    >>> from indieauth import AuthClient
    >>> client = AuthClient(session_store, token_endpoint=config["indieauth"]["token_endpoint"])
    >>> response = client.init("https://example.com/", client_id, redirect_uri)

Configuration (config.yml):
    indieauth:
      client_id: "https://admin.example.com/"
      redirect_uri: "https://admin.example.com/login-callback"
      token_endpoint: "https://tokens.indieauth.com/token"
"""

from indieauth.client import AuthClient, TokenResponse, VerifyCodeResponse, domains_match
from indieauth.discovery import (
    DiscoveredEndpoints,
    discover_endpoints,
    discover_media_endpoint,
    fetch_hcard,
    find_endpoint,
)
from indieauth.errors import CSRFMismatch, DiscoveryError, DomainMismatch, ProviderRejected

__all__ = [
    "AuthClient",
    "TokenResponse",
    "VerifyCodeResponse",
    "domains_match",
    "DiscoveredEndpoints",
    "discover_endpoints",
    "discover_media_endpoint",
    "fetch_hcard",
    "find_endpoint",
    "CSRFMismatch",
    "DiscoveryError",
    "DomainMismatch",
    "ProviderRejected",
]

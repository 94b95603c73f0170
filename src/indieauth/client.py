"""
IndieAuth client: the login state machine.

    UNINITIATED --init()--> PENDING --callback()--> AUTHENTICATED

``init`` creates and stores a session, discovers the user's endpoints and
redirects the browser to their authorization endpoint. ``callback`` is
fail-closed: the stored session is only updated with an access token after
every check has passed, in this order:

    1. a session exists for ``state``           (else 500, no network)
    2. its stored state equals ``state``        (else 403, no network)
    3. it has a token endpoint                  (else 403, no network)
    4. the code exchange answers 200            (else 403)
    5. the body is a valid token response       (else 403)
    6. the returned ``me`` is on the same host  (else 403)

A failure never changes stored state; it is only expressed by the response
status code.

Usage:
    >>> client = AuthClient(store, token_endpoint="https://tokens.example.com/token")
    >>> response = client.init("https://example.com/", client_id, redirect_uri)
    >>> response.status_code, response.location
    (303, 'https://auth.example.com/auth?client_id=...')
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests
from jsonschema import ValidationError, validate
from schema import TOKEN_RESPONSE_SCHEMA

from indieauth.discovery import _build_session, discover_endpoints
from indieauth.errors import CSRFMismatch, DiscoveryError, DomainMismatch, ProviderRejected
from session.errors import AdminError, StoreError, TransportError
from session.models import UserSession
from session.response import Response, error_response, redirect
from session.store import SessionLocks, SessionStore


logger = logging.getLogger(__name__)

SESSION_COOKIE = "sessionid"
COMPOSER_PATH = "/composer"


@dataclass
class TokenResponse:
    """Result of access-token introspection at the token endpoint."""
    me: str = ""
    client_id: str = ""
    scope: str = ""
    issued_by: str = ""
    error: str = ""
    error_description: str = ""
    status_code: int = 0

    def is_valid(self) -> bool:
        if self.status_code != 200:
            return False
        if not self.me.strip():
            return False
        if not self.scope.strip():
            return False
        return True


@dataclass
class VerifyCodeResponse:
    """Body of a successful authorization code exchange."""
    me: str = ""
    scope: str = ""
    access_token: str = ""
    token_type: str = ""


def _host(url: str) -> str:
    try:
        hostname = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return hostname.lower().rstrip(".")


def domains_match(returned_me: str, original_me: str) -> bool:
    """Check the identity returned by the token endpoint against the login.

    Hosts must be identical (case-insensitive). Comparing only the last
    two labels would treat ``alice.example.co.uk`` and ``bob.example.co.uk``
    as the same owner.
    """
    returned_host = _host(returned_me)
    original_host = _host(original_me)
    if not returned_host or not original_host:
        return False
    return returned_host == original_host


def _is_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class AuthClient:
    """Drives IndieAuth logins against a session store.

    Args:
        session_store: Where sessions are created and read back.
        token_endpoint: Introspection endpoint used by verify_access_token.
        timeout: Timeout in seconds for every outbound request.
        locks: Per-session locks shared with the composer.
    """

    def __init__(
        self,
        session_store: SessionStore,
        token_endpoint: str = "",
        timeout: float = 10.0,
        locks: Optional[SessionLocks] = None,
    ):
        self.session_store = session_store
        self.token_endpoint = token_endpoint
        self.timeout = timeout
        self.locks = locks or SessionLocks()

    def init(self, me: str, client_id: str, redirect_uri: str) -> Response:
        """Start a login for ``me`` and redirect to its authorization endpoint."""
        me = (me or "").strip()
        if not _is_http_url(me):
            logger.warning(f"Refusing to start login for invalid profile URL: {me!r}")
            return Response(status_code=400, body="me must be an http(s) URL")

        usess = UserSession.new(me, client_id, redirect_uri)
        logger.info(f"Initializing login: me={me}, session={usess.uid}")

        try:
            endpoints = discover_endpoints(me, timeout=self.timeout)
        except DiscoveryError as e:
            logger.error(f"Failed to discover endpoints for {me}: {e}")
            return error_response(e)

        usess = usess.with_endpoints(
            authorization_endpoint=endpoints.authorization_endpoint,
            token_endpoint=endpoints.token_endpoint,
            micropub_endpoint=endpoints.micropub_endpoint,
            media_endpoint=endpoints.media_endpoint,
        ).with_hcard(endpoints.hcard)

        auth_url = usess.build_auth_redirect_url()

        try:
            self.session_store.create(usess)
        except StoreError as e:
            logger.error(f"Failed to save session {usess.uid}: {e}")
            return error_response(e)

        return redirect(auth_url)

    def callback(self, state: str, code: str, client_id: str, redirect_uri: str) -> Response:
        """Complete a login: exchange ``code`` and authenticate the session."""
        try:
            with self.locks.hold(state):
                usess = self._verify_callback(state, code, client_id, redirect_uri)
                self.session_store.create(usess)
        except AdminError as e:
            return error_response(e)

        logger.info(f"Login succeeded: me={usess.me}, session={usess.uid}")
        return redirect(
            COMPOSER_PATH,
            **{"Set-Cookie": f"{SESSION_COOKIE}={usess.uid}; Path=/"},
        )

    def _verify_callback(self, state: str, code: str, client_id: str, redirect_uri: str) -> UserSession:
        try:
            usess = self.session_store.fetch_by_id(state)
        except StoreError as e:
            logger.error(f"Failed to fetch session for callback: {e}")
            raise

        if usess.state != state:
            logger.warning(f"State values did not match for session {usess.uid}")
            raise CSRFMismatch("state mismatch")

        if not usess.token_endpoint:
            logger.warning(f"Session {usess.uid} has no token endpoint; cannot exchange code")
            raise ProviderRejected("no token endpoint discovered")

        verified = self._exchange_code(usess, code, client_id, redirect_uri)

        if not domains_match(verified.me, usess.me):
            logger.warning(f"Returned identity {verified.me!r} does not match {usess.me!r}")
            raise DomainMismatch("returned me does not match the login")

        return usess.with_token(verified.access_token, verified.token_type)

    def _exchange_code(self, usess: UserSession, code: str, client_id: str, redirect_uri: str) -> VerifyCodeResponse:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "me": usess.me,
        }
        try:
            with _build_session() as session:
                response = session.post(
                    usess.token_endpoint,
                    data=data,
                    headers={
                        "Accept": "application/json",
                        "Content-Type": "application/x-www-form-urlencoded",
                    },
                    timeout=self.timeout,
                )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to POST to token endpoint {usess.token_endpoint}: {e}")
            raise TransportError(f"Token endpoint request failed: {e}") from e

        if response.status_code != 200:
            logger.warning(
                f"Token endpoint returned a non-200: endpoint={usess.token_endpoint}, "
                f"status_code={response.status_code}"
            )
            raise ProviderRejected(f"token endpoint returned HTTP {response.status_code}")

        try:
            body = response.json()
            validate(instance=body, schema=TOKEN_RESPONSE_SCHEMA)
        except ValueError as e:
            logger.warning(f"Token endpoint returned an undecodable body: {e}")
            raise ProviderRejected("token endpoint returned invalid JSON") from e
        except ValidationError as e:
            logger.warning(f"Token endpoint returned an invalid body: {e.message}")
            raise ProviderRejected("token endpoint returned an invalid response") from e

        if not body["access_token"].strip():
            logger.warning(f"Token endpoint returned no access token for {usess.me}")
            raise ProviderRejected("token endpoint returned an empty access token")

        return VerifyCodeResponse(
            me=body["me"],
            scope=body.get("scope", ""),
            access_token=body["access_token"],
            token_type=body.get("token_type", ""),
        )

    def verify_access_token(self, bearer_token: str) -> TokenResponse:
        """Introspect an access token presented to a resource endpoint.

        Raises:
            TransportError: If the token endpoint cannot be reached.
        """
        if not self.token_endpoint:
            logger.warning("No token endpoint configured for access token verification")
            return TokenResponse()

        authorization = bearer_token or ""
        if authorization and not authorization.lower().startswith("bearer "):
            authorization = f"Bearer {authorization}"

        try:
            with _build_session() as session:
                response = session.get(
                    self.token_endpoint,
                    headers={
                        "Authorization": authorization,
                        "Accept": "application/json",
                    },
                    timeout=self.timeout,
                )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to GET token endpoint {self.token_endpoint}: {e}")
            raise TransportError(f"Token verification failed: {e}") from e

        token_response = TokenResponse(status_code=response.status_code)
        try:
            body = response.json()
        except ValueError as e:
            logger.warning(f"Token endpoint returned an undecodable body: {e}")
            return token_response

        if isinstance(body, dict):
            for name in ("me", "client_id", "scope", "issued_by", "error", "error_description"):
                value = body.get(name, "")
                if isinstance(value, str):
                    setattr(token_response, name, value)
        return token_response
